"""
Address geocoding for the record map.

GeocodeClient resolves one address through a geopy geocoder selected by
service name. GeocodingScanner walks the current records, applies the
GeocodedAddress cache policy and writes coordinates back to the host, with
at most one scan running at a time.
"""

import asyncio
import logging
from typing import Any, List, Optional

from geopy.exc import GeopyError
from geopy.extra.rate_limiter import RateLimiter
from geopy.geocoders import get_geocoder_for_service

from .host import HostDocument
from .map_config import WidgetOptions
from .map_data import FieldMapping, Record, Role
from .spatial_data import LatLng

logger = logging.getLogger(__name__)


class GeocodeClient:
    """Resolves addresses to coordinates with a pluggable geopy geocoder."""

    def __init__(self, service: str = "nominatim", user_agent: str = "record-map-widget",
                 timeout: float = 10, min_delay_sec: float = 1.0, geocoder: Any = None):
        """
        Args:
            service: geopy service name (nominatim, arcgis, photon, ...)
            user_agent: User agent sent to the geocoding service
            timeout: Request timeout in seconds
            min_delay_sec: Minimum pause between two requests to the service
            geocoder: Ready geocoder instance, overrides service
        """
        if geocoder is None:
            geocoder_class = get_geocoder_for_service(service)
            geocoder = geocoder_class(user_agent=user_agent, timeout=timeout)
        self.service = service
        self.geocoder = geocoder
        self.geocode = RateLimiter(geocoder.geocode, min_delay_seconds=min_delay_sec,
                                   error_wait_seconds=min_delay_sec, max_retries=0,
                                   swallow_exceptions=False)

    @classmethod
    def from_options(cls, options: WidgetOptions) -> "GeocodeClient":
        return cls(
            service=options.geocoder,
            user_agent=options.geocoder_user_agent,
            timeout=options.geocode_timeout_sec,
            min_delay_sec=options.geocode_delay_sec,
        )

    async def resolve(self, address: str) -> Optional[LatLng]:
        """
        Geocode one address.

        The blocking geopy call runs in a worker thread; the rate limiter
        spaces consecutive requests by the configured delay.

        Returns:
            Coordinates of the best match, or None when nothing matched or
            the service failed
        """
        try:
            location = await asyncio.to_thread(self.geocode, address)
        except (GeopyError, ValueError) as e:
            logger.error(f"Geocoding failed for {address!r}: {e}")
            return None
        if location is None:
            logger.info(f"No geocoding result for {address!r}")
            return None
        return LatLng(location.latitude, location.longitude)


class GeocodingScanner:
    """
    Fills in coordinates for records flagged for geocoding.

    A single task slot guarantees at most one scan in flight; triggers that
    arrive while a scan runs are dropped, not queued.
    """

    def __init__(self, client: GeocodeClient, host: HostDocument):
        self.client = client
        self.host = host
        self.write_access = True
        self._task: Optional[asyncio.Task] = None

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    @property
    def in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self, table_id: Optional[str], records: List[Record],
                mapping: FieldMapping) -> Optional[asyncio.Task]:
        """
        Start a scan over the given records unless one is already running.

        Must be called from a running event loop.

        Returns:
            The new scan task, or None if nothing was started
        """
        if self.in_flight:
            logger.debug("Geocoding scan already running, trigger ignored")
            return None
        if not table_id or not records:
            return None
        self._task = asyncio.get_running_loop().create_task(
            self.scan(table_id, [dict(record) for record in records], mapping)
        )
        self._task.add_done_callback(self._on_scan_done)
        return self._task

    def _on_scan_done(self, task: asyncio.Task) -> None:
        if task is self._task:
            self._task = None
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Geocoding scan failed: {task.exception()}")

    async def scan(self, table_id: str, records: List[Record], mapping: FieldMapping) -> int:
        """
        One pass over a record batch.

        Args:
            table_id: Host table receiving the write-back
            records: Records in batch order
            mapping: Field mapping of the batch

        Returns:
            Number of addresses submitted to the geocoder
        """
        if not self.write_access:
            return 0
        resolved = 0
        for record in records:
            # Geocode has to be mapped for every record; its absence ends the pass
            if not mapping.provides(Role.GEOCODE, record):
                break
            if not mapping.value(record, Role.GEOCODE):
                continue
            try:
                if await self._scan_record(table_id, record, mapping):
                    resolved += 1
            except Exception as e:
                logger.error(f"Geocoding row {record.get('id')} failed: {e}")
        if resolved:
            logger.info(f"Geocoding scan resolved {resolved} addresses in {table_id}")
        return resolved

    async def _scan_record(self, table_id: str, record: Record, mapping: FieldMapping) -> bool:
        address = mapping.value(record, Role.ADDRESS)
        cached = mapping.value(record, Role.GEOCODED_ADDRESS)
        if cached:
            if cached == address:
                # Already attempted for this address, whatever the outcome
                return False
            self._clear_location(record, mapping)

        if not address or mapping.value(record, Role.LONGITUDE):
            return False

        result = await self.client.resolve(address)
        fields = {
            Role.LONGITUDE: result.lng if result else None,
            Role.LATITUDE: result.lat if result else None,
            Role.GEOCODED_ADDRESS: address,
        }
        await self.host.update_record(table_id, record["id"], mapping.write_fields(fields))
        return True

    @staticmethod
    def _clear_location(record: Record, mapping: FieldMapping) -> None:
        for role in (Role.LONGITUDE, Role.LATITUDE, Role.GEOJSON):
            column = mapping.column(role)
            if column is not None:
                record[column] = None
