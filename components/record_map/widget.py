"""
Record map widget.

MapWidget reacts to host events (record batches, cursor moves, new-row
state, option changes) and to map events (feature clicks, camera moves).
Each full batch rebuilds the map canvas synchronously; auxiliary layers,
cursor sync and geocoding continue as background tasks on the event loop.
"""

import asyncio
import logging
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Set

from geopy.exc import GeopyError

from .controls import GroupedLayerControl, LayerControlBuilder
from .features import FeatureBuilder
from .geocoding import GeocodeClient, GeocodingScanner
from .host import HostDocument
from .layers import DEFAULT_GROUP_LABEL, AuxiliaryLayerLoader, LayerComposer, resolve_column_label
from .map_config import WidgetOptions
from .map_data import (
    MIXED_MODE_WARNING,
    NO_DATA_MESSAGE,
    FieldMapping,
    MissingColumnsError,
    Record,
    Role,
)
from .map_renderer import MapCanvas, render_problem_html
from .selection import SelectionCoordinator
from .session import MapSession

logger = logging.getLogger(__name__)


class MapWidget:
    """Keeps a map in sync with a host table and its row cursor."""

    def __init__(self, host: HostDocument, options: Optional[WidgetOptions] = None,
                 geocode_client: Optional[GeocodeClient] = None):
        self.host = host
        self.options = options or WidgetOptions()
        self.session = MapSession(self.options)
        self.selection = SelectionCoordinator(self.session, cursor_sink=self._schedule_cursor_move)
        self.layer_loader = AuxiliaryLayerLoader(host)
        self.control_builder = LayerControlBuilder()
        self.scanner = GeocodingScanner(geocode_client or self._create_geocode_client(), host)
        self._tasks: Set[asyncio.Task] = set()

    def _create_geocode_client(self) -> GeocodeClient:
        try:
            return GeocodeClient.from_options(self.options)
        except GeopyError as e:
            logger.warning(f"Geocoder {self.options.geocoder} unavailable ({e}), using nominatim")
            return GeocodeClient(user_agent=self.options.geocoder_user_agent,
                                 min_delay_sec=self.options.geocode_delay_sec)

    @property
    def canvas(self) -> Optional[MapCanvas]:
        return self.session.canvas

    # Host events

    def on_table_selected(self, table_id: str) -> None:
        """Remember the table that geocoding results are written to."""
        self.session.table_id = table_id

    async def on_records(self, records: Sequence[Record], mapping: Optional[Dict[str, Any]] = None) -> None:
        """Full-table refresh."""
        session = self.session
        session.records = list(records)
        session.host_mapping = mapping
        if self.options.mode == "single":
            return
        self._rebuild(session.records, mapping)
        self._trigger_scan(session.records, mapping)

    async def on_record(self, record: Record, mapping: Optional[Dict[str, Any]] = None) -> None:
        """Host cursor moved to a row."""
        session = self.session
        session.last_record = record
        session.host_mapping = mapping
        row_id = record.get("id")
        if self.options.mode == "single":
            session.selection.row_id = row_id
            self._rebuild([record], mapping)
            self._trigger_scan([record], mapping)
        else:
            self.selection.select_from_host(row_id)

    async def on_new_record(self) -> None:
        """Host cursor moved to the empty new-row position."""
        canvas = self.session.canvas
        if self.options.mode == "single":
            if canvas is not None:
                canvas.clear()
        else:
            self.selection.clear()
        self.session.selection.row_id = None

    async def on_options(self, options: Optional[Dict[str, Any]], access_level: Optional[str] = None) -> None:
        """Options persisted by the host changed."""
        self.scanner.write_access = access_level == "full"

        before = self.options.to_host_options()
        self.options.update_from_host(options)
        if self.options.to_host_options() != before:
            self._redraw()

    # Map events

    async def on_feature_click(self, row_id: int) -> None:
        self.selection.select_from_click(row_id)

    async def on_map_click(self, clicked: Optional[Dict[str, Any]],
                           clicked_feature: Optional[Dict[str, Any]] = None) -> Optional[int]:
        """
        Click reported by the map component; selects the clicked row, if any.

        Returns:
            The selected row id, or None when the click hit no feature
        """
        canvas = self.session.canvas
        if canvas is None:
            return None
        row_id = canvas.row_id_for_click(clicked, clicked_feature)
        if row_id is None:
            logger.debug(f"Map click at {clicked} hit no row")
            return None
        await self.on_feature_click(row_id)
        return row_id

    async def on_camera_move(self, center: Sequence[float], zoom: float) -> None:
        self.session.view.record_camera_move(center, zoom)

    def toggle_layer(self, name: str, visible: bool) -> bool:
        canvas = self.session.canvas
        if canvas is None or canvas.control is None:
            return False
        return canvas.control.toggle(name, visible)

    def toggle_layer_group(self, visible: bool) -> bool:
        canvas = self.session.canvas
        if canvas is None or not isinstance(canvas.control, GroupedLayerControl):
            return False
        canvas.control.toggle_group(visible)
        return True

    # Rendering

    def status_message(self) -> Optional[str]:
        """Message shown instead of the map, or None when there is a map to show."""
        if self.session.problem:
            return self.session.problem
        if self.session.canvas is None:
            return NO_DATA_MESSAGE
        return None

    def render_html(self) -> str:
        """Current map as a standalone HTML page."""
        message = self.status_message()
        if message:
            return render_problem_html(message)
        return self.session.canvas.render_html()

    async def wait_idle(self) -> None:
        """Wait until background tasks (auxiliary layers, cursor sync, geocoding) finish."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if self.scanner.in_flight:
                pending.append(self.scanner.task)
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def _redraw(self) -> None:
        session = self.session
        if self.options.mode == "single":
            if session.last_record is not None:
                session.selection.row_id = session.last_record.get("id")
                self._rebuild([session.last_record], session.host_mapping)
        elif session.records:
            self._rebuild(session.records, session.host_mapping)

    def _rebuild(self, records: List[Record], host_mapping: Optional[Dict[str, Any]]) -> Optional[MapCanvas]:
        """
        Tear down the current map and build a new one from a batch.

        Runs without yielding to the event loop, so no other event can
        observe a half-built map.
        """
        session = self.session
        generation = session.next_generation()
        session.canvas = None

        if not records:
            session.problem = NO_DATA_MESSAGE
            return None

        mapping = FieldMapping.resolve(host_mapping, records[0])
        session.mapping = mapping
        warning = None
        if mapping.is_geojson_mode:
            if mapping.mixed_mode_conflict(records):
                logger.warning(MIXED_MODE_WARNING)
                warning = f"{MIXED_MODE_WARNING}. GeoJSON takes precedence."
        else:
            try:
                mapping.validate(records)
            except MissingColumnsError as e:
                logger.warning(f"Map not drawn: {e}")
                session.problem = str(e)
                return None

        canvas = MapCanvas(generation, self.options, session.view,
                           geojson_mode=mapping.is_geojson_mode,
                           is_first_load=not session.view.has_state)
        canvas.warning = warning
        features = FeatureBuilder(mapping).build_all(records, session.selection.row_id)
        if mapping.is_geojson_mode:
            canvas.add_main_groups(LayerComposer(mapping.is_layer_mode).compose(features))
        else:
            canvas.add_markers(features)
        canvas.set_control(self.control_builder.build(canvas.main_groups, [], mapping.is_layer_mode))

        session.canvas = canvas
        session.problem = None
        canvas.place_camera()
        if canvas.feature(session.selection.row_id) is not None:
            canvas.reveal(session.selection.row_id)

        if self.options.additional_layers or mapping.is_layer_mode:
            self._spawn(self._attach_additional_layers(canvas, mapping))
        return canvas

    async def _attach_additional_layers(self, canvas: MapCanvas, mapping: FieldMapping) -> None:
        groups = await self.layer_loader.load(self.options.additional_layers)
        group_label = DEFAULT_GROUP_LABEL
        if mapping.is_layer_mode:
            group_label = await resolve_column_label(
                self.host, mapping.column(Role.LAYER), self.options.column_metadata_table
            )

        if not self.session.is_current(canvas):
            logger.info(f"Map generation {canvas.generation} was replaced, additional layers dropped")
            return
        canvas.attach_additional_layers(groups)
        canvas.set_control(self.control_builder.build(
            canvas.main_groups, canvas.additional_groups, mapping.is_layer_mode, group_label
        ))

    def _trigger_scan(self, records: List[Record], host_mapping: Optional[Dict[str, Any]]) -> None:
        if not records:
            return
        mapping = FieldMapping.resolve(host_mapping, records[0])
        self.scanner.trigger(self.session.table_id, records, mapping)

    def _schedule_cursor_move(self, row_id: int) -> None:
        self._spawn(self._move_cursor(row_id))

    async def _move_cursor(self, row_id: int) -> None:
        try:
            await self.host.set_cursor_pos(row_id)
        except Exception as e:
            logger.debug(f"Cursor sync to row {row_id} failed: {e}")

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background map task failed: {task.exception()}")
