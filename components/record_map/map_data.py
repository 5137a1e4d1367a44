"""
Record and field-mapping handling for the record map.

This module resolves logical column roles (Name, Longitude, GeoJSON, ...)
against the actual columns of a host table, unwraps host cell values and
parses the JSON payloads stored in Style/LabelStyle/GeoJSON cells.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

Record = Dict[str, Any]

# Longitude value written by the host while a row is being geocoded
GEOCODING_IN_PROGRESS = "..."

MIXED_MODE_WARNING = "GeoJSON column detected - ignoring Latitude, Longitude, and Geocode columns"
MISSING_COLUMNS_MESSAGE = (
    "Table does not yet have all expected columns: Name, Longitude, Latitude. "
    "You can map custom columns in the Creator Panel."
)
NO_DATA_MESSAGE = "No data found yet"


class Role(str, Enum):
    """Logical purpose of a column, independent of its actual name."""

    NAME = "Name"
    LONGITUDE = "Longitude"
    LATITUDE = "Latitude"
    GEOJSON = "GeoJSON"
    GEOCODE = "Geocode"
    ADDRESS = "Address"
    GEOCODED_ADDRESS = "GeocodedAddress"
    STYLE = "Style"
    LAYER = "Layer"
    POPUP = "Popup"
    LABEL = "Label"
    LABEL_STYLE = "LabelStyle"


REQUIRED_ROLES = (Role.NAME, Role.LONGITUDE, Role.LATITUDE)
OPTIONAL_ROLES = tuple(role for role in Role if role not in REQUIRED_ROLES)

# Column declarations advertised to the host's column-mapping panel
COLUMN_DECLARATIONS: List[Dict[str, Any]] = [
    {"name": "Name", "title": "Name"},
    {"name": "Longitude", "type": "Numeric", "title": "Longitude", "optional": True},
    {"name": "Latitude", "type": "Numeric", "title": "Latitude", "optional": True},
    {"name": "GeoJSON", "type": "Text", "title": "GeoJSON", "optional": True,
     "description": "`geometry` attribute of geojson data. If set, `Longitude` and `Latitude` will not be used."},
    {"name": "Geocode", "type": "Bool", "title": "Geocode", "optional": True},
    {"name": "Address", "type": "Text", "title": "Address", "optional": True},
    {"name": "GeocodedAddress", "type": "Text", "title": "Geocoded Address", "optional": True},
    {"name": "Style", "type": "Text", "title": "Style", "optional": True,
     "description": "JSON style for GeoJSON features. Supports Leaflet path options: "
                    "color, fillColor, weight, opacity, fillOpacity, dashArray, etc."},
    {"name": "Layer", "type": "Text", "title": "Layer", "optional": True,
     "description": "Layer name to group features. Each unique value creates a toggleable overlay on the map."},
    {"name": "Popup", "type": "Any", "title": "Popup", "optional": True, "allowMultiple": True,
     "description": "Columns to display in the popup when clicking a feature."},
    {"name": "Label", "type": "Text", "title": "Label", "optional": True,
     "description": "Permanent text label displayed on each feature."},
    {"name": "LabelStyle", "type": "Text", "title": "Label Style", "optional": True,
     "description": "JSON style for labels. Supported properties: bearing (rotation degrees), fontSize (px), "
                    "color, fontWeight, opacity, dynamicSize (bool), referenceZoom (for dynamic sizing), "
                    "minZoom, maxZoom."},
]


class MissingColumnsError(ValueError):
    """Raised when coordinate mode lacks the Name/Longitude/Latitude columns."""

    def __init__(self, message: str = MISSING_COLUMNS_MESSAGE):
        super().__init__(message)


def unwrap_value(value: Any) -> Any:
    """
    Unwrap a host diff cell of the form ``{"value": "V(<json>)"}``.

    The remote side of the diff wins, then local, then parent. Any other
    value is returned unchanged.
    """
    if isinstance(value, dict):
        wrapped = value.get("value")
        if isinstance(wrapped, str) and wrapped.startswith("V("):
            try:
                payload = json.loads(wrapped[2:-1])
            except ValueError as e:
                logger.error(f"Unreadable diff cell {wrapped!r}: {e}")
                return value
            if isinstance(payload, dict):
                return payload.get("remote") or payload.get("local") or payload.get("parent") or payload
            return payload
    return value


def parse_json_payload(payload: Any) -> Any:
    """
    Parse a JSON payload that may arrive as text or already structured.

    Args:
        payload: Cell value (string, dict or list)

    Returns:
        Parsed structure, or None for an empty payload

    Raises:
        ValueError: If the text is not valid JSON
        TypeError: If the payload is neither text nor a JSON structure
    """
    payload = unwrap_value(payload)
    if payload is None or payload == "":
        return None
    if isinstance(payload, (dict, list)):
        return payload
    if isinstance(payload, (str, bytes)):
        return json.loads(payload)
    raise TypeError(f"Cannot parse JSON payload of type {type(payload).__name__}")


def is_blank(value: Any) -> bool:
    """True for None, empty strings and float NaN (pandas missing values)."""
    if value is None:
        return True
    if isinstance(value, float) and value != value:
        return True
    return isinstance(value, str) and value == ""


@dataclass
class FieldMapping:
    """Role -> column table resolved once per batch."""

    columns: Dict[Role, str] = field(default_factory=dict)
    popup_columns: List[str] = field(default_factory=list)
    legacy: bool = False

    @classmethod
    def from_host(cls, mapping: Dict[str, Any]) -> "FieldMapping":
        """Build a mapping from the host's role -> column table."""
        columns: Dict[Role, str] = {}
        popup_columns: List[str] = []
        for role in Role:
            column = mapping.get(role.value)
            if not column:
                continue
            if role is Role.POPUP:
                # Popup allows several columns and may arrive as a single id
                candidates = column if isinstance(column, (list, tuple)) else [column]
                popup_columns = [str(c) for c in candidates if c]
            else:
                columns[role] = str(column)
        return cls(columns=columns, popup_columns=popup_columns)

    @classmethod
    def default_for(cls, record: Optional[Record]) -> "FieldMapping":
        """
        Legacy mapping for widgets configured by renaming columns.

        Name, Longitude and Latitude always map to identically-named columns;
        optional roles map only when the record has such a field.
        """
        record = record or {}
        columns = {role: role.value for role in REQUIRED_ROLES}
        popup_columns: List[str] = []
        for role in OPTIONAL_ROLES:
            if role.value not in record:
                continue
            if role is Role.POPUP:
                popup_columns = [role.value]
            else:
                columns[role] = role.value
        return cls(columns=columns, popup_columns=popup_columns, legacy=True)

    @classmethod
    def resolve(cls, mapping: Optional[Dict[str, Any]], record: Optional[Record] = None) -> "FieldMapping":
        if mapping:
            return cls.from_host(mapping)
        return cls.default_for(record)

    def column(self, role: Role) -> Optional[str]:
        return self.columns.get(role)

    def has(self, role: Role) -> bool:
        if role is Role.POPUP:
            return bool(self.popup_columns)
        return role in self.columns

    def provides(self, role: Role, record: Record) -> bool:
        """True if the role is mapped and the record carries that column."""
        column = self.column(role)
        return column is not None and column in record

    def value(self, record: Record, role: Role, default: Any = None) -> Any:
        column = self.column(role)
        if column is None or column not in record:
            return default
        return unwrap_value(record[column])

    def popup_values(self, record: Record) -> List[Tuple[str, Any]]:
        """(column, value) pairs for the mapped Popup columns."""
        return [(column, unwrap_value(record.get(column))) for column in self.popup_columns]

    @property
    def is_geojson_mode(self) -> bool:
        return self.has(Role.GEOJSON)

    @property
    def is_layer_mode(self) -> bool:
        return self.is_geojson_mode and self.has(Role.LAYER)

    def validate(self, records: List[Record]) -> None:
        """
        Check that coordinate mode has its required columns.

        Raises:
            MissingColumnsError: If the first record lacks Name, Longitude
                or Latitude while GeoJSON mode is off
        """
        if self.is_geojson_mode or not records:
            return
        first = records[0]
        if not all(self.provides(role, first) for role in REQUIRED_ROLES):
            raise MissingColumnsError()

    def mixed_mode_conflict(self, records: Iterable[Record]) -> bool:
        """True if GeoJSON mode is on while coordinate/geocode columns hold data."""
        if not self.is_geojson_mode:
            return False
        competing = (Role.LATITUDE, Role.LONGITUDE, Role.GEOCODE)
        return any(
            self.value(record, role) is not None
            for record in records
            for role in competing
        )

    def write_fields(self, values: Dict[Role, Any]) -> Dict[str, Any]:
        """Translate a role -> value update into column ids, dropping unmapped roles."""
        return {
            self.columns[role]: value
            for role, value in values.items()
            if role in self.columns
        }
