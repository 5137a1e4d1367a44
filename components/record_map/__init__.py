"""
Record Map Component - Table rows drawn as an interactive map.

Rows of a host table become clustered point markers (Latitude/Longitude
columns) or GeoJSON shapes grouped into toggleable layers, with the row
cursor kept in sync with the selected feature and addresses geocoded back
into the table.

Maps are rendered using Folium.
"""

from .host import HostDocument, InMemoryHost
from .map_config import WidgetOptions
from .map_data import COLUMN_DECLARATIONS, FieldMapping, Role
from .widget import MapWidget

__all__ = [
    'HostDocument',
    'InMemoryHost',
    'WidgetOptions',
    'COLUMN_DECLARATIONS',
    'FieldMapping',
    'Role',
    'MapWidget'
]
