"""
Pytest configuration and fixtures for record map tests.
"""

import json
import sys
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pandas as pd
import pytest

# Make the components package importable without installing the project
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from components.record_map.geocoding import GeocodeClient  # noqa: E402
from components.record_map.host import InMemoryHost  # noqa: E402
from components.record_map.map_config import WidgetOptions  # noqa: E402
from components.record_map.spatial_data import LatLng  # noqa: E402


def square(lng: float, lat: float, size: float = 0.01) -> dict:
    """Closed GeoJSON polygon with its south-west corner at lng, lat."""
    return {
        "type": "Polygon",
        "coordinates": [[
            [lng, lat],
            [lng + size, lat],
            [lng + size, lat + size],
            [lng, lat + size],
            [lng, lat],
        ]],
    }


@pytest.fixture
def options(tmp_path):
    """Widget options backed by a config file that does not exist yet."""
    return WidgetOptions(config_path=str(tmp_path / "record_map_config.json"))


@pytest.fixture
def point_records():
    """Legacy-mode records with coordinates."""
    return [
        {"id": 1, "Name": "Tel Aviv", "Longitude": 34.7818, "Latitude": 32.0853},
        {"id": 2, "Name": "Jerusalem", "Longitude": 35.2137, "Latitude": 31.7683},
        {"id": 3, "Name": "Haifa", "Longitude": 34.9896, "Latitude": 32.7940},
    ]


@pytest.fixture
def geojson_records():
    """GeoJSON records split over two Layer values."""
    return [
        {"id": 1, "Title": "North", "Shape": json.dumps(square(35.0, 32.8)), "Kind": "Parks"},
        {"id": 2, "Title": "Center", "Shape": json.dumps(square(34.8, 32.0)), "Kind": "Parks"},
        {"id": 3, "Title": "South", "Shape": json.dumps(square(34.9, 29.5)), "Kind": "Zones"},
    ]


@pytest.fixture
def geojson_mapping():
    return {"Name": "Title", "GeoJSON": "Shape", "Layer": "Kind"}


@pytest.fixture
def host():
    return InMemoryHost({
        "Places": pd.DataFrame({
            "id": [1, 2, 3],
            "Name": ["Tel Aviv", "Jerusalem", "Haifa"],
            "Longitude": [34.7818, 35.2137, 34.9896],
            "Latitude": [32.0853, 31.7683, 32.7940],
        }),
    })


@pytest.fixture
def geocoder():
    """Stand-in for a geopy geocoder returning a fixed location."""
    location = Mock(latitude=31.7683, longitude=35.2137)
    return Mock(geocode=Mock(return_value=location))


@pytest.fixture
def geocode_client(geocoder):
    return GeocodeClient(geocoder=geocoder)


@pytest.fixture
def fixed_client():
    """GeocodeClient whose resolve coroutine is mocked out."""
    client = Mock(spec=GeocodeClient)
    client.resolve = AsyncMock(return_value=LatLng(31.7683, 35.2137))
    return client

