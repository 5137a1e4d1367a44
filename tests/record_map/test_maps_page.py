"""
Tests for the page-side refresh loop.
"""

import pandas as pd

from components.record_map.host import InMemoryHost
from components.record_map.maps_page import MAIN_TABLE, MAX_REFRESH_BATCHES, push_records
from components.record_map.widget import MapWidget


def geocodable_host():
    return InMemoryHost({MAIN_TABLE: pd.DataFrame({
        "id": [1],
        "Name": ["Office"],
        "Longitude": [None],
        "Latitude": [None],
        "Geocode": [True],
        "Address": ["Jaffa Rd 1"],
        "GeocodedAddress": [None],
    })})


def make_widget(host, options, fixed_client):
    widget = MapWidget(host, options, geocode_client=fixed_client)
    widget.on_table_selected(MAIN_TABLE)
    return widget


class TestPushRecords:
    """Test that geocoding write-backs reach the map."""

    def test_geocoded_row_appears_after_second_batch(self, options, fixed_client):
        host = geocodable_host()
        widget = make_widget(host, options, fixed_client)

        assert push_records(widget, host, None, None) == 2

        fixed_client.resolve.assert_awaited_once_with("Jaffa Rd 1")
        assert list(widget.canvas.features) == [1]
        assert widget.canvas.feature(1).location.lat == 31.7683

    def test_cursor_row_follows_the_refresh(self, options, fixed_client):
        host = geocodable_host()
        widget = make_widget(host, options, fixed_client)

        push_records(widget, host, None, 1)

        assert widget.selection.row_id == 1
        assert widget.canvas.feature(1).selected

    def test_unchanged_table_sends_one_batch(self, options, fixed_client, host):
        widget = make_widget(host, options, fixed_client)

        assert push_records(widget, host, None, None) == 1
        fixed_client.resolve.assert_not_awaited()
        assert sorted(widget.canvas.features) == [1, 2, 3]

    def test_refresh_chain_is_bounded(self, options, fixed_client, host):
        widget = make_widget(host, options, fixed_client)

        async def always_writes(records, mapping=None):
            host.revision += 1

        widget.on_records = always_writes

        assert push_records(widget, host, None, None) == MAX_REFRESH_BATCHES
