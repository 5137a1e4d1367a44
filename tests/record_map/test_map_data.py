"""
Tests for field mapping and record payload helpers.
"""

import json
import math

import pytest

from components.record_map.map_data import (
    COLUMN_DECLARATIONS,
    FieldMapping,
    MissingColumnsError,
    Role,
    is_blank,
    parse_json_payload,
    unwrap_value,
)


class TestUnwrapValue:
    """Test diff-cell unwrapping."""

    def test_plain_values_pass_through(self):
        assert unwrap_value("abc") == "abc"
        assert unwrap_value(5) == 5
        assert unwrap_value({"type": "Point"}) == {"type": "Point"}

    def test_remote_side_wins(self):
        cell = {"value": "V(" + json.dumps({"parent": "a", "local": "b", "remote": "c"}) + ")"}
        assert unwrap_value(cell) == "c"

    def test_falls_back_to_local_then_parent(self):
        local = {"value": "V(" + json.dumps({"parent": "a", "local": "b"}) + ")"}
        parent = {"value": "V(" + json.dumps({"parent": "a"}) + ")"}
        assert unwrap_value(local) == "b"
        assert unwrap_value(parent) == "a"

    def test_unreadable_diff_cell_is_returned_unchanged(self):
        cell = {"value": "V(not json)"}
        assert unwrap_value(cell) is cell


class TestParseJsonPayload:
    """Test JSON payload parsing."""

    def test_text_and_structures(self):
        assert parse_json_payload('{"color": "red"}') == {"color": "red"}
        assert parse_json_payload({"color": "red"}) == {"color": "red"}
        assert parse_json_payload([1, 2]) == [1, 2]

    def test_empty_payloads(self):
        assert parse_json_payload(None) is None
        assert parse_json_payload("") is None

    def test_malformed_text_raises(self):
        with pytest.raises(ValueError):
            parse_json_payload("{not json")

    def test_unsupported_type_raises(self):
        with pytest.raises(TypeError):
            parse_json_payload(3.5)


def test_is_blank():
    assert is_blank(None)
    assert is_blank("")
    assert is_blank(math.nan)
    assert not is_blank(0)
    assert not is_blank("x")


class TestFieldMapping:
    """Test role resolution."""

    def test_from_host_mapping(self):
        mapping = FieldMapping.from_host({"Name": "Title", "GeoJSON": "Shape", "Popup": ["A", "B"]})

        assert mapping.column(Role.NAME) == "Title"
        assert mapping.column(Role.GEOJSON) == "Shape"
        assert mapping.popup_columns == ["A", "B"]
        assert mapping.is_geojson_mode
        assert not mapping.is_layer_mode
        assert not mapping.legacy

    def test_single_popup_column(self):
        mapping = FieldMapping.from_host({"Name": "N", "Popup": "Notes"})
        assert mapping.popup_columns == ["Notes"]
        assert mapping.has(Role.POPUP)

    def test_layer_mode_needs_geojson(self):
        assert not FieldMapping.from_host({"Name": "N", "Layer": "L"}).is_layer_mode
        assert FieldMapping.from_host({"Name": "N", "GeoJSON": "G", "Layer": "L"}).is_layer_mode

    def test_legacy_mapping_uses_present_fields(self):
        record = {"id": 1, "Name": "x", "Longitude": 1, "Latitude": 2, "Geocode": True, "Popup": "p"}
        mapping = FieldMapping.default_for(record)

        assert mapping.legacy
        assert mapping.column(Role.LONGITUDE) == "Longitude"
        assert mapping.has(Role.GEOCODE)
        assert not mapping.has(Role.ADDRESS)
        assert mapping.popup_columns == ["Popup"]

    def test_legacy_mapping_enables_geojson_by_presence(self):
        mapping = FieldMapping.resolve(None, {"id": 1, "Name": "x", "GeoJSON": "{}"})
        assert mapping.is_geojson_mode

    def test_resolve_prefers_host_mapping(self):
        mapping = FieldMapping.resolve({"Name": "Title"}, {"Name": "x"})
        assert mapping.column(Role.NAME) == "Title"

    def test_value_unwraps_and_defaults(self):
        mapping = FieldMapping.from_host({"Name": "Title"})
        record = {"Title": {"value": "V(" + json.dumps({"remote": "Remote"}) + ")"}}

        assert mapping.value(record, Role.NAME) == "Remote"
        assert mapping.value(record, Role.ADDRESS, "none") == "none"

    def test_provides_checks_the_record(self):
        mapping = FieldMapping.from_host({"Geocode": "G"})
        assert mapping.provides(Role.GEOCODE, {"G": False})
        assert not mapping.provides(Role.GEOCODE, {"X": True})

    def test_validate_requires_coordinate_columns(self):
        mapping = FieldMapping.default_for({"Name": "x"})
        with pytest.raises(MissingColumnsError):
            mapping.validate([{"id": 1, "Name": "x"}])

    def test_validate_passes_geojson_mode_and_complete_records(self):
        FieldMapping.from_host({"Name": "N", "GeoJSON": "G"}).validate([{"id": 1}])
        FieldMapping.default_for(None).validate([{"Name": "x", "Longitude": 1, "Latitude": 2}])

    def test_mixed_mode_conflict(self):
        mapping = FieldMapping.from_host({"Name": "N", "GeoJSON": "G", "Latitude": "Lat"})
        assert mapping.mixed_mode_conflict([{"N": "a", "G": None, "Lat": 31.0}])
        assert not mapping.mixed_mode_conflict([{"N": "a", "G": None, "Lat": None}])

    def test_write_fields_drops_unmapped_roles(self):
        mapping = FieldMapping.from_host({"Longitude": "Lng", "Latitude": "Lat"})
        fields = mapping.write_fields({Role.LONGITUDE: 1.0, Role.LATITUDE: 2.0, Role.GEOCODED_ADDRESS: "a"})
        assert fields == {"Lng": 1.0, "Lat": 2.0}


def test_column_declarations_cover_every_role():
    names = {declaration["name"] for declaration in COLUMN_DECLARATIONS}
    assert names == {role.value for role in Role}
    popup = next(d for d in COLUMN_DECLARATIONS if d["name"] == "Popup")
    assert popup["allowMultiple"]
