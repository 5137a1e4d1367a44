"""
Tests for layer grouping and auxiliary table loading.
"""

import asyncio
import json
from unittest.mock import AsyncMock, Mock

import folium
import pandas as pd

from components.record_map.features import FeatureBuilder
from components.record_map.host import InMemoryHost
from components.record_map.layers import (
    DEFAULT_GROUP,
    AuxiliaryLayerLoader,
    LayerComposer,
    LayerGroup,
    pivot_table,
    resolve_column_label,
)
from components.record_map.map_config import AdditionalLayerConfig
from components.record_map.map_data import FieldMapping

from conftest import square


def build_features(records, mapping):
    return FeatureBuilder(FieldMapping.from_host(mapping)).build_all(records, None)


class TestLayerComposer:
    """Test grouping of GeoJSON features."""

    def test_groups_by_layer_in_first_appearance_order(self, geojson_records, geojson_mapping):
        features = build_features(geojson_records, geojson_mapping)
        groups = LayerComposer(layer_mode=True).compose(features)

        assert list(groups) == ["Parks", "Zones"]
        assert len(groups["Parks"]) == 2
        assert len(groups["Zones"]) == 1

    def test_blank_layer_goes_to_default_group(self, geojson_records, geojson_mapping):
        geojson_records[2]["Kind"] = ""
        groups = LayerComposer(layer_mode=True).compose(build_features(geojson_records, geojson_mapping))
        assert list(groups) == ["Parks", DEFAULT_GROUP]

    def test_without_layer_mode_everything_is_default(self, geojson_records, geojson_mapping):
        groups = LayerComposer(layer_mode=False).compose(build_features(geojson_records, geojson_mapping))
        assert list(groups) == [DEFAULT_GROUP]
        assert len(groups[DEFAULT_GROUP]) == 3

    def test_every_feature_lands_in_exactly_one_group(self, geojson_records, geojson_mapping):
        features = build_features(geojson_records, geojson_mapping)
        groups = LayerComposer(layer_mode=True).compose(features)
        grouped = [feature for group in groups.values() for feature in group.features]
        assert sorted(f.row_id for f in grouped) == sorted(f.row_id for f in features)

    def test_merge_lets_auxiliary_replace_same_name(self):
        main = {"Parks": LayerGroup("Parks"), "Zones": LayerGroup("Zones")}
        extra = LayerGroup("Zones", auxiliary=True)
        merged = LayerComposer.merge(main, [extra])
        assert merged["Zones"] is extra
        assert list(merged) == ["Parks", "Zones"]


def test_layer_group_renders_feature_group():
    group = LayerGroup("Parks")
    group.visible = False
    element = group.to_folium()

    assert isinstance(element, folium.FeatureGroup)
    assert group.element is element
    assert element.show is False
    assert element.control is False


def test_pivot_table():
    rows = pivot_table({"id": [1, 2], "Shape": ["a", None], "Score": [1.5, float("nan")]})
    assert rows == [{"id": 1, "Shape": "a", "Score": 1.5}, {"id": 2, "Shape": None, "Score": None}]


class TestAuxiliaryLayerLoader:
    """Test auxiliary table fetching."""

    def setup_method(self):
        self.host = InMemoryHost({
            "Zones": pd.DataFrame({
                "id": [1, 2, 3],
                "Area": [json.dumps(square(34.8, 32.0)), "{bad", None],
                "Label": ["Center", "Broken", "Empty"],
                "Look": ['{"color": "blue"}', None, None],
            }),
            "Roads": pd.DataFrame({
                "id": [1],
                "Line": [json.dumps({"type": "LineString", "coordinates": [[34, 31], [35, 32]]})],
            }),
        })

    def config(self, **raw):
        return AdditionalLayerConfig.from_dict(raw)

    def test_loads_valid_rows_with_styles(self):
        configs = [self.config(table="Zones", columns={"GeoJSON": "Area", "Name": "Label", "Style": "Look"})]
        groups = asyncio.run(AuxiliaryLayerLoader(self.host).load(configs))

        assert len(groups) == 1
        group = groups[0]
        assert group.name == "Zones"
        assert group.auxiliary
        assert len(group) == 1
        assert group.features[0].name == "Center"
        assert group.features[0].style() == {"opacity": 0.5, "fillOpacity": 0.3, "color": "blue"}

    def test_sorted_by_order_and_named_by_layer(self):
        configs = [
            self.config(table="Zones", layer="Districts", order=5, columns={"GeoJSON": "Area"}),
            self.config(table="Roads", order=1, interactive=False, columns={"GeoJSON": "Line"}),
        ]
        groups = asyncio.run(AuxiliaryLayerLoader(self.host).load(configs))

        assert [group.name for group in groups] == ["Roads", "Districts"]
        assert groups[0].interactive is False
        assert groups[0].features[0].interactive is False

    def test_failing_table_does_not_block_others(self):
        configs = [
            self.config(table="Missing", columns={"GeoJSON": "Area"}),
            self.config(table="Roads", columns={"GeoJSON": "Line"}),
        ]
        groups = asyncio.run(AuxiliaryLayerLoader(self.host).load(configs))
        assert [group.name for group in groups] == ["Roads"]

    def test_no_configs(self):
        host = Mock(fetch_table=AsyncMock())
        assert asyncio.run(AuxiliaryLayerLoader(host).load([])) == []
        host.fetch_table.assert_not_called()


class TestResolveColumnLabel:
    """Test column label lookup."""

    def test_label_found(self):
        host = InMemoryHost()
        host.set_column_labels({"Kind": "Category"})
        assert asyncio.run(resolve_column_label(host, "Kind")) == "Category"

    def test_falls_back_to_column_id(self):
        host = InMemoryHost()
        assert asyncio.run(resolve_column_label(host, "Kind")) == "Kind"

        host.set_column_labels({"Other": "Something"})
        assert asyncio.run(resolve_column_label(host, "Kind")) == "Kind"
