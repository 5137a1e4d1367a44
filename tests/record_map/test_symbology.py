"""
Tests for symbology: panes, styles, cluster badges, labels and HTML sanitizing.
"""

import json
from unittest.mock import Mock

import folium

from components.record_map.sanitize import sanitize_html, to_js_literal
from components.record_map.symbology import (
    CLUSTERS_PANE,
    OTHER_MARKERS_PANE,
    PANE_Z_INDEX,
    SELECTED_MARKER_PANE,
    SELECTED_OPACITY,
    UNSELECTED_OPACITY,
    ClusterIconFactory,
    LabelStyle,
    auxiliary_style,
    cluster_badge_class,
    feature_style,
    marker_icon,
    marker_pane,
)


class TestSanitize:
    """Test HTML sanitizing."""

    def test_scripts_and_handlers_are_stripped(self):
        cleaned = sanitize_html('<b onclick="x()">hi</b><script>alert(1)</script>')
        assert "<script" not in cleaned
        assert "onclick" not in cleaned
        assert "<b>hi</b>" in cleaned

    def test_braces_are_entity_encoded(self):
        assert sanitize_html("${x}") == "$&#123;x&#125;"

    def test_none_and_numbers(self):
        assert sanitize_html(None) == ""
        assert sanitize_html(42) == "42"

    def test_attribution_keeps_link_target(self):
        cleaned = sanitize_html('<a href="https://osm.org" target="_blank">OSM</a>', permit_body=True)
        assert 'target="_blank"' in cleaned
        assert 'href="https://osm.org"' in cleaned

    def test_js_literal_cannot_close_script(self):
        literal = to_js_literal("</script><b>")
        assert "</script>" not in literal
        assert json.loads(literal) == "</script><b>"


class TestPanesAndStyles:
    """Test display panes and path styles."""

    def test_pane_order(self):
        assert PANE_Z_INDEX[SELECTED_MARKER_PANE] > PANE_Z_INDEX[CLUSTERS_PANE] > PANE_Z_INDEX[OTHER_MARKERS_PANE]
        assert marker_pane(True) == SELECTED_MARKER_PANE
        assert marker_pane(False) == OTHER_MARKERS_PANE

    def test_selected_marker_gets_green_icon(self):
        assert isinstance(marker_icon(True), folium.CustomIcon)
        assert marker_icon(False) is None

    def test_feature_style_opacity(self):
        assert feature_style(None, True) == {"opacity": SELECTED_OPACITY, "fillOpacity": SELECTED_OPACITY}
        assert feature_style({}, False)["opacity"] == UNSELECTED_OPACITY

    def test_custom_style_wins_over_selection(self):
        style = feature_style({"color": "red", "opacity": 1.0}, selected=False)
        assert style["opacity"] == 1.0
        assert style["color"] == "red"
        assert style["fillOpacity"] == UNSELECTED_OPACITY

    def test_auxiliary_defaults(self):
        assert auxiliary_style(None) == {"opacity": 0.5, "fillOpacity": 0.3}
        assert auxiliary_style({"fillOpacity": 0.9})["fillOpacity"] == 0.9


class TestClusterBadges:
    """Test cluster badge classes and icon factory."""

    def test_size_classes(self):
        assert cluster_badge_class(3, False) == "marker-cluster marker-cluster-small"
        assert cluster_badge_class(10, False) == "marker-cluster marker-cluster-medium"
        assert cluster_badge_class(100, False) == "marker-cluster marker-cluster-large"

    def test_selected_cluster_class(self):
        assert cluster_badge_class(5, True).endswith(" marker-cluster-selected")

    def test_icon_create_function_embeds_selected_row(self):
        factory = ClusterIconFactory(lambda: Mock(row_id=7))
        script = factory.icon_create_function()
        assert "var selectedRowId = 7;" in script
        assert "marker-cluster-selected" in script

        assert "var selectedRowId = null;" in ClusterIconFactory(lambda: None).icon_create_function()

    def test_icon_create_function_uses_badge_classes(self):
        script = ClusterIconFactory(lambda: None).icon_create_function()
        classes_line = next(line for line in script.splitlines() if "var classes = " in line)
        classes = json.loads(classes_line.split("var classes = ", 1)[1].strip().rstrip(";"))

        assert classes["small"] == [cluster_badge_class(1, False), cluster_badge_class(1, True)]
        assert classes["medium"][1] == "marker-cluster marker-cluster-medium marker-cluster-selected"
        assert classes["large"][0] == "marker-cluster marker-cluster-large"

    def test_selection_lookup_failure_is_unselected(self):
        def broken():
            raise RuntimeError("boom")

        assert "var selectedRowId = null;" in ClusterIconFactory(broken).icon_create_function()


class TestLabelStyle:
    """Test label presentation."""

    def test_from_payload(self):
        style = LabelStyle.from_payload({"bearing": 45, "fontSize": 12, "color": "blue", "dynamicSize": True})
        assert style.bearing == 45
        assert style.font_size == 12
        assert style.dynamic_size
        assert style.reference_zoom == 18

    def test_wrap_without_presentation_keeps_text(self):
        assert LabelStyle().wrap("Park") == "Park"

    def test_wrap_with_presentation(self):
        wrapped = LabelStyle(bearing=30, color="red").wrap("Park")
        assert wrapped.startswith('<span style="display:inline-block;transform:rotate(30deg);color:red">')
        assert wrapped.endswith("Park</span>")

    def test_js_options(self):
        options = LabelStyle(font_size=10, min_zoom=3).to_js_options()
        assert options["minZoom"] == 3
        assert options["fontSize"] == 10
        assert options["referenceZoom"] == 18
