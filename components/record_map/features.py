"""
Feature construction for the record map.

This module turns host records into renderable features: point markers in
coordinate mode, GeoJSON layers in GeoJSON mode, and read-only geometry
features for auxiliary tables. Each feature keeps its selection state and
materializes into a fresh folium element on every render.
"""

import copy
import logging
import math
from typing import Any, Dict, List, Optional

import folium
from folium.utilities import JsCode

from .map_data import (
    GEOCODING_IN_PROGRESS,
    FieldMapping,
    Record,
    Role,
    is_blank,
    parse_json_payload,
)
from .sanitize import sanitize_html, to_js_literal
from .spatial_data import LatLng, extract_points, is_geojson_object
from .symbology import (
    SELECTED_ICON_OPTIONS,
    LabelStyle,
    auxiliary_style,
    feature_style,
    marker_icon,
    marker_pane,
)

logger = logging.getLogger(__name__)

ORIGIN_TOLERANCE = 0.01
POPUP_MAX_WIDTH = 300
LABEL_CLASS_NAME = "polygon-label"


class MapLabel:
    """Permanent on-feature text label."""

    def __init__(self, content_html: str, style: LabelStyle):
        self.content_html = content_html
        self.style = style


class Feature:
    """A renderable unit derived from one record."""

    def __init__(self, row_id: int, name: Any, popup_html: str, selected: bool = False):
        self.row_id = row_id
        self.name = name
        self.popup_html = popup_html
        self.selected = selected
        # Element from the latest render, targeted by reveal scripts
        self.rendered: Optional[folium.map.Layer] = None

    def restyle(self, selected: bool) -> None:
        """Switch between selected and unselected appearance."""
        if self.selected == selected:
            return
        self.selected = selected
        logger.debug(f"Row {self.row_id} restyled as {'selected' if selected else 'unselected'}")

    def points(self) -> List[LatLng]:
        raise NotImplementedError

    def to_folium(self) -> folium.map.Layer:
        raise NotImplementedError


class MarkerFeature(Feature):
    """Point marker placed from the Longitude/Latitude columns."""

    def __init__(self, row_id: int, name: Any, popup_html: str, location: LatLng,
                 selected: bool = False):
        super().__init__(row_id, name, popup_html, selected)
        self.location = location

    @property
    def pane(self) -> str:
        return marker_pane(self.selected)

    def points(self) -> List[LatLng]:
        return [self.location]

    def to_folium(self) -> folium.Marker:
        self.rendered = folium.Marker(
            location=[self.location.lat, self.location.lng],
            popup=folium.Popup(self.popup_html, max_width=POPUP_MAX_WIDTH),
            icon=marker_icon(self.selected),
            title=None if is_blank(self.name) else str(self.name),
            pane=self.pane,
            row_id=self.row_id,
        )
        return self.rendered


class GeoJsonFeature(Feature):
    """Arbitrary geometry from the GeoJSON column, grouped by the Layer column."""

    def __init__(self, row_id: int, name: Any, popup_html: str, geometry: Dict[str, Any],
                 custom_style: Optional[Dict[str, Any]] = None, layer_value: Any = None,
                 label: Optional[MapLabel] = None, selected: bool = False):
        super().__init__(row_id, name, popup_html, selected)
        self.geometry = geometry
        self.custom_style = custom_style or {}
        self.layer_value = layer_value
        self.label = label

    def style(self) -> Dict[str, Any]:
        return feature_style(self.custom_style, self.selected)

    def points(self) -> List[LatLng]:
        return extract_points(self.geometry)

    def tagged_data(self) -> Dict[str, Any]:
        """
        GeoJSON payload whose features carry the row id in ``properties.rowId``.

        The map component reports the clicked feature back with its
        properties, which is how a click is traced to its row. A copy is
        returned because folium rewrites the data in place.
        """
        data = copy.deepcopy(self.geometry)
        if data.get("type") == "FeatureCollection":
            features = data.get("features") or []
        elif data.get("type") == "Feature":
            features = [data]
        else:
            data = {"type": "Feature", "geometry": data, "properties": {}}
            features = [data]
        for feature in features:
            if isinstance(feature, dict):
                properties = feature.get("properties")
                if not isinstance(properties, dict):
                    properties = feature["properties"] = {}
                properties["rowId"] = self.row_id
        return data

    def _on_each_feature(self) -> JsCode:
        lines = [
            "function(feature, layer) {",
            "    if (layer instanceof L.Marker) {",
            f"        layer.options.pane = {to_js_literal(marker_pane(self.selected))};",
        ]
        if self.selected:
            lines.append(f"        layer.setIcon(L.icon({to_js_literal(SELECTED_ICON_OPTIONS)}));")
        lines.append("    }")
        if self.label is not None:
            tooltip_options = {"permanent": True, "direction": "center", "className": LABEL_CLASS_NAME}
            lines += [
                f"    layer.bindTooltip({to_js_literal(self.label.content_html)}, "
                f"{to_js_literal(tooltip_options)});",
                "    (window.recordMapLabels = window.recordMapLabels || []).push("
                f"{{sublayer: layer, opts: {to_js_literal(self.label.style.to_js_options())}}});",
            ]
        lines.append("}")
        return JsCode("\n".join(lines))

    def to_folium(self) -> folium.GeoJson:
        style = self.style()
        self.rendered = folium.GeoJson(
            self.tagged_data(),
            style_function=lambda _feature: dict(style),
            popup=folium.Popup(self.popup_html, max_width=POPUP_MAX_WIDTH),
            on_each_feature=self._on_each_feature(),
            control=False,
        )
        return self.rendered


class AuxiliaryFeature:
    """Read-only geometry loaded from an auxiliary table."""

    def __init__(self, geometry: Dict[str, Any], name: Any = None,
                 custom_style: Optional[Dict[str, Any]] = None, interactive: bool = True):
        self.geometry = geometry
        self.name = name
        self.custom_style = custom_style or {}
        self.interactive = interactive

    def style(self) -> Dict[str, Any]:
        return auxiliary_style(self.custom_style)

    def points(self) -> List[LatLng]:
        return extract_points(self.geometry)

    def to_folium(self) -> folium.GeoJson:
        style = self.style()
        popup = None
        if self.interactive and not is_blank(self.name):
            popup = folium.Popup(sanitize_html(self.name), max_width=POPUP_MAX_WIDTH)
        return folium.GeoJson(
            copy.deepcopy(self.geometry),
            style_function=lambda _feature: dict(style),
            popup=popup,
            interactive=self.interactive,
            control=False,
        )


def build_popup_html(name: Any, mapping: FieldMapping, record: Record) -> str:
    """
    Popup body for a record.

    Without Popup columns the popup is just the name. Otherwise the name is
    followed by one line per non-empty Popup column.
    """
    if not mapping.popup_columns:
        return sanitize_html("" if is_blank(name) else name)

    parts = ['<div style="max-width:300px">']
    if not is_blank(name):
        parts.append(f"<strong>{sanitize_html(name)}</strong>")
    for column, value in mapping.popup_values(record):
        if is_blank(value):
            continue
        parts.append(f"<br><em>{sanitize_html(column)}:</em> {sanitize_html(value)}")
    parts.append("</div>")
    return "".join(parts)


def _coordinate(value: Any) -> Optional[float]:
    if is_blank(value) or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


class FeatureBuilder:
    """Builds one feature per eligible record for a resolved field mapping."""

    def __init__(self, mapping: FieldMapping):
        self.mapping = mapping

    def build(self, record: Record, selected_row_id: Optional[int]) -> Optional[Feature]:
        """
        Turn a record into a feature.

        Args:
            record: Host row
            selected_row_id: Row id currently selected, if any

        Returns:
            A MarkerFeature or GeoJsonFeature, or None when the record is
            not eligible (missing geometry, origin coordinates, geocoding in
            progress, malformed GeoJSON)
        """
        row_id = record.get("id")
        selected = row_id is not None and row_id == selected_row_id
        if self.mapping.is_geojson_mode:
            return self._build_geojson(record, row_id, selected)
        return self._build_marker(record, row_id, selected)

    def build_all(self, records: List[Record], selected_row_id: Optional[int]) -> List[Feature]:
        features = []
        for record in records:
            feature = self.build(record, selected_row_id)
            if feature is not None:
                features.append(feature)
        logger.info(f"Built {len(features)} features from {len(records)} records")
        return features

    def _build_marker(self, record: Record, row_id: int, selected: bool) -> Optional[MarkerFeature]:
        raw_lng = self.mapping.value(record, Role.LONGITUDE)
        if str(raw_lng) == GEOCODING_IN_PROGRESS:
            logger.debug(f"Row {row_id} is being geocoded, skipped")
            return None

        lat = _coordinate(self.mapping.value(record, Role.LATITUDE))
        lng = _coordinate(raw_lng)
        if lat is None or lng is None:
            logger.debug(f"Row {row_id} has no usable coordinates, skipped")
            return None
        if abs(lat) < ORIGIN_TOLERANCE and abs(lng) < ORIGIN_TOLERANCE:
            # Rows at 0,0 usually come from bad imports or failed geocoding
            logger.debug(f"Row {row_id} sits at the origin, skipped")
            return None

        name = self.mapping.value(record, Role.NAME)
        return MarkerFeature(
            row_id=row_id,
            name=name,
            popup_html=build_popup_html(name, self.mapping, record),
            location=LatLng(lat, lng),
            selected=selected,
        )

    def _build_geojson(self, record: Record, row_id: int, selected: bool) -> Optional[GeoJsonFeature]:
        raw = self.mapping.value(record, Role.GEOJSON)
        if is_blank(raw):
            return None
        try:
            geometry = parse_json_payload(raw)
        except (ValueError, TypeError) as e:
            logger.error(f"Invalid GeoJSON for row {row_id}: {e}")
            return None
        if not is_geojson_object(geometry):
            logger.error(f"Invalid GeoJSON for row {row_id}: not a GeoJSON object")
            return None

        name = self.mapping.value(record, Role.NAME)
        return GeoJsonFeature(
            row_id=row_id,
            name=name,
            popup_html=build_popup_html(name, self.mapping, record),
            geometry=geometry,
            custom_style=self._parse_style(record, row_id),
            layer_value=self.mapping.value(record, Role.LAYER),
            label=self._build_label(record, row_id),
            selected=selected,
        )

    def _parse_style(self, record: Record, row_id: int) -> Dict[str, Any]:
        try:
            style = parse_json_payload(self.mapping.value(record, Role.STYLE))
        except (ValueError, TypeError) as e:
            logger.error(f"Invalid Style JSON for row {row_id}: {e}")
            return {}
        return style if isinstance(style, dict) else {}

    def _build_label(self, record: Record, row_id: int) -> Optional[MapLabel]:
        text = self.mapping.value(record, Role.LABEL)
        if is_blank(text):
            return None
        try:
            payload = parse_json_payload(self.mapping.value(record, Role.LABEL_STYLE))
        except (ValueError, TypeError) as e:
            logger.error(f"Invalid LabelStyle JSON for row {row_id}: {e}")
            payload = None
        style = LabelStyle.from_payload(payload)
        return MapLabel(style.wrap(sanitize_html(text)), style)
