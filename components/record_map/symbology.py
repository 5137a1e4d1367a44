"""
Symbology for the record map.

This module holds the visual vocabulary of the map: display panes, marker
icons, GeoJSON opacities, cluster badges and permanent label presentation.
"""

import html
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import folium

logger = logging.getLogger(__name__)

# Display panes, drawn bottom to top
OTHER_MARKERS_PANE = "otherMarkers"
CLUSTERS_PANE = "clusters"
SELECTED_MARKER_PANE = "selectedMarker"
PANE_Z_INDEX: Dict[str, int] = {
    SELECTED_MARKER_PANE: 620,
    CLUSTERS_PANE: 610,
    OTHER_MARKERS_PANE: 600,
}

SELECTED_OPACITY = 0.6
UNSELECTED_OPACITY = 0.3
AUXILIARY_STYLE_DEFAULTS: Dict[str, Any] = {"opacity": 0.5, "fillOpacity": 0.3}

SELECTED_ICON_URL = "https://raw.githubusercontent.com/pointhi/leaflet-color-markers/master/img/marker-icon-green.png"
MARKER_SHADOW_URL = "https://unpkg.com/leaflet@1.9.4/dist/images/marker-shadow.png"

CLUSTER_SMALL_LIMIT = 10
CLUSTER_MEDIUM_LIMIT = 100
CLUSTER_ICON_SIZE = (40, 40)
CLUSTER_OPTIONS: Dict[str, Any] = {
    # Markers stacked on the same spot would otherwise stay clustered at max zoom
    "disable_clustering_at_zoom": 18,
    "max_cluster_radius": 30,
    "show_coverage_on_hover": True,
    "cluster_pane": CLUSTERS_PANE,
}

DEFAULT_REFERENCE_ZOOM = 18


def marker_pane(selected: bool) -> str:
    return SELECTED_MARKER_PANE if selected else OTHER_MARKERS_PANE


# Leaflet icon options of the selected pin, shared with map-side scripts
SELECTED_ICON_OPTIONS: Dict[str, Any] = {
    "iconUrl": SELECTED_ICON_URL,
    "shadowUrl": MARKER_SHADOW_URL,
    "iconSize": [25, 41],
    "iconAnchor": [12, 41],
    "popupAnchor": [1, -34],
    "shadowSize": [41, 41],
}


def marker_icon(selected: bool) -> Optional[folium.CustomIcon]:
    """Green pin for the selected row; None keeps Leaflet's default pin."""
    if not selected:
        return None
    return folium.CustomIcon(
        SELECTED_ICON_URL,
        icon_size=tuple(SELECTED_ICON_OPTIONS["iconSize"]),
        icon_anchor=tuple(SELECTED_ICON_OPTIONS["iconAnchor"]),
        shadow_image=MARKER_SHADOW_URL,
        shadow_size=tuple(SELECTED_ICON_OPTIONS["shadowSize"]),
        popup_anchor=tuple(SELECTED_ICON_OPTIONS["popupAnchor"]),
    )


def feature_style(custom_style: Optional[Dict[str, Any]], selected: bool) -> Dict[str, Any]:
    """GeoJSON path style; keys from the row's Style payload win."""
    opacity = SELECTED_OPACITY if selected else UNSELECTED_OPACITY
    style = {"opacity": opacity, "fillOpacity": opacity}
    style.update(custom_style or {})
    return style


def auxiliary_style(custom_style: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    style = dict(AUXILIARY_STYLE_DEFAULTS)
    style.update(custom_style or {})
    return style


def cluster_size_class(child_count: int) -> str:
    if child_count < CLUSTER_SMALL_LIMIT:
        return "small"
    if child_count < CLUSTER_MEDIUM_LIMIT:
        return "medium"
    return "large"


def cluster_badge_class(child_count: int, contains_selection: bool) -> str:
    """
    CSS class of a cluster badge.

    Args:
        child_count: Number of markers in the cluster
        contains_selection: Whether the selected marker is among them

    Returns:
        Class string such as ``marker-cluster marker-cluster-medium``
    """
    css = f"marker-cluster marker-cluster-{cluster_size_class(child_count)}"
    if contains_selection:
        css += " marker-cluster-selected"
    return css


_ICON_CREATE_TEMPLATE = """
function(cluster) {
    var childCount = cluster.getChildCount();
    var isSelected = false;
    try {
        var selectedRowId = %(selected_row_id)s;
        isSelected = selectedRowId !== null && cluster.getAllChildMarkers().some(function(m) {
            return m.options.rowId === selectedRowId;
        });
    } catch (e) {
        console.error("Cluster selection test failed", e);
    }
    var size = childCount < %(small)d ? "small" : (childCount < %(medium)d ? "medium" : "large");
    var classes = %(classes)s;
    return new L.DivIcon({
        html: '<div><span>' + childCount + ' <span aria-label="markers"></span></span></div>',
        className: classes[size][isSelected ? 1 : 0],
        iconSize: new L.Point(%(width)d, %(height)d)
    });
}
"""


class ClusterIconFactory:
    """Builds cluster badges that stay highlighted while holding the selection."""

    def __init__(self, selected_feature_getter: Callable[[], Any]):
        """
        Args:
            selected_feature_getter: Returns the currently selected feature,
                or None when nothing is selected
        """
        self.selected_feature_getter = selected_feature_getter

    def icon_create_function(self) -> str:
        """JavaScript icon factory; badge classes come from ``cluster_badge_class``."""
        try:
            selected = self.selected_feature_getter()
        except Exception as e:
            logger.error(f"Selected feature lookup failed: {e}")
            selected = None
        row_id = getattr(selected, "row_id", None)
        # One count per size bucket; the map side only picks among these classes
        classes = {
            cluster_size_class(count): [cluster_badge_class(count, False), cluster_badge_class(count, True)]
            for count in (1, CLUSTER_SMALL_LIMIT, CLUSTER_MEDIUM_LIMIT)
        }
        return _ICON_CREATE_TEMPLATE % {
            "selected_row_id": json.dumps(row_id),
            "classes": json.dumps(classes),
            "small": CLUSTER_SMALL_LIMIT,
            "medium": CLUSTER_MEDIUM_LIMIT,
            "width": CLUSTER_ICON_SIZE[0],
            "height": CLUSTER_ICON_SIZE[1],
        }


def _number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass
class LabelStyle:
    """Presentation of a permanent label, read from a LabelStyle payload."""

    bearing: Optional[float] = None
    font_size: Optional[float] = None
    color: Optional[str] = None
    font_weight: Optional[str] = None
    opacity: Optional[float] = None
    dynamic_size: bool = False
    reference_zoom: float = DEFAULT_REFERENCE_ZOOM
    min_zoom: Optional[float] = None
    max_zoom: Optional[float] = None

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> "LabelStyle":
        if not isinstance(payload, dict):
            return cls()
        color = payload.get("color")
        font_weight = payload.get("fontWeight")
        return cls(
            bearing=_number(payload.get("bearing")),
            font_size=_number(payload.get("fontSize")) or None,
            color=str(color) if color else None,
            font_weight=str(font_weight) if font_weight else None,
            opacity=_number(payload.get("opacity")),
            dynamic_size=bool(payload.get("dynamicSize")),
            reference_zoom=_number(payload.get("referenceZoom")) or DEFAULT_REFERENCE_ZOOM,
            min_zoom=_number(payload.get("minZoom")),
            max_zoom=_number(payload.get("maxZoom")),
        )

    def inline_css(self) -> List[str]:
        css = ["display:inline-block"]
        if self.bearing is not None:
            css.append(f"transform:rotate({self.bearing:g}deg)")
        if self.font_size:
            css.append(f"font-size:{self.font_size:g}px")
        if self.color:
            css.append(f"color:{self.color}")
        if self.font_weight:
            css.append(f"font-weight:{self.font_weight}")
        if self.opacity is not None:
            css.append(f"opacity:{self.opacity:g}")
        return css

    def wrap(self, content_html: str) -> str:
        """Apply the inline presentation to already-sanitized label HTML."""
        css = self.inline_css()
        if len(css) == 1:
            return content_html
        style = html.escape(";".join(css), quote=True)
        return f'<span style="{style}">{content_html}</span>'

    def to_js_options(self) -> Dict[str, Any]:
        """Options consumed by the map-side zoom handler."""
        return {
            "minZoom": self.min_zoom,
            "maxZoom": self.max_zoom,
            "dynamicSize": self.dynamic_size,
            "fontSize": self.font_size,
            "referenceZoom": self.reference_zoom,
        }

