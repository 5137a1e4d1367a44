"""
Map rendering module for the record map.

A MapCanvas is the in-memory map built from one record batch: features,
layer groups, the overlay control and the camera decision. It renders to a
folium Map (Leaflet HTML) on demand and traces clicks reported by the
streamlit map component back to rows. Map-side scripts apply zoom-dependent
label rules and reveal the selected feature.
"""

import html
import logging
import math
from typing import Any, Dict, List, Optional

import folium
from branca.element import MacroElement
from folium.map import CustomPane
from folium.plugins import MarkerCluster
from jinja2 import Template as JinjaTemplate

from .controls import LayerControl
from .features import Feature, MarkerFeature
from .layers import LayerGroup
from .map_config import WidgetOptions
from .sanitize import sanitize_html
from .spatial_data import LatLng
from .symbology import CLUSTER_OPTIONS, PANE_Z_INDEX, ClusterIconFactory, DEFAULT_REFERENCE_ZOOM
from .view_state import CameraFit, ViewStateStore

logger = logging.getLogger(__name__)

# Degrees; a marker click reports the marker position, so this only absorbs float noise
CLICK_TOLERANCE_DEG = 1e-6

MAP_CSS = """
<style>
.marker-cluster-selected { background-color: rgba(76, 175, 80, 0.6); }
.marker-cluster-selected div { background-color: rgba(56, 142, 60, 0.8); color: #fff; }
.polygon-label { background: transparent; border: none; box-shadow: none; font-weight: bold; }
.polygon-label::before { display: none; }
.error { position: absolute; top: 10px; left: 50px; right: 50px; z-index: 1000; padding: 8px 12px;
         background: #fff3cd; border: 1px solid #f0ad4e; border-radius: 4px; font-family: sans-serif; }
</style>
"""


class LabelZoomRules(MacroElement):
    """Hides or rescales permanent labels on every zoom change."""

    _template = JinjaTemplate(
        """
        {% macro script(this, kwargs) %}
        (function() {
            var map = {{ this._parent.get_name() }};
            function applyLabelZoom() {
                var zoom = map.getZoom();
                var refs = window.recordMapLabels || [];
                for (var i = 0; i < refs.length; i++) {
                    var tooltip = refs[i].sublayer.getTooltip();
                    var el = tooltip && tooltip.getElement();
                    if (!el) continue;
                    var opts = refs[i].opts;
                    if ((opts.minZoom != null && zoom < opts.minZoom) ||
                        (opts.maxZoom != null && zoom > opts.maxZoom)) {
                        el.style.display = "none";
                        continue;
                    }
                    el.style.display = "";
                    if (opts.dynamicSize && opts.fontSize) {
                        var reference = opts.referenceZoom || {{ this.reference_zoom }};
                        el.style.fontSize = (opts.fontSize * Math.pow(2, zoom - reference)) + "px";
                    }
                }
            }
            map.on("zoomend", applyLabelZoom);
            map.whenReady(applyLabelZoom);
        })();
        {% endmacro %}
        """
    )

    def __init__(self):
        super().__init__()
        self._name = "LabelZoomRules"
        self.reference_zoom = DEFAULT_REFERENCE_ZOOM


class RevealSelection(MacroElement):
    """Opens the selected feature's popup, zooming into its cluster when needed."""

    _template = JinjaTemplate(
        """
        {% macro script(this, kwargs) %}
        (function() {
            var item = {{ this.target.get_name() }};
            {%- if this.cluster %}
            if (!item._icon) {
                {{ this.cluster.get_name() }}.zoomToShowLayer(item, function() { item.openPopup(); });
                return;
            }
            {%- endif %}
            item.openPopup();
        })();
        {% endmacro %}
        """
    )

    def __init__(self, target: folium.map.Layer, cluster: Optional[MarkerCluster] = None):
        super().__init__()
        self._name = "RevealSelection"
        self.target = target
        self.cluster = cluster


def render_problem_html(message: str) -> str:
    """Page shown instead of a map when rendering is blocked."""
    return f'{MAP_CSS}<div id="map"><div class="error">{html.escape(message)}</div></div>'


class MapCanvas:
    """One map built from one record batch."""

    def __init__(self, generation: int, options: WidgetOptions, view_store: ViewStateStore,
                 geojson_mode: bool, is_first_load: bool):
        self.generation = generation
        self.options = options
        self.view_store = view_store
        self.geojson_mode = geojson_mode
        self.is_first_load = is_first_load

        self.features: Dict[int, Feature] = {}
        self.markers: List[MarkerFeature] = []
        self.main_groups: Dict[str, LayerGroup] = {}
        self.additional_groups: List[LayerGroup] = []
        self.points: List[LatLng] = []
        self.control: Optional[LayerControl] = None
        self.warning: Optional[str] = None
        self.reveal_row_id: Optional[int] = None
        self.camera_fit: Optional[CameraFit] = None
        self.cluster_icons = ClusterIconFactory(self.selected_feature)

    def add_markers(self, markers: List[MarkerFeature]) -> None:
        for marker in markers:
            self.markers.append(marker)
            self.features[marker.row_id] = marker
            self.points.extend(marker.points())

    def add_main_groups(self, groups: Dict[str, LayerGroup]) -> None:
        for name, group in groups.items():
            self.main_groups[name] = group
            for feature in group.features:
                self.features[feature.row_id] = feature
                self.points.extend(feature.points())

    def attach_additional_layers(self, groups: List[LayerGroup]) -> None:
        """Add auxiliary groups; the first render of a session refits to include them."""
        self.additional_groups.extend(groups)
        for group in groups:
            self.points.extend(group.points())
        if groups and self.is_first_load:
            self.fit_camera()

    def set_control(self, control: Optional[LayerControl]) -> None:
        self.control = control

    def feature(self, row_id: Optional[int]) -> Optional[Feature]:
        if row_id is None:
            return None
        return self.features.get(row_id)

    def row_id_for_click(self, clicked: Optional[Dict[str, Any]],
                         clicked_feature: Optional[Dict[str, Any]] = None) -> Optional[int]:
        """
        Row behind a click reported by the map component.

        Args:
            clicked: Click position as ``{"lat": ..., "lng": ...}``
            clicked_feature: GeoJSON of the clicked layer, if reported

        Returns:
            Row id of the clicked feature, or None when the click hit no row
        """
        if self.geojson_mode:
            properties = (clicked_feature or {}).get("properties") or {}
            row_id = properties.get("rowId")
            return row_id if row_id in self.features else None

        if not clicked or clicked.get("lat") is None or clicked.get("lng") is None:
            return None
        for marker in self.markers:
            if (math.isclose(marker.location.lat, clicked["lat"], abs_tol=CLICK_TOLERANCE_DEG)
                    and math.isclose(marker.location.lng, clicked["lng"], abs_tol=CLICK_TOLERANCE_DEG)):
                return marker.row_id
        return None

    def selected_feature(self) -> Optional[Feature]:
        for feature in self.features.values():
            if feature.selected:
                return feature
        return None

    def reveal(self, row_id: Optional[int]) -> None:
        self.reveal_row_id = row_id

    def clear(self) -> None:
        """Remove every feature and group, keeping the camera."""
        self.features.clear()
        self.markers.clear()
        self.main_groups.clear()
        self.additional_groups.clear()
        self.points.clear()
        self.control = None
        self.reveal_row_id = None
        logger.info("Cleared map features")

    def place_camera(self) -> None:
        """Fit on the first render; later renders restore the stored view."""
        if self.is_first_load:
            self.fit_camera()

    def fit_camera(self) -> Optional[CameraFit]:
        settings = self.options.get_map_settings()
        width, height = settings["viewport_px"]
        try:
            fit = ViewStateStore.fit(self.points, max_zoom=self.options.max_fit_zoom,
                                     width_px=width, height_px=height)
        except ValueError as e:
            logger.warning(f"Cannot fit bounds: {e}")
            return None
        self.camera_fit = fit
        # A fit moves the camera like any pan or zoom
        self.view_store.record_camera_move(fit.view.center, fit.view.zoom)
        return fit

    def _base_map(self) -> folium.Map:
        settings = self.options.get_map_settings()
        state = self.view_store.restore()
        fit = self.camera_fit
        if state is not None:
            location, zoom = list(state.center), state.zoom
        else:
            location, zoom = settings["default_center"], settings["default_zoom"]

        map_obj = folium.Map(
            location=location,
            zoom_start=zoom,
            tiles=None,
            max_zoom=self.options.max_tile_zoom,
            wheel_px_per_zoom_level=settings["wheel_px_per_zoom_level"],
        )
        if fit is not None and state == fit.view:
            # Camera still where the fit left it: let Leaflet fit exactly
            map_obj.fit_bounds(fit.bounds.to_folium(), padding=(0, 0), max_zoom=fit.max_zoom)
        return map_obj

    def _add_tiles(self, map_obj: folium.Map) -> None:
        attribution = sanitize_html(self.options.map_copyright, permit_body=True) or "&nbsp;"
        folium.TileLayer(
            tiles=self.options.map_source,
            attr=attribution,
            max_zoom=self.options.max_tile_zoom,
            control=False,
        ).add_to(map_obj)

    def to_folium(self) -> folium.Map:
        """Build the folium map for the current state."""
        map_obj = self._base_map()
        self._add_tiles(map_obj)
        map_obj.get_root().header.add_child(folium.Element(MAP_CSS))
        for pane, z_index in PANE_Z_INDEX.items():
            CustomPane(pane, z_index=z_index, pointer_events=True).add_to(map_obj)

        cluster = None
        if self.geojson_mode:
            for group in self.main_groups.values():
                group.to_folium().add_to(map_obj)
        else:
            cluster = MarkerCluster(
                name="Markers",
                control=False,
                icon_create_function=self.cluster_icons.icon_create_function(),
                **CLUSTER_OPTIONS,
            )
            for marker in self.markers:
                marker.to_folium().add_to(cluster)
            cluster.add_to(map_obj)

        for group in self.additional_groups:
            group.to_folium().add_to(map_obj)

        if self.control is not None:
            self.control.render(map_obj)

        LabelZoomRules().add_to(map_obj)

        if self.warning:
            map_obj.get_root().html.add_child(
                folium.Element(f'<div class="error">{html.escape(self.warning)}</div>')
            )

        target = self.feature(self.reveal_row_id)
        if target is not None and target.rendered is not None:
            RevealSelection(target.rendered, cluster if not self.geojson_mode else None).add_to(map_obj)

        logger.info(f"Rendered map generation {self.generation} with {len(self.features)} features")
        return map_obj

    def render_html(self) -> str:
        return self.to_folium().get_root().render()
