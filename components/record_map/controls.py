"""
Overlay toggle controls for the record map.

LayerControlBuilder decides between no control, a flat list of overlays
and a two-level tree where the main-table layers sit under one collapsible
parent. Both controls keep their own visibility state and render onto a
folium map through a small render/toggle interface.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

import folium
from folium.plugins import TreeLayerControl

from .layers import DEFAULT_GROUP_LABEL, LayerComposer, LayerGroup
from .sanitize import sanitize_html

logger = logging.getLogger(__name__)

ALL = "all"
SOME = "some"
NONE = "none"


class LayerControl(ABC):
    """Capability interface of an overlay toggle control."""

    def __init__(self, overlays: Dict[str, LayerGroup]):
        self.overlays = overlays

    def entries(self) -> List[str]:
        return list(self.overlays)

    def toggle(self, name: str, visible: bool) -> bool:
        """
        Show or hide one overlay.

        Returns:
            False if no overlay has that name
        """
        group = self.overlays.get(name)
        if group is None:
            logger.warning(f"No overlay named {name!r} in layer control")
            return False
        group.visible = visible
        logger.debug(f"Overlay {name} {'shown' if visible else 'hidden'}")
        return True

    def is_visible(self, name: str) -> bool:
        return self.overlays[name].visible

    @abstractmethod
    def render(self, map_obj: folium.Map) -> None:
        """Add the control to a map whose overlay groups are already materialized."""


class FlatLayerControl(LayerControl):
    """One checkbox per overlay."""

    def __init__(self, overlays: Dict[str, LayerGroup], collapsed: bool = True):
        super().__init__(overlays)
        self.collapsed = collapsed

    def render(self, map_obj: folium.Map) -> None:
        for name, group in self.overlays.items():
            if group.element is None:
                logger.warning(f"Overlay {name} was not rendered, left out of the layer control")
                continue
            group.element.control = True
            group.element.layer_name = sanitize_html(name)
        folium.LayerControl(collapsed=self.collapsed).add_to(map_obj)


class GroupedLayerControl(LayerControl):
    """Main-table layers under a collapsible parent, auxiliary layers standalone."""

    def __init__(self, group_label: str, main_groups: Dict[str, LayerGroup],
                 additional_groups: Dict[str, LayerGroup], collapsed: bool = True):
        super().__init__(LayerComposer.merge(main_groups, list(additional_groups.values())))
        self.group_label = group_label
        self.main_names = [name for name in main_groups if name not in additional_groups]
        self.additional_names = list(additional_groups)
        self.collapsed = collapsed

    def group_state(self) -> str:
        """Tri-state of the parent checkbox: all, some or none of its children visible."""
        visible = [self.overlays[name].visible for name in self.main_names]
        if visible and all(visible):
            return ALL
        if any(visible):
            return SOME
        return NONE

    def toggle_group(self, visible: bool) -> None:
        """Bulk-toggle every child of the parent group."""
        for name in self.main_names:
            self.overlays[name].visible = visible
        logger.debug(f"Layer group {self.group_label} {'shown' if visible else 'hidden'}")

    def _node(self, name: str) -> Dict[str, object]:
        return {"label": sanitize_html(name), "layer": self.overlays[name].element}

    def render(self, map_obj: folium.Map) -> None:
        children = [self._node(name) for name in self.main_names if self.overlays[name].element is not None]
        tree = [{
            "label": sanitize_html(self.group_label),
            "select_all_checkbox": True,
            "collapsed": self.collapsed,
            "children": children,
        }]
        tree += [
            self._node(name) for name in self.additional_names
            if self.overlays[name].element is not None
        ]
        TreeLayerControl(overlay_tree=tree, collapsed=True).add_to(map_obj)


class LayerControlBuilder:
    """Decides which overlay control, if any, a map gets."""

    def build(self, main_groups: Dict[str, LayerGroup], additional_groups: Sequence[LayerGroup],
              layer_mode: bool, group_label: str = DEFAULT_GROUP_LABEL) -> Optional[LayerControl]:
        """
        Args:
            main_groups: Groups from the main table, keyed by name
            additional_groups: Auxiliary groups in draw order
            layer_mode: Whether GeoJSON features are grouped by a Layer column
            group_label: Label of the parent group in the tree control

        Returns:
            None for one overlay or fewer, a GroupedLayerControl for Layer
            mode with several main groups, otherwise a FlatLayerControl
        """
        overlays = LayerComposer.merge(main_groups, additional_groups)
        if len(overlays) <= 1:
            return None
        if layer_mode and len(main_groups) > 1:
            additional = {group.name: group for group in additional_groups}
            return GroupedLayerControl(group_label, main_groups, additional)
        return FlatLayerControl(overlays)
