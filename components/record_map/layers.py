"""
Layer composition for the record map.

GeoJSON features are bucketed into named overlay groups by the Layer
column. Auxiliary tables configured in the widget options are fetched from
the host, pivoted into row-oriented features and appended as extra groups.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

import folium
import pandas as pd

from .features import AuxiliaryFeature, GeoJsonFeature
from .host import ColumnData, HostDocument
from .map_config import AdditionalLayerConfig
from .map_data import is_blank, parse_json_payload
from .spatial_data import LatLng, is_geojson_object

logger = logging.getLogger(__name__)

DEFAULT_GROUP = "Default"
DEFAULT_GROUP_LABEL = "Layers"


class LayerGroup:
    """Named, independently toggleable collection of features."""

    def __init__(self, name: str, order: float = 0, interactive: bool = True,
                 auxiliary: bool = False):
        self.name = name
        self.order = order
        self.interactive = interactive
        self.auxiliary = auxiliary
        self.visible = True
        self.features: List[Union[GeoJsonFeature, AuxiliaryFeature]] = []
        self.element: Optional[folium.FeatureGroup] = None

    def add(self, feature: Union[GeoJsonFeature, AuxiliaryFeature]) -> None:
        self.features.append(feature)

    def points(self) -> List[LatLng]:
        return [point for feature in self.features for point in feature.points()]

    def to_folium(self) -> folium.FeatureGroup:
        """Materialize the group; the element is kept for the layer control."""
        group = folium.FeatureGroup(name=self.name, overlay=True, control=False, show=self.visible)
        for feature in self.features:
            feature.to_folium().add_to(group)
        self.element = group
        return group

    def __len__(self) -> int:
        return len(self.features)

    def __repr__(self) -> str:
        return f"LayerGroup({self.name!r}, features={len(self.features)}, order={self.order})"


class LayerComposer:
    """Buckets GeoJSON features into named groups."""

    def __init__(self, layer_mode: bool):
        self.layer_mode = layer_mode

    def group_name(self, feature: GeoJsonFeature) -> str:
        if self.layer_mode and feature.layer_value:
            return str(feature.layer_value)
        return DEFAULT_GROUP

    def compose(self, features: Sequence[GeoJsonFeature]) -> Dict[str, LayerGroup]:
        """
        Group features by their Layer value.

        Args:
            features: GeoJSON features in record order

        Returns:
            Groups keyed by name, in order of first appearance
        """
        groups: Dict[str, LayerGroup] = {}
        for feature in features:
            name = self.group_name(feature)
            if name not in groups:
                groups[name] = LayerGroup(name)
            groups[name].add(feature)
        logger.info(f"Composed {len(features)} features into {len(groups)} layer groups")
        return groups

    @staticmethod
    def merge(main_groups: Dict[str, LayerGroup],
              additional_groups: Sequence[LayerGroup]) -> Dict[str, LayerGroup]:
        """All overlays by name; an auxiliary layer replaces a main group of the same name."""
        overlays = dict(main_groups)
        for group in additional_groups:
            overlays[group.name] = group
        return overlays


def pivot_table(table: ColumnData) -> List[Dict[str, Any]]:
    """Turn column-oriented host data into row dicts with missing values as None."""
    frame = pd.DataFrame(table)
    frame = frame.astype(object).where(frame.notna(), None)
    return frame.to_dict(orient="records")


class AuxiliaryLayerLoader:
    """Fetches auxiliary tables and turns them into extra overlay groups."""

    def __init__(self, host: HostDocument):
        self.host = host

    async def load(self, configs: Sequence[AdditionalLayerConfig]) -> List[LayerGroup]:
        """
        Fetch every configured table concurrently.

        A failing table is logged and left out; the others still load.

        Returns:
            Layer groups sorted ascending by their configured order
        """
        if not configs:
            return []
        results = await asyncio.gather(
            *(self._load_one(config) for config in configs),
            return_exceptions=True,
        )
        groups = []
        for config, result in zip(configs, results):
            if isinstance(result, BaseException):
                logger.error(f"Error loading additional layer {config.table}: {result}")
            elif result is not None:
                groups.append(result)
        # Lower order is drawn first, i.e. behind
        groups.sort(key=lambda group: group.order)
        return groups

    async def _load_one(self, config: AdditionalLayerConfig) -> Optional[LayerGroup]:
        table = await self.host.fetch_table(config.table)
        if not table or "id" not in table:
            logger.warning(f"Additional layer table {config.table} returned no rows")
            return None

        group = LayerGroup(config.layer_name, order=config.order,
                           interactive=config.interactive, auxiliary=True)
        for row in pivot_table(table):
            feature = self._build_feature(config, row)
            if feature is not None:
                group.add(feature)
        logger.info(f"Fetched additional layer {group.name} with {len(group)} features")
        return group

    def _build_feature(self, config: AdditionalLayerConfig, row: Dict[str, Any]) -> Optional[AuxiliaryFeature]:
        raw = row.get(config.geojson_column)
        if is_blank(raw):
            return None
        try:
            geometry = parse_json_payload(raw)
        except (ValueError, TypeError) as e:
            logger.error(f"Invalid GeoJSON in {config.table} row {row.get('id')}: {e}")
            return None
        if not is_geojson_object(geometry):
            logger.error(f"Invalid GeoJSON in {config.table} row {row.get('id')}: not a GeoJSON object")
            return None

        style: Any = {}
        if config.style_column:
            try:
                style = parse_json_payload(row.get(config.style_column)) or {}
            except (ValueError, TypeError) as e:
                logger.debug(f"Ignoring invalid style in {config.table} row {row.get('id')}: {e}")
                style = {}

        return AuxiliaryFeature(
            geometry=geometry,
            name=row.get(config.name_column) if config.name_column else None,
            custom_style=style if isinstance(style, dict) else {},
            interactive=config.interactive,
        )


async def resolve_column_label(host: HostDocument, col_id: str,
                               metadata_table: str = "_grist_Tables_column") -> str:
    """
    Human-readable label of a column, falling back to its id.

    Args:
        host: Host document holding the column metadata table
        col_id: Technical column id
        metadata_table: Table with ``colId`` and ``label`` columns

    Returns:
        The label, or col_id when the lookup fails
    """
    try:
        metadata = await host.fetch_table(metadata_table)
        for index, candidate in enumerate(metadata.get("colId") or []):
            if candidate == col_id:
                labels = metadata.get("label") or []
                label = labels[index] if index < len(labels) else None
                return label or col_id
    except Exception as e:
        logger.warning(f"Could not fetch column label for {col_id}: {e}")
    return col_id
