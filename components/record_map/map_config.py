"""
Configuration management for the record map.

This module holds the host-managed widget options (display mode, tile
source, attribution, auxiliary layers) together with the engine settings
(geocoder, zoom caps), loaded from a JSON file merged over defaults.
"""

import copy
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs

from geopy.exc import GeocoderNotFound
from geopy.geocoders import get_geocoder_for_service

logger = logging.getLogger(__name__)

MODES = ("single", "multi")


@dataclass
class AdditionalLayerConfig:
    """One auxiliary table drawn as an extra overlay."""

    table: str
    geojson_column: str
    name_column: Optional[str] = None
    style_column: Optional[str] = None
    layer: Optional[str] = None
    order: float = 0
    interactive: bool = True
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def layer_name(self) -> str:
        return self.layer or self.table

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["AdditionalLayerConfig"]:
        """Parse one config entry; entries without a table or GeoJSON column are skipped."""
        columns = raw.get("columns") if isinstance(raw, dict) else None
        if not isinstance(columns, dict) or not raw.get("table") or not columns.get("GeoJSON"):
            logger.warning(f"Skipping additional layer with missing table or GeoJSON column: {raw}")
            return None
        order = raw.get("order")
        try:
            order = float(order) if order is not None else 0
        except (TypeError, ValueError):
            logger.warning(f"Invalid order {order!r} for additional layer {raw.get('table')}, using 0")
            order = 0
        return cls(
            table=str(raw["table"]),
            geojson_column=str(columns["GeoJSON"]),
            name_column=columns.get("Name") or None,
            style_column=columns.get("Style") or None,
            layer=raw.get("layer") or None,
            order=order,
            interactive=raw.get("interactive") is not False,
            raw=raw,
        )

    def to_dict(self) -> Dict[str, Any]:
        return self.raw


def is_supported_geocoder(name: str) -> bool:
    try:
        get_geocoder_for_service(name)
    except GeocoderNotFound:
        return False
    return True


class WidgetOptions:
    """Manages persisted widget options and engine settings."""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or "record_map_config.json"
        self.default_config = self._get_default_config()
        self.config = self._load_config()

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default widget configuration."""
        return {
            "widget": {
                "mode": "multi",
                "map_source": "https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png",
                "map_copyright": '&copy; <a href="https://www.openstreetmap.org/copyright">'
                                 'OpenStreetMap</a> contributors',
                "additional_layers": [],
            },
            "geocoding": {
                "geocoder": "nominatim",
                "user_agent": "record-map-widget",
                "delay_sec": 1.0,
                "timeout_sec": 10,
            },
            "map_settings": {
                "max_fit_zoom": 20,
                "max_tile_zoom": 22,
                "wheel_px_per_zoom_level": 90,
                "viewport_px": [800, 600],
                "default_center": [0, 0],
                "default_zoom": 2,
            },
            "host": {
                "column_metadata_table": "_grist_Tables_column",
            },
        }

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file or use defaults."""
        if os.path.exists(self.config_path):
            try:
                with open(self.config_path, 'r') as f:
                    config = json.load(f)
                logger.info(f"Loaded widget configuration from {self.config_path}")
                return self._merge_configs(self.default_config, config)
            except (OSError, ValueError) as e:
                logger.error(f"Failed to load config from {self.config_path}: {e}")
                logger.info("Using default configuration")
                return self._merge_configs(self.default_config, {})
        logger.info(f"Config file {self.config_path} not found, using defaults")
        return self._merge_configs(self.default_config, {})

    def _merge_configs(self, default: Dict, user: Dict) -> Dict:
        """Recursively merge user config with defaults."""
        merged = copy.deepcopy(default)
        for key, value in user.items():
            if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
                merged[key] = self._merge_configs(merged[key], value)
            else:
                merged[key] = value
        return merged

    def save_config(self) -> None:
        """Save current configuration to file."""
        try:
            config_dir = Path(self.config_path).parent
            config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w') as f:
                json.dump(self.config, f, indent=2)
            logger.info(f"Saved widget configuration to {self.config_path}")
        except OSError as e:
            logger.error(f"Failed to save config to {self.config_path}: {e}")

    @property
    def mode(self) -> str:
        return self.config["widget"]["mode"]

    @property
    def map_source(self) -> str:
        return self.config["widget"]["map_source"]

    @property
    def map_copyright(self) -> str:
        return self.config["widget"]["map_copyright"]

    @property
    def additional_layers(self) -> List[AdditionalLayerConfig]:
        configs = []
        for raw in self.config["widget"]["additional_layers"] or []:
            config = AdditionalLayerConfig.from_dict(raw)
            if config is not None:
                configs.append(config)
        return configs

    @property
    def geocoder(self) -> str:
        return self.config["geocoding"]["geocoder"]

    @property
    def geocoder_user_agent(self) -> str:
        return self.config["geocoding"]["user_agent"]

    @property
    def geocode_delay_sec(self) -> float:
        return float(self.config["geocoding"]["delay_sec"])

    @property
    def geocode_timeout_sec(self) -> float:
        return float(self.config["geocoding"]["timeout_sec"])

    @property
    def max_fit_zoom(self) -> int:
        return int(self.config["map_settings"]["max_fit_zoom"])

    @property
    def max_tile_zoom(self) -> int:
        return int(self.config["map_settings"]["max_tile_zoom"])

    @property
    def column_metadata_table(self) -> str:
        return self.config["host"]["column_metadata_table"]

    def get_map_settings(self) -> Dict[str, Any]:
        """Get map display settings."""
        return self.config["map_settings"]

    def set_mode(self, mode: str) -> bool:
        """
        Switch between single-row and multi-row display.

        Returns:
            True if the mode changed
        """
        if mode not in MODES:
            logger.warning(f"Unsupported mode {mode!r}, keeping {self.mode}")
            return False
        if mode == self.mode:
            return False
        self.config["widget"]["mode"] = mode
        logger.info(f"Display mode set to {mode}")
        return True

    def set_additional_layers(self, layers_json: Any) -> bool:
        """
        Replace the auxiliary layer configuration.

        Args:
            layers_json: JSON text (as stored by the host) or an already parsed list

        Returns:
            True if the configuration was replaced; malformed input keeps the
            previous value
        """
        if isinstance(layers_json, str):
            try:
                layers_json = json.loads(layers_json)
            except ValueError as e:
                logger.error(f"Invalid additional layers JSON: {e}")
                return False
        if not isinstance(layers_json, list):
            logger.error(f"Additional layers must be a JSON array, got {type(layers_json).__name__}")
            return False
        self.config["widget"]["additional_layers"] = layers_json
        logger.info(f"Configured {len(layers_json)} additional layers")
        return True

    def update_from_host(self, options: Optional[Dict[str, Any]]) -> bool:
        """
        Apply options persisted by the host.

        Absent keys keep their current value.

        Returns:
            True if the display mode changed
        """
        options = options or {}
        mode_changed = False
        if options.get("mode") is not None:
            mode_changed = self.set_mode(options["mode"])
        if options.get("mapSource") is not None:
            self.config["widget"]["map_source"] = options["mapSource"]
        if options.get("mapCopyright") is not None:
            self.config["widget"]["map_copyright"] = options["mapCopyright"]
        if options.get("additionalLayers"):
            self.set_additional_layers(options["additionalLayers"])
        return mode_changed

    def to_host_options(self) -> Dict[str, Any]:
        """Options in the shape the host persists them."""
        layers = self.config["widget"]["additional_layers"]
        return {
            "mode": self.mode,
            "mapSource": self.map_source,
            "mapCopyright": self.map_copyright,
            "additionalLayers": json.dumps(layers, indent=2) if layers else "",
        }

    def apply_query_string(self, query: str) -> None:
        """Apply startup parameters such as ``?geocoder=arcgis&mode=single``."""
        params = parse_qs(query.lstrip("?"))
        geocoder = (params.get("geocoder") or [None])[0]
        if geocoder:
            if is_supported_geocoder(geocoder):
                logger.info(f"Using geocoder {geocoder}")
                self.config["geocoding"]["geocoder"] = geocoder
            else:
                logger.warning(f"Unsupported geocoder {geocoder}")
        mode = (params.get("mode") or [None])[0]
        if mode:
            self.set_mode(mode)

    def reset_to_defaults(self) -> None:
        """Reset configuration to defaults."""
        self.config = self._merge_configs(self.default_config, {})
        logger.info("Reset configuration to defaults")
