"""
Camera state kept across map rebuilds.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from .spatial_data import Bounds, LatLng, zoom_for_bounds

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ViewState:
    center: LatLng
    zoom: float


@dataclass(frozen=True)
class CameraFit:
    """Camera fitted to the bounds of all plotted points."""

    bounds: Bounds
    max_zoom: int
    view: ViewState


class ViewStateStore:
    """
    Remembers the last camera position so rebuilds do not reset the viewport.

    Camera movement events are the only writer; rebuilds only read.
    """

    def __init__(self):
        self._state: Optional[ViewState] = None

    @property
    def has_state(self) -> bool:
        return self._state is not None

    @property
    def state(self) -> Optional[ViewState]:
        return self._state

    def record_camera_move(self, center: Sequence[float], zoom: float) -> ViewState:
        """Store the camera after a pan, zoom or fit."""
        self._state = ViewState(LatLng(float(center[0]), float(center[1])), float(zoom))
        logger.debug(f"Camera moved to {self._state.center} at zoom {self._state.zoom}")
        return self._state

    def restore(self) -> Optional[ViewState]:
        return self._state

    @staticmethod
    def fit(points: Sequence[LatLng], max_zoom: int = 20, width_px: int = 800,
            height_px: int = 600) -> CameraFit:
        """
        Camera that shows every point.

        Raises:
            ValueError: If there are no points
        """
        bounds = Bounds.from_points(points)
        zoom = zoom_for_bounds(bounds, width_px, height_px, max_zoom=max_zoom)
        return CameraFit(bounds, max_zoom, ViewState(bounds.center, zoom))
