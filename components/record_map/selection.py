"""
Selection synchronization between the host's row cursor and the map.
"""

import logging
from typing import Callable, Optional

from .features import Feature
from .session import MapSession

logger = logging.getLogger(__name__)


class SelectionCoordinator:
    """
    Holds the single selected row and restyles features as it changes.

    Only the previously selected and the newly selected features are
    restyled; every other feature is left untouched.
    """

    def __init__(self, session: MapSession, cursor_sink: Optional[Callable[[int], None]] = None):
        """
        Args:
            session: Session whose canvas and selection state are used
            cursor_sink: Called with the row id to move the host cursor;
                failures are ignored
        """
        self.session = session
        self.cursor_sink = cursor_sink

    @property
    def row_id(self) -> Optional[int]:
        return self.session.selection.row_id

    def selected_feature(self) -> Optional[Feature]:
        canvas = self.session.canvas
        return canvas.feature(self.row_id) if canvas is not None else None

    def select(self, row_id: int, notify_host: bool = True) -> Optional[Feature]:
        """
        Select a row.

        Selecting the row that is already selected does nothing.

        Args:
            row_id: Row to select
            notify_host: Move the host cursor to the row

        Returns:
            The newly selected feature, or None if the row has no feature on
            the current map
        """
        if row_id == self.row_id:
            return self.selected_feature()

        previous = self.selected_feature()
        if previous is not None:
            previous.restyle(False)

        self.session.selection.row_id = row_id
        canvas = self.session.canvas
        feature = canvas.feature(row_id) if canvas is not None else None
        if feature is None:
            logger.debug(f"Row {row_id} selected but has no feature on the map")
            return None

        feature.restyle(True)
        if notify_host:
            self._move_cursor(row_id)
        return feature

    def clear(self) -> None:
        """Restyle the selected feature back and drop the selection."""
        previous = self.selected_feature()
        if previous is not None:
            previous.restyle(False)
        if self.session.canvas is not None:
            self.session.canvas.reveal(None)
        self.session.selection.row_id = None

    def select_from_host(self, row_id: int) -> Optional[Feature]:
        """Follow the host cursor: select the row and bring its feature into view."""
        feature = self.select(row_id, notify_host=False)
        if feature is not None:
            self.session.canvas.reveal(row_id)
        return feature

    def select_from_click(self, row_id: int) -> Optional[Feature]:
        """Select a clicked feature and move the host cursor to its row."""
        feature = self.select(row_id)
        if feature is not None:
            self.session.canvas.reveal(row_id)
        return feature

    def _move_cursor(self, row_id: int) -> None:
        if self.cursor_sink is None:
            return
        try:
            self.cursor_sink(row_id)
        except Exception as e:
            logger.debug(f"Cursor sync to row {row_id} failed: {e}")
