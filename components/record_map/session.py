"""
Session context owned by one map widget.

Everything a reconciliation step reads or writes lives here: the current
canvas, the selection, the camera store, the latest records and mapping.
The generation counter identifies the current canvas so late asynchronous
continuations can tell they belong to a torn-down map.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .map_config import WidgetOptions
from .map_data import FieldMapping, Record
from .map_renderer import MapCanvas
from .view_state import ViewStateStore


@dataclass
class SelectionState:
    """At most one selected row; None means nothing is selected."""

    row_id: Optional[int] = None


@dataclass
class MapSession:
    options: WidgetOptions
    selection: SelectionState = field(default_factory=SelectionState)
    view: ViewStateStore = field(default_factory=ViewStateStore)
    generation: int = 0
    canvas: Optional[MapCanvas] = None
    problem: Optional[str] = None
    table_id: Optional[str] = None
    mapping: Optional[FieldMapping] = None
    host_mapping: Optional[Dict[str, object]] = None
    records: List[Record] = field(default_factory=list)
    last_record: Optional[Record] = None

    def next_generation(self) -> int:
        self.generation += 1
        return self.generation

    def is_current(self, canvas: Optional[MapCanvas]) -> bool:
        """True while the canvas is still the one on screen."""
        return canvas is not None and canvas is self.canvas and canvas.generation == self.generation
