"""
Host document interface for the record map.

The host owns the tables, the row cursor and write access. The engine talks
to it through HostDocument; InMemoryHost keeps tables as pandas DataFrames
for the streamlit page and for tests.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import pandas as pd

from .map_data import Record

logger = logging.getLogger(__name__)

ColumnData = Dict[str, List[Any]]


class HostDocument(ABC):
    """Outbound operations the engine needs from its host."""

    @abstractmethod
    async def update_record(self, table_id: str, row_id: int, fields: Dict[str, Any]) -> None:
        """Apply a partial field update to one row as a single action."""

    @abstractmethod
    async def fetch_table(self, table_id: str) -> ColumnData:
        """Return column-oriented table data: ``{"id": [...], "colA": [...]}``."""

    @abstractmethod
    async def set_cursor_pos(self, row_id: int) -> None:
        """Move the host's row cursor."""


class InMemoryHost(HostDocument):
    """Host document backed by pandas DataFrames."""

    def __init__(self, tables: Optional[Dict[str, pd.DataFrame]] = None):
        self.tables: Dict[str, pd.DataFrame] = {}
        self.cursor_row_id: Optional[int] = None
        # Bumped by every record update, so a page can tell write-backs happened
        self.revision = 0
        for table_id, frame in (tables or {}).items():
            self.add_table(table_id, frame)

    def add_table(self, table_id: str, frame: pd.DataFrame) -> None:
        if "id" not in frame.columns:
            frame = frame.reset_index(drop=True)
            frame.insert(0, "id", range(1, len(frame) + 1))
        self.tables[table_id] = frame.copy()
        logger.info(f"Registered table {table_id} with {len(frame)} rows")

    def set_column_labels(self, labels: Dict[str, str], table_id: str = "_grist_Tables_column") -> None:
        """Register human-readable column labels as a metadata table."""
        self.add_table(table_id, pd.DataFrame({
            "colId": list(labels.keys()),
            "label": list(labels.values()),
        }))

    def records(self, table_id: str) -> List[Record]:
        """Row-oriented records with missing values as None."""
        frame = self.tables[table_id]
        cleaned = frame.astype(object).where(frame.notna(), None)
        return cleaned.to_dict(orient="records")

    def record(self, table_id: str, row_id: int) -> Optional[Record]:
        for record in self.records(table_id):
            if record["id"] == row_id:
                return record
        return None

    async def update_record(self, table_id: str, row_id: int, fields: Dict[str, Any]) -> None:
        frame = self.tables[table_id]
        mask = frame["id"] == row_id
        if not mask.any():
            raise KeyError(f"Row {row_id} not found in {table_id}")
        for column, value in fields.items():
            if column not in frame.columns:
                frame[column] = None
            if frame[column].dtype != object:
                frame[column] = frame[column].astype(object)
            frame.loc[mask, column] = value
        self.revision += 1
        logger.debug(f"Updated row {row_id} of {table_id}: {fields}")

    async def fetch_table(self, table_id: str) -> ColumnData:
        if table_id not in self.tables:
            raise KeyError(f"Table {table_id} not found")
        frame = self.tables[table_id]
        cleaned = frame.astype(object).where(frame.notna(), None)
        return {column: cleaned[column].tolist() for column in cleaned.columns}

    async def set_cursor_pos(self, row_id: int) -> None:
        self.cursor_row_id = row_id
