"""
Record map page.

This module provides the streamlit page that hosts the record map widget:
it owns the tables (pandas DataFrames), the row cursor, the column mapping
and the persisted options, and forwards each change to the widget's event
handlers.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import pandas as pd
import streamlit as st

from .host import InMemoryHost
from .map_config import MODES, WidgetOptions
from .map_data import COLUMN_DECLARATIONS
from .widget import MapWidget

logger = logging.getLogger(__name__)

MAIN_TABLE = "Places"
MAP_HEIGHT_PX = 600
UNMAPPED = "(none)"
# Geocoding write-backs trigger another batch; bound the chain of refreshes
MAX_REFRESH_BATCHES = 3
MAP_RETURNED_OBJECTS = ["last_object_clicked", "last_active_drawing", "center", "zoom"]


def sample_places() -> pd.DataFrame:
    """Small starter table so the page shows a map on first load."""
    return pd.DataFrame({
        "Name": ["Tel Aviv", "Jerusalem", "Haifa", "Eilat"],
        "Longitude": [34.7818, 35.2137, 34.9896, 34.9519],
        "Latitude": [32.0853, 31.7683, 32.7940, 29.5577],
        "Address": ["", "", "", ""],
        "Geocode": [False, False, False, False],
        "GeocodedAddress": ["", "", "", ""],
    })


def run_widget_event(widget: MapWidget, handler: Callable[[], Awaitable[Any]]) -> Any:
    """Run one widget event, let its background work settle and return the handler result."""

    async def _run() -> Any:
        result = await handler()
        await widget.wait_idle()
        return result

    return asyncio.run(_run())


def push_records(widget: MapWidget, host: InMemoryHost, mapping: Optional[Dict[str, Any]],
                 cursor_row_id: Optional[int]) -> int:
    """
    Send the full table, then the cursor row, like a host refresh does.

    Geocoding writes coordinates back into the table and a host answers
    every write with a fresh batch, so the refresh repeats until the table
    stops changing.

    Returns:
        Number of batches sent
    """
    batches = 0
    while batches < MAX_REFRESH_BATCHES:
        revision = host.revision
        records = host.records(MAIN_TABLE)
        run_widget_event(widget, lambda: widget.on_records(records, mapping))
        record = host.record(MAIN_TABLE, cursor_row_id) if cursor_row_id is not None else None
        if record is not None:
            run_widget_event(widget, lambda: widget.on_record(record, mapping))
        batches += 1
        if host.revision == revision:
            break
        logger.info(f"Table {MAIN_TABLE} changed by geocoding, sending a new batch")
    return batches


class MapsPageInterface:
    """Streamlit host for the record map widget."""

    def __init__(self):
        self._initialize_session_state()
        self.host: InMemoryHost = st.session_state.record_map_host
        self.widget: MapWidget = st.session_state.record_map_widget
        if not st.session_state.record_map_pushed:
            st.session_state.record_map_pushed = True
            self._push_records()

    def render_maps_page(self) -> None:
        """Render the settings, the table editor and the map."""

        st.title("🗺️ Record Map")
        st.markdown("---")

        self._render_settings_section()

        col_table, col_map = st.columns([2, 3])
        with col_table:
            self._render_table_section()
            self._render_mapping_section()
            self._render_cursor_section()
        with col_map:
            self._render_layer_toggles()
            self._render_map()

    def _initialize_session_state(self) -> None:
        """Initialize session state for the host document and the widget."""

        if 'record_map_options' not in st.session_state:
            options = WidgetOptions()
            query = "&".join(f"{key}={value}" for key, value in st.query_params.items())
            if query:
                options.apply_query_string(query)
            st.session_state.record_map_options = options

        if 'record_map_host' not in st.session_state:
            st.session_state.record_map_host = InMemoryHost({MAIN_TABLE: sample_places()})

        if 'record_map_mapping' not in st.session_state:
            st.session_state.record_map_mapping = {}

        if 'record_map_cursor' not in st.session_state:
            st.session_state.record_map_cursor = None

        if 'record_map_last_click' not in st.session_state:
            st.session_state.record_map_last_click = None

        if 'record_map_widget' not in st.session_state:
            widget = MapWidget(st.session_state.record_map_host, st.session_state.record_map_options)
            widget.on_table_selected(MAIN_TABLE)
            run_widget_event(widget, lambda: widget.on_options(
                st.session_state.record_map_options.to_host_options(), access_level="full"))
            st.session_state.record_map_widget = widget
            st.session_state.record_map_pushed = False

    def _mapping(self) -> Optional[Dict[str, Any]]:
        mapping = {role: column for role, column in st.session_state.record_map_mapping.items() if column}
        return mapping or None

    def _push_records(self) -> None:
        push_records(self.widget, self.host, self._mapping(), st.session_state.record_map_cursor)

    def _dispatch(self, handler: Callable[[], Awaitable[Any]]) -> Any:
        """Run a widget event; a geocoding write-back during it triggers a host refresh."""
        revision = self.host.revision
        result = run_widget_event(self.widget, handler)
        if self.host.revision != revision:
            self._push_records()
        return result

    def _render_settings_section(self) -> None:
        """Sidebar settings panel; edits are persisted as host options."""

        options = self.widget.options
        with st.sidebar:
            st.header("⚙️ Map Settings")
            mode = st.radio("Display mode", MODES, index=MODES.index(options.mode),
                            format_func=lambda m: "Single row" if m == "single" else "All rows")
            map_source = st.text_input("Tile URL template", value=options.map_source)
            map_copyright = st.text_area("Attribution (HTML)", value=options.map_copyright)
            additional_layers = st.text_area(
                "Additional layers (JSON)",
                value=options.to_host_options()["additionalLayers"],
                help='[{"table": "Zones", "layer": "Zones", "columns": {"GeoJSON": "Shape"}}]',
            )
            uploaded = st.file_uploader("Add auxiliary table (CSV)", type=["csv"])
            if uploaded is not None:
                table_id = uploaded.name.rsplit(".", 1)[0]
                if table_id not in self.host.tables:
                    self.host.add_table(table_id, pd.read_csv(uploaded))
                    st.success(f"✅ Table {table_id} added")

            if st.button("Apply settings"):
                new_options = {
                    "mode": mode,
                    "mapSource": map_source,
                    "mapCopyright": map_copyright,
                    "additionalLayers": additional_layers,
                }
                self._dispatch(lambda: self.widget.on_options(new_options, access_level="full"))
                options.save_config()
                st.rerun()

            with st.expander("Column roles"):
                for declaration in COLUMN_DECLARATIONS:
                    optional = " (optional)" if declaration.get("optional") else ""
                    st.markdown(f"**{declaration['name']}**{optional}: {declaration.get('description', '')}")

    def _render_table_section(self) -> None:
        """Editable table; changes are pushed to the widget as a full refresh."""

        st.subheader("📋 Records")
        frame = self.host.tables[MAIN_TABLE]
        edited = st.data_editor(frame, num_rows="dynamic", hide_index=True,
                                key=f"record_map_editor_{self.host.revision}")
        if not edited.equals(frame):
            edited = edited.copy()
            missing_ids = edited["id"].isna()
            if missing_ids.any():
                next_id = int(frame["id"].max() if len(frame) else 0) + 1
                edited.loc[missing_ids, "id"] = range(next_id, next_id + int(missing_ids.sum()))
            edited["id"] = edited["id"].astype(int)
            self.host.tables[MAIN_TABLE] = edited
            logger.info(f"Table {MAIN_TABLE} edited, {len(edited)} rows")
            self._push_records()
            st.rerun()

    def _render_mapping_section(self) -> None:
        """Let the user map column roles; an empty mapping uses legacy column names."""

        columns = [UNMAPPED] + [c for c in self.host.tables[MAIN_TABLE].columns if c != "id"]
        with st.expander("🔗 Column mapping"):
            changed = False
            for declaration in COLUMN_DECLARATIONS:
                role = declaration["name"]
                current = st.session_state.record_map_mapping.get(role)
                if declaration.get("allowMultiple"):
                    selected = st.multiselect(role, columns[1:], default=[c for c in current or [] if c in columns],
                                              key=f"record_map_role_{role}")
                    value: Any = selected or None
                else:
                    index = columns.index(current) if current in columns else 0
                    choice = st.selectbox(role, columns, index=index, key=f"record_map_role_{role}")
                    value = None if choice == UNMAPPED else choice
                if value != current:
                    st.session_state.record_map_mapping[role] = value
                    changed = True
            if changed:
                self._push_records()

    def _render_cursor_section(self) -> None:
        """Row cursor: selecting a row is the host-side cursor move."""

        records = self.host.records(MAIN_TABLE)
        row_ids: List[Optional[int]] = [None] + [record["id"] for record in records]
        names = {record["id"]: record.get("Name") for record in records}

        # A click on the map moves the host cursor through the widget
        if self.host.cursor_row_id is not None and self.host.cursor_row_id != st.session_state.record_map_cursor:
            st.session_state.record_map_cursor = self.host.cursor_row_id

        current = st.session_state.record_map_cursor
        choice = st.selectbox(
            "Cursor row",
            row_ids,
            index=row_ids.index(current) if current in row_ids else 0,
            format_func=lambda row_id: "New row" if row_id is None else f"#{row_id} {names.get(row_id) or ''}",
        )
        if choice == current:
            return
        st.session_state.record_map_cursor = choice
        self.host.cursor_row_id = choice
        if choice is None:
            self._dispatch(self.widget.on_new_record)
        else:
            record = self.host.record(MAIN_TABLE, choice)
            mapping = self._mapping()
            self._dispatch(lambda: self.widget.on_record(record, mapping))

    def _render_layer_toggles(self) -> None:
        canvas = self.widget.canvas
        if canvas is None or canvas.control is None:
            return
        with st.expander("🗂️ Layers"):
            for name in canvas.control.entries():
                visible = st.checkbox(name, value=canvas.control.is_visible(name), key=f"record_map_layer_{name}")
                if visible != canvas.control.is_visible(name):
                    self.widget.toggle_layer(name, visible)

    def _render_map(self) -> None:
        """Show the map and feed its clicks and camera moves back to the widget."""
        from streamlit_folium import st_folium

        message = self.widget.status_message()
        if message:
            st.info(message)
            return
        canvas = self.widget.canvas
        if canvas.warning:
            st.warning(canvas.warning)

        try:
            map_obj = canvas.to_folium()
        except Exception as e:
            logger.error(f"Map rendering failed: {e}")
            st.error(f"❌ Map rendering failed: {e}")
            return

        map_data = st_folium(
            map_obj,
            width=None,
            height=MAP_HEIGHT_PX,
            returned_objects=MAP_RETURNED_OBJECTS,
            key="record_map",
        )
        self._handle_map_events(map_data)

    def _handle_map_events(self, map_data: Optional[Dict[str, Any]]) -> None:
        if not map_data:
            return

        center, zoom = map_data.get("center"), map_data.get("zoom")
        if center and zoom is not None:
            run_widget_event(self.widget, lambda: self.widget.on_camera_move([center["lat"], center["lng"]], zoom))

        clicked = map_data.get("last_object_clicked")
        if not clicked or clicked == st.session_state.record_map_last_click:
            return
        st.session_state.record_map_last_click = clicked
        row_id = self._dispatch(lambda: self.widget.on_map_click(clicked, map_data.get("last_active_drawing")))
        if row_id is not None:
            st.session_state.record_map_cursor = row_id
            st.rerun()


def render_maps_page():
    """
    Main function to render the record map page in Streamlit.
    This function should be called from the main app navigation.
    """

    maps_interface = MapsPageInterface()
    maps_interface.render_maps_page()
