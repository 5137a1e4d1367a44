"""
Record Map - Streamlit GUI Application

This module provides the Streamlit-based web interface that hosts the
record map widget: a table of places drawn as an interactive map.
"""

import logging

import streamlit as st

from components.record_map.maps_page import render_maps_page

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

# Configure Streamlit page
st.set_page_config(
    page_title="Record Map",
    page_icon="🗺️",
    layout="wide",
    initial_sidebar_state="expanded"
)


def main():
    """Main application entry point."""
    render_maps_page()


if __name__ == "__main__":
    main()
