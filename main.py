"""
This is the main entry point for the ClientLog Streamlit application.

This script handles the following key responsibilities:
- Sets the overall page configuration for the Streamlit app.
- Loads the configuration and sets up logging.
- Creates the document store once per process and the identity provider once per session.
- Shows the sign-in gate and, once a staff member is signed in, the page for the current route.

Run it with ``streamlit run main.py``.
"""
# main.py

import streamlit as st

from clientlog.auth import create_identity_provider
from clientlog.config import load_config
from clientlog.log import configure_logging
from clientlog.routing import Router
from clientlog.service import ClientService
from clientlog.store import create_store
import gui

# Set the basic configuration for the Streamlit page.
st.set_page_config(
    page_title="ClientLog",
    layout="wide"
)


# Service Initialization
@st.cache_resource
def get_config():
    """Loads the configuration once per process and configures logging with it."""
    config = load_config()
    configure_logging(config.log_level)
    return config


@st.cache_resource
def get_store(_config):
    """
    Creates the document store shared by every session.

    The leading underscore keeps Streamlit from hashing the config object.

    Returns:
        DocumentStore: The process-wide store handle.
    """
    return create_store(_config)


config = get_config()
store = get_store(config)
service = ClientService(store, search_limit=config.search_limit)
router = Router()

# Session State Management
# The identity provider holds the signed-in user, so each browser session gets its own.
if 'identity_provider' not in st.session_state:
    st.session_state.identity_provider = create_identity_provider(config, store)
if 'is_signed_in' not in st.session_state:
    st.session_state.is_signed_in = False

# Main App Router
with st.sidebar:
    st.markdown(f"### {config.org_name}")
    signed_in = gui.show_login(st.session_state.identity_provider)

if signed_in:
    gui.show_main_app(service, router, config)
else:
    gui.show_welcome_page(config.org_name)
