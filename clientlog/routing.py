"""
Path-based routing for the ClientLog pages.

Streamlit apps are a single script, so the current page is kept as a path such as
``/profile/<userId>`` in the ``route`` query parameter. That keeps pages bookmarkable
and gives the pages a familiar way to navigate: `Router.push("/profile/abc")`.
"""
# clientlog/routing.py

import re

import streamlit as st

HOME = "/"

# (route name, pattern) pairs, checked in order.
ROUTES = [
    ("home", re.compile(r"^/$")),
    ("add_client", re.compile(r"^/add-client$")),
    ("visit", re.compile(r"^/profile/(?P<userId>[^/]+)/visit/(?P<visitId>[^/]+)$")),
    ("profile", re.compile(r"^/profile/(?P<userId>[^/]+)$")),
    ("update", re.compile(r"^/update/(?P<userId>[^/]+)$")),
    ("checkin", re.compile(r"^/checkin/(?P<userId>[^/]+)$")),
    ("checkout", re.compile(r"^/checkout/(?P<userId>[^/]+)$")),
]


def resolve_route(path):
    """Matches a path against the known routes.

    Args:
        path (str): A path like ``/profile/abc``. A trailing slash is ignored.

    Returns:
        tuple: The route name and a dict of its parameters; unknown paths resolve to ``home``.
    """
    path = (path or HOME).strip()
    if len(path) > 1:
        path = path.rstrip("/")
    for name, pattern in ROUTES:
        match = pattern.match(path)
        if match:
            return name, match.groupdict()
    return "home", {}


class Router:
    """Keeps the current path in the URL and navigates between pages."""

    param = "route"

    def current_path(self):
        return st.query_params.get(self.param, HOME) or HOME

    def push(self, path):
        """Navigates to `path` by updating the query string and rerunning the script."""
        st.query_params[self.param] = path
        st.rerun()
