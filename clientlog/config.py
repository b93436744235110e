"""
Runtime configuration for the ClientLog application.

Values are read from environment variables first and can be overridden by keys of
the same name in `.streamlit/secrets.toml`, which is where Streamlit deployments
keep their settings. Bad values fall back to the defaults instead of failing.
"""
# clientlog/config.py

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

import streamlit as st

ENV_PREFIX = "CLIENTLOG_"


@dataclass(frozen=True)
class AppConfig:
    """Settings shared by the store, the auth gate and the pages.

    Attributes:
        store_backend (str): ``local`` for the encrypted JSON file, ``firestore`` for Cloud Firestore.
        data_file (str): Path of the encrypted JSON file used by the local store.
        key_file (str): Path of the Fernet key used to encrypt `data_file`.
        firestore_project (str | None): Google Cloud project; ambient credentials decide when unset.
        auth_provider (str): ``local`` for staff accounts, ``oidc`` for Streamlit's OpenID Connect sign-in.
        oidc_provider (str): Name of the provider section under ``[auth]`` in secrets.toml.
        org_name (str): Title shown on the home page.
        search_limit (int): Maximum number of clients returned by a lookup.
        visit_history_limit (int): Number of visits listed on a profile.
        log_level (str): Level name passed to `logging`.
    """
    store_backend: str = "local"
    data_file: str = "records.json"
    key_file: str = "secret.key"
    firestore_project: Optional[str] = None
    auth_provider: str = "local"
    oidc_provider: str = "google"
    org_name: str = "St. Francis House"
    search_limit: int = 50
    visit_history_limit: int = 10
    log_level: str = "INFO"

    @property
    def uses_firestore(self) -> bool:
        return self.store_backend.lower() == "firestore"


def _coerce_int(value, default: int) -> int:
    if value is None:
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def _read_secrets() -> Mapping[str, object]:
    """Returns the top-level secrets, or an empty mapping when no secrets.toml exists."""
    if not st.secrets.load_if_toml_exists():
        return {}
    return {key: value for key, value in st.secrets.items() if not isinstance(value, Mapping)}


def load_config(environ: Optional[Mapping[str, str]] = None,
                secrets: Optional[Mapping[str, object]] = None) -> AppConfig:
    """Builds an `AppConfig` from the environment and Streamlit secrets.

    Args:
        environ: Mapping to read instead of `os.environ`.
        secrets: Mapping to read instead of `st.secrets`.

    Returns:
        AppConfig: The resolved configuration.
    """
    environ = os.environ if environ is None else environ
    secrets = _read_secrets() if secrets is None else secrets

    def lookup(name, default=None):
        key = ENV_PREFIX + name
        if key in secrets and secrets[key] not in (None, ""):
            return str(secrets[key])
        value = environ.get(key)
        return value if value not in (None, "") else default

    defaults = AppConfig()
    backend = lookup("STORE_BACKEND", defaults.store_backend).strip().lower()
    if backend not in {"local", "firestore"}:
        backend = defaults.store_backend
    auth_provider = lookup("AUTH_PROVIDER", defaults.auth_provider).strip().lower()
    if auth_provider not in {"local", "oidc"}:
        auth_provider = defaults.auth_provider

    return AppConfig(
        store_backend=backend,
        data_file=lookup("DATA_FILE", defaults.data_file),
        key_file=lookup("KEY_FILE", defaults.key_file),
        firestore_project=lookup("FIRESTORE_PROJECT"),
        auth_provider=auth_provider,
        oidc_provider=lookup("OIDC_PROVIDER", defaults.oidc_provider),
        org_name=lookup("ORG_NAME", defaults.org_name),
        search_limit=_coerce_int(lookup("SEARCH_LIMIT"), defaults.search_limit),
        visit_history_limit=_coerce_int(lookup("VISIT_HISTORY_LIMIT"), defaults.visit_history_limit),
        log_level=lookup("LOG_LEVEL", defaults.log_level).upper(),
    )
