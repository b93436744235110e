"""
This module provides staff authentication for the ClientLog application.

Pages never talk to an identity service directly. They use an `IdentityProvider`,
which reports the signed-in staff member, lets callers subscribe to sign-in and
sign-out changes, and signs the user out. Two providers exist:

- `StreamlitOIDCProvider` delegates to Streamlit's built-in OpenID Connect sign-in
  (`st.login`, `st.user`, `st.logout`), configured for Google in secrets.toml.
- `LocalAccountProvider` keeps staff accounts in the document store with salted
  password hashes, for deployments without an identity provider. Accounts after the
  first wait for approval by a signed-in staff member before they can sign in.
"""
# clientlog/auth.py

from __future__ import annotations

import hashlib
import logging
import os
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import streamlit as st

from clientlog.store import DocumentStore, Filter

logger = logging.getLogger(__name__)

STAFF = "staff"


@dataclass(frozen=True)
class UserInfo:
    """The signed-in staff member.

    Attributes:
        uid (str): Stable identifier from the identity provider.
        display_name (str): Name to show in the interface.
        email (str): Email address, empty when unknown.
    """
    uid: str
    display_name: str = ""
    email: str = ""


AuthCallback = Callable[[Optional[UserInfo]], None]


class IdentityProvider:
    """Base class holding the auth-state listeners."""

    def __init__(self):
        self._listeners: List[AuthCallback] = []

    def current_user(self) -> Optional[UserInfo]:
        raise NotImplementedError

    def on_auth_state_changed(self, callback: AuthCallback) -> Callable[[], None]:
        """Calls `callback` with the current user now and after every sign-in or sign-out.

        Returns:
            callable: Removes the callback when called.
        """
        self._listeners.append(callback)
        callback(self.current_user())

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _notify(self, user: Optional[UserInfo]) -> None:
        for listener in list(self._listeners):
            listener(user)

    def sign_out(self) -> None:
        raise NotImplementedError


class StreamlitOIDCProvider(IdentityProvider):
    """Sign-in through Streamlit's OpenID Connect support, e.g. Google accounts."""

    def __init__(self, provider_name: str = "google"):
        super().__init__()
        self.provider_name = provider_name

    def current_user(self):
        if not st.user.is_logged_in:
            return None
        uid = st.user.get("sub") or st.user.get("email") or ""
        return UserInfo(uid=uid, display_name=st.user.get("name") or "", email=st.user.get("email") or "")

    def sign_in(self):
        """Starts the hosted sign-in flow; Streamlit redirects back once it completes."""
        st.login(self.provider_name)

    def sign_out(self):
        user = self.current_user()
        self._notify(None)
        logger.info("Signed out %s", user.uid if user else "anonymous user")
        st.logout()


class LocalAccountProvider(IdentityProvider):
    """Staff accounts stored in the ``staff`` collection of the document store."""

    def __init__(self, store: DocumentStore):
        super().__init__()
        self._store = store
        self._user: Optional[UserInfo] = None

    def current_user(self):
        return self._user

    @staticmethod
    def _hash_password(salt: str, password: str) -> str:
        return hashlib.sha256((salt + password).encode()).hexdigest()

    @staticmethod
    def _is_strong_password(password: str) -> bool:
        """Checks if a password meets the defined strength criteria."""
        if len(password) < 8:
            return False
        has_upper = any(c.isupper() for c in password)
        has_lower = any(c.islower() for c in password)
        has_digit = any(c.isdigit() for c in password)
        has_special = any(not c.isalnum() for c in password)
        return has_upper and has_lower and has_digit and has_special

    @staticmethod
    def _is_valid_username(username: str) -> bool:
        """Usernames double as document ids, so they cannot contain path separators."""
        if not username or username in (".", ".."):
            return False
        if "/" in username:
            return False
        return not (username.startswith("__") and username.endswith("__"))

    def _has_accounts(self) -> bool:
        return bool(self._store.query(STAFF, limit=1))

    def register(self, username: str, password: str, display_name: str = ""):
        """Creates a staff account.

        The first account is approved straight away. Every later account waits as
        ``pending`` until a signed-in staff member approves it.

        Args:
            username (str): Login name, also the account's document id.
            password (str): Plaintext password.
            display_name (str): Name shown once signed in.

        Returns:
            str or bool: 'invalid_username', 'weak_password', 'pending', False if the
                username is taken, or True when the account can sign in now.
        """
        if not self._is_valid_username(username):
            return 'invalid_username'
        if not self._is_strong_password(password):
            return 'weak_password'
        if self._store.get(STAFF, username) is not None:
            return False
        status = 'pending' if self._has_accounts() else 'approved'
        salt = os.urandom(16).hex()
        self._store.put(STAFF, username, {
            "username": username,
            "displayName": display_name,
            "salt": salt,
            "passwordHash": self._hash_password(salt, password),
            "status": status,
        })
        logger.info("Registered staff account %s (%s)", username, status)
        if status == 'pending':
            return 'pending'
        return True

    def sign_in(self, username: str, password: str):
        """Checks the credentials and, when they match, makes the account the current user.

        Returns:
            UserInfo or str or None: The signed-in user, 'pending' if the account is
                not yet approved, or None if the credentials do not match.
        """
        if not self._is_valid_username(username):
            return None
        document = self._store.get(STAFF, username)
        if document is None:
            return None
        salt = document.data.get("salt")
        if not salt or document.data.get("passwordHash") != self._hash_password(salt, password):
            logger.warning("Failed sign-in for %s", username)
            return None
        if document.data.get("status") == 'pending':
            logger.info("Refused sign-in for pending account %s", username)
            return 'pending'
        self._user = UserInfo(uid=username, display_name=document.data.get("displayName") or username)
        logger.info("Signed in %s", username)
        self._notify(self._user)
        return self._user

    def pending_accounts(self) -> List[Dict[str, str]]:
        """Returns the username and display name of every account awaiting approval."""
        documents = self._store.query(STAFF, [Filter("status", "==", 'pending')])
        return [
            {"username": doc.id, "displayName": doc.data.get("displayName") or ""}
            for doc in sorted(documents, key=lambda doc: doc.id)
        ]

    def approve(self, username: str) -> bool:
        """Approves a pending account. Only a signed-in staff member can approve.

        Returns:
            bool: True if the account was pending and is now approved.
        """
        if self._user is None or not self._is_valid_username(username):
            return False
        document = self._store.get(STAFF, username)
        if document is None or document.data.get("status") != 'pending':
            return False
        self._store.put(STAFF, username, {**document.data, "status": 'approved'})
        logger.info("Staff account %s approved by %s", username, self._user.uid)
        return True

    def sign_out(self):
        if self._user is not None:
            logger.info("Signed out %s", self._user.uid)
        self._user = None
        self._notify(None)


def create_identity_provider(config, store: DocumentStore) -> IdentityProvider:
    """Builds the provider selected by `config.auth_provider`."""
    if config.auth_provider == "oidc":
        return StreamlitOIDCProvider(config.oidc_provider)
    return LocalAccountProvider(store)
