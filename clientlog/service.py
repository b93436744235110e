"""
This module provides the data access layer of the ClientLog application.

`ClientService` is the only code that talks to the document store. It turns form
input into client and visit documents, runs client lookups, and implements the
save, check-in and check-out rules that the pages rely on. The store is handed in
by the caller, so tests can run the service against a temporary local store.
"""
# clientlog/service.py

from __future__ import annotations

import datetime
import enum
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from clientlog.errors import StoreError
from clientlog.models import (
    REQUEST_COUNT_LABELS,
    REQUEST_FLAG_LABELS,
    Client,
    Visit,
    format_visit_timestamp,
)
from clientlog.store import DocumentStore, Filter, prefix_filters

logger = logging.getLogger(__name__)

CLIENTS = "clients"


def visits_collection(client_id: str) -> str:
    return f"{CLIENTS}/{client_id}/visits"


class PageState(enum.Enum):
    """State of the fetch that drives a page.

    `LOADING` is the state while the fetch runs; pages render it as `st.spinner`
    around the call. The load methods only ever return one of the settled states
    `NOT_FOUND`, `READY` or `FAILED`.
    """
    LOADING = "loading"
    NOT_FOUND = "not_found"
    READY = "ready"
    FAILED = "failed"

    @property
    def is_settled(self) -> bool:
        return self is not PageState.LOADING


def build_search_filter(first_name: str = "", last_name: str = "", birthday: Optional[str] = None,
                        filter_by_birthday: bool = False) -> Dict[str, Any]:
    """Builds the lookup filter submitted by the client search form.

    Only populated fields are included, so an empty form produces an empty filter,
    which matches every client.

    Args:
        first_name (str): First name as typed; matched as a case-insensitive prefix.
        last_name (str): Last name as typed; matched as a case-insensitive prefix.
        birthday (str | None): ISO date, used only when `filter_by_birthday` is set.
        filter_by_birthday (bool): Whether to restrict results to `birthday`.

    Returns:
        dict: Keys among ``firstNameLower``, ``lastNameLower``, ``birthday`` and ``filterByBirthday``.
    """
    fields: Dict[str, Any] = {}
    if first_name:
        fields["firstNameLower"] = first_name.lower()
    if last_name:
        fields["lastNameLower"] = last_name.lower()
    if filter_by_birthday:
        fields["birthday"] = birthday
        fields["filterByBirthday"] = filter_by_birthday
    return fields


def _store_filters(doc_filter: Dict[str, Any]) -> List[Filter]:
    filters: List[Filter] = []
    for name in ("firstNameLower", "lastNameLower"):
        if doc_filter.get(name):
            filters.extend(prefix_filters(name, doc_filter[name]))
    if doc_filter.get("filterByBirthday") and doc_filter.get("birthday"):
        filters.append(Filter("birthday", "==", doc_filter["birthday"]))
    return filters


def visits_dataframe(visits: List[Visit]) -> pd.DataFrame:
    """Tabulates visits, one row each, with a column per request plus date, household and notes."""
    rows = []
    for visit in visits:
        row: Dict[str, Any] = {"Date": format_visit_timestamp(visit.timestamp)}
        for name, label in REQUEST_FLAG_LABELS:
            row[label] = visit.flags.get(name, False)
        for name, label in REQUEST_COUNT_LABELS:
            row[label] = visit.counts.get(name, 0)
        row["Household"] = visit.household
        row["Notes"] = visit.notes
        rows.append(row)
    columns = ["Date"] + [label for _, label in REQUEST_FLAG_LABELS] + [label for _, label in REQUEST_COUNT_LABELS]
    return pd.DataFrame(rows, columns=columns + ["Household", "Notes"])


class ClientService:
    """Reads and writes clients and visits through a `DocumentStore`."""

    def __init__(self, store: DocumentStore, search_limit: int = 50):
        """
        Args:
            store: The process-wide document store.
            search_limit: Maximum number of clients a lookup returns.
        """
        self.store = store
        self.search_limit = search_limit

    # Clients
    def get_client(self, client_id: str) -> Optional[Client]:
        """Returns the client stored under `client_id`, or None when there is none."""
        if not client_id:
            return None
        document = self.store.get(CLIENTS, client_id)
        if document is None:
            return None
        return Client.from_document(document.id, document.data)

    def load_client(self, client_id: str) -> Tuple[PageState, Optional[Client]]:
        """Fetches a client for a page and reports the resulting page state."""
        try:
            client = self.get_client(client_id)
        except StoreError:
            logger.exception("Failed to load client %s", client_id)
            return PageState.FAILED, None
        if client is None:
            return PageState.NOT_FOUND, None
        return PageState.READY, client

    def search_clients(self, doc_filter: Optional[Dict[str, Any]] = None, limit: Optional[int] = None) -> List[Client]:
        """Returns clients matching a search-form filter, ordered by last then first name.

        Name fields match as prefixes of the lower-cased names; birthday matches exactly.
        An empty filter returns all clients up to the limit.
        """
        doc_filter = doc_filter or {}
        filters = _store_filters(doc_filter)
        # Range filters need the first ordering on the same field, which a name prefix provides.
        if doc_filter.get("lastNameLower") or not doc_filter.get("firstNameLower"):
            order_by = "lastNameLower"
        else:
            order_by = "firstNameLower"
        documents = self.store.query(CLIENTS, filters, order_by=order_by, limit=limit or self.search_limit)
        clients = [Client.from_document(doc.id, doc.data) for doc in documents]
        return sorted(clients, key=lambda client: (client.last_name_lower, client.first_name_lower))

    def checked_in_clients(self, limit: Optional[int] = None) -> List[Client]:
        """Returns clients currently checked in."""
        documents = self.store.query(CLIENTS, [Filter("isCheckedIn", "==", True)], limit=limit or self.search_limit)
        clients = [Client.from_document(doc.id, doc.data) for doc in documents]
        return sorted(clients, key=lambda client: (client.last_name_lower, client.first_name_lower))

    def save_client(self, client: Client, client_id: Optional[str] = None, toggle_check_in: bool = False,
                    redirect: str = "/") -> str:
        """Persists a client from the client info form and returns where to navigate next.

        Args:
            client: The form's current values.
            client_id: Id of the client being edited; None creates a new client.
            toggle_check_in: Flip `is_checked_in` instead of keeping it.
            redirect: Route to return when not heading into the check-in flow.

        Returns:
            str: ``/checkin/<id>`` when the save leaves the client checked in through
            a toggle, otherwise `redirect`.
        """
        is_checked_in = not client.is_checked_in if toggle_check_in else client.is_checked_in
        client = replace(client, is_checked_in=is_checked_in)

        if client_id:
            self.store.put(CLIENTS, client_id, client.to_document())
            saved_id = client_id
            logger.info("Updated client %s", client_id)
        elif client.has_name:
            saved_id = self.store.create(CLIENTS, client.to_document())
            logger.info("Registered client %s", saved_id)
        else:
            # Nothing to save for a nameless client; the form still closes.
            saved_id = None

        if toggle_check_in and is_checked_in and saved_id:
            return f"/checkin/{saved_id}"
        return redirect

    def set_checked_in(self, client_id: str, is_checked_in: bool) -> Client:
        """Writes a new check-in status for an existing client and returns the client."""
        client = self.get_client(client_id)
        if client is None:
            raise KeyError(f"Unknown client identifier: {client_id}")
        client = replace(client, is_checked_in=is_checked_in)
        self.store.put(CLIENTS, client_id, client.to_document())
        return client

    # Visits
    def check_in(self, client_id: str, visit: Visit, now: Optional[datetime.datetime] = None) -> str:
        """Records a visit for a client and marks the client checked in.

        The visit is written first so a failed status write never hides a recorded visit.

        Returns:
            str: The id of the new visit.
        """
        if self.get_client(client_id) is None:
            raise KeyError(f"Unknown client identifier: {client_id}")
        moment = now or datetime.datetime.now(tz=datetime.timezone.utc)
        visit = replace(visit, id=None, timestamp=int(moment.timestamp()))
        visit_id = self.store.create(visits_collection(client_id), visit.to_document())
        self.set_checked_in(client_id, True)
        logger.info("Checked in client %s with visit %s", client_id, visit_id)
        return visit_id

    def check_out(self, client_id: str) -> Client:
        """Marks a client checked out."""
        client = self.set_checked_in(client_id, False)
        logger.info("Checked out client %s", client_id)
        return client

    def get_visit(self, client_id: str, visit_id: str) -> Optional[Visit]:
        if not client_id or not visit_id:
            return None
        document = self.store.get(visits_collection(client_id), visit_id)
        if document is None:
            return None
        return Visit.from_document(document.id, document.data)

    def load_visit(self, client_id: str, visit_id: str) -> Tuple[PageState, Optional[Visit]]:
        """Fetches a visit for the visit page and reports the resulting page state."""
        try:
            visit = self.get_visit(client_id, visit_id)
        except StoreError:
            logger.exception("Failed to load visit %s for client %s", visit_id, client_id)
            return PageState.FAILED, None
        if visit is None:
            return PageState.NOT_FOUND, None
        return PageState.READY, visit

    def list_visits(self, client_id: str, limit: Optional[int] = None) -> List[Visit]:
        """Returns a client's visits, newest first."""
        documents = self.store.query(visits_collection(client_id), order_by="timestamp", descending=True, limit=limit)
        return [Visit.from_document(doc.id, doc.data) for doc in documents]
