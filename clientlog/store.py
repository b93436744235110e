"""
This module provides the document store behind the ClientLog application.

A store exposes four operations over named collections of documents:
`get`, `query`, `create` and `put`. Two backends implement them:

- `LocalDocumentStore` keeps every collection in one JSON file encrypted with Fernet,
  so a single machine can run without any cloud setup.
- `FirestoreDocumentStore` talks to Google Cloud Firestore through
  `google-cloud-firestore` and is what production deployments use.

Writes are unconditional: `put` replaces whatever is stored at an id.
"""
# clientlog/store.py

from __future__ import annotations

import copy
import datetime
import json
import logging
import operator
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from cryptography.fernet import InvalidToken
from google.api_core.exceptions import GoogleAPICallError
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from clientlog.encryption import load_encryptor
from clientlog.errors import StoreError

logger = logging.getLogger(__name__)

PREFIX_SENTINEL = "\uf8ff"

_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


@dataclass(frozen=True)
class Document:
    """A document read from the store: its key and its fields."""
    id: str
    data: Dict[str, Any]


@dataclass(frozen=True)
class Filter:
    """A single field comparison, e.g. ``Filter("birthday", "==", "1990-01-01")``."""
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in _OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")


def prefix_filters(field_name: str, prefix: str) -> List[Filter]:
    """Returns the range filters matching string values that start with `prefix`."""
    return [Filter(field_name, ">=", prefix), Filter(field_name, "<=", prefix + PREFIX_SENTINEL)]


class DocumentStore:
    """Interface shared by the store backends."""

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Returns the document stored at `doc_id`, or None when there is none."""
        raise NotImplementedError

    def query(self, collection: str, filters: Iterable[Filter] = (), order_by: Optional[str] = None,
              descending: bool = False, limit: Optional[int] = None) -> List[Document]:
        """Returns the documents matching every filter, optionally ordered and limited."""
        raise NotImplementedError

    def create(self, collection: str, fields: Dict[str, Any]) -> str:
        """Stores a new document under a generated id and returns the id."""
        raise NotImplementedError

    def put(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        """Replaces the document at `doc_id` with `fields`."""
        raise NotImplementedError


# Local encrypted JSON backend
def _encode_value(value):
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        return {"seconds": int(value.timestamp())}
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _decode_object(obj):
    if set(obj) == {"seconds"} and isinstance(obj["seconds"], int):
        return datetime.datetime.fromtimestamp(obj["seconds"], tz=datetime.timezone.utc)
    return obj


def _sort_key(value):
    # None sorts first, then everything else by its own ordering within its type.
    if value is None:
        return (0, "")
    if isinstance(value, bool):
        return (1, value)
    if isinstance(value, (int, float)):
        return (2, value)
    if isinstance(value, datetime.datetime):
        return (3, value.timestamp())
    return (4, str(value))


def _matches(data: Dict[str, Any], filters: Iterable[Filter]) -> bool:
    for item in filters:
        if item.field not in data:
            return False
        value = data[item.field]
        try:
            if not _OPERATORS[item.op](value, item.value):
                return False
        except TypeError:
            return False
    return True


class LocalDocumentStore(DocumentStore):
    """Document store persisted to a single Fernet-encrypted JSON file."""

    def __init__(self, data_file, encryptor):
        """Loads the data file, starting empty when it is missing or unreadable.

        Args:
            data_file: Path of the encrypted JSON file.
            encryptor: An object with Fernet's `encrypt`/`decrypt` methods.
        """
        self._path = Path(data_file)
        self._encryptor = encryptor
        self._lock = threading.Lock()
        self._data = self._load_data()

    def _load_data(self) -> Dict[str, Dict[str, Any]]:
        """Loads and decrypts the data file.

        Returns:
            dict: The loaded data, or a fresh structure if the file doesn't exist or is corrupt.
        """
        try:
            encrypted_data = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {"collections": {}}
        except OSError as exc:
            logger.warning("Could not read data file %s (%s). Starting with a new dataset.", self._path, exc)
            return {"collections": {}}
        if not encrypted_data:
            return {"collections": {}}
        try:
            decrypted_data = self._encryptor.decrypt(encrypted_data.encode()).decode()
            data = json.loads(decrypted_data, object_hook=_decode_object)
        except (InvalidToken, json.JSONDecodeError) as exc:
            logger.warning("Could not load data file %s (%r). Starting with a new dataset.", self._path, exc)
            return {"collections": {}}
        if not isinstance(data, dict) or not isinstance(data.get("collections"), dict):
            return {"collections": {}}
        return data

    def _save_data(self) -> None:
        """Encrypts and writes the current data to the data file."""
        try:
            data_to_encrypt = json.dumps(self._data, indent=4, default=_encode_value)
            encrypted_data = self._encryptor.encrypt(data_to_encrypt.encode())
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(encrypted_data.decode(), encoding="utf-8")
        except (OSError, TypeError) as exc:
            raise StoreError(f"Could not save data file {self._path}: {exc}") from exc

    def _collection(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self._data["collections"].setdefault(collection, {})

    def get(self, collection, doc_id):
        with self._lock:
            fields = self._data["collections"].get(collection, {}).get(doc_id)
            if fields is None:
                return None
            return Document(doc_id, copy.deepcopy(fields))

    def query(self, collection, filters=(), order_by=None, descending=False, limit=None):
        filters = list(filters)
        with self._lock:
            documents = [
                Document(doc_id, copy.deepcopy(fields))
                for doc_id, fields in self._data["collections"].get(collection, {}).items()
                if _matches(fields, filters)
            ]
        if order_by:
            documents.sort(key=lambda doc: _sort_key(doc.data.get(order_by)), reverse=descending)
        if limit is not None:
            documents = documents[:limit]
        return documents

    def _write(self, collection, doc_id, fields):
        documents = self._collection(collection)
        previous = documents.get(doc_id)
        documents[doc_id] = copy.deepcopy(dict(fields))
        try:
            self._save_data()
        except StoreError:
            # Keep memory in step with the file.
            if previous is None:
                del documents[doc_id]
            else:
                documents[doc_id] = previous
            raise

    def create(self, collection, fields):
        doc_id = uuid.uuid4().hex
        with self._lock:
            self._write(collection, doc_id, fields)
        logger.info("Created document %s in %s", doc_id, collection)
        return doc_id

    def put(self, collection, doc_id, fields):
        with self._lock:
            self._write(collection, doc_id, fields)
        logger.info("Wrote document %s in %s", doc_id, collection)


# Cloud Firestore backend
class FirestoreDocumentStore(DocumentStore):
    """Document store backed by Google Cloud Firestore.

    Malformed paths (an id containing a slash, for instance) surface as `StoreError`
    like any other backend failure.
    """

    def __init__(self, client):
        """
        Args:
            client: A `google.cloud.firestore.Client`.
        """
        self._client = client

    def get(self, collection, doc_id):
        try:
            snapshot = self._client.collection(collection).document(doc_id).get()
        except (GoogleAPICallError, ValueError) as exc:
            raise StoreError(f"Could not read {collection}/{doc_id}: {exc}") from exc
        if not snapshot.exists:
            return None
        return Document(snapshot.id, snapshot.to_dict() or {})

    def query(self, collection, filters=(), order_by=None, descending=False, limit=None):
        try:
            query = self._client.collection(collection)
        except ValueError as exc:
            raise StoreError(f"Could not query {collection}: {exc}") from exc
        for item in filters:
            query = query.where(filter=FieldFilter(item.field, item.op, item.value))
        if order_by:
            direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
            query = query.order_by(order_by, direction=direction)
        if limit is not None:
            query = query.limit(limit)
        try:
            return [Document(snapshot.id, snapshot.to_dict() or {}) for snapshot in query.stream()]
        except GoogleAPICallError as exc:
            raise StoreError(f"Could not query {collection}: {exc}") from exc

    def create(self, collection, fields):
        try:
            _, doc_ref = self._client.collection(collection).add(dict(fields))
        except (GoogleAPICallError, ValueError) as exc:
            raise StoreError(f"Could not create document in {collection}: {exc}") from exc
        logger.info("Created document %s in %s", doc_ref.id, collection)
        return doc_ref.id

    def put(self, collection, doc_id, fields):
        try:
            self._client.collection(collection).document(doc_id).set(dict(fields))
        except (GoogleAPICallError, ValueError) as exc:
            raise StoreError(f"Could not write {collection}/{doc_id}: {exc}") from exc
        logger.info("Wrote document %s in %s", doc_id, collection)


def create_store(config) -> DocumentStore:
    """Builds the store selected by `config.store_backend`.

    Firestore authenticates with the credentials available in the environment.
    """
    if config.uses_firestore:
        logger.info("Using Firestore document store (project=%s)", config.firestore_project or "default")
        return FirestoreDocumentStore(firestore.Client(project=config.firestore_project))

    logger.info("Using local document store at %s", config.data_file)
    return LocalDocumentStore(config.data_file, load_encryptor(config.key_file))
