"""
Pytest configuration file for the ClientLog test suite.

This file defines shared fixtures used across the test files:
- A `LocalDocumentStore` backed by a temporary encrypted file, so tests never touch
  real data.
- A `ClientService` built on that store, plus seeded clients and visits.
- A `RecordingRouter` that records navigation instead of rerunning a Streamlit script.
"""
import datetime

import pytest
from cryptography.fernet import Fernet

from clientlog.errors import StoreError
from clientlog.service import ClientService, visits_collection
from clientlog.store import LocalDocumentStore


class RecordingRouter:
    """Router stand-in that remembers every path pushed to it."""

    def __init__(self, path="/"):
        self.path = path
        self.pushed = []

    def current_path(self):
        return self.path

    def push(self, path):
        self.pushed.append(path)
        self.path = path


class FailingStore(LocalDocumentStore):
    """A store whose reads and writes all fail, as with a lost connection."""

    def get(self, collection, doc_id):
        raise StoreError("connection lost")

    def query(self, collection, filters=(), order_by=None, descending=False, limit=None):
        raise StoreError("connection lost")

    def create(self, collection, fields):
        raise StoreError("connection lost")

    def put(self, collection, doc_id, fields):
        raise StoreError("connection lost")


CLIENT_DOCUMENT = {
    "firstName": "testFirst",
    "lastName": "testLast",
    "firstNameLower": "testfirst",
    "lastNameLower": "testlast",
    "middleInitial": "t",
    "birthday": "1990-05-17",
    "gender": "",
    "race": "",
    "postalCode": "",
    "numKids": 2,
    "notes": "",
    "isCheckedIn": False,
    "isBanned": False,
}

ALL_REQUESTS_VISIT = {
    "clothingMen": True,
    "clothingWomen": True,
    "clothingBoy": True,
    "clothingGirl": True,
    "household": "household item text",
    "notes": "notes text",
    "timestamp": {"seconds": 0},
    "backpack": True,
    "sleepingBag": True,
    "busTicket": 1,
    "giftCard": 2,
    "diaper": 3,
    "financialAssistance": 4,
}

NO_REQUESTS_VISIT = {
    "clothingMen": False,
    "clothingWomen": False,
    "clothingBoy": False,
    "clothingGirl": False,
    "household": "",
    "notes": "",
    "timestamp": {"seconds": 0},
    "backpack": False,
    "sleepingBag": False,
    "busTicket": 0,
    "giftCard": 0,
    "diaper": 0,
    "financialAssistance": 0,
}


@pytest.fixture
def encryptor():
    """Provides a Fernet instance with a throwaway key."""
    return Fernet(Fernet.generate_key())


@pytest.fixture
def data_file(tmp_path):
    return tmp_path / "records.json"


@pytest.fixture
def store(data_file, encryptor):
    """A fresh local store writing to a temporary encrypted file."""
    return LocalDocumentStore(data_file, encryptor)


@pytest.fixture
def service(store):
    return ClientService(store)


@pytest.fixture
def router():
    return RecordingRouter()


@pytest.fixture
def seeded_client(store):
    """
    Stores the sample client under id ``1234`` and returns the id.

    Yields:
        str: The client id.
    """
    store.put("clients", "1234", dict(CLIENT_DOCUMENT))
    return "1234"


@pytest.fixture
def seeded_visit(store, seeded_client):
    """Stores a visit with every request set for the seeded client and returns its id."""
    visit = dict(ALL_REQUESTS_VISIT)
    visit["timestamp"] = datetime.datetime(2024, 3, 1, 15, 30, tzinfo=datetime.timezone.utc)
    store.put(visits_collection(seeded_client), "abcd", visit)
    return "abcd"
