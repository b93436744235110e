"""
Unit tests for the ClientLog application.

These tests focus on individual functions and classes in isolation: the data models
and their display helpers, the search filter builder, route resolution, the local
document store, the staff account provider and the configuration loader.
"""
import datetime

import pytest
from google.auth.credentials import AnonymousCredentials
from google.cloud import firestore

from clientlog import encryption as encryption_module
from clientlog.auth import LocalAccountProvider, UserInfo
from clientlog.config import AppConfig, load_config
from clientlog.models import (
    Client,
    Visit,
    banned_label,
    checked_in_label,
    format_birthday,
    format_visit_timestamp,
    truncate_notes,
    visit_request_lines,
    visit_request_summary,
)
from clientlog.routing import resolve_route
from clientlog.service import build_search_filter
from clientlog.errors import StoreError
from clientlog.store import Filter, FirestoreDocumentStore, LocalDocumentStore, prefix_filters

from conftest import ALL_REQUESTS_VISIT, CLIENT_DOCUMENT, NO_REQUESTS_VISIT

STRONG_PASSWORD = "V4lid!Pass"


# Models
def test_client_from_document_defaults_missing_fields():
    """
    Verifies that a client built from an empty document gets every default.

    Strings default to empty, counts to 0, flags to False and birthday to today.
    """
    client = Client.from_document("abc", {})
    assert client.id == "abc"
    assert client.first_name == ""
    assert client.last_name_lower == ""
    assert client.birthday == datetime.date.today().isoformat()
    assert client.num_kids == 0
    assert client.is_checked_in is False
    assert client.is_banned is False


def test_client_from_document_coerces_bad_values():
    client = Client.from_document("abc", {"numKids": "-3", "isBanned": "yes", "firstName": None})
    assert client.num_kids == 0
    assert client.is_banned is False
    assert client.first_name == ""


def test_client_document_keys_match_schema():
    client = Client.from_document("1234", CLIENT_DOCUMENT)
    assert client.to_document() == CLIENT_DOCUMENT


def test_with_names_keeps_lowercase_mirrors():
    client = Client().with_names("Jane", "McDonald")
    assert client.first_name_lower == "jane"
    assert client.last_name_lower == "mcdonald"
    assert client.full_name == "Jane McDonald"


def test_display_name_includes_middle_initial():
    client = Client.from_document("1234", CLIENT_DOCUMENT)
    assert client.display_name == "testFirst t testLast"


def test_has_name_requires_first_or_last_name():
    assert not Client().has_name
    assert Client(first_name="Jane").has_name
    assert Client(last_name="Doe").has_name


@pytest.mark.parametrize("timestamp, expected", [
    ({"seconds": 42}, 42),
    (datetime.datetime(1970, 1, 1, 0, 1, tzinfo=datetime.timezone.utc), 60),
    (1700000000, 1700000000),
    (None, 0),
])
def test_visit_timestamp_shapes(timestamp, expected):
    """Verifies that every timestamp shape a store can return becomes epoch seconds."""
    assert Visit.from_document("v", {"timestamp": timestamp}).timestamp == expected


def test_visit_to_document_writes_datetime_and_all_requests():
    visit = Visit.from_document("v", ALL_REQUESTS_VISIT)
    document = visit.to_document()
    assert document["timestamp"] == datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)
    assert document["clothingGirl"] is True
    assert document["financialAssistance"] == 4
    assert document["household"] == "household item text"


def test_status_labels():
    assert checked_in_label(True) == "Checked in"
    assert checked_in_label(False) == "Not Checked In"
    assert banned_label(True) == "Banned"
    assert banned_label(False) == "Not Banned"


def test_truncate_notes_adds_ellipsis_only_when_longer():
    assert truncate_notes("a" * 128) == "a" * 128
    assert truncate_notes("a" * 129) == "a" * 128 + "..."
    assert truncate_notes("") == ""


def test_format_birthday():
    assert format_birthday("1990-05-17") == "May 17, 1990"
    assert format_birthday("not a date") == "not a date"


def test_format_visit_timestamp_matches_local_clock():
    moment = datetime.datetime.fromtimestamp(0, tz=datetime.timezone.utc).astimezone()
    expected = f"{moment:%a %b %d %Y} - {moment:%H:%M:%S} GMT{moment:%z} ({moment.tzname()})"
    assert format_visit_timestamp(0) == expected


def test_visit_request_lines_all_requests():
    lines = visit_request_lines(Visit.from_document("v", ALL_REQUESTS_VISIT))
    assert lines == [
        "Men",
        "Women",
        "Kids (boy)",
        "Kids (girl)",
        "Backpack",
        "Sleeping Bag",
        "Bus Tickets: 1",
        "Gift Card: 2",
        "Diapers: 3",
        "Financial Assistance: 4",
        "household item text",
        "notes text",
    ]


def test_visit_request_lines_no_requests():
    visit = Visit.from_document("v", NO_REQUESTS_VISIT)
    assert visit_request_lines(visit) == []
    assert visit_request_summary(visit) == "No requests"


def test_visit_request_summary_lists_flags_and_counts():
    visit = Visit.from_document("v", {"backpack": True, "giftCard": 2, "notes": "ignored"})
    assert visit_request_summary(visit) == "Backpack, Gift Card: 2"


# Search filter
def test_build_search_filter_first_name_only():
    assert build_search_filter(first_name="Jane") == {"firstNameLower": "jane"}


def test_build_search_filter_with_birthday():
    result = build_search_filter(first_name="Jane", birthday="2024-01-01", filter_by_birthday=True)
    assert result == {"firstNameLower": "jane", "birthday": "2024-01-01", "filterByBirthday": True}


def test_build_search_filter_ignores_birthday_when_disabled():
    assert build_search_filter(last_name="DOE", birthday="2024-01-01") == {"lastNameLower": "doe"}


def test_build_search_filter_empty():
    assert build_search_filter() == {}


# Routing
@pytest.mark.parametrize("path, expected", [
    ("/", ("home", {})),
    ("", ("home", {})),
    ("/add-client", ("add_client", {})),
    ("/profile/1234", ("profile", {"userId": "1234"})),
    ("/profile/1234/", ("profile", {"userId": "1234"})),
    ("/profile/1234/visit/abcd", ("visit", {"userId": "1234", "visitId": "abcd"})),
    ("/update/1234", ("update", {"userId": "1234"})),
    ("/checkin/1234", ("checkin", {"userId": "1234"})),
    ("/checkout/1234", ("checkout", {"userId": "1234"})),
    ("/nowhere/at/all", ("home", {})),
])
def test_resolve_route(path, expected):
    assert resolve_route(path) == expected


# Local document store
def test_store_get_missing_returns_none(store):
    assert store.get("clients", "missing") is None


def test_store_put_then_get_returns_copy(store):
    store.put("clients", "c1", {"firstName": "Ann"})
    document = store.get("clients", "c1")
    document.data["firstName"] = "Changed"
    assert store.get("clients", "c1").data == {"firstName": "Ann"}


def test_store_put_overwrites_whole_document(store):
    store.put("clients", "c1", {"firstName": "Ann", "notes": "old"})
    store.put("clients", "c1", {"firstName": "Ann"})
    assert store.get("clients", "c1").data == {"firstName": "Ann"}


def test_store_create_generates_unique_ids(store):
    first = store.create("clients", {"firstName": "A"})
    second = store.create("clients", {"firstName": "B"})
    assert first != second
    assert store.get("clients", second).data["firstName"] == "B"


def test_store_query_prefix_order_and_limit(store):
    for doc_id, name in [("1", "jane"), ("2", "janet"), ("3", "john"), ("4", "jan")]:
        store.put("clients", doc_id, {"firstNameLower": name})
    found = store.query("clients", prefix_filters("firstNameLower", "jan"), order_by="firstNameLower")
    assert [doc.data["firstNameLower"] for doc in found] == ["jan", "jane", "janet"]

    limited = store.query("clients", order_by="firstNameLower", descending=True, limit=2)
    assert [doc.id for doc in limited] == ["3", "2"]


def test_store_query_skips_documents_missing_the_field(store):
    store.put("clients", "1", {"birthday": "2000-01-01"})
    store.put("clients", "2", {})
    found = store.query("clients", [Filter("birthday", "==", "2000-01-01")])
    assert [doc.id for doc in found] == ["1"]


def test_filter_rejects_unknown_operator():
    with pytest.raises(ValueError):
        Filter("birthday", "in", ["2000-01-01"])


def test_store_recovers_from_unreadable_file(data_file, encryptor):
    data_file.write_text("not encrypted", encoding="utf-8")
    store = LocalDocumentStore(data_file, encryptor)
    assert store.query("clients") == []


def test_load_encryptor_creates_key_once(tmp_path):
    key_path = tmp_path / "keys" / "secret.key"
    first = encryption_module.load_encryptor(key_path)
    assert key_path.exists()
    token = first.encrypt(b"payload")
    second = encryption_module.load_encryptor(key_path)
    assert second.decrypt(token) == b"payload"


# Staff accounts
def test_strong_password_rules():
    check = LocalAccountProvider._is_strong_password
    assert not check("short1!")
    assert not check("alllowercase1!")
    assert not check("ALLUPPERCASE1!")
    assert not check("NoDigits!!")
    assert not check("NoSpecial1")
    assert check(STRONG_PASSWORD)


def test_register_rejects_weak_and_duplicate(store):
    provider = LocalAccountProvider(store)
    assert provider.register("staff", "weak") == "weak_password"
    assert provider.register("staff", STRONG_PASSWORD, "Front Desk") is True
    assert provider.register("staff", STRONG_PASSWORD) is False
    stored = store.get("staff", "staff").data
    assert stored["passwordHash"] != STRONG_PASSWORD
    assert stored["salt"]


def test_sign_in_and_auth_state_listeners(store):
    """
    Verifies the auth-state subscription contract.

    Listeners are called immediately with the current user, again on sign-in and
    sign-out, and no longer after unsubscribing.
    """
    provider = LocalAccountProvider(store)
    provider.register("staff", STRONG_PASSWORD, "Front Desk")
    seen = []
    unsubscribe = provider.on_auth_state_changed(seen.append)
    assert seen == [None]

    assert provider.sign_in("staff", "Wr0ng!Pass") is None
    user = provider.sign_in("staff", STRONG_PASSWORD)
    assert user == UserInfo(uid="staff", display_name="Front Desk")
    assert provider.current_user() == user

    provider.sign_out()
    assert seen == [None, user, None]

    unsubscribe()
    provider.sign_in("staff", STRONG_PASSWORD)
    assert seen == [None, user, None]


def test_sign_in_unknown_user(store):
    assert LocalAccountProvider(store).sign_in("ghost", STRONG_PASSWORD) is None


def test_later_accounts_wait_for_approval(store):
    """
    Verifies that only the first staff account can sign in without approval.

    A later account is stored as pending, refused at sign-in, and can sign in once a
    signed-in staff member approves it.
    """
    provider = LocalAccountProvider(store)
    assert provider.register("founder", STRONG_PASSWORD, "Founder") is True
    assert provider.register("stranger", STRONG_PASSWORD, "Stranger") == 'pending'
    assert store.get("staff", "stranger").data["status"] == 'pending'

    assert provider.sign_in("stranger", STRONG_PASSWORD) == 'pending'
    assert provider.current_user() is None
    assert provider.sign_in("stranger", "Wr0ng!Pass") is None

    # Approval needs a signed-in staff member.
    assert provider.approve("stranger") is False
    provider.sign_in("founder", STRONG_PASSWORD)
    assert provider.pending_accounts() == [{"username": "stranger", "displayName": "Stranger"}]
    assert provider.approve("stranger") is True
    assert provider.approve("stranger") is False
    assert provider.pending_accounts() == []

    provider.sign_out()
    assert provider.sign_in("stranger", STRONG_PASSWORD) == UserInfo(uid="stranger", display_name="Stranger")


@pytest.mark.parametrize("username", ["a/b", "/", "__staff__", ".", ".."])
def test_usernames_that_cannot_be_document_ids_are_rejected(store, username):
    provider = LocalAccountProvider(store)
    assert provider.register(username, STRONG_PASSWORD) == 'invalid_username'
    assert provider.sign_in(username, STRONG_PASSWORD) is None
    assert store.query("staff") == []


def test_firestore_store_reports_malformed_paths_as_store_errors():
    client = firestore.Client(project="clientlog-test", credentials=AnonymousCredentials())
    store = FirestoreDocumentStore(client)
    with pytest.raises(StoreError):
        store.get("staff", "a/b")
    with pytest.raises(StoreError):
        store.put("staff", "a/b", {"username": "a/b"})


# Configuration
def test_load_config_defaults():
    assert load_config(environ={}, secrets={}) == AppConfig()


def test_load_config_reads_environment_and_secrets_override():
    config = load_config(
        environ={
            "CLIENTLOG_STORE_BACKEND": "Firestore",
            "CLIENTLOG_SEARCH_LIMIT": "25",
            "CLIENTLOG_ORG_NAME": "From Env",
        },
        secrets={"CLIENTLOG_ORG_NAME": "From Secrets", "CLIENTLOG_AUTH_PROVIDER": "oidc"},
    )
    assert config.uses_firestore
    assert config.search_limit == 25
    assert config.org_name == "From Secrets"
    assert config.auth_provider == "oidc"


def test_load_config_falls_back_on_invalid_values():
    config = load_config(
        environ={
            "CLIENTLOG_STORE_BACKEND": "mongo",
            "CLIENTLOG_SEARCH_LIMIT": "lots",
            "CLIENTLOG_VISIT_HISTORY_LIMIT": "-1",
            "CLIENTLOG_AUTH_PROVIDER": "ldap",
        },
        secrets={},
    )
    assert config.store_backend == "local"
    assert config.search_limit == 50
    assert config.visit_history_limit == 10
    assert config.auth_provider == "local"
