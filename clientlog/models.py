"""
This module defines the data models for the ClientLog application.

`Client` and `Visit` are typed views of the documents held in the store. Documents
may be missing any field, so all defaulting happens here, in `from_document`, and the
rest of the application can rely on every attribute being present. The label tables
and display helpers at the bottom are the single place where request and status
labels are spelled.
"""
# clientlog/models.py

from __future__ import annotations

import datetime
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional

NOTES_PREVIEW_LENGTH = 128

# Visit request flags and counts, in display order.
REQUEST_FLAG_LABELS = [
    ("clothingMen", "Men"),
    ("clothingWomen", "Women"),
    ("clothingBoy", "Kids (boy)"),
    ("clothingGirl", "Kids (girl)"),
    ("backpack", "Backpack"),
    ("sleepingBag", "Sleeping Bag"),
]
REQUEST_COUNT_LABELS = [
    ("busTicket", "Bus Tickets"),
    ("giftCard", "Gift Card"),
    ("diaper", "Diapers"),
    ("financialAssistance", "Financial Assistance"),
]


def today_iso() -> str:
    return datetime.date.today().isoformat()


def _as_str(value) -> str:
    return value if isinstance(value, str) else ""


def _as_bool(value) -> bool:
    return value is True


def _as_count(value) -> int:
    if isinstance(value, bool):
        return 0
    try:
        number = int(value)
    except (TypeError, ValueError):
        return 0
    return max(number, 0)


def _as_epoch_seconds(value) -> int:
    """Normalizes the timestamp shapes the stores hand back to whole seconds."""
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        return int(value.timestamp())
    if isinstance(value, Mapping):
        value = value.get("seconds")
    if isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


@dataclass
class Client:
    """A person tracked by the organisation for service intake.

    Attributes:
        id (str | None): The store key, None until the client is saved.
        first_name (str): Given name as typed.
        last_name (str): Family name as typed.
        first_name_lower (str): Lower-cased mirror of `first_name`, used for prefix search.
        last_name_lower (str): Lower-cased mirror of `last_name`, used for prefix search.
        middle_initial (str): Middle initial.
        birthday (str): Birthday as an ISO date string.
        gender (str): Self-described gender.
        race (str): Self-described race.
        postal_code (str): Postal code.
        num_kids (int): Number of children, never negative.
        notes (str): Free-text staff notes.
        is_checked_in (bool): True while the client is on site.
        is_banned (bool): True when the client is banned.
    """
    id: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    first_name_lower: str = ""
    last_name_lower: str = ""
    middle_initial: str = ""
    birthday: str = field(default_factory=today_iso)
    gender: str = ""
    race: str = ""
    postal_code: str = ""
    num_kids: int = 0
    notes: str = ""
    is_checked_in: bool = False
    is_banned: bool = False

    @classmethod
    def from_document(cls, doc_id: Optional[str], data: Optional[Mapping[str, Any]]) -> "Client":
        """Builds a client from a raw document, defaulting every absent field."""
        data = data or {}
        return cls(
            id=doc_id,
            first_name=_as_str(data.get("firstName")),
            last_name=_as_str(data.get("lastName")),
            first_name_lower=_as_str(data.get("firstNameLower")),
            last_name_lower=_as_str(data.get("lastNameLower")),
            middle_initial=_as_str(data.get("middleInitial")),
            birthday=_as_str(data.get("birthday")) or today_iso(),
            gender=_as_str(data.get("gender")),
            race=_as_str(data.get("race")),
            postal_code=_as_str(data.get("postalCode")),
            num_kids=_as_count(data.get("numKids")),
            notes=_as_str(data.get("notes")),
            is_checked_in=_as_bool(data.get("isCheckedIn")),
            is_banned=_as_bool(data.get("isBanned")),
        )

    def to_document(self) -> Dict[str, Any]:
        """Returns the stored representation; the id is the document key, not a field."""
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "firstNameLower": self.first_name_lower,
            "lastNameLower": self.last_name_lower,
            "middleInitial": self.middle_initial,
            "birthday": self.birthday,
            "gender": self.gender,
            "race": self.race,
            "postalCode": self.postal_code,
            "numKids": self.num_kids,
            "notes": self.notes,
            "isCheckedIn": self.is_checked_in,
            "isBanned": self.is_banned,
        }

    def with_names(self, first_name: str, last_name: str) -> "Client":
        """Returns a copy with new names and their lower-cased search mirrors."""
        return replace(
            self,
            first_name=first_name,
            last_name=last_name,
            first_name_lower=first_name.lower(),
            last_name_lower=last_name.lower(),
        )

    @property
    def has_name(self) -> bool:
        return self.first_name != "" or self.last_name != ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def display_name(self) -> str:
        """Name with middle initial, as shown on the profile heading."""
        return f"{self.first_name} {self.middle_initial} {self.last_name}"


@dataclass
class Visit:
    """A single check-in event and the requests made during it.

    Attributes:
        id (str | None): The store key.
        timestamp (int): Seconds since the epoch when the visit was recorded.
        household (str): Household items requested.
        notes (str): Free-text notes about the visit.
        flags (dict): Request flag name to bool, keyed as in `REQUEST_FLAG_LABELS`.
        counts (dict): Request count name to int, keyed as in `REQUEST_COUNT_LABELS`.
    """
    id: Optional[str] = None
    timestamp: int = 0
    household: str = ""
    notes: str = ""
    flags: Dict[str, bool] = field(default_factory=lambda: {name: False for name, _ in REQUEST_FLAG_LABELS})
    counts: Dict[str, int] = field(default_factory=lambda: {name: 0 for name, _ in REQUEST_COUNT_LABELS})

    @classmethod
    def from_document(cls, doc_id: Optional[str], data: Optional[Mapping[str, Any]]) -> "Visit":
        data = data or {}
        return cls(
            id=doc_id,
            timestamp=_as_epoch_seconds(data.get("timestamp")),
            household=_as_str(data.get("household")),
            notes=_as_str(data.get("notes")),
            flags={name: _as_bool(data.get(name)) for name, _ in REQUEST_FLAG_LABELS},
            counts={name: _as_count(data.get(name)) for name, _ in REQUEST_COUNT_LABELS},
        )

    def to_document(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {
            "timestamp": datetime.datetime.fromtimestamp(self.timestamp, tz=datetime.timezone.utc),
            "household": self.household,
            "notes": self.notes,
        }
        for name, _ in REQUEST_FLAG_LABELS:
            document[name] = bool(self.flags.get(name, False))
        for name, _ in REQUEST_COUNT_LABELS:
            document[name] = _as_count(self.counts.get(name, 0))
        return document


# Display helpers
def checked_in_label(is_checked_in: bool) -> str:
    return "Checked in" if is_checked_in else "Not Checked In"


def banned_label(is_banned: bool) -> str:
    return "Banned" if is_banned else "Not Banned"


def truncate_notes(notes: str, length: int = NOTES_PREVIEW_LENGTH) -> str:
    """Shortens notes for client cards, marking the cut with an ellipsis."""
    if len(notes) <= length:
        return notes
    return notes[:length] + "..."


def format_birthday(birthday: str) -> str:
    """Formats an ISO birthday like "January 05, 1990"; unparseable values pass through."""
    try:
        return datetime.date.fromisoformat(birthday).strftime("%B %d, %Y")
    except (TypeError, ValueError):
        return birthday


def format_visit_timestamp(seconds: int) -> str:
    """Formats a visit time as "<date> - <time>" in the server's local timezone.

    For example "Thu Jan 01 1970 - 00:00:00 GMT+0000 (UTC)".
    """
    moment = datetime.datetime.fromtimestamp(seconds, tz=datetime.timezone.utc).astimezone()
    date_part = moment.strftime("%a %b %d %Y")
    time_part = f"{moment:%H:%M:%S} GMT{moment:%z} ({moment.tzname()})"
    return f"{date_part} - {time_part}"


def visit_request_lines(visit: Visit) -> List[str]:
    """Lists what was requested during a visit.

    Flags contribute their label when set, counts contribute "<Label>: <count>" when
    nonzero, and household and notes contribute their text when non-empty.
    """
    lines = [label for name, label in REQUEST_FLAG_LABELS if visit.flags.get(name)]
    lines.extend(f"{label}: {visit.counts[name]}" for name, label in REQUEST_COUNT_LABELS if visit.counts.get(name))
    if visit.household:
        lines.append(visit.household)
    if visit.notes:
        lines.append(visit.notes)
    return lines


def visit_request_summary(visit: Visit) -> str:
    """One-line summary of the flag and count requests, used in visit history rows."""
    parts = [label for name, label in REQUEST_FLAG_LABELS if visit.flags.get(name)]
    parts.extend(f"{label}: {visit.counts[name]}" for name, label in REQUEST_COUNT_LABELS if visit.counts.get(name))
    return ", ".join(parts) if parts else "No requests"
