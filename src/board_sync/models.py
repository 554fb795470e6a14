"""Data models shared by the reconciliation stages.

Snapshots arrive from the service adapters in their transport form (decoded
JSON: lists of dicts, or a raw JSON string). The decode_* helpers turn them
into immutable dataclasses; anything that cannot be decoded raises
SnapshotDecodeError so the consuming stage can be abandoned as a whole.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


class FieldTypeError(TypeError):
    """A record field holds a value of the wrong type."""

    def __init__(self, field_name: str, expected: str, value: Any):
        self.field = field_name
        self.expected = expected
        self.value = value
        super().__init__(
            f"Field '{field_name}' expected {expected}, got {type(value).__name__}: {value!r}"
        )


class SnapshotDecodeError(ValueError):
    """A fetched snapshot could not be decoded from its transport form."""
    pass


class ResponseStatus(Enum):
    """Attendee response status as reported by the calendar service."""
    NEEDS_ACTION = "needsAction"
    DECLINED = "declined"
    TENTATIVE = "tentative"
    ACCEPTED = "accepted"


@dataclass(frozen=True)
class BoardCard:
    """Snapshot of a card on the board."""

    id: str
    name: str
    desc: str = ""
    url: str = ""
    list_name: str = ""
    labels: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BoardCard":
        """Create from the board service's card representation."""
        card_list = data.get("list") or {}
        labels = tuple(
            (label.get("name") or "") for label in (data.get("labels") or [])
        )
        return cls(
            id=_require_str(data, "id"),
            name=data.get("name") or "",
            desc=data.get("desc") or "",
            url=data.get("url") or "",
            list_name=card_list.get("name") or "",
            labels=labels,
        )


# Field names used by the records table
NAME = "Name"
TAGS = "Tags"
SUMMARY = "Summary"
PROJECT = "Project"
LINK = "Link"
EXTERNAL_ID = "ExternalID"
CREATED_AT = "CreatedAt"
CLOSED_AT = "ClosedAt"

_TEXT_FIELDS = {
    NAME: "name",
    SUMMARY: "summary",
    PROJECT: "project",
    LINK: "link",
    EXTERNAL_ID: "external_id",
    CREATED_AT: "created_at",
    CLOSED_AT: "closed_at",
}


@dataclass(frozen=True)
class DatabaseRecord:
    """A row in the records table.

    Every field is optional; the table may hold rows written by hand. Fields
    the job does not know about are carried in `extra_fields` unchanged.
    """

    name: Optional[str] = None
    tags: Tuple[str, ...] = ()
    summary: Optional[str] = None
    project: Optional[str] = None
    link: Optional[str] = None
    external_id: Optional[str] = None
    created_at: Optional[str] = None
    closed_at: Optional[str] = None
    record_id: Optional[str] = None
    extra_fields: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_fields(cls, fields: Mapping[str, Any], record_id: Optional[str] = None) -> "DatabaseRecord":
        """Convert a store field map into a typed record.

        Raises:
            FieldTypeError: If a known field holds a value of the wrong type
        """
        if not isinstance(fields, Mapping):
            raise FieldTypeError("fields", "mapping", fields)

        values: Dict[str, Any] = {}
        for field_name, attr in _TEXT_FIELDS.items():
            if field_name not in fields or fields[field_name] is None:
                continue
            value = fields[field_name]
            if not isinstance(value, str):
                raise FieldTypeError(field_name, "text", value)
            values[attr] = value

        tags = fields.get(TAGS)
        if tags is not None:
            if not isinstance(tags, (list, tuple)) or not all(isinstance(t, str) for t in tags):
                raise FieldTypeError(TAGS, "list of text", tags)
            values["tags"] = tuple(tags)

        extra = {k: v for k, v in fields.items() if k != TAGS and k not in _TEXT_FIELDS}
        return cls(record_id=record_id, extra_fields=extra, **values)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DatabaseRecord":
        """Create from the store's record representation ({"id", "fields"})."""
        return cls.from_fields(data.get("fields") or {}, record_id=data.get("id"))

    def to_fields(self) -> Dict[str, Any]:
        """Convert to the store's field map, omitting unset fields."""
        fields: Dict[str, Any] = dict(self.extra_fields)
        for field_name, attr in _TEXT_FIELDS.items():
            value = getattr(self, attr)
            if value is not None:
                fields[field_name] = value
        fields[TAGS] = list(self.tags)
        return fields

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the store's record representation."""
        data: Dict[str, Any] = {"fields": self.to_fields()}
        if self.record_id:
            data["id"] = self.record_id
        return data


@dataclass(frozen=True)
class Attendee:
    """A calendar event attendee."""

    email: str = ""
    is_self: bool = False
    response_status: str = ResponseStatus.NEEDS_ACTION.value

    @property
    def accepted(self) -> bool:
        return self.response_status == ResponseStatus.ACCEPTED.value


@dataclass(frozen=True)
class Creator:
    """The account that created a calendar event."""

    email: str = ""
    is_self: bool = False


@dataclass(frozen=True)
class CalendarEvent:
    """Snapshot of a calendar event.

    `start` is the raw RFC 3339 start time; it is None for all-day events and
    any event without a concrete start.
    """

    id: str
    summary: str = ""
    description: Optional[str] = None
    html_link: Optional[str] = None
    start: Optional[str] = None
    attendees: Tuple[Attendee, ...] = ()
    creator: Creator = field(default_factory=Creator)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CalendarEvent":
        """Create from the calendar service's event representation."""
        start = data.get("start") or {}
        attendees = tuple(
            Attendee(
                email=a.get("email") or "",
                is_self=a.get("self") is True,
                response_status=a.get("responseStatus") or ResponseStatus.NEEDS_ACTION.value,
            )
            for a in (data.get("attendees") or [])
        )
        creator_data = data.get("creator") or {}
        return cls(
            id=_require_str(data, "id"),
            summary=data.get("summary") or "",
            description=data.get("description") or None,
            html_link=data.get("htmlLink") or None,
            start=start.get("dateTime") or None,
            attendees=attendees,
            creator=Creator(
                email=creator_data.get("email") or "",
                is_self=creator_data.get("self") is True,
            ),
        )


@dataclass(frozen=True)
class CandidateCard:
    """A card to be created on the board."""

    name: str
    description: str
    list_name: str
    labels: Tuple[str, ...] = ()
    event_id: Optional[str] = None


def _require_str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise FieldTypeError(key, "non-empty text", value)
    return value


def _load(payload: Any, kind: str) -> Any:
    if isinstance(payload, (str, bytes)):
        try:
            return json.loads(payload)
        except ValueError as e:
            raise SnapshotDecodeError(f"{kind} snapshot is not valid JSON: {e}") from e
    return payload


def _decode_list(payload: Any, kind: str, factory) -> list:
    items = _load(payload, kind)
    if not isinstance(items, list):
        raise SnapshotDecodeError(f"{kind} snapshot must be a list, got {type(items).__name__}")
    try:
        return [factory(item) for item in items]
    except (AttributeError, TypeError, ValueError) as e:
        raise SnapshotDecodeError(f"Failed to decode {kind} snapshot: {e}") from e


def decode_cards(payload: Any) -> List[BoardCard]:
    """Decode a card snapshot.

    Raises:
        SnapshotDecodeError: If any card cannot be decoded
    """
    return _decode_list(payload, "card", BoardCard.from_dict)


def decode_records(payload: Any) -> List[DatabaseRecord]:
    """Decode a record snapshot.

    Raises:
        SnapshotDecodeError: If any record cannot be decoded
    """
    return _decode_list(payload, "record", DatabaseRecord.from_dict)


def decode_events(payload: Any) -> List[CalendarEvent]:
    """Decode an event snapshot.

    Raises:
        SnapshotDecodeError: If any event cannot be decoded
    """
    return _decode_list(payload, "event", CalendarEvent.from_dict)


def decode_write_result(payload: Any) -> List[DatabaseRecord]:
    """Decode the {"records": [...]} result of a record write.

    Raises:
        SnapshotDecodeError: If the result cannot be decoded
    """
    result = _load(payload, "write result")
    if not isinstance(result, Mapping):
        raise SnapshotDecodeError(
            f"write result must be a mapping, got {type(result).__name__}"
        )
    return _decode_list(result.get("records") or [], "write result", DatabaseRecord.from_dict)
