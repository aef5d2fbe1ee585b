"""Domain entities: answers, their elements, and broker events."""

from __future__ import annotations

import base64
import json
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

NIL_UUID = uuid.UUID(int=0)
_ZERO_TIME = "0001-01-01T00:00:00Z"
_FRACTION = re.compile(r"\.(\d+)")


class ValidationError(ValueError):
    """Raised when an entity fails validation."""


def _format_time(value: datetime | None) -> str:
    if value is None:
        return _ZERO_TIME
    text = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    if value.microsecond:
        text += "." + f"{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset()
    if offset is None:
        return text
    if offset == timedelta(0):
        return text + "Z"
    minutes = int(offset.total_seconds()) // 60
    sign = "+" if minutes >= 0 else "-"
    hours, mins = divmod(abs(minutes), 60)
    return f"{text}{sign}{hours:02d}:{mins:02d}"


def _parse_time(value: Any) -> datetime | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"invalid time value: {value!r}")
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValueError(f"invalid time value: {value!r}") from exc


def _parse_uuid(value: Any, name: str) -> uuid.UUID:
    if value is None:
        return NIL_UUID
    if not isinstance(value, str):
        raise ValueError(f"invalid {name}: {value!r}")
    try:
        return uuid.UUID(value)
    except ValueError as exc:
        raise ValueError(f"invalid {name}: {value!r}") from exc


def _parse_uint(value: Any, name: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"invalid {name}: {value!r}")
    return value


@dataclass
class Element:
    """One answered question inside an answer."""

    answer_id: uuid.UUID = NIL_UUID
    question_order_number: int = 0
    content: str = ""
    id: int = 0

    def validate(self) -> None:
        """Raise ValidationError if the element is not usable."""
        if self.answer_id == NIL_UUID:
            raise ValidationError("invalid answer ID")
        if not self.content:
            raise ValidationError("element content cannot be empty")

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready form of the element."""
        return {
            "ID": self.id,
            "answer_id": str(self.answer_id),
            "question_order_number": self.question_order_number,
            "content": self.content,
        }


def _element_from_dict(data: Any) -> Element:
    if not isinstance(data, dict):
        raise ValueError(f"invalid element: {data!r}")
    content = data.get("content", "")
    if content is None:
        content = ""
    if not isinstance(content, str):
        raise ValueError(f"invalid content: {content!r}")
    return Element(
        answer_id=_parse_uuid(data.get("answer_id"), "answer_id"),
        question_order_number=_parse_uint(
            data.get("question_order_number"), "question_order_number"
        ),
        content=content,
        id=_parse_uint(data.get("ID"), "ID"),
    )


@dataclass
class Answer:
    """A user's answer to a form, made of elements."""

    id: uuid.UUID = NIL_UUID
    form_id: uuid.UUID = NIL_UUID
    user_id: uuid.UUID = NIL_UUID
    is_complete: bool = False
    elements: list[Element] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def ensure_id(self) -> uuid.UUID:
        """Give the answer a fresh random ID if it has none; return the ID."""
        if self.id == NIL_UUID:
            self.id = uuid.uuid4()
        return self.id

    def element_by_question_order(self, order_number: int) -> Element | None:
        """Return the first element for the given question, or None."""
        return next(
            (e for e in self.elements if e.question_order_number == order_number),
            None,
        )

    def add_element(self, question_order: int, content: str) -> Element:
        """Append a new element bound to this answer and return it."""
        element = Element(
            answer_id=self.id,
            question_order_number=question_order,
            content=content,
        )
        self.elements.append(element)
        return element

    def mark_complete(self) -> None:
        self.is_complete = True

    def is_answer_complete(self) -> bool:
        """True when marked complete and holding at least one element."""
        return self.is_complete and bool(self.elements)

    def elements_count(self) -> int:
        return len(self.elements)

    def validate(self) -> None:
        """Raise ValidationError if the form or user ID is missing."""
        if self.form_id == NIL_UUID:
            raise ValidationError("invalid form ID")
        if self.user_id == NIL_UUID:
            raise ValidationError("invalid user ID")

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready form of the answer."""
        return {
            "id": str(self.id),
            "created_at": _format_time(self.created_at),
            "updated_at": _format_time(self.updated_at),
            "form_id": str(self.form_id),
            "user_id": str(self.user_id),
            "is_complete": self.is_complete,
            "elements": [element.to_dict() for element in self.elements],
        }

    @classmethod
    def from_dict(cls, data: Any) -> Answer:
        """Build an answer from decoded JSON; raise ValueError on bad data."""
        if not isinstance(data, dict):
            raise ValueError(f"invalid answer: {data!r}")
        is_complete = data.get("is_complete", False)
        if is_complete is None:
            is_complete = False
        if not isinstance(is_complete, bool):
            raise ValueError(f"invalid is_complete: {is_complete!r}")
        elements = data.get("elements") or []
        if not isinstance(elements, list):
            raise ValueError(f"invalid elements: {elements!r}")
        return cls(
            id=_parse_uuid(data.get("id"), "id"),
            form_id=_parse_uuid(data.get("form_id"), "form_id"),
            user_id=_parse_uuid(data.get("user_id"), "user_id"),
            is_complete=is_complete,
            elements=[_element_from_dict(item) for item in elements],
            created_at=_parse_time(data.get("created_at")),
            updated_at=_parse_time(data.get("updated_at")),
        )


@dataclass
class Event:
    """A message exchanged over the broker."""

    id: str = ""
    payload: bytes | None = None
    type: str = ""
    timestamp: datetime | None = None

    def validate(self) -> None:
        """Raise ValidationError if a required field is missing."""
        if not self.id:
            raise ValidationError("event_id is nil")
        if self.payload is None:
            raise ValidationError("payload is nil")
        if not self.type:
            raise ValidationError("type is nil")

    def to_json(self) -> str:
        """Encode the event; the payload is carried as base64."""
        payload = (
            None
            if self.payload is None
            else base64.b64encode(self.payload).decode("ascii")
        )
        return json.dumps(
            {
                "id": self.id,
                "payload": payload,
                "type": self.type,
                "timestamp": _format_time(self.timestamp),
            },
            separators=(",", ":"),
        )

    @classmethod
    def from_json(cls, data: str | bytes) -> Event:
        """Decode an event; raise ValueError on malformed input."""
        decoded = json.loads(data)
        if not isinstance(decoded, dict):
            raise ValueError("event must be a JSON object")
        event_id = decoded.get("id") or ""
        event_type = decoded.get("type") or ""
        if not isinstance(event_id, str) or not isinstance(event_type, str):
            raise ValueError("event id and type must be strings")
        raw_payload = decoded.get("payload")
        if raw_payload is None:
            payload = None
        elif isinstance(raw_payload, str):
            payload = base64.b64decode(raw_payload, validate=True)
        else:
            raise ValueError(f"invalid payload: {raw_payload!r}")
        return cls(
            id=event_id,
            payload=payload,
            type=event_type,
            timestamp=_parse_time(decoded.get("timestamp")),
        )


def new_event(event_type: str, payload: bytes | None) -> Event:
    """Create an event with a random ID stamped with the current local time."""
    return Event(
        id=str(uuid.uuid4()),
        payload=payload,
        type=event_type,
        timestamp=datetime.now().astimezone(),
    )