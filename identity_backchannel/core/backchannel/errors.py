"""Identity error model shared by the backchannel server and this client.

The wire shape is a JSON object::

    {
        "Messages": [
            {
                "ErrorCategory": "General",
                "ErrorType": "Warning",
                "Message": "not found",
                "PropertyName": "",
                "EventDate": "2024-01-01T00:00:00Z",
                "StackTrace": ""
            }
        ],
        "HasUnhandledException": false
    }

Server-side error bodies decode into :class:`ErrorResponse`, and the client
records its own failures (discovery, token exchange) with the same types.
"""
from __future__ import annotations
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .exceptions import ErrorModelDecodeError
from .models import format_datetime, parse_datetime, wire_keys


class _WireEnum(str, Enum):
    """String enum that decodes from its name (any case) or its ordinal."""

    @classmethod
    def parse(cls, value: Union[str, int, "_WireEnum", None], default: "_WireEnum") -> "_WireEnum":
        if value is None or value == "":
            return default
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise ValueError(f"Invalid {cls.__name__}: {value!r}")
        if isinstance(value, int):
            members = list(cls)
            if 0 <= value < len(members):
                return members[value]
            raise ValueError(f"Invalid {cls.__name__} ordinal: {value}")
        text = str(value).strip()
        if text.isdigit():
            return cls.parse(int(text), default)
        for member in cls:
            if member.value.lower() == text.lower():
                return member
        raise ValueError(f"Invalid {cls.__name__}: {value!r}")


class ErrorCategory(_WireEnum):
    GENERAL = "General"
    SECURITY = "Security"
    APPLICATION = "Application"
    SYSTEM = "System"


class ErrorType(_WireEnum):
    FATAL = "Fatal"
    CRITICAL = "Critical"
    WARNING = "Warning"
    VALIDATION = "Validation"


BLOCKING_ERROR_TYPES = frozenset({ErrorType.FATAL, ErrorType.CRITICAL})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ErrorEntry:
    """One reported problem.

    Attributes:
        message: Human-readable error text
        error_category: Area the error belongs to
        error_type: Severity of the error
        property_name: Name of the offending property, for validation errors
        event_date: When the error occurred (defaults to now, UTC)
        stack_trace: Optional stack text captured with the error
    """
    message: str = ""
    error_category: ErrorCategory = ErrorCategory.GENERAL
    error_type: ErrorType = ErrorType.WARNING
    property_name: str = ""
    event_date: Optional[datetime] = None
    stack_trace: str = ""

    def __post_init__(self) -> None:
        if self.event_date is None:
            self.event_date = _utcnow()

    @property
    def is_blocking(self) -> bool:
        return self.error_type in BLOCKING_ERROR_TYPES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ErrorCategory": self.error_category.value,
            "ErrorType": self.error_type.value,
            "Message": self.message,
            "PropertyName": self.property_name,
            "EventDate": format_datetime(self.event_date),
            "StackTrace": self.stack_trace,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ErrorEntry":
        values = wire_keys(data)
        return cls(
            message=values.get("message") or "",
            error_category=ErrorCategory.parse(values.get("errorcategory"), ErrorCategory.GENERAL),
            error_type=ErrorType.parse(values.get("errortype"), ErrorType.WARNING),
            property_name=values.get("propertyname") or "",
            event_date=parse_datetime(values.get("eventdate")),
            stack_trace=values.get("stacktrace") or "",
        )


@dataclass
class ErrorResponse:
    """Ordered collection of errors reported for one operation."""
    messages: List[ErrorEntry] = field(default_factory=list)
    has_unhandled_exception: bool = False

    @property
    def has_blocking_errors(self) -> bool:
        """True when any entry is fatal or critical, or an unhandled exception was flagged."""
        return self.has_unhandled_exception or any(entry.is_blocking for entry in self.messages)

    def add(
        self,
        message: str,
        error_category: ErrorCategory = ErrorCategory.GENERAL,
        error_type: ErrorType = ErrorType.WARNING,
        **kwargs: Any,
    ) -> ErrorEntry:
        """Append a new entry and return it."""
        entry = ErrorEntry(message=message, error_category=error_category, error_type=error_type, **kwargs)
        self.messages.append(entry)
        return entry

    def reset(self) -> None:
        """Clear all entries and the unhandled exception flag."""
        self.messages.clear()
        self.has_unhandled_exception = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "Messages": [entry.to_dict() for entry in self.messages],
            "HasUnhandledException": self.has_unhandled_exception,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ErrorResponse":
        """Decode an error model object; key names are matched regardless of case."""
        values = wire_keys(data)
        messages = values.get("messages") or []
        return cls(
            messages=[ErrorEntry.from_dict(item) for item in messages],
            has_unhandled_exception=bool(values.get("hasunhandledexception", False)),
        )

    @classmethod
    def from_json(cls, text: str) -> "ErrorResponse":
        """Decode an error body.

        Raises:
            ErrorModelDecodeError: If the text is not JSON or not an error model object
        """
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise ErrorModelDecodeError(f"Error body is not JSON: {exc}", text) from exc
        if not isinstance(data, dict) or not isinstance(wire_keys(data).get("messages", []), list):
            raise ErrorModelDecodeError("Error body is not an error model object", text)
        try:
            return cls.from_dict(data)
        except (AttributeError, TypeError, ValueError) as exc:
            raise ErrorModelDecodeError(f"Error body has invalid entries: {exc}", text) from exc
