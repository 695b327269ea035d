"""Backchannel record models.

Plain data records returned by the backchannel API. Field names are snake_case
in Python and PascalCase on the wire::

    user = UserRecord.from_dict({"UserId": "abc", "IsManager": True})
    user.user_id      # 'abc'
    user.to_dict()    # {"UserId": "abc", "IsManager": True, ...}

Records carry no behavior beyond (de)serialization.
"""
from __future__ import annotations
import re
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar, Union

R = TypeVar("R", bound="_Record")

_FRACTION = re.compile(r"\.(\d+)")


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp as emitted by the identity server.

    Accepts a trailing ``Z`` and more than six fractional digits, which are
    truncated to microseconds.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    return datetime.fromisoformat(text)


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    """Render a timestamp as ISO-8601, using ``Z`` for UTC."""
    if value is None:
        return None
    text = value.isoformat()
    if value.tzinfo is not None and value.utcoffset() == timezone.utc.utcoffset(None):
        text = text[: -len("+00:00")] + "Z"
    return text


def _wire_name(attribute: str) -> str:
    return "".join(part.capitalize() for part in attribute.split("_"))


def wire_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    """Index a JSON object by lower-cased key.

    Servers may emit PascalCase or camelCase; lookups ignore case.
    """
    return {str(key).lower(): value for key, value in data.items()}


class _WireIntEnum(IntEnum):
    """Integer enum serialized by name (e.g. ``ReviewOnly``)."""

    @property
    def wire_name(self) -> str:
        return _wire_name(self.name.lower())

    @classmethod
    def parse(cls, value: Union[str, int, None]) -> Optional["_WireIntEnum"]:
        if value is None or value == "":
            return None
        if isinstance(value, cls):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(value)
        text = str(value).strip()
        if text.lstrip("-").isdigit():
            return cls(int(text))
        for member in cls:
            if text.lower() in (member.wire_name.lower(), member.name.lower()):
                return member
        raise ValueError(f"Invalid {cls.__name__}: {value!r}")


class UserType(_WireIntEnum):
    STANDARD = 1
    REVIEW_ONLY = 2
    SUPPORT = 3


class ApplicationSubscriptionLevel(_WireIntEnum):
    TRIAL = 0
    BASIC = 1
    ADVANCED = 2
    ENTERPRISE = 4
    SELF_HOSTED = 512


def _codec(decode: Callable[[Any], Any], encode: Callable[[Any], Any]) -> Dict[str, Any]:
    return {"decode": decode, "encode": encode}


_DATETIME = _codec(parse_datetime, format_datetime)


def _enum_codec(enum_cls: Type[_WireIntEnum]) -> Dict[str, Any]:
    return _codec(enum_cls.parse, lambda member: member.wire_name if member is not None else None)


class _Record:
    """Mixin mapping dataclass fields to PascalCase JSON keys.

    Fields may declare ``decode``/``encode`` callables in their metadata.
    Keys are matched regardless of case; keys missing from the payload keep
    the field default.
    """

    @classmethod
    def from_dict(cls: Type[R], data: Dict[str, Any]) -> R:
        if not isinstance(data, dict):
            raise TypeError(f"{cls.__name__} expects a JSON object, got {type(data).__name__}")
        values = wire_keys(data)
        kwargs = {}
        for f in fields(cls):
            key = f.name.replace("_", "")
            if key not in values:
                continue
            decode = f.metadata.get("decode")
            kwargs[f.name] = decode(values[key]) if decode else values[key]
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            encode = f.metadata.get("encode")
            result[_wire_name(f.name)] = encode(value) if encode else value
        return result


@dataclass
class OrganizationRecord(_Record):
    organization_id: int = 0
    name: Optional[str] = None
    parent_organization_id: Optional[int] = None
    parent_name: Optional[str] = None


@dataclass
class OrganizationUserRecord(_Record):
    """Association between a user and an organization."""
    user_id: Optional[str] = None
    organization_id: int = 0
    organization_name: Optional[str] = None
    parent_organization_id: Optional[int] = None
    parent_organization_name: Optional[str] = None
    organization_manager: bool = False
    email: Optional[str] = None
    profile_image: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


def _decode_organizations(items: Optional[List[Dict[str, Any]]]) -> List[OrganizationRecord]:
    return [OrganizationRecord.from_dict(item) for item in items or []]


def _encode_organizations(items: List[OrganizationRecord]) -> List[Dict[str, Any]]:
    return [item.to_dict() for item in items]


@dataclass
class UserRecord(_Record):
    """User as seen by one application subscription."""
    application_subscription_user_id: int = 0
    application_subscription_id: int = 0
    organizations: List[OrganizationRecord] = field(
        default_factory=list,
        metadata=_codec(_decode_organizations, _encode_organizations),
    )
    user_id: Optional[str] = None
    locked: bool = False
    user_type: Optional[UserType] = field(default=None, metadata=_enum_codec(UserType))
    named_seat: bool = False
    lock_expiration_date: Optional[datetime] = field(default=None, metadata=_DATETIME)
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    mobile: Optional[str] = None
    preferred_user_name: Optional[str] = None
    website: Optional[str] = None
    picture: Optional[str] = None
    created_date: Optional[datetime] = field(default=None, metadata=_DATETIME)
    last_login_date: Optional[datetime] = field(default=None, metadata=_DATETIME)
    locale: Optional[str] = None
    date_format: Optional[str] = None
    timezone_name: Optional[str] = None
    is_manager: bool = False
    is_admin: bool = False


@dataclass
class SubscriptionSeatRecord(_Record):
    """Seat summary of an application subscription."""
    domain_key: Optional[str] = None
    active: bool = False
    application_name: Optional[str] = None
    subscription_type: Optional[str] = None
    subscription_level: Optional[ApplicationSubscriptionLevel] = field(
        default=None, metadata=_enum_codec(ApplicationSubscriptionLevel)
    )
    organization_name: Optional[str] = None
    expiration_date: Optional[datetime] = field(default=None, metadata=_DATETIME)
    standard_user_named_seats: int = 0
    standard_user_concurrent_seats: int = 0
    review_only_user_named_seats: int = 0
    review_only_user_concurrent_seats: int = 0


@dataclass
class SubscriptionRecord(_Record):
    """Full subscription: the seat summary plus its data source settings.

    On the wire the seat summary fields sit at the top level of the same
    object; here they live in ``seats``.
    """
    seats: SubscriptionSeatRecord = field(default_factory=SubscriptionSeatRecord)
    data_source: Optional[str] = None
    database_name: Optional[str] = None
    database_user_id: Optional[str] = None
    database_password: Optional[str] = field(default=None, repr=False)
    extended_connection_string: Optional[str] = field(default=None, repr=False)
    settings: Dict[str, str] = field(default_factory=dict)

    @property
    def domain_key(self) -> Optional[str]:
        return self.seats.domain_key

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubscriptionRecord":
        if not isinstance(data, dict):
            raise TypeError(f"{cls.__name__} expects a JSON object, got {type(data).__name__}")
        values = wire_keys(data)
        return cls(
            seats=SubscriptionSeatRecord.from_dict(data),
            data_source=values.get("datasource"),
            database_name=values.get("databasename"),
            database_user_id=values.get("databaseuserid"),
            database_password=values.get("databasepassword"),
            extended_connection_string=values.get("extendedconnectionstring"),
            settings=dict(values.get("settings") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        result = self.seats.to_dict()
        result.update(
            {
                "DataSource": self.data_source,
                "DatabaseName": self.database_name,
                "DatabaseUserId": self.database_user_id,
                "DatabasePassword": self.database_password,
                "ExtendedConnectionString": self.extended_connection_string,
                "Settings": dict(self.settings),
            }
        )
        return result
