"""
Base class for server-owned entities kept in the local store.

An entity is a full snapshot of the server's JSON for one object. Unknown
server fields are kept verbatim (``extra="allow"``) so that a snapshot can be
written back or merged without losing anything the client does not model.
"""

from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Type, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, field_validator

E = TypeVar("E", bound=Enum)


class EntityType(str, Enum):
    """Entity types handled by the sync layer."""

    PROJECT = "project"
    DAILY_REPORT = "daily_report"

    @classmethod
    def _missing_(cls, value: object):
        if isinstance(value, str):
            key = value.strip().lower().replace("-", "_").replace(" ", "_")
            if key in ("dailyreport", "daily_reports", "report"):
                key = "daily_report"
            if key == "projects":
                key = "project"
            for member in cls:
                if member.value == key:
                    return member
        return None


def _status_key(value: str) -> str:
    return "".join(ch for ch in value.lower() if ch.isalnum())


def parse_status(enum_cls: Type[E], value: Optional[str]) -> Optional[E]:
    """
    Match a server status string against a status enum, ignoring case,
    spaces and underscores. Returns None for unknown values.
    """
    if value is None:
        return None
    if isinstance(value, enum_cls):
        return value
    key = _status_key(str(value))
    for member in enum_cls:
        if _status_key(member.value) == key:
            return member
    return None


class SyncedEntity(BaseModel):
    """Full snapshot of one server-owned entity."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    ENTITY_TYPE: ClassVar[EntityType]
    STATUS_ENUM: ClassVar[Type[Enum]]
    UNKNOWN_NAME: ClassVar[str] = "Unknown"

    id: str
    status: str

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        return cls.normalize_status(value)

    @classmethod
    def normalize_status(cls, value: Any) -> Any:
        """Canonical enum value for known statuses; raw string otherwise."""
        if value is None:
            return value
        member = parse_status(cls.STATUS_ENUM, value)
        return member.value if member is not None else str(value)

    @property
    def display_name(self) -> str:
        return self.UNKNOWN_NAME

    def snapshot(self) -> Dict[str, Any]:
        """Serialize using the server's field names."""
        return self.model_dump(by_alias=True)

    @classmethod
    def canonicalize(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        """Rename alternate server field names to the serialization alias."""
        result = dict(data)
        for name, info in cls.model_fields.items():
            target = info.serialization_alias or info.alias or name
            choices = info.validation_alias
            if not isinstance(choices, AliasChoices):
                continue
            for choice in choices.choices:
                if isinstance(choice, str) and choice != target and choice in result:
                    result[target] = result.pop(choice)
        return result

    @classmethod
    def merge_snapshot(
        cls, base: Dict[str, Any], partial: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Overlay a partial server snapshot on a full one."""
        return {**cls.canonicalize(base), **cls.canonicalize(partial)}
