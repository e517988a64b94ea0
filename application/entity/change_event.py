"""
Change events reported by the server's update feeds.

One ChangeEvent is produced per item of a poll response and is consumed by
the notification reconciler, which either folds it into a notification or
drops it as a duplicate.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from application.entity.synced_entity import EntityType


class UpdateType(str, Enum):
    """Kind of change reported for an entity."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    STATUS_CHANGED = "status_changed"

    @classmethod
    def _missing_(cls, value: object):
        if isinstance(value, str):
            key = "".join(ch for ch in value.lower() if ch.isalpha())
            for member in cls:
                if member.value.replace("_", "") == key:
                    return member
        return None


class ChangeMetadata(BaseModel):
    """Who changed the entity and when."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    updated_by: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("updatedBy", "updated_by")
    )
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class ChangeEvent(BaseModel):
    """One entry of an updates feed."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    entity_id: str = Field(
        ...,
        validation_alias=AliasChoices(
            "entityId", "entity_id", "reportId", "id", "projectId"
        ),
    )
    entity_type: EntityType = Field(
        ..., validation_alias=AliasChoices("entityType", "entity_type")
    )
    update_type: UpdateType = Field(
        ..., validation_alias=AliasChoices("updateType", "update_type")
    )
    snapshot: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("snapshot", "data", "changes"),
        description="Partial snapshot of the entity's server fields",
    )
    metadata: ChangeMetadata

    @field_validator("entity_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @field_validator("snapshot", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return value if value is not None else {}

    @property
    def timestamp(self) -> datetime:
        return self.metadata.timestamp

    @property
    def dedup_key(self) -> str:
        """entityId + timestamp + updateType."""
        return (
            f"{self.entity_id}|{self.metadata.timestamp.astimezone(timezone.utc).isoformat()}"
            f"|{self.update_type.value}"
        )
