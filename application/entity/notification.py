"""Notifications derived from change events, ready for rendering."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from application.entity.change_event import UpdateType
from application.entity.synced_entity import EntityType


class NotificationType(str, Enum):
    ENTITY_CREATED = "ENTITY_CREATED"
    ENTITY_UPDATED = "ENTITY_UPDATED"
    ENTITY_DELETED = "ENTITY_DELETED"
    ENTITY_STATUS_CHANGED = "ENTITY_STATUS_CHANGED"

    @classmethod
    def for_update(cls, update_type: UpdateType) -> "NotificationType":
        return cls(f"ENTITY_{update_type.value.upper()}")


class Notification(BaseModel):
    """One entry of the bounded notification log."""

    type: NotificationType
    entity_type: EntityType
    entity_id: str
    entity_name: str
    updated_by: Optional[str] = None
    timestamp: datetime = Field(..., description="Server time of the change")
    changes: Dict[str, Any] = Field(default_factory=dict)
    received_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Local time the notification was created",
    )
