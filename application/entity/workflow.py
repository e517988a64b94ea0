"""
Workflow snapshot and transition result types.

A WorkflowSnapshot is what a status picker renders: the current status, the
statuses it may move to, whether approval is involved, and the history of
committed transitions.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from application.entity.synced_entity import SyncedEntity
from common.exception.exceptions import SyncClientError


class StatusHistoryEntry(BaseModel):
    """One committed status change."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: str
    changed_at: datetime = Field(validation_alias=AliasChoices("changedAt", "changed_at"))
    changed_by: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("changedBy", "changed_by")
    )
    reason: Optional[str] = None
    duration_days: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("durationDays", "duration_days")
    )

    @field_validator("changed_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class WorkflowSnapshot(BaseModel):
    """Workflow state of a single entity."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    current_status: str = Field(
        validation_alias=AliasChoices("currentStatus", "current_status")
    )
    allowed_transitions: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("allowedTransitions", "allowed_transitions"),
    )
    requires_approval: bool = Field(
        default=False,
        validation_alias=AliasChoices("requiresApproval", "requires_approval"),
    )
    approval_level: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("approvalLevel", "approval_level")
    )
    status_history: List[StatusHistoryEntry] = Field(
        default_factory=list,
        validation_alias=AliasChoices("statusHistory", "status_history"),
    )


class TransitionFailure(str, Enum):
    """Why a transition request did not commit."""

    INVALID_TRANSITION = "invalid_transition"
    APPROVAL_REQUIRED = "approval_required"
    NETWORK_FAILURE = "network_failure"
    CONFLICTING_STATE = "conflicting_state"
    REJECTED = "rejected"


@dataclass
class TransitionResult:
    """Outcome of StatusWorkflowEngine.request_transition."""

    entity_id: str
    from_status: Optional[str]
    to_status: str
    success: bool
    failure: Optional[TransitionFailure] = None
    error: Optional[SyncClientError] = None
    entity: Optional[SyncedEntity] = None
    requires_approval: bool = False
    approval_level: Optional[str] = None

    @property
    def retryable(self) -> bool:
        """True when the caller may retry as-is (network failures only)."""
        return self.failure == TransitionFailure.NETWORK_FAILURE
