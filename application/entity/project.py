"""
Project entity.

Represents one solar installation project as returned by
``/api/v1/projects``. Only the fields the sync layer reads are modelled;
everything else rides along as extra fields.
"""

from enum import Enum
from typing import ClassVar, Optional

from pydantic import AliasChoices, Field

from application.entity.synced_entity import EntityType, SyncedEntity


class ProjectStatus(str, Enum):
    """Lifecycle status of a project."""

    PLANNING = "Planning"
    IN_PROGRESS = "InProgress"
    ON_HOLD = "OnHold"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class Project(SyncedEntity):
    """Project snapshot."""

    ENTITY_TYPE: ClassVar[EntityType] = EntityType.PROJECT
    STATUS_ENUM: ClassVar[type] = ProjectStatus
    UNKNOWN_NAME: ClassVar[str] = "Unknown Project"

    id: str = Field(
        ...,
        validation_alias=AliasChoices("projectId", "id"),
        serialization_alias="projectId",
        description="Immutable project identifier",
    )

    status: str = Field(
        ...,
        validation_alias=AliasChoices("status", "projectStatus"),
        serialization_alias="status",
        description="Current project status",
    )

    project_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("projectName", "project_name"),
        serialization_alias="projectName",
    )

    project_manager_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("projectManagerId", "project_manager_id"),
        serialization_alias="projectManagerId",
    )

    team: Optional[str] = Field(default=None, description="Assigned team")

    updated_at: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("updatedAt", "updated_at"),
        serialization_alias="updatedAt",
    )

    @property
    def display_name(self) -> str:
        return self.project_name or self.UNKNOWN_NAME
