"""
Application entities package.

Contains the domain entities and value types of the sync layer.
"""

from typing import Dict, Type

from application.entity.bulk_operation import (
    AssignManagerOperation,
    BulkOperation,
    BulkOperationFailure,
    BulkOperationResult,
    BulkOperationSummary,
    DeleteOperation,
    UpdateStatusOperation,
    UpdateTeamOperation,
    parse_bulk_operation,
)
from application.entity.change_event import ChangeEvent, ChangeMetadata, UpdateType
from application.entity.daily_report import DailyReport, DailyReportStatus
from application.entity.notification import Notification, NotificationType
from application.entity.project import Project, ProjectStatus
from application.entity.synced_entity import EntityType, SyncedEntity, parse_status
from application.entity.workflow import (
    StatusHistoryEntry,
    TransitionFailure,
    TransitionResult,
    WorkflowSnapshot,
)
from common.exception.exceptions import ConfigurationError

ENTITY_CLASSES: Dict[EntityType, Type[SyncedEntity]] = {
    EntityType.PROJECT: Project,
    EntityType.DAILY_REPORT: DailyReport,
}


def entity_class_for(entity_type: EntityType) -> Type[SyncedEntity]:
    """Entity model class for an entity type."""
    try:
        return ENTITY_CLASSES[entity_type]
    except KeyError:
        raise ConfigurationError(f"No entity class registered for {entity_type!r}")


__all__ = [
    "AssignManagerOperation",
    "BulkOperation",
    "BulkOperationFailure",
    "BulkOperationResult",
    "BulkOperationSummary",
    "ChangeEvent",
    "ChangeMetadata",
    "DailyReport",
    "DailyReportStatus",
    "DeleteOperation",
    "ENTITY_CLASSES",
    "EntityType",
    "Notification",
    "NotificationType",
    "Project",
    "ProjectStatus",
    "StatusHistoryEntry",
    "SyncedEntity",
    "TransitionFailure",
    "TransitionResult",
    "UpdateStatusOperation",
    "UpdateTeamOperation",
    "UpdateType",
    "WorkflowSnapshot",
    "entity_class_for",
    "parse_bulk_operation",
    "parse_status",
]
