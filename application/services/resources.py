"""
REST resources backing each entity type.

Central place for API paths so the poller, gateway, workflow engine and bulk
coordinator agree on where each entity type lives.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Sequence, Tuple

from application.entity import EntityType
from common.exception.exceptions import ConfigurationError


@dataclass(frozen=True)
class EntityResource:
    """Paths of one entity type's REST resource."""

    entity_type: EntityType
    collection_path: str
    bulk_path: Optional[str] = None
    bulk_approve_path: Optional[str] = None
    bulk_reject_path: Optional[str] = None
    has_workflow: bool = False

    def item_path(self, entity_id: str) -> str:
        return f"{self.collection_path}/{entity_id}"

    def status_path(self, entity_id: str) -> str:
        return f"{self.item_path(entity_id)}/status"

    def workflow_path(self, entity_id: str) -> str:
        if not self.has_workflow:
            raise ConfigurationError(f"{self.entity_type.value} has no status workflow endpoint")
        return f"{self.item_path(entity_id)}/status-workflow"

    def updates_request(
        self, project_ids: Sequence[str], cursor: Optional[datetime]
    ) -> Tuple[str, Dict[str, Any]]:
        """Path and query parameters of the "updates since cursor" request."""
        params: Dict[str, Any] = {}
        if self.entity_type == EntityType.PROJECT:
            if project_ids:
                params["projectIds"] = list(project_ids)
            if cursor is not None:
                params["since"] = cursor.isoformat()
            return f"{self.collection_path}/updates", params

        if len(project_ids) != 1:
            raise ValueError("Daily report updates are polled one project at a time")
        if cursor is not None:
            params["lastUpdated"] = cursor.isoformat()
        return f"{self.collection_path}/updates/{project_ids[0]}", params


RESOURCES: Dict[EntityType, EntityResource] = {
    EntityType.PROJECT: EntityResource(
        entity_type=EntityType.PROJECT,
        collection_path="/api/v1/projects",
        bulk_path="/api/v1/projects/bulk",
        has_workflow=True,
    ),
    EntityType.DAILY_REPORT: EntityResource(
        entity_type=EntityType.DAILY_REPORT,
        collection_path="/api/v1/daily-reports",
        bulk_approve_path="/api/v1/daily-reports/bulk-approve",
        bulk_reject_path="/api/v1/daily-reports/bulk-reject",
    ),
}


def resource_for(entity_type: EntityType) -> EntityResource:
    try:
        return RESOURCES[entity_type]
    except KeyError:
        raise ConfigurationError(f"No REST resource registered for {entity_type!r}")
