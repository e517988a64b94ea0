"""
Status Workflow Engine

Validates status transitions against the entity type's transition graph and
commits them through ``PATCH <resource>/{id}/status``.

Transitions are pessimistic: the store keeps the old status until the server
accepts the change. Failures come back as TransitionResult values carrying the
error, so a caller can show one outcome per entity.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from application.entity import (
    EntityType,
    StatusHistoryEntry,
    SyncedEntity,
    TransitionFailure,
    TransitionResult,
    WorkflowSnapshot,
    entity_class_for,
)
from application.services.entity_gateway import parse_entity
from application.services.resources import resource_for
from application.services.workflow.transition_graph import TransitionGraph, graph_for
from application.store.entity_store import EntityStore
from common.auth.auth_provider import AuthProvider
from common.exception.exceptions import (
    ApprovalRequiredError,
    ConflictError,
    SyncClientError,
    TransportError,
    ValidationError,
)
from common.service.api_client import ApiClient, ApiResponse

logger = logging.getLogger(__name__)

_APPROVAL_HINT = re.compile(r"requires?\s+(\w+\s+)?approval|approval\s+required|pending\s+approval", re.I)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _approval_hint(response: ApiResponse) -> Tuple[bool, Optional[str]]:
    """Does a failed response say approval is needed, and at what level?"""
    level = None
    flagged = False
    if isinstance(response.data, dict):
        flagged = bool(response.data.get("requiresApproval"))
        level = response.data.get("approvalLevel")
    texts = [response.message or ""] + list(response.errors)
    if not flagged:
        flagged = any(_APPROVAL_HINT.search(text) for text in texts)
    return flagged, level


class StatusWorkflowEngine:
    """Validate and execute status transitions for one entity type."""

    def __init__(
        self,
        entity_type: EntityType,
        api_client: ApiClient,
        store: EntityStore,
        auth_provider: AuthProvider,
        graph: Optional[TransitionGraph] = None,
    ):
        self.entity_type = entity_type
        self.api_client = api_client
        self.store = store
        self.auth_provider = auth_provider
        self.graph = graph or graph_for(entity_type)
        if self.graph.entity_type != entity_type:
            raise ValueError(
                f"Graph for {self.graph.entity_type.value} used for {entity_type.value}"
            )
        self.resource = resource_for(entity_type)
        self._history: Dict[str, List[StatusHistoryEntry]] = {}

    def _entity(self, entity_id: str) -> Optional[SyncedEntity]:
        return self.store.get(self.entity_type, entity_id)

    def allowed_transitions(self, entity_id: str) -> List[str]:
        """Statuses the entity may move to; empty if it is not loaded."""
        entity = self._entity(entity_id)
        if entity is None:
            return []
        return self.graph.allowed_transitions(entity.status)

    def validate_transition(self, entity_id: str, target_status: str) -> None:
        """
        Pre-flight check, no network call.

        Raises:
            ConflictError: If the entity is not in the store
            ValidationError: If the graph has no such edge
        """
        entity = self._entity(entity_id)
        if entity is None:
            raise ConflictError(
                f"{self.entity_type.value} {entity_id} is not loaded; fetch it before changing status"
            )
        if self.graph.edge(entity.status, target_status) is None:
            allowed = self.graph.allowed_transitions(entity.status)
            raise ValidationError(
                f"Cannot change status from {entity.status} to {target_status}. "
                f"Allowed: {', '.join(allowed) if allowed else 'none'}"
            )

    async def request_transition(
        self,
        entity_id: str,
        target_status: str,
        reason: str,
        notify_stakeholders: bool = True,
    ) -> TransitionResult:
        """
        Move an entity to ``target_status``.

        The store is only changed after the server accepts the request.

        Returns:
            TransitionResult; never raises for expected failures
        """
        entity = self._entity(entity_id)
        from_status = entity.status if entity is not None else None

        try:
            self.validate_transition(entity_id, target_status)
        except ConflictError as e:
            logger.warning(f"Transition of unknown {self.entity_type.value} {entity_id}: {e}")
            return TransitionResult(
                entity_id=entity_id,
                from_status=from_status,
                to_status=target_status,
                success=False,
                failure=TransitionFailure.CONFLICTING_STATE,
                error=e,
            )
        except ValidationError as e:
            logger.info(f"Rejected transition of {entity_id}: {e}")
            return TransitionResult(
                entity_id=entity_id,
                from_status=from_status,
                to_status=target_status,
                success=False,
                failure=TransitionFailure.INVALID_TRANSITION,
                error=e,
            )

        edge = self.graph.edge(from_status, target_status)
        target = edge.target
        if edge.requires_approval:
            logger.info(
                f"Transition {from_status} -> {target} of {entity_id} requires "
                f"{edge.approval_level} approval"
            )

        body = {
            "status": target,
            "reason": reason,
            "effectiveDate": _utcnow().isoformat(),
            "notifyStakeholders": notify_stakeholders,
        }
        response = await self.api_client.patch(self.resource.status_path(entity_id), body)

        if response.success:
            committed = self._commit(entity, target, reason, response.data)
            logger.info(f"{self.entity_type.value} {entity_id} moved {from_status} -> {target}")
            return TransitionResult(
                entity_id=entity_id,
                from_status=from_status,
                to_status=target,
                success=True,
                entity=committed,
                requires_approval=edge.requires_approval,
                approval_level=edge.approval_level,
            )

        failure, error, approval_level = self._classify_failure(response, edge.approval_level)
        logger.warning(
            f"Transition of {entity_id} to {target} failed ({failure.value}): {error.message}"
        )
        return TransitionResult(
            entity_id=entity_id,
            from_status=from_status,
            to_status=target,
            success=False,
            failure=failure,
            error=error,
            requires_approval=edge.requires_approval or failure == TransitionFailure.APPROVAL_REQUIRED,
            approval_level=approval_level,
        )

    def _classify_failure(
        self, response: ApiResponse, edge_level: Optional[str]
    ) -> Tuple[TransitionFailure, SyncClientError, Optional[str]]:
        status = response.status_code
        if status is None or status >= 500:
            return TransitionFailure.NETWORK_FAILURE, response.error(), edge_level
        if status in (404, 409):
            # The entity changed or vanished under us
            error = response.error()
            if not isinstance(error, ConflictError):
                error = ConflictError(response.message or "")
            return TransitionFailure.CONFLICTING_STATE, error, edge_level

        needs_approval, level = _approval_hint(response)
        if needs_approval:
            level = level or edge_level
            error = ApprovalRequiredError(
                response.message or f"{level or 'Additional'} approval required",
                status_code=status,
                errors=response.errors,
                approval_level=level,
            )
            return TransitionFailure.APPROVAL_REQUIRED, error, level
        return TransitionFailure.REJECTED, response.error(), edge_level

    def _commit(
        self, previous: SyncedEntity, target: str, reason: str, data: Any
    ) -> SyncedEntity:
        latest = self._entity(previous.id)
        returned = parse_entity(self.entity_type, data)
        if returned is not None and returned.id == previous.id:
            if returned.status != target:
                logger.warning(
                    f"Server returned {previous.id} with status {returned.status} after a change to {target}"
                )
            committed = returned
        else:
            # Build on the latest snapshot; a poll may have landed meanwhile
            entity_class = entity_class_for(self.entity_type)
            committed = entity_class.model_validate(
                entity_class.merge_snapshot((latest or previous).snapshot(), {"status": target})
            )

        if latest is None:
            logger.warning(
                f"{self.entity_type.value} {previous.id} was removed while its status changed; not restoring it"
            )
        else:
            self.store.upsert(committed)
        self._append_history(previous.id, target, reason)
        return committed

    def _append_history(self, entity_id: str, status: str, reason: str) -> None:
        history = self._history.setdefault(entity_id, [])
        now = _utcnow()
        duration_days = None
        if history:
            duration_days = (now - history[-1].changed_at).days
        user = self.auth_provider.current_user()
        history.append(
            StatusHistoryEntry(
                status=status,
                changed_at=now,
                changed_by=user.display_name,
                reason=reason,
                duration_days=duration_days,
            )
        )

    def history(self, entity_id: str) -> List[StatusHistoryEntry]:
        return list(self._history.get(entity_id, []))

    def get_workflow(self, entity_id: str) -> Optional[WorkflowSnapshot]:
        """Workflow snapshot built from local state, or None if not loaded."""
        entity = self._entity(entity_id)
        if entity is None:
            return None
        edges = self.graph.edges_from(entity.status)
        approval_levels = [edge.approval_level for edge in edges if edge.requires_approval]
        return WorkflowSnapshot(
            current_status=entity.status,
            allowed_transitions=[edge.target for edge in edges],
            requires_approval=bool(approval_levels),
            approval_level=approval_levels[0] if approval_levels else None,
            status_history=self.history(entity_id),
        )

    async def fetch_workflow(self, entity_id: str) -> WorkflowSnapshot:
        """
        Fetch the server's workflow view and merge it with local state.

        The returned history is the server's entries plus local entries the
        server does not list, in time order. Local history is not changed.
        Allowed transitions are limited to edges of the local graph. Entity
        types without a workflow endpoint get the local snapshot.

        Raises:
            SyncClientError: If the request fails
        """
        if not self.resource.has_workflow:
            local = self.get_workflow(entity_id)
            if local is None:
                raise ConflictError(f"No status known for {self.entity_type.value} {entity_id}")
            return local

        response = await self.api_client.get(self.resource.workflow_path(entity_id))
        if not response.success:
            raise response.error()

        local = self.get_workflow(entity_id)
        data = response.data if isinstance(response.data, dict) else {}
        if "currentStatus" not in data and "current_status" not in data:
            if local is None:
                raise ConflictError(f"No status known for {self.entity_type.value} {entity_id}")
            data = {**data, "currentStatus": local.current_status}

        try:
            remote = WorkflowSnapshot.model_validate(data)
        except PydanticValidationError as e:
            raise TransportError(
                f"Malformed workflow response for {entity_id}: {e.error_count()} errors",
                status_code=response.status_code,
                url=response.url,
            )

        local_allowed = self.graph.allowed_transitions(remote.current_status)
        if remote.allowed_transitions:
            remote_keys = {self.graph.canonical(status) for status in remote.allowed_transitions}
            allowed = [status for status in local_allowed if status in remote_keys]
        else:
            allowed = local_allowed

        edges = [self.graph.edge(remote.current_status, status) for status in allowed]
        local_levels = [edge.approval_level for edge in edges if edge and edge.requires_approval]
        return WorkflowSnapshot(
            current_status=remote.current_status,
            allowed_transitions=allowed,
            requires_approval=remote.requires_approval or bool(local_levels),
            approval_level=remote.approval_level or (local_levels[0] if local_levels else None),
            status_history=self._merged_history(entity_id, remote.status_history),
        )

    def _merged_history(
        self, entity_id: str, remote: List[StatusHistoryEntry]
    ) -> List[StatusHistoryEntry]:
        seen = {(entry.status, entry.changed_at) for entry in remote}
        merged = list(remote) + [
            entry for entry in self.history(entity_id) if (entry.status, entry.changed_at) not in seen
        ]
        return sorted(merged, key=lambda entry: entry.changed_at)
