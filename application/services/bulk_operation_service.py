"""
Bulk Operation Coordinator

Applies one bulk operation to many entities concurrently and reports the
outcome per entity. One entity failing never cancels the others; partial
failure is a normal result.

Status changes go through the workflow engine so they get the same validation
and commit path as a single change. Field updates (manager, team) are applied
optimistically and rolled back if the server refuses them.
"""

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from application.entity import (
    AssignManagerOperation,
    BulkOperation,
    BulkOperationFailure,
    BulkOperationResult,
    BulkOperationSummary,
    DailyReportStatus,
    DeleteOperation,
    EntityType,
    UpdateStatusOperation,
    UpdateTeamOperation,
    parse_bulk_operation,
)
from application.services.entity_gateway import EntityGateway, parse_entity
from application.services.resources import resource_for
from application.services.workflow.engine import StatusWorkflowEngine
from application.store.entity_store import EntityStore
from common.exception.exceptions import SyncClientError, user_message

logger = logging.getLogger(__name__)

_PROJECT_ONLY = (AssignManagerOperation, UpdateTeamOperation)


def _result(entity_ids: Sequence[str], errors: Mapping[str, str]) -> BulkOperationResult:
    successful: List[str] = []
    failed: List[BulkOperationFailure] = []
    for entity_id in entity_ids:
        if entity_id in errors:
            failed.append(BulkOperationFailure(entity_id=entity_id, error=errors[entity_id]))
        else:
            successful.append(entity_id)
    return BulkOperationResult(
        successful=successful,
        failed=failed,
        summary=BulkOperationSummary(
            total=len(entity_ids), successful=len(successful), failed=len(failed)
        ),
    )


class BulkOperationCoordinator:
    """Fan a bulk operation out over single-entity requests."""

    def __init__(
        self,
        gateway: EntityGateway,
        store: EntityStore,
        engines: Mapping[EntityType, StatusWorkflowEngine],
        concurrency: int = 10,
    ):
        """
        Args:
            gateway: Single-entity REST calls
            store: Entity store updated with each outcome
            engines: Workflow engine per entity type, used for status changes
            concurrency: Maximum requests in flight at once
        """
        if concurrency < 1:
            raise ValueError("Bulk concurrency must be at least 1")
        self.gateway = gateway
        self.store = store
        self.engines = dict(engines)
        self.concurrency = concurrency

    def _check_applicable(self, operation: BulkOperation, entity_type: EntityType) -> None:
        if isinstance(operation, _PROJECT_ONLY) and entity_type != EntityType.PROJECT:
            raise ValueError(
                f"{operation.operation} does not apply to {entity_type.value} entities"
            )
        if isinstance(operation, UpdateStatusOperation) and entity_type not in self.engines:
            raise ValueError(f"No workflow engine configured for {entity_type.value}")

    async def apply(
        self,
        operation: Union[BulkOperation, Dict[str, Any]],
        entity_ids: Sequence[str],
        entity_type: EntityType = EntityType.PROJECT,
    ) -> BulkOperationResult:
        """
        Apply ``operation`` to every id, at most ``concurrency`` at a time.

        Returns:
            BulkOperationResult with ``summary.total == len(entity_ids)``

        Raises:
            ValueError: If the operation does not apply to ``entity_type``
        """
        if isinstance(operation, dict):
            operation = parse_bulk_operation(operation)
        self._check_applicable(operation, entity_type)
        entity_ids = list(entity_ids)

        logger.info(
            f"Applying {operation.operation} to {len(entity_ids)} {entity_type.value} entities"
        )
        semaphore = asyncio.Semaphore(self.concurrency)

        async def guarded(entity_id: str) -> Optional[SyncClientError]:
            async with semaphore:
                return await self._apply_one(operation, entity_type, entity_id)

        outcomes = await asyncio.gather(
            *(guarded(entity_id) for entity_id in entity_ids), return_exceptions=True
        )

        errors: Dict[str, str] = {}
        for entity_id, outcome in zip(entity_ids, outcomes):
            if isinstance(outcome, SyncClientError):
                errors[entity_id] = user_message(outcome)
            elif isinstance(outcome, BaseException):
                logger.error(f"{operation.operation} of {entity_id} raised: {outcome}")
                errors[entity_id] = str(outcome) or type(outcome).__name__

        result = _result(entity_ids, errors)
        logger.info(
            f"{operation.operation}: {result.summary.successful} succeeded, "
            f"{result.summary.failed} failed"
        )
        return result

    async def _apply_one(
        self, operation: BulkOperation, entity_type: EntityType, entity_id: str
    ) -> Optional[SyncClientError]:
        if isinstance(operation, UpdateStatusOperation):
            outcome = await self.engines[entity_type].request_transition(
                entity_id,
                operation.status,
                operation.reason,
                notify_stakeholders=operation.notify_stakeholders,
            )
            return None if outcome.success else outcome.error

        if isinstance(operation, DeleteOperation):
            response = await self.gateway.delete(entity_type, entity_id)
            if not response.success:
                return response.error()
            self.store.remove(entity_type, entity_id)
            return None

        return await self._patch_optimistically(entity_type, entity_id, operation.request_data())

    async def _patch_optimistically(
        self, entity_type: EntityType, entity_id: str, fields: Dict[str, Any]
    ) -> Optional[SyncClientError]:
        token = None
        if (entity_type, entity_id) in self.store:
            token = self.store.apply_optimistic(entity_type, entity_id, fields)

        try:
            response = await self.gateway.patch_fields(entity_type, entity_id, fields)
        except Exception:
            if token is not None:
                self.store.rollback(token)
            raise

        if not response.success:
            if token is not None:
                self.store.rollback(token)
            return response.error()

        if token is not None:
            self.store.confirm(token)
        returned = parse_entity(entity_type, response.data)
        if returned is not None and returned.id == entity_id:
            self.store.upsert(returned)
        return None

    def _remote_request(
        self, operation: BulkOperation, entity_ids: List[str], entity_type: EntityType
    ) -> Optional[Tuple[str, Dict[str, Any]]]:
        """Bulk endpoint path and body for an operation, or None if there is none."""
        resource = resource_for(entity_type)
        if entity_type == EntityType.PROJECT:
            if resource.bulk_path is None:
                return None
            return resource.bulk_path, {
                "operation": operation.operation,
                "projectIds": entity_ids,
                "data": operation.request_data(),
            }

        if not isinstance(operation, UpdateStatusOperation):
            return None
        engine = self.engines.get(entity_type)
        status = engine.graph.canonical(operation.status) if engine else operation.status
        if status == DailyReportStatus.APPROVED.value and resource.bulk_approve_path:
            return resource.bulk_approve_path, {
                "reportIds": entity_ids,
                "comments": operation.reason,
            }
        if status == DailyReportStatus.REJECTED.value and resource.bulk_reject_path:
            return resource.bulk_reject_path, {
                "reportIds": entity_ids,
                "rejectionReason": operation.reason,
            }
        return None

    def supports_remote(
        self,
        operation: Union[BulkOperation, Dict[str, Any]],
        entity_type: EntityType = EntityType.PROJECT,
    ) -> bool:
        """Whether ``operation`` on ``entity_type`` has a single bulk endpoint."""
        if isinstance(operation, dict):
            operation = parse_bulk_operation(operation)
        return self._remote_request(operation, [], entity_type) is not None

    async def apply_remote(
        self,
        operation: Union[BulkOperation, Dict[str, Any]],
        entity_ids: Sequence[str],
        entity_type: EntityType = EntityType.PROJECT,
    ) -> BulkOperationResult:
        """
        Send the whole operation as one bulk request.

        Projects use ``POST /api/v1/projects/bulk``. Daily report approvals
        and rejections use ``bulk-approve`` and ``bulk-reject``.

        A failed request marks every id failed. Ids the server does not report
        on are counted as failed too.

        Raises:
            ValueError: If the entity type has no bulk endpoint for the operation
        """
        if isinstance(operation, dict):
            operation = parse_bulk_operation(operation)
        entity_ids = list(entity_ids)

        request = self._remote_request(operation, entity_ids, entity_type)
        if request is None:
            raise ValueError(
                f"No bulk endpoint for {operation.operation} on {entity_type.value} entities"
            )
        path, body = request
        response = await self.gateway.api_client.post(path, body)

        if not response.success:
            message = user_message(response.error())
            logger.warning(f"Bulk {operation.operation} request failed: {message}")
            return _result(entity_ids, {entity_id: message for entity_id in entity_ids})

        try:
            reported = BulkOperationResult.model_validate(response.data)
        except PydanticValidationError as e:
            logger.error(f"Malformed bulk result: {e.error_count()} errors")
            return _result(entity_ids, {entity_id: "No result reported" for entity_id in entity_ids})

        errors = {failure.entity_id: failure.error for failure in reported.failed}
        succeeded = set(reported.successful)
        for entity_id in entity_ids:
            if entity_id not in succeeded and entity_id not in errors:
                errors[entity_id] = "No result reported"

        if isinstance(operation, DeleteOperation):
            for entity_id in succeeded:
                self.store.remove(entity_type, entity_id)

        return _result(entity_ids, errors)
