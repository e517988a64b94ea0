"""
Sync service: wires the sync components for one session.

Every component receives its collaborators through the constructor; this
class is the one place that builds them from a SyncContext.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from application.entity import (
    BulkOperation,
    BulkOperationResult,
    ChangeEvent,
    EntityType,
    SyncedEntity,
    TransitionResult,
)
from application.services.bulk_operation_service import BulkOperationCoordinator
from application.services.change_poller import ChangePoller, PollScope, SubscriptionHandle
from application.services.entity_gateway import EntityGateway
from application.services.notification_reconciler import NotificationReconciler
from application.services.workflow import StatusWorkflowEngine
from application.store.entity_store import EntityStore
from common.context.sync_context import SyncContext

logger = logging.getLogger(__name__)


class SyncService:
    """Entity store, poller, reconciler, workflow engines and bulk coordinator."""

    def __init__(self, context: SyncContext):
        self.context = context
        self.store = EntityStore()
        self.gateway: Optional[EntityGateway] = None
        self.reconciler: Optional[NotificationReconciler] = None
        self.poller: Optional[ChangePoller] = None
        self.engines: Dict[EntityType, StatusWorkflowEngine] = {}
        self.coordinator: Optional[BulkOperationCoordinator] = None
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Initialize the context and build the components."""
        if self._started:
            return
        await self.context.init()
        config = self.context.config
        api_client = self.context.api_client

        self.gateway = EntityGateway(api_client, self.store)
        self.reconciler = NotificationReconciler(
            self.store,
            fetcher=self.gateway.fetch,
            cap=config.notification_cap,
            dedup_window=config.dedup_window,
        )
        self.poller = ChangePoller(
            api_client,
            sink=self._on_events,
            intervals={
                EntityType.PROJECT: config.project_poll_interval,
                EntityType.DAILY_REPORT: config.daily_report_poll_interval,
            },
        )
        self.engines = {
            entity_type: StatusWorkflowEngine(
                entity_type, api_client, self.store, self.context.auth_provider
            )
            for entity_type in (EntityType.PROJECT, EntityType.DAILY_REPORT)
        }
        self.coordinator = BulkOperationCoordinator(
            self.gateway, self.store, self.engines, concurrency=config.bulk_concurrency
        )
        self._started = True
        logger.info("Sync service started")

    async def stop(self) -> None:
        """Stop polling, wait for point fetches and close the context."""
        if not self._started:
            return
        await self.poller.close()
        await self.reconciler.wait_for_pending_fetches()
        await self.context.dispose()
        self._started = False
        logger.info("Sync service stopped")

    async def __aenter__(self) -> "SyncService":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    def _require_started(self) -> None:
        if not self._started:
            raise RuntimeError("SyncService.start() must be called before use")

    def _on_events(self, events: List[ChangeEvent]) -> None:
        self.reconciler.ingest(events)

    def watch_projects(
        self, project_ids: Sequence[str] = (), since: Optional[str] = None
    ) -> SubscriptionHandle:
        self._require_started()
        return self.poller.subscribe(PollScope.projects(project_ids), cursor=since)

    def watch_daily_reports(
        self, project_id: str, since: Optional[str] = None
    ) -> SubscriptionHandle:
        self._require_started()
        return self.poller.subscribe(PollScope.daily_reports(project_id), cursor=since)

    def unwatch(self, handle: SubscriptionHandle) -> None:
        self._require_started()
        self.poller.unsubscribe(handle)

    async def load_projects(self, params: Optional[Dict[str, Any]] = None) -> List[SyncedEntity]:
        self._require_started()
        return await self.gateway.load(EntityType.PROJECT, params)

    async def load_daily_reports(self, project_id: str) -> List[SyncedEntity]:
        self._require_started()
        return await self.gateway.load(EntityType.DAILY_REPORT, {"projectId": project_id})

    async def request_transition(
        self,
        entity_type: EntityType,
        entity_id: str,
        target_status: str,
        reason: str,
        notify_stakeholders: bool = True,
    ) -> TransitionResult:
        """Status change on behalf of the user; its notifications are kept meanwhile."""
        self._require_started()
        with self.reconciler.user_action(entity_type, entity_id):
            return await self.engines[entity_type].request_transition(
                entity_id, target_status, reason, notify_stakeholders=notify_stakeholders
            )

    async def bulk(
        self,
        operation: Union[BulkOperation, Dict[str, Any]],
        entity_ids: Sequence[str],
        entity_type: EntityType = EntityType.PROJECT,
    ) -> BulkOperationResult:
        """
        Apply a bulk operation, through a bulk endpoint when one is configured
        and exists for the operation, otherwise one request per entity.
        """
        self._require_started()
        if self.context.config.use_bulk_endpoint and self.coordinator.supports_remote(
            operation, entity_type
        ):
            return await self.coordinator.apply_remote(operation, entity_ids, entity_type)
        return await self.coordinator.apply(operation, entity_ids, entity_type)
