"""
Notification Reconciler

Turns raw change events into a bounded, deduplicated notification log and
folds each event's partial snapshot into the entity store.

Dedup key is entityId + timestamp + updateType, remembered in a bounded FIFO
window. Notifications keep insertion order; once the log exceeds its cap the
oldest entries are evicted first, skipping entities with a user action in
progress.
"""

import asyncio
import logging
from collections import Counter, deque
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, List, Optional, Set, Tuple

from application.entity import (
    ChangeEvent,
    EntityType,
    Notification,
    NotificationType,
    SyncedEntity,
    UpdateType,
    entity_class_for,
)
from application.services.entity_gateway import parse_entity
from application.store.entity_store import EntityStore

logger = logging.getLogger(__name__)

PointFetcher = Callable[[EntityType, str], Awaitable[Any]]
NotificationListener = Callable[[Notification], None]
_Key = Tuple[EntityType, str]

_NAME_FIELDS = ("projectName", "name", "title", "reportTitle")


class NotificationReconciler:
    """Dedup, notify, and reconcile the store for each change event."""

    def __init__(
        self,
        store: EntityStore,
        fetcher: Optional[PointFetcher] = None,
        cap: int = 50,
        dedup_window: int = 500,
    ):
        """
        Args:
            store: Entity store to reconcile
            fetcher: Point fetch of one entity, used when an event cannot be
                merged into a full snapshot
            cap: Maximum notifications kept
            dedup_window: Number of recent dedup keys remembered
        """
        if cap < 1:
            raise ValueError("Notification cap must be at least 1")
        self.store = store
        self.fetcher = fetcher
        self.cap = cap
        self.dedup_window = max(dedup_window, cap)

        self._notifications: List[Notification] = []
        self._seen_keys: Set[str] = set()
        self._seen_order: Deque[str] = deque()
        self._active_actions: Counter = Counter()
        self._listeners: List[NotificationListener] = []
        self._pending_fetches: Dict[_Key, "asyncio.Task[Any]"] = {}

    @property
    def notifications(self) -> List[Notification]:
        """Copy of the log, oldest first."""
        return list(self._notifications)

    def subscribe(self, listener: NotificationListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def clear(self) -> None:
        """Empty the log. Dedup memory is kept so old events stay suppressed."""
        self._notifications.clear()

    def ingest(self, events: Iterable[ChangeEvent]) -> List[Notification]:
        """
        Fold a batch of change events, in the order given.

        Returns:
            The notifications added by this batch
        """
        added: List[Notification] = []
        for event in events:
            if not self._remember(event.dedup_key):
                logger.debug(f"Discarding duplicate change event {event.dedup_key}")
                continue

            notification = self._to_notification(event)
            self._notifications.append(notification)
            added.append(notification)
            self._reconcile_store(event)

        if added:
            self._evict()
            for notification in added:
                self._notify_listeners(notification)
        return added

    @contextmanager
    def user_action(self, entity_type: EntityType, entity_id: str):
        """Protect an entity's notifications from eviction while a user acts on it."""
        key = (entity_type, entity_id)
        self._active_actions[key] += 1
        try:
            yield
        finally:
            self._active_actions[key] -= 1
            if self._active_actions[key] <= 0:
                del self._active_actions[key]
            self._evict()

    async def wait_for_pending_fetches(self) -> None:
        """Wait until every scheduled point fetch has finished."""
        while self._pending_fetches:
            await asyncio.gather(*self._pending_fetches.values(), return_exceptions=True)

    def _remember(self, key: str) -> bool:
        """Record a dedup key. False if it was already in the window."""
        if key in self._seen_keys:
            return False
        self._seen_keys.add(key)
        self._seen_order.append(key)
        while len(self._seen_order) > self.dedup_window:
            self._seen_keys.discard(self._seen_order.popleft())
        return True

    def _evict(self) -> None:
        index = 0
        while len(self._notifications) > self.cap and index < len(self._notifications):
            candidate = self._notifications[index]
            if (candidate.entity_type, candidate.entity_id) in self._active_actions:
                index += 1
                continue
            self._notifications.pop(index)

    def _to_notification(self, event: ChangeEvent) -> Notification:
        return Notification(
            type=NotificationType.for_update(event.update_type),
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            entity_name=self._entity_name(event),
            updated_by=event.metadata.updated_by,
            timestamp=event.timestamp,
            changes=dict(event.snapshot),
        )

    def _entity_name(self, event: ChangeEvent) -> str:
        for name_field in _NAME_FIELDS:
            value = event.snapshot.get(name_field)
            if value:
                return str(value)
        known = self.store.get(event.entity_type, event.entity_id)
        if known is not None:
            return known.display_name
        return entity_class_for(event.entity_type).UNKNOWN_NAME

    def _reconcile_store(self, event: ChangeEvent) -> None:
        known = self.store.get(event.entity_type, event.entity_id)

        if event.update_type == UpdateType.DELETED:
            if known is not None:
                self.store.remove(event.entity_type, event.entity_id)
            return

        if known is None:
            # Entities outside the loaded view are left alone unless fully described
            if event.update_type == UpdateType.CREATED:
                entity = self._full_entity(event.entity_type, event.entity_id, {}, event.snapshot)
                if entity is not None:
                    self.store.upsert(entity)
            return

        entity = self._full_entity(
            event.entity_type, event.entity_id, known.snapshot(), event.snapshot
        )
        if entity is not None:
            self.store.upsert(entity)
        else:
            self._schedule_fetch(event.entity_type, event.entity_id)

    def _full_entity(
        self,
        entity_type: EntityType,
        entity_id: str,
        base: Dict[str, Any],
        partial: Dict[str, Any],
    ) -> Optional[SyncedEntity]:
        entity_class = entity_class_for(entity_type)
        merged = entity_class.merge_snapshot(base, partial)
        id_key = entity_class.model_fields["id"].serialization_alias or "id"
        merged.setdefault(id_key, entity_id)
        entity = parse_entity(entity_type, merged)
        if entity is not None and entity.id != entity_id:
            logger.warning(
                f"Change event for {entity_id} carried a snapshot of {entity.id}; ignoring it"
            )
            return None
        return entity

    def _schedule_fetch(self, entity_type: EntityType, entity_id: str) -> None:
        key = (entity_type, entity_id)
        if self.fetcher is None:
            logger.warning(f"No point fetcher configured; {entity_type.value} {entity_id} may be stale")
            return
        if key in self._pending_fetches:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop to fetch {entity_type.value} {entity_id}")
            return

        logger.debug(f"Scheduling point fetch of {entity_type.value} {entity_id}")
        task = loop.create_task(self.fetcher(entity_type, entity_id))
        self._pending_fetches[key] = task

        def _done(finished: "asyncio.Task[Any]") -> None:
            self._pending_fetches.pop(key, None)
            if finished.cancelled():
                return
            error = finished.exception()
            if error is not None:
                logger.error(f"Point fetch of {entity_type.value} {entity_id} failed: {error}")

        task.add_done_callback(_done)

    def _notify_listeners(self, notification: Notification) -> None:
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception as e:
                logger.error(f"Notification listener failed: {e}")
