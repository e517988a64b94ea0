"""
Change Poller

Polls the server's "updates since cursor" feeds and emits ChangeEvents.

Each subscription runs its own asyncio task: poll, hand the events to the
sink, sleep for the interval, repeat. Because the task sleeps after each
poll, a subscription never has two requests in flight. Failed polls are
logged and retried on the next tick with no backoff; the poll is idempotent.

The poller may report the same change more than once across overlapping
windows. Deduplication is the reconciler's job.
"""

import asyncio
import inspect
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from application.entity import ChangeEvent, EntityType
from application.services.resources import resource_for
from common.service.api_client import ApiClient

logger = logging.getLogger(__name__)

EventSink = Callable[[List[ChangeEvent]], Any]


@dataclass(frozen=True)
class PollScope:
    """What a subscription watches: an entity type and a set of projects."""

    entity_type: EntityType
    project_ids: Tuple[str, ...] = ()

    @classmethod
    def projects(cls, project_ids: Sequence[str] = ()) -> "PollScope":
        return cls(EntityType.PROJECT, tuple(project_ids))

    @classmethod
    def daily_reports(cls, project_id: str) -> "PollScope":
        return cls(EntityType.DAILY_REPORT, (project_id,))


@dataclass
class SubscriptionHandle:
    scope: PollScope
    interval: float
    cursor: Optional[datetime] = None
    subscription_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    active: bool = True
    polls: int = 0
    failures: int = 0
    task: Optional["asyncio.Task[None]"] = field(default=None, repr=False)


def _parse_cursor(cursor: Union[datetime, str, None]) -> Optional[datetime]:
    if cursor is None:
        return None
    if isinstance(cursor, str):
        cursor = datetime.fromisoformat(cursor.replace("Z", "+00:00"))
    if cursor.tzinfo is None:
        cursor = cursor.replace(tzinfo=timezone.utc)
    return cursor


def _feed_items(data: Any) -> List[Any]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("items"), list):
        return data["items"]
    return []


class ChangePoller:
    """Runs one polling loop per subscription."""

    def __init__(
        self,
        api_client: ApiClient,
        sink: EventSink,
        intervals: Optional[Dict[EntityType, float]] = None,
    ):
        """
        Args:
            api_client: Request client used for the updates feeds
            sink: Called with each non-empty batch of parsed events
            intervals: Poll interval in seconds per entity type
        """
        self.api_client = api_client
        self.sink = sink
        self.intervals: Dict[EntityType, float] = {
            EntityType.PROJECT: 5.0,
            EntityType.DAILY_REPORT: 30.0,
        }
        if intervals:
            self.intervals.update(intervals)
        self._subscriptions: Dict[str, SubscriptionHandle] = {}

    @property
    def subscriptions(self) -> List[SubscriptionHandle]:
        return list(self._subscriptions.values())

    def subscribe(
        self,
        scope: PollScope,
        cursor: Union[datetime, str, None] = None,
        start: bool = True,
    ) -> SubscriptionHandle:
        """
        Start polling a scope.

        Args:
            scope: Entity type and projects to watch
            cursor: Poll for changes after this time; None polls from the start
            start: Run the timer loop; False leaves polling to poll_once()

        Returns:
            Handle to pass to unsubscribe()
        """
        if scope.entity_type == EntityType.DAILY_REPORT and len(scope.project_ids) != 1:
            raise ValueError("A daily report subscription watches exactly one project")

        handle = SubscriptionHandle(
            scope=scope,
            interval=self.intervals[scope.entity_type],
            cursor=_parse_cursor(cursor),
        )
        self._subscriptions[handle.subscription_id] = handle

        if start:
            handle.task = asyncio.create_task(self._run(handle))

        logger.info(
            f"Subscribed {handle.subscription_id} to {scope.entity_type.value} updates "
            f"(projects: {list(scope.project_ids) or 'all'}, every {handle.interval}s)"
        )
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Stop a subscription. Any late response for it is discarded."""
        if not handle.active:
            return
        handle.active = False
        self._subscriptions.pop(handle.subscription_id, None)
        if handle.task is not None and not handle.task.done():
            handle.task.cancel()
        logger.info(f"Unsubscribed {handle.subscription_id}")

    async def close(self) -> None:
        """Stop every subscription and wait for the loops to exit."""
        handles = self.subscriptions
        for handle in handles:
            self.unsubscribe(handle)
        tasks = [h.task for h in handles if h.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, handle: SubscriptionHandle) -> None:
        try:
            while handle.active:
                try:
                    await self.poll_once(handle)
                except Exception as e:
                    handle.failures += 1
                    logger.error(f"Poll cycle for {handle.subscription_id} raised: {e}. Retrying next tick.")
                await asyncio.sleep(handle.interval)
        except asyncio.CancelledError:
            logger.debug(f"Polling loop {handle.subscription_id} cancelled")
            raise

    async def poll_once(self, handle: SubscriptionHandle) -> int:
        """
        Run one poll cycle for a subscription.

        Returns:
            Number of events handed to the sink
        """
        if not handle.active:
            return 0

        resource = resource_for(handle.scope.entity_type)
        path, params = resource.updates_request(handle.scope.project_ids, handle.cursor)
        response = await self.api_client.get(path, params=params)

        if not handle.active:
            logger.debug(f"Discarding late poll response for {handle.subscription_id}")
            return 0

        handle.polls += 1
        if not response.success:
            handle.failures += 1
            logger.warning(
                f"Poll of {handle.scope.entity_type.value} updates failed "
                f"({response.status_code}): {response.message}. Retrying next tick."
            )
            return 0

        events = self._parse_events(handle.scope.entity_type, response.data)
        self._advance_cursor(handle, events)

        if not events:
            return 0

        try:
            result = self.sink(events)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Change event sink failed for {handle.subscription_id}: {e}")

        return len(events)

    def _parse_events(self, entity_type: EntityType, data: Any) -> List[ChangeEvent]:
        events: List[ChangeEvent] = []
        for item in _feed_items(data):
            if not isinstance(item, dict):
                logger.warning(f"Skipping non-object change event: {item!r}")
                continue
            payload = dict(item)
            if "entityType" not in payload and "entity_type" not in payload:
                payload["entityType"] = entity_type.value
            try:
                events.append(ChangeEvent.model_validate(payload))
            except PydanticValidationError as e:
                logger.warning(f"Skipping malformed change event: {e.error_count()} errors")
        return events

    def _advance_cursor(self, handle: SubscriptionHandle, events: List[ChangeEvent]) -> None:
        """Move the cursor to the newest event time; it never moves backwards."""
        if not events:
            return
        latest = max(event.timestamp for event in events)
        if handle.cursor is None or latest > handle.cursor:
            handle.cursor = latest
