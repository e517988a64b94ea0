"""
In-memory store of server-owned entities.

The store is the single shared mutable resource of the sync layer. All
mutation goes through upsert, remove, apply_optimistic and rollback, and each
of those notifies observers synchronously, in subscription order. The event
loop is single threaded, so no locking is needed.
"""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from application.entity import EntityType, SyncedEntity, entity_class_for

logger = logging.getLogger(__name__)


class StoreChangeKind(str, Enum):
    UPSERT = "upsert"
    REMOVE = "remove"
    OPTIMISTIC = "optimistic"
    ROLLBACK = "rollback"


@dataclass(frozen=True)
class StoreChange:
    """What an observer receives after each mutation."""

    kind: StoreChangeKind
    entity_type: EntityType
    entity_id: str
    entity: Optional[SyncedEntity]
    previous: Optional[SyncedEntity]


class RollbackState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"


@dataclass
class RollbackToken:
    """Handle for one optimistic patch."""

    entity_type: EntityType
    entity_id: str
    previous: SyncedEntity
    patch: Dict[str, Any]
    token_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: RollbackState = RollbackState.PENDING


Observer = Callable[[StoreChange], None]
_Key = Tuple[EntityType, str]


class EntityStore:
    """Keyed collection of entity snapshots with optimistic updates."""

    def __init__(self):
        self._entities: Dict[_Key, SyncedEntity] = {}
        self._observers: List[Observer] = []
        self._pending: Dict[str, RollbackToken] = {}

    def get(self, entity_type: EntityType, entity_id: str) -> Optional[SyncedEntity]:
        return self._entities.get((entity_type, entity_id))

    def all(self, entity_type: EntityType) -> List[SyncedEntity]:
        return [
            entity
            for (kind, _), entity in self._entities.items()
            if kind == entity_type
        ]

    def __contains__(self, key: _Key) -> bool:
        return key in self._entities

    def __len__(self) -> int:
        return len(self._entities)

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register an observer; returns a function that unregisters it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def upsert(self, entity: SyncedEntity) -> None:
        """Insert or replace the full snapshot for an entity."""
        key = (entity.ENTITY_TYPE, entity.id)
        previous = self._entities.get(key)
        self._entities[key] = entity
        self._notify(StoreChangeKind.UPSERT, entity.ENTITY_TYPE, entity.id, entity, previous)

    def remove(self, entity_type: EntityType, entity_id: str) -> None:
        """Drop an entity. Unknown ids are ignored."""
        previous = self._entities.pop((entity_type, entity_id), None)
        if previous is None:
            return
        self._notify(StoreChangeKind.REMOVE, entity_type, entity_id, None, previous)

    def apply_optimistic(
        self, entity_type: EntityType, entity_id: str, patch: Mapping[str, Any]
    ) -> RollbackToken:
        """
        Apply a field patch before the server confirms it.

        Args:
            entity_type: Type of the patched entity
            entity_id: Id of an entity already in the store
            patch: Server field names mapped to new values

        Returns:
            RollbackToken to pass to confirm() or rollback()

        Raises:
            KeyError: If the entity is not in the store
        """
        key = (entity_type, entity_id)
        if key not in self._entities:
            raise KeyError(f"{entity_type.value} {entity_id} is not in the store")

        previous = self._entities[key]
        entity_class = entity_class_for(entity_type)
        merged = entity_class.merge_snapshot(previous.snapshot(), dict(patch))
        patched = entity_class.model_validate(merged)

        token = RollbackToken(
            entity_type=entity_type,
            entity_id=entity_id,
            previous=previous.model_copy(deep=True),
            patch=dict(patch),
        )
        self._pending[token.token_id] = token
        self._entities[key] = patched
        logger.debug(f"Optimistic patch {token.token_id} applied to {entity_type.value} {entity_id}")
        self._notify(StoreChangeKind.OPTIMISTIC, entity_type, entity_id, patched, previous)
        return token

    def confirm(self, token: RollbackToken) -> None:
        """Mark an optimistic patch as confirmed by the server."""
        if token.state != RollbackState.PENDING:
            return
        token.state = RollbackState.CONFIRMED
        self._pending.pop(token.token_id, None)

    def rollback(self, token: RollbackToken) -> None:
        """
        Restore the snapshot captured before an optimistic patch.

        No-op if the patch was already confirmed or rolled back.
        """
        if token.state != RollbackState.PENDING:
            logger.debug(f"Ignoring rollback of {token.state.value} patch {token.token_id}")
            return

        token.state = RollbackState.ROLLED_BACK
        self._pending.pop(token.token_id, None)

        key = (token.entity_type, token.entity_id)
        current = self._entities.get(key)
        self._entities[key] = token.previous
        logger.info(f"Rolled back optimistic patch on {token.entity_type.value} {token.entity_id}")
        self._notify(
            StoreChangeKind.ROLLBACK,
            token.entity_type,
            token.entity_id,
            token.previous,
            current,
        )

    @property
    def pending_patches(self) -> List[RollbackToken]:
        return list(self._pending.values())

    def _notify(
        self,
        kind: StoreChangeKind,
        entity_type: EntityType,
        entity_id: str,
        entity: Optional[SyncedEntity],
        previous: Optional[SyncedEntity],
    ) -> None:
        change = StoreChange(
            kind=kind,
            entity_type=entity_type,
            entity_id=entity_id,
            entity=entity,
            previous=previous,
        )
        for observer in list(self._observers):
            try:
                observer(change)
            except Exception as e:
                logger.error(f"Store observer failed on {kind.value} of {entity_id}: {e}")
