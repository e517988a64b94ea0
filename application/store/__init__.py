from application.store.entity_store import (
    EntityStore,
    RollbackState,
    RollbackToken,
    StoreChange,
    StoreChangeKind,
)

__all__ = [
    "EntityStore",
    "RollbackState",
    "RollbackToken",
    "StoreChange",
    "StoreChangeKind",
]
