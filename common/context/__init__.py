from common.context.sync_context import SyncContext

__all__ = ["SyncContext"]
