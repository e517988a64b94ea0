from common.config.config import SyncConfig

__all__ = ["SyncConfig"]
