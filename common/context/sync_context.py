"""
Explicit context object shared by the sync components.

Replaces process-wide singletons: the request client and auth provider live
here and are handed to each component's constructor. ``init()`` and
``dispose()`` bracket the application's lifetime.
"""

import logging
from typing import Optional

from common.auth.auth_provider import AuthProvider
from common.config.config import SyncConfig
from common.service.api_client import ApiClient

logger = logging.getLogger(__name__)


class SyncContext:
    """Configuration, auth and request client for one sync session."""

    def __init__(
        self,
        config: SyncConfig,
        auth_provider: Optional[AuthProvider] = None,
        api_client: Optional[ApiClient] = None,
    ):
        self.config = config
        self.auth_provider = auth_provider or AuthProvider(config.api_token)
        self._api_client = api_client
        self._initialized = False

    @property
    def api_client(self) -> ApiClient:
        if self._api_client is None:
            raise RuntimeError("SyncContext.init() must be called before use")
        return self._api_client

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def init(self) -> None:
        """Create the request client. Safe to call more than once."""
        if self._initialized:
            return
        if self._api_client is None:
            self._api_client = ApiClient(
                base_url=self.config.api_base_url,
                auth_provider=self.auth_provider,
                timeout=self.config.api_timeout,
            )
        self._initialized = True
        logger.info("Sync context initialized")

    async def dispose(self) -> None:
        """Close the request client."""
        if not self._initialized:
            return
        if self._api_client is not None:
            await self._api_client.close()
        self._initialized = False
        logger.info("Sync context disposed")

    async def __aenter__(self) -> "SyncContext":
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.dispose()
