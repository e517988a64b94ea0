"""Request client for the solar project API, with a uniform response envelope."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from common.auth.auth_provider import AuthProvider
from common.exception.exceptions import (
    GENERIC_TRANSPORT_MESSAGE,
    ConflictError,
    ServerRejection,
    SyncClientError,
    transport_error_for_status,
    transport_message,
)

logger = logging.getLogger(__name__)

_FIXED_MESSAGE_STATUSES = (401, 403, 404)


class ApiResponse(BaseModel):
    """Envelope returned by every ApiClient call."""

    model_config = ConfigDict(extra="ignore")

    success: bool
    data: Any = None
    message: Optional[str] = None
    errors: List[str] = Field(default_factory=list)
    status_code: Optional[int] = None
    url: Optional[str] = None

    def error(self) -> Optional[SyncClientError]:
        """Convert a failed envelope into the matching exception instance."""
        if self.success:
            return None

        message = self.message or ""
        if self.status_code is None or self.status_code >= 500:
            return transport_error_for_status(
                message or GENERIC_TRANSPORT_MESSAGE, self.status_code, self.url
            )
        if self.status_code in _FIXED_MESSAGE_STATUSES:
            return transport_error_for_status(message, self.status_code, self.url)
        if self.status_code == 409:
            return ConflictError(message)
        return ServerRejection(message, status_code=self.status_code, errors=self.errors)


def _coerce_errors(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, list):
        return [str(item) for item in value]
    if isinstance(value, dict):
        # ASP.NET style: {"Field": ["msg", ...]}
        flattened: List[str] = []
        for field_name, messages in value.items():
            if isinstance(messages, list):
                flattened.extend(f"{field_name}: {m}" for m in messages)
            else:
                flattened.append(f"{field_name}: {messages}")
        return flattened
    return [str(value)]


def _parse_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class ApiClient:
    """Thin async HTTP client returning ApiResponse envelopes.

    HTTP errors and transport failures never raise; they come back as
    ``success=False`` envelopes. The bearer token is read from the auth
    provider on every request so a token change takes effect immediately.
    """

    def __init__(
        self,
        base_url: str,
        auth_provider: AuthProvider,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth_provider = auth_provider
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._config_lock = asyncio.Lock()

    async def _ensure_client_initialized(self) -> httpx.AsyncClient:
        """Ensure the HTTP client is initialized and return it."""
        if self._client is None:
            async with self._config_lock:
                if self._client is None:
                    self._client = httpx.AsyncClient(
                        base_url=self.base_url,
                        timeout=self.timeout,
                        transport=self._transport,
                        headers={
                            "Content-Type": "application/json",
                            "Accept": "application/json",
                        },
                    )
                    logger.info(f"Initialized API client with base URL: {self.base_url}")
        return self._client

    def _headers(self) -> Dict[str, str]:
        token = self.auth_provider.token
        if token:
            return {"Authorization": f"Bearer {token}"}
        return {}

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Any] = None,
    ) -> ApiResponse:
        """Send a request and wrap the outcome in an ApiResponse.

        Args:
            method: HTTP method (GET, POST, PUT, PATCH, DELETE)
            path: API path, e.g. "/api/v1/projects/123"
            params: Optional query parameters
            body: Optional JSON body

        Returns:
            ApiResponse envelope, never raises for HTTP or network failures
        """
        client = await self._ensure_client_initialized()
        url = f"{self.base_url}{path if path.startswith('/') else '/' + path}"
        logger.debug(f"API Request: {method} {url}")

        try:
            response = await client.request(
                method,
                path,
                params=params,
                json=body,
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            logger.error(f"API Request failed: {method} {url}: {e}")
            return ApiResponse(
                success=False,
                message=GENERIC_TRANSPORT_MESSAGE,
                errors=[str(e)] if str(e) else [],
                status_code=None,
                url=url,
            )

        payload = _parse_body(response)

        if response.is_error:
            return self._error_response(response, payload, url)

        logger.debug(f"API Response: {response.status_code} {method} {url}")
        if isinstance(payload, dict) and "success" in payload:
            try:
                return ApiResponse.model_validate(
                    {
                        **payload,
                        "errors": _coerce_errors(payload.get("errors")),
                        "status_code": response.status_code,
                        "url": url,
                    }
                )
            except PydanticValidationError as e:
                logger.error(f"Malformed response envelope from {url}: {e.error_count()} errors")
                return ApiResponse(
                    success=False,
                    message=GENERIC_TRANSPORT_MESSAGE,
                    errors=["Malformed response envelope"],
                    status_code=None,
                    url=url,
                )
        return ApiResponse(
            success=True, data=payload, status_code=response.status_code, url=url
        )

    def _error_response(
        self, response: httpx.Response, payload: Any, url: str
    ) -> ApiResponse:
        status_code = response.status_code
        body = payload if isinstance(payload, dict) else {}
        server_message = body.get("message") or body.get("title")

        if status_code in _FIXED_MESSAGE_STATUSES:
            message = transport_message(status_code)
        else:
            message = server_message or f"API Error: {status_code} {response.reason_phrase}"

        logger.error(f"API Error: {status_code} {response.reason_phrase} for {url}")
        return ApiResponse(
            success=False,
            data=body.get("data"),
            message=message,
            errors=_coerce_errors(body.get("errors")),
            status_code=status_code,
            url=url,
        )

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> ApiResponse:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, body: Optional[Any] = None) -> ApiResponse:
        return await self.request("POST", path, body=body)

    async def put(self, path: str, body: Optional[Any] = None) -> ApiResponse:
        return await self.request("PUT", path, body=body)

    async def patch(self, path: str, body: Optional[Any] = None) -> ApiResponse:
        return await self.request("PATCH", path, body=body)

    async def delete(self, path: str) -> ApiResponse:
        return await self.request("DELETE", path)

    async def close(self):
        """Close the HTTP client and release connections."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("API client closed")

    async def __aenter__(self):
        await self._ensure_client_initialized()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
