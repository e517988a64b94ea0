"""
Error taxonomy for the sync client.

Expected runtime failures are represented by SyncClientError subclasses.
The workflow engine and the bulk coordinator hand these back inside result
objects instead of raising them, so a UI can render one status per item.

ConfigurationError is the exception to that rule: it signals a defect in the
transition graphs or resource registry and is always raised.
"""

from typing import List, Optional


class SyncClientError(Exception):
    """Base class for expected sync client failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SyncClientError):
    """Local pre-flight validation failed. Never reaches the network."""


class TransportError(SyncClientError):
    """Network or HTTP level failure."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class InvalidTokenException(TransportError):
    """HTTP 401."""


class AccessDeniedException(TransportError):
    """HTTP 403."""


class NotFoundException(TransportError):
    """HTTP 404."""


class ServerRejection(SyncClientError):
    """Well-formed response with success=false."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        errors: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []


class ApprovalRequiredError(ServerRejection):
    """The server requires approval before applying the transition."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        errors: Optional[List[str]] = None,
        approval_level: Optional[str] = None,
    ):
        super().__init__(message, status_code=status_code, errors=errors)
        self.approval_level = approval_level


class ConflictError(SyncClientError):
    """The client's assumption about entity state is stale."""


class ConfigurationError(Exception):
    """Malformed transition graph, unknown entity type or similar defect."""


GENERIC_TRANSPORT_MESSAGE = "Could not reach the server. Please try again."
GENERIC_REJECTION_MESSAGE = "The server rejected the request."
GENERIC_CONFLICT_MESSAGE = (
    "This item was changed by someone else. Refresh and try again."
)

_TRANSPORT_MESSAGES = {
    401: "Authentication required. Please log in.",
    403: "Access denied. Insufficient permissions.",
    404: "Resource not found.",
}


def transport_message(status_code: Optional[int]) -> str:
    """Return the fixed user message for a transport failure status."""
    if status_code is None:
        return GENERIC_TRANSPORT_MESSAGE
    return _TRANSPORT_MESSAGES.get(status_code, GENERIC_TRANSPORT_MESSAGE)


def transport_error_for_status(
    message: str, status_code: Optional[int], url: Optional[str] = None
) -> TransportError:
    """Build the TransportError subclass matching an HTTP status."""
    if status_code == 401:
        return InvalidTokenException(message, status_code=status_code, url=url)
    if status_code == 403:
        return AccessDeniedException(message, status_code=status_code, url=url)
    if status_code == 404:
        return NotFoundException(message, status_code=status_code, url=url)
    return TransportError(message, status_code=status_code, url=url)


def user_message(error: SyncClientError) -> str:
    """
    Render an error for display.

    Local validation failures are shown verbatim. Transport failures get a
    generic retry message (with fixed wording for 401/403/404). Server
    rejections show the server's message when there is one.
    """
    if isinstance(error, ValidationError):
        return error.message
    if isinstance(error, TransportError):
        return transport_message(error.status_code)
    if isinstance(error, ServerRejection):
        return error.message or GENERIC_REJECTION_MESSAGE
    if isinstance(error, ConflictError):
        return GENERIC_CONFLICT_MESSAGE
    return error.message or GENERIC_REJECTION_MESSAGE
