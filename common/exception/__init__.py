from common.exception.exceptions import (
    AccessDeniedException,
    ApprovalRequiredError,
    ConfigurationError,
    ConflictError,
    InvalidTokenException,
    NotFoundException,
    ServerRejection,
    SyncClientError,
    TransportError,
    ValidationError,
    transport_error_for_status,
    transport_message,
    user_message,
)

__all__ = [
    "AccessDeniedException",
    "ApprovalRequiredError",
    "ConfigurationError",
    "ConflictError",
    "InvalidTokenException",
    "NotFoundException",
    "ServerRejection",
    "SyncClientError",
    "TransportError",
    "ValidationError",
    "transport_error_for_status",
    "transport_message",
    "user_message",
]
