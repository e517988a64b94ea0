"""
Auth provider for the sync client.

Holds the bearer token used by the request client and exposes the identity
of the current user, read from the token's claims. The token is issued and
verified by the server; this side only decodes it for display and for
stamping status history entries.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import jwt
from jwt.exceptions import InvalidTokenError

logger = logging.getLogger(__name__)

ANONYMOUS_USER_ID = "anonymous"


@dataclass(frozen=True)
class UserIdentity:
    """Identity of the user acting through the client."""

    user_id: str
    full_name: Optional[str] = None
    email: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or self.user_id


ANONYMOUS = UserIdentity(user_id=ANONYMOUS_USER_ID)


class AuthProvider:
    """Current token and user identity."""

    def __init__(self, token: Optional[str] = None):
        self._token: Optional[str] = None
        self._identity: UserIdentity = ANONYMOUS
        if token:
            self.set_token(token)

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None

    def set_token(self, token: str) -> None:
        """Set the bearer token and refresh the cached identity."""
        self._token = token
        self._identity = _identity_from_token(token)
        logger.info(f"Authentication token set for user {self._identity.user_id}")

    def clear_token(self) -> None:
        self._token = None
        self._identity = ANONYMOUS
        logger.info("Authentication token cleared")

    def current_user(self) -> UserIdentity:
        return self._identity


def _identity_from_token(token: str) -> UserIdentity:
    """
    Decode user claims without verifying the signature.

    Opaque (non-JWT) tokens are accepted; the user is then anonymous.
    """
    try:
        claims = jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": False},
        )
    except InvalidTokenError as e:
        logger.debug(f"Token is not a decodable JWT, using anonymous identity: {e}")
        return ANONYMOUS

    user_id = claims.get("sub") or claims.get("userId") or ANONYMOUS_USER_ID
    return UserIdentity(
        user_id=str(user_id),
        full_name=claims.get("name") or claims.get("fullName"),
        email=claims.get("email"),
    )
