from common.auth.auth_provider import ANONYMOUS, AuthProvider, UserIdentity

__all__ = ["ANONYMOUS", "AuthProvider", "UserIdentity"]
