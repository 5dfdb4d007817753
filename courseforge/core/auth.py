"""Owner resolution for API requests.

Public interface:
    ``require_owner`` - FastAPI dependency returning an AuthContext or
                        raising 401.

With ``settings.auth_enabled`` the owner is the ``sub`` of a bearer token.
Without it, the owner comes from the ``X-Owner-Id`` header (default
"anonymous") so local development needs no token.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import settings
from .token_factory import verify_token
from ..exceptions import AuthenticationError

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)

ANONYMOUS_OWNER = "anonymous"
MAX_OWNER_LENGTH = 255


@dataclass(frozen=True)
class AuthContext:
    """The resolved caller. ``owner`` is the canonical ledger key."""

    owner: str
    role: str = "user"

    @property
    def is_service_account(self) -> bool:
        return self.role == "service"


def require_owner(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    x_owner_id: Optional[str] = Header(default=None),
) -> AuthContext:
    if not settings.auth_enabled:
        owner = (x_owner_id or "").strip() or ANONYMOUS_OWNER
        if len(owner) > MAX_OWNER_LENGTH:
            raise AuthenticationError("X-Owner-Id is too long")
        return AuthContext(owner=owner)

    if credentials is None:
        raise AuthenticationError("Missing authentication token")

    claims = verify_token(credentials.credentials, settings.jwt_secret_key)
    if claims is None:
        raise AuthenticationError("Invalid or expired token")
    return AuthContext(owner=claims.owner, role=claims.role)
