"""HS256 owner tokens.

The subject of a token is the owner id that keys credit accounts and
jobs. Tokens are minted by whatever fronts the service (or by hand for
scripts) and only ever verified here; no credentials are stored.
"""

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

ISSUER = "courseforge"


@dataclass(frozen=True)
class OwnerClaims:
    owner: str
    role: str
    expires_at: datetime


def _b64encode(data: bytes) -> bytes:
    return base64.urlsafe_b64encode(data).rstrip(b"=")


def _b64decode(data: bytes) -> bytes:
    return base64.urlsafe_b64decode(data + b"=" * (-len(data) % 4))


def _signature(secret: str, signing_input: bytes) -> bytes:
    return hmac.new(secret.encode(), signing_input, hashlib.sha256).digest()


def issue_token(
    owner: str,
    secret: str,
    role: str = "user",
    expires_hours: float = 24,
    now: Optional[float] = None,
) -> str:
    """Sign a token whose ``sub`` is *owner*."""
    if not owner:
        raise ValueError("owner must be non-empty")
    issued = time.time() if now is None else now
    header = {"alg": "HS256", "typ": "JWT"}
    claims = {
        "sub": owner,
        "role": role,
        "iss": ISSUER,
        "iat": int(issued),
        "exp": int(issued + expires_hours * 3600),
    }
    signing_input = b".".join(
        _b64encode(json.dumps(part, separators=(",", ":")).encode()) for part in (header, claims)
    )
    return (signing_input + b"." + _b64encode(_signature(secret, signing_input))).decode()


def verify_token(token: str, secret: str, now: Optional[float] = None) -> Optional[OwnerClaims]:
    """Return the token's claims, or None when it is malformed, forged or expired."""
    try:
        header_b64, claims_b64, sig_b64 = token.encode().split(b".")
        header = json.loads(_b64decode(header_b64))
        if header.get("alg") != "HS256":
            return None
        if not hmac.compare_digest(_signature(secret, header_b64 + b"." + claims_b64), _b64decode(sig_b64)):
            return None

        claims = json.loads(_b64decode(claims_b64))
        exp = int(claims["exp"])
        if (time.time() if now is None else now) >= exp:
            return None
        if claims.get("iss") != ISSUER or not claims.get("sub"):
            return None
        return OwnerClaims(
            owner=str(claims["sub"]),
            role=str(claims.get("role", "user")),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        )
    except (ValueError, KeyError, TypeError, AttributeError):
        # json.JSONDecodeError and binascii.Error are ValueErrors
        return None
