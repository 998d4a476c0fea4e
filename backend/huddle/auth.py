"""Bearer tokens and the explicit per-request Session.

A token is ``<payload>.<signature>``: base64url JSON claims (``sub``, ``exp``)
followed by a base64url HMAC-SHA256 of the payload segment under AUTH_SECRET.
"""

import base64
import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Header, HTTPException, status

from huddle.config import settings


@dataclass(frozen=True)
class Session:
    """The acting user, passed explicitly into every service operation."""

    user_id: str
    is_platform_admin: bool = False


def _encode_segment(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _decode_segment(segment: str) -> bytes:
    return base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))


def _signature(payload_segment: str) -> str:
    digest = hmac.new(settings.auth_secret.encode("utf-8"), payload_segment.encode("ascii"), hashlib.sha256).digest()
    return _encode_segment(digest)


def create_access_token(user_id: str) -> tuple[str, str]:
    expires_at = datetime.now(timezone.utc) + timedelta(hours=settings.auth_token_ttl_hours)
    claims = {"sub": user_id, "exp": int(expires_at.timestamp())}
    payload_segment = _encode_segment(json.dumps(claims, separators=(",", ":")).encode("utf-8"))
    return f"{payload_segment}.{_signature(payload_segment)}", expires_at.isoformat()


def verify_access_token(token: str) -> Optional[str]:
    """Return the token's user id, or None for a forged, malformed or expired token."""
    payload_segment, dot, signature = token.partition(".")
    if not dot or not payload_segment.isascii():
        return None
    if not hmac.compare_digest(signature.encode("utf-8"), _signature(payload_segment).encode("ascii")):
        return None
    try:
        claims = json.loads(_decode_segment(payload_segment))
    except ValueError:
        return None
    if not isinstance(claims, dict):
        return None
    subject, expiry = claims.get("sub"), claims.get("exp")
    if not isinstance(subject, str) or not subject or not isinstance(expiry, int):
        return None
    if datetime.now(timezone.utc).timestamp() > expiry:
        return None
    return subject


def parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    scheme, _, credentials = (authorization or "").partition(" ")
    if scheme.lower() != "bearer":
        return None
    return credentials.strip() or None


def session_from_header(authorization: Optional[str]) -> Optional[Session]:
    token = parse_bearer_token(authorization)
    user_id = verify_access_token(token) if token else None
    if not user_id:
        return None
    return Session(user_id=user_id, is_platform_admin=settings.is_platform_admin(user_id))


def require_session(authorization: Optional[str] = Header(default=None)) -> Session:
    session = session_from_header(authorization)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return session


def optional_session(authorization: Optional[str] = Header(default=None)) -> Optional[Session]:
    return session_from_header(authorization)
