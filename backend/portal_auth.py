# portal_auth.py — Portal session tokens for external stakeholders
# Sessions are HS256 JWTs bound to exactly one space. Verification never raises:
# a forged, expired, malformed or foreign-space token is simply "no session".

import os
import secrets
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

from jose import jwt, JWTError

logger = logging.getLogger("clientspace.portal_auth")

PORTAL_SESSION_SECRET = os.getenv("PORTAL_SESSION_SECRET", "")
if not PORTAL_SESSION_SECRET or len(PORTAL_SESSION_SECRET) < 32:
    PORTAL_SESSION_SECRET = secrets.token_urlsafe(48)
    logger.warning(
        "PORTAL_SESSION_SECRET not set or shorter than 32 chars. Generated ephemeral key; "
        "portal sessions will not survive a restart."
    )

ALGORITHM = "HS256"
PORTAL_SESSION_DAYS = int(os.getenv("PORTAL_SESSION_DAYS", "30"))
SESSION_TOKEN_TYPE = "portal_session"

# What the session was granted on. Only member sessions pass a restricted gate;
# a public session carries whatever email the visitor typed in.
GRANT_PUBLIC = "public"
GRANT_MEMBER = "member"
SESSION_GRANTS = (GRANT_PUBLIC, GRANT_MEMBER)


def session_cookie_name(space_id: str) -> str:
    return f"portal_session_{space_id}"


@dataclass(frozen=True)
class PortalSessionClaims:
    email: str
    space_id: str
    expires_at: datetime
    grant: str = GRANT_PUBLIC


class SessionVerifier(Protocol):
    def verify(self, space_id: str, token: Optional[str]) -> Optional[PortalSessionClaims]:
        ...


class PortalSessionManager:
    """Issues and verifies portal session tokens."""

    def __init__(self, secret: str = PORTAL_SESSION_SECRET, lifetime_days: int = PORTAL_SESSION_DAYS):
        self._secret = secret
        self.lifetime = timedelta(days=lifetime_days)

    def create(self, space_id: str, email: str, grant: str = GRANT_PUBLIC) -> tuple:
        """Returns (token, claims)."""
        if grant not in SESSION_GRANTS:
            raise ValueError(f"Unknown session grant: {grant}")
        now = datetime.now(timezone.utc)
        expires_at = now + self.lifetime
        payload = {
            "email": email.strip().lower(),
            "space_id": space_id,
            "type": SESSION_TOKEN_TYPE,
            "grant": grant,
            "iat": now,
            "exp": expires_at,
        }
        token = jwt.encode(payload, self._secret, algorithm=ALGORITHM)
        return token, PortalSessionClaims(
            email=payload["email"], space_id=space_id, expires_at=expires_at, grant=grant,
        )

    def verify(self, space_id: str, token: Optional[str]) -> Optional[PortalSessionClaims]:
        if not token:
            return None
        try:
            payload = jwt.decode(token, self._secret, algorithms=[ALGORITHM])
        except JWTError as exc:
            logger.info(f"Portal session rejected for space {space_id}: {exc}")
            return None

        if payload.get("type") != SESSION_TOKEN_TYPE:
            return None
        if payload.get("space_id") != space_id:
            logger.warning(f"Portal session space mismatch: expected {space_id}, got {payload.get('space_id')}")
            return None
        email = payload.get("email")
        if not isinstance(email, str) or not email:
            return None
        # Tokens without a recognised grant never count as membership
        grant = payload.get("grant")
        if grant not in SESSION_GRANTS:
            grant = GRANT_PUBLIC

        return PortalSessionClaims(
            email=email,
            space_id=space_id,
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            grant=grant,
        )


session_manager = PortalSessionManager()


def get_session_manager() -> PortalSessionManager:
    """FastAPI dependency"""
    return session_manager
