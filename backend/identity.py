# identity.py — Which identity governs a portal request
"""
Resolves the identity context for a request against one space.

Exactly one of three contexts applies, checked in this order:

1. ``Staff``: a staff identity is present and holds an active internal
   membership (owner/editor/viewer row linked to the user) for the space.
   Staff short-circuit all portal-session logic.
2. ``PortalSession``: a verified, non-expired session token for this space.
   The session remembers whether it was granted through membership or
   through the public flow.
3. ``Anonymous``: neither of the above.

Session verification never raises: a bad token is indistinguishable from no
token at all.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser
from models import SpaceMember, STAFF_ROLES
from portal_auth import GRANT_MEMBER, GRANT_PUBLIC, SessionVerifier

logger = logging.getLogger("clientspace.identity")

ANONYMOUS_ACTOR = "anonymous"


@dataclass(frozen=True)
class Staff:
    user_id: str
    email: str

    @property
    def actor_email(self) -> str:
        return self.email


@dataclass(frozen=True)
class PortalSession:
    email: str
    grant: str = GRANT_PUBLIC

    @property
    def member_granted(self) -> bool:
        return self.grant == GRANT_MEMBER

    @property
    def actor_email(self) -> str:
        return self.email


@dataclass(frozen=True)
class Anonymous:
    @property
    def actor_email(self) -> str:
        return ANONYMOUS_ACTOR


IdentityContext = Union[Staff, PortalSession, Anonymous]


@dataclass(frozen=True)
class RequestContext:
    """Explicit per-request context passed to every core operation."""
    space_id: str
    identity: IdentityContext

    @property
    def actor_email(self) -> str:
        return self.identity.actor_email


async def find_staff_membership(db: AsyncSession, space_id: str, user_id: str) -> Optional[SpaceMember]:
    stmt = (
        select(SpaceMember)
        .where(
            SpaceMember.space_id == space_id,
            SpaceMember.user_id == user_id,
            SpaceMember.role.in_(STAFF_ROLES),
            SpaceMember.deleted_at.is_(None),
        )
        .order_by(SpaceMember.created_at.asc())
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalars().first()


async def resolve_identity(
    db: AsyncSession,
    space_id: str,
    staff: Optional[CurrentUser],
    session_token: Optional[str],
    verifier: SessionVerifier,
) -> IdentityContext:
    if staff is not None:
        membership = await find_staff_membership(db, space_id, staff.id)
        if membership is not None:
            return Staff(user_id=staff.id, email=staff.email)
        logger.debug(f"Staff {staff.id} has no membership in space {space_id}")

    claims = verifier.verify(space_id, session_token)
    if claims is not None:
        return PortalSession(email=claims.email, grant=claims.grant)

    return Anonymous()


async def resolve_context(
    db: AsyncSession,
    space_id: str,
    staff: Optional[CurrentUser],
    session_token: Optional[str],
    verifier: SessionVerifier,
) -> RequestContext:
    identity = await resolve_identity(db, space_id, staff, session_token, verifier)
    return RequestContext(space_id=space_id, identity=identity)
