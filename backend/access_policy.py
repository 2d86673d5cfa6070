# access_policy.py — Portal access decisions
# Rules, in order:
#   1. missing / soft-deleted space   -> not_found
#   2. draft                          -> not_ready
#   3. archived                       -> archived
#   4. reachable; completed           -> read_only
#   5. identity gate (staff / public / restricted membership)

import logging
from enum import Enum
from typing import Optional

from pydantic import BaseModel
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from errors import (
    PortalError, NotFoundError, NotReadyError, ArchivedError, UnauthorizedError,
)
from identity import IdentityContext, Staff, PortalSession
from models import Space, SpaceMember, SpaceStatus, AccessMode

logger = logging.getLogger("clientspace.access")


class AccessReason(str, Enum):
    NOT_FOUND = "not_found"
    NOT_READY = "not_ready"
    ARCHIVED = "archived"
    UNAUTHORIZED = "unauthorized"


class AccessDecision(BaseModel):
    allowed: bool
    reason: Optional[AccessReason] = None
    read_only: bool = False

    @classmethod
    def deny(cls, reason: AccessReason) -> "AccessDecision":
        return cls(allowed=False, reason=reason, read_only=False)


_DENIAL_ERRORS = {
    AccessReason.NOT_FOUND: NotFoundError,
    AccessReason.NOT_READY: NotReadyError,
    AccessReason.ARCHIVED: ArchivedError,
    AccessReason.UNAUTHORIZED: UnauthorizedError,
}


def denial_error(decision: AccessDecision) -> PortalError:
    return _DENIAL_ERRORS[decision.reason]()


async def load_space(db: AsyncSession, space_id: str) -> Optional[Space]:
    result = await db.execute(select(Space).where(Space.id == space_id))
    return result.scalar_one_or_none()


async def is_active_member(db: AsyncSession, space_id: str, email: str) -> bool:
    stmt = (
        select(SpaceMember.id)
        .where(
            SpaceMember.space_id == space_id,
            func.lower(SpaceMember.invited_email) == email.strip().lower(),
            SpaceMember.deleted_at.is_(None),
        )
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.first() is not None


def evaluate_lifecycle(space: Optional[Space]) -> AccessDecision:
    """Status-only part of the decision (rules 1-4)."""
    if space is None or space.deleted_at is not None:
        return AccessDecision.deny(AccessReason.NOT_FOUND)
    if space.status == SpaceStatus.DRAFT:
        return AccessDecision.deny(AccessReason.NOT_READY)
    if space.status == SpaceStatus.ARCHIVED:
        return AccessDecision.deny(AccessReason.ARCHIVED)
    return AccessDecision(allowed=True, reason=None, read_only=space.status == SpaceStatus.COMPLETED)


async def evaluate(db: AsyncSession, space: Optional[Space], identity: IdentityContext) -> AccessDecision:
    decision = evaluate_lifecycle(space)
    if not decision.allowed:
        return decision

    if isinstance(identity, Staff):
        return decision

    if space.access_mode == AccessMode.PUBLIC:
        # A password-protected public space only admits sessions issued after the password check
        if space.access_password_hash and not isinstance(identity, PortalSession):
            return AccessDecision.deny(AccessReason.UNAUTHORIZED)
        return decision

    # Public-flow sessions carry a self-typed email and never prove membership
    if (
        isinstance(identity, PortalSession)
        and identity.member_granted
        and await is_active_member(db, space.id, identity.email)
    ):
        return decision

    logger.info(f"Portal access denied for space {space.id} ({type(identity).__name__})")
    return AccessDecision.deny(AccessReason.UNAUTHORIZED)
