# access_flow.py — How external stakeholders obtain a portal session
# - Public spaces: optional password, optional email (else "anonymous")
# - Restricted spaces: stakeholder email on the member list, optional password
# - Magic links: single-use, time-limited token issued to a stakeholder email
# Drafts and archived spaces never issue sessions.

import os
import uuid
import logging
from datetime import timedelta
from typing import Optional, Tuple

from pydantic import BaseModel
from sqlalchemy import select, func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from access_policy import denial_error, evaluate_lifecycle, load_space
from auth import AuthService
from errors import InvalidCredentials, StoreFailure, UnauthorizedError
from identity import ANONYMOUS_ACTOR
from models import AccessMode, MemberRole, PortalAccessToken, Space, SpaceMember, as_utc, utcnow
from portal_auth import GRANT_MEMBER, GRANT_PUBLIC, PortalSessionClaims, PortalSessionManager

logger = logging.getLogger("clientspace.access")

PORTAL_LINK_DAYS = int(os.getenv("PORTAL_LINK_DAYS", "7"))
ACCESS_LINK_MESSAGE = "If your email is in our system, we've sent you a link!"
INVALID_LINK_MESSAGE = "Link is invalid or has expired."


class PortalAccessSettings(BaseModel):
    access_mode: str
    has_password: bool
    project_status: str
    client_name: Optional[str] = None


async def _reachable_space(db: AsyncSession, space_id: str) -> Space:
    space = await load_space(db, space_id)
    decision = evaluate_lifecycle(space)
    if not decision.allowed:
        raise denial_error(decision)
    return space


def _check_password(space: Space, password: Optional[str]) -> None:
    if not space.access_password_hash:
        return
    if not password:
        raise InvalidCredentials("Password is required")
    if not AuthService.verify_password(password, space.access_password_hash):
        logger.info(f"Incorrect portal password for space {space.id}")
        raise InvalidCredentials()


async def get_access_settings(db: AsyncSession, space_id: str) -> PortalAccessSettings:
    space = await _reachable_space(db, space_id)
    return PortalAccessSettings(
        access_mode=space.access_mode.value,
        has_password=bool(space.access_password_hash),
        project_status=space.status.value,
        client_name=space.client_name,
    )


async def grant_public_access(
    db: AsyncSession,
    sessions: PortalSessionManager,
    space_id: str,
    password: Optional[str] = None,
    email: Optional[str] = None,
) -> Tuple[str, PortalSessionClaims]:
    space = await _reachable_space(db, space_id)
    if space.access_mode != AccessMode.PUBLIC:
        raise UnauthorizedError("This portal requires approved access")
    _check_password(space, password)

    session_email = (email or "").strip().lower() or ANONYMOUS_ACTOR
    return sessions.create(space.id, session_email, grant=GRANT_PUBLIC)


async def _find_stakeholder(db: AsyncSession, space_id: str, email: str) -> Optional[SpaceMember]:
    stmt = (
        select(SpaceMember)
        .where(
            SpaceMember.space_id == space_id,
            func.lower(SpaceMember.invited_email) == email,
            SpaceMember.role == MemberRole.STAKEHOLDER,
            SpaceMember.deleted_at.is_(None),
        )
        .order_by(SpaceMember.created_at.asc())
        .limit(1)
    )
    return (await db.execute(stmt)).scalars().first()


async def grant_restricted_access(
    db: AsyncSession,
    sessions: PortalSessionManager,
    space_id: str,
    email: str,
    password: Optional[str] = None,
) -> Tuple[str, PortalSessionClaims]:
    space = await _reachable_space(db, space_id)
    space_id = space.id
    normalized = email.strip().lower()

    member = await _find_stakeholder(db, space_id, normalized)
    if member is None:
        logger.info(f"Restricted access refused for space {space_id}")
        raise UnauthorizedError()
    _check_password(space, password)

    if member.joined_at is None:
        member_id = member.id
        try:
            member.joined_at = utcnow()
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            logger.exception(f"Failed to stamp joined_at for member {member_id}")
            raise StoreFailure()

    return sessions.create(space_id, normalized, grant=GRANT_MEMBER)


# ── Magic links ──────────────────────────────────────────────

async def request_portal_access(db: AsyncSession, space_id: str, email: str) -> str:
    """
    Issue a single-use sign-in link token for a stakeholder.

    The reply is the same whether or not the email belongs to a stakeholder,
    so the endpoint cannot be used to discover who is on the member list.
    Delivering the link is left to the mail integration.
    """
    space = await _reachable_space(db, space_id)
    space_id = space.id
    normalized = email.strip().lower()

    if await _find_stakeholder(db, space_id, normalized) is None:
        logger.info(f"Access link not issued for space {space_id}: no matching stakeholder")
        return ACCESS_LINK_MESSAGE

    link = PortalAccessToken(
        space_id=space_id,
        email=normalized,
        token=str(uuid.uuid4()),
        expires_at=utcnow() + timedelta(days=PORTAL_LINK_DAYS),
    )
    try:
        db.add(link)
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception(f"Failed to issue access link for space {space_id}")
        raise StoreFailure("Something went wrong generating the link.")

    logger.info(f"Access link issued for space {space_id}")
    return ACCESS_LINK_MESSAGE


async def validate_portal_token(
    db: AsyncSession,
    sessions: PortalSessionManager,
    space_id: str,
    token: str,
) -> Tuple[str, PortalSessionClaims]:
    """Redeem a magic-link token: mark it used, stamp joined_at, open a member session."""
    space = await _reachable_space(db, space_id)
    space_id = space.id

    stmt = select(PortalAccessToken).where(
        PortalAccessToken.space_id == space_id,
        PortalAccessToken.token == token,
        PortalAccessToken.used_at.is_(None),
    )
    link = (await db.execute(stmt)).scalar_one_or_none()
    now = utcnow()
    if link is None or as_utc(link.expires_at) <= now:
        logger.info(f"Rejected access link for space {space_id}")
        raise InvalidCredentials(INVALID_LINK_MESSAGE)
    link_id, email = link.id, link.email

    try:
        # Conditional update keeps the token single-use under concurrent redemption
        claimed = await db.execute(
            update(PortalAccessToken)
            .where(PortalAccessToken.id == link_id, PortalAccessToken.used_at.is_(None))
            .values(used_at=now)
        )
        if claimed.rowcount != 1:
            await db.rollback()
            raise InvalidCredentials(INVALID_LINK_MESSAGE)
        await db.execute(
            update(SpaceMember)
            .where(
                SpaceMember.space_id == space_id,
                func.lower(SpaceMember.invited_email) == email,
                SpaceMember.joined_at.is_(None),
            )
            .values(joined_at=now)
        )
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception(f"Failed to redeem access link {link_id}")
        raise StoreFailure()

    return sessions.create(space_id, email, grant=GRANT_MEMBER)
