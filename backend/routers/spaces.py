# routers/spaces.py — Staff dashboards for a space: progress, engagement, activity
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from activity import list_for_space, serialize_entry
from auth import CurrentUser, get_current_user
from database import get_db_session
from engagement import EngagementPolicy, EngagementResult, get_engagement
from errors import NotFoundError, UnauthorizedError
from identity import find_staff_membership
from models import Page, Space
from progress import DueTask, ProgressStats, compute_page_progress, compute_progress, overdue_tasks, upcoming_tasks

router = APIRouter(prefix="/api/v1/spaces", tags=["Spaces"])


async def require_space_staff(
    space_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> Space:
    """The space, provided the caller holds a staff membership in it"""
    space = (await db.execute(select(Space).where(Space.id == space_id))).scalar_one_or_none()
    if space is None or space.deleted_at is not None:
        raise NotFoundError("Space not found")
    if await find_staff_membership(db, space_id, user.id) is None:
        raise UnauthorizedError()
    return space


def get_engagement_policy() -> EngagementPolicy:
    return EngagementPolicy.from_env()


@router.get("/{space_id}/progress", response_model=ProgressStats)
async def space_progress(
    space: Space = Depends(require_space_staff),
    db: AsyncSession = Depends(get_db_session),
):
    return await compute_progress(db, space.id)


@router.get("/{space_id}/pages/{page_id}/progress", response_model=ProgressStats)
async def page_progress(
    page_id: str,
    space: Space = Depends(require_space_staff),
    db: AsyncSession = Depends(get_db_session),
):
    stmt = select(Page.id).where(Page.id == page_id, Page.space_id == space.id, Page.deleted_at.is_(None))
    if (await db.execute(stmt)).first() is None:
        raise NotFoundError("Page not found")
    return await compute_page_progress(db, page_id)


@router.get("/{space_id}/engagement", response_model=EngagementResult)
async def space_engagement(
    space: Space = Depends(require_space_staff),
    db: AsyncSession = Depends(get_db_session),
    policy: EngagementPolicy = Depends(get_engagement_policy),
):
    return await get_engagement(db, space.id, policy)


@router.get("/{space_id}/activity")
async def space_activity(
    limit: int = Query(50, ge=1, le=500),
    action_prefix: Optional[str] = Query(default=None, max_length=50),
    space: Space = Depends(require_space_staff),
    db: AsyncSession = Depends(get_db_session),
):
    entries = await list_for_space(db, space.id, limit=limit, action_prefix=action_prefix)
    return [serialize_entry(entry) for entry in entries]


@router.get("/{space_id}/tasks/upcoming", response_model=List[DueTask])
async def space_upcoming_tasks(
    limit: int = Query(5, ge=1, le=100),
    space: Space = Depends(require_space_staff),
    db: AsyncSession = Depends(get_db_session),
):
    return await upcoming_tasks(db, space.id, limit=limit)


@router.get("/{space_id}/tasks/overdue", response_model=List[DueTask])
async def space_overdue_tasks(
    space: Space = Depends(require_space_staff),
    db: AsyncSession = Depends(get_db_session),
):
    return await overdue_tasks(db, space.id)
