# engagement.py — Client engagement score (0-100) per space
"""
Five weighted factors make up the score:

==========  ======  ==============================================
factor      max     measured as
==========  ======  ==============================================
visits      20      portal visits in the trailing window, banded
tasks       25      completed / total tasks
questions   25      answered / total form questions
files       15      file_upload blocks holding a file / total
checklists  15      ticked / total checklist items
==========  ======  ==============================================

A ratio factor with nothing to do contributes 0. When every ratio factor is
empty there is nothing to engage with and the level is ``none``.

The latest result is cached on the space row and recomputed on read once it
is older than ``EngagementPolicy.stale_after``.
"""

import os
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from pydantic import BaseModel
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from activity import VISIT_ACTIONS
from errors import NotFoundError, StoreFailure
from models import ActivityLogEntry, EngagementLevel, Space, as_utc, utcnow
from progress import count_checklist_items, count_files, count_forms, count_tasks, load_snapshot

logger = logging.getLogger("clientspace.engagement")

VISITS_MAX = 20
TASKS_MAX = 25
QUESTIONS_MAX = 25
FILES_MAX = 15
CHECKLISTS_MAX = 15

# (upper bound on visit count, points)
VISIT_BANDS = ((0, 0), (1, 5), (3, 10), (6, 15))


@dataclass(frozen=True)
class EngagementPolicy:
    visit_window_days: int = 14
    high_threshold: int = 75
    medium_threshold: int = 40
    stale_after: timedelta = timedelta(minutes=60)

    @classmethod
    def from_env(cls) -> "EngagementPolicy":
        return cls(
            visit_window_days=int(os.getenv("ENGAGEMENT_VISIT_WINDOW_DAYS", "14")),
            high_threshold=int(os.getenv("ENGAGEMENT_HIGH_THRESHOLD", "75")),
            medium_threshold=int(os.getenv("ENGAGEMENT_MEDIUM_THRESHOLD", "40")),
            stale_after=timedelta(minutes=int(os.getenv("ENGAGEMENT_STALE_MINUTES", "60"))),
        )


class EngagementFactor(BaseModel):
    score: float
    max: int
    done: int
    total: int


class EngagementResult(BaseModel):
    score: int
    level: EngagementLevel
    factors: Dict[str, EngagementFactor]
    calculated_at: datetime
    cached: bool = False


def visit_points(visits: int) -> int:
    for upper, points in VISIT_BANDS:
        if visits <= upper:
            return points
    return VISITS_MAX


def ratio_factor(done: int, total: int, weight: int) -> EngagementFactor:
    score = (done / total) * weight if total > 0 else 0.0
    return EngagementFactor(score=round(score, 2), max=weight, done=done, total=total)


def engagement_level(score: int, has_work: bool, policy: EngagementPolicy) -> EngagementLevel:
    if score <= 0 or not has_work:
        return EngagementLevel.NONE
    if score >= policy.high_threshold:
        return EngagementLevel.HIGH
    if score >= policy.medium_threshold:
        return EngagementLevel.MEDIUM
    return EngagementLevel.LOW


async def count_recent_visits(db: AsyncSession, space_id: str, window_days: int) -> int:
    since = utcnow() - timedelta(days=window_days)
    stmt = select(func.count(ActivityLogEntry.id)).where(
        ActivityLogEntry.space_id == space_id,
        ActivityLogEntry.action.in_(VISIT_ACTIONS),
        ActivityLogEntry.created_at >= since,
    )
    return (await db.execute(stmt)).scalar() or 0


async def compute_engagement(db: AsyncSession, space_id: str, policy: Optional[EngagementPolicy] = None) -> EngagementResult:
    policy = policy or EngagementPolicy.from_env()
    snapshot = await load_snapshot(db, space_id=space_id)
    visits = await count_recent_visits(db, space_id, policy.visit_window_days)

    # count_* return (total, done)
    tasks_total, tasks_done = count_tasks(snapshot)
    forms_total, forms_done = count_forms(snapshot)
    uploads_total, uploads_done = count_files(snapshot)
    items_total, items_done = count_checklist_items(snapshot)

    factors = {
        "visits": EngagementFactor(score=visit_points(visits), max=VISITS_MAX, done=visits, total=visits),
        "tasks": ratio_factor(tasks_done, tasks_total, TASKS_MAX),
        "questions": ratio_factor(forms_done, forms_total, QUESTIONS_MAX),
        "files": ratio_factor(uploads_done, uploads_total, FILES_MAX),
        "checklists": ratio_factor(items_done, items_total, CHECKLISTS_MAX),
    }
    raw = sum(factor.score for factor in factors.values())
    score = max(0, min(100, round(raw)))
    has_work = any(factors[name].total > 0 for name in ("tasks", "questions", "files", "checklists"))

    return EngagementResult(
        score=score,
        level=engagement_level(score, has_work, policy),
        factors=factors,
        calculated_at=utcnow(),
    )


def _cached_result(space: Space, policy: EngagementPolicy) -> Optional[EngagementResult]:
    calculated_at = as_utc(space.engagement_calculated_at)
    if calculated_at is None or space.engagement_score is None:
        return None
    if utcnow() - calculated_at >= policy.stale_after:
        return None
    return EngagementResult(
        score=space.engagement_score,
        level=EngagementLevel(space.engagement_level or EngagementLevel.NONE.value),
        factors={name: EngagementFactor(**f) for name, f in (space.engagement_factors or {}).items()},
        calculated_at=calculated_at,
        cached=True,
    )


async def get_engagement(db: AsyncSession, space_id: str, policy: Optional[EngagementPolicy] = None) -> EngagementResult:
    """Serve the cached score while fresh; otherwise recompute and store it."""
    policy = policy or EngagementPolicy.from_env()
    space = (await db.execute(select(Space).where(Space.id == space_id))).scalar_one_or_none()
    if space is None or space.deleted_at is not None:
        raise NotFoundError("Space not found")

    cached = _cached_result(space, policy)
    if cached is not None:
        return cached

    result = await compute_engagement(db, space_id, policy)
    try:
        space.engagement_score = result.score
        space.engagement_level = result.level.value
        space.engagement_factors = {name: f.model_dump() for name, f in result.factors.items()}
        space.engagement_calculated_at = result.calculated_at
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception(f"Failed to cache engagement for space {space_id}")
        raise StoreFailure()

    logger.info(f"Engagement for space {space_id}: {result.score} ({result.level.value})")
    return result
