# activity.py — Append-only activity log for spaces
# Features:
# - Fire-and-forget emit() that never blocks or fails the calling request
# - Awaitable record() for callers that want the write inline
# - drain() so shutdown (and tests) can wait for in-flight writes
# - Newest-first feed with optional action-prefix filter

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database import async_session_maker
from models import ActivityLogEntry

logger = logging.getLogger("clientspace.activity")


class ActivityAction(str, Enum):
    PORTAL_FIRST_VISIT = "portal.first_visit"
    PORTAL_VISIT = "portal.visit"
    PAGE_VIEWED = "page.viewed"
    TASK_COMPLETED = "task.completed"
    TASK_REOPENED = "task.reopened"
    FILE_UPLOADED = "file.uploaded"
    FILE_DOWNLOADED = "file.downloaded"
    FILE_DELETED = "file.deleted"
    FORM_SUBMITTED = "form.submitted"
    CHECKLIST_UPDATED = "checklist.updated"


VISIT_ACTIONS = (ActivityAction.PORTAL_VISIT.value, ActivityAction.PORTAL_FIRST_VISIT.value)


class ActivityEntry(BaseModel):
    space_id: str
    actor_email: str
    action: ActivityAction
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ActivityLogger:
    """
    Writes activity rows in their own session, outside the caller's
    transaction. Delivery is at-most-once: a failed write is logged and
    counted, never retried and never raised to the caller.
    """

    def __init__(self, session_factory: async_sessionmaker = async_session_maker):
        self.session_factory = session_factory
        self.failed_writes = 0
        self._pending: Set[asyncio.Task] = set()

    def emit(self, entry: ActivityEntry) -> None:
        task = asyncio.create_task(self.record(entry))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def record(self, entry: ActivityEntry) -> bool:
        try:
            async with self.session_factory() as session:
                session.add(ActivityLogEntry(
                    space_id=entry.space_id,
                    actor_email=entry.actor_email,
                    action=entry.action.value,
                    resource_type=entry.resource_type,
                    resource_id=entry.resource_id,
                    details=entry.metadata,
                ))
                await session.commit()
            return True
        except SQLAlchemyError as exc:
            self.failed_writes += 1
            logger.error(f"Activity write failed ({entry.action.value} in space {entry.space_id}): {exc}")
            return False

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._pending)


# ============================================================
# QUERIES
# ============================================================

async def list_for_space(
    db: AsyncSession,
    space_id: str,
    limit: int = 50,
    action_prefix: Optional[str] = None,
) -> List[ActivityLogEntry]:
    stmt = select(ActivityLogEntry).where(ActivityLogEntry.space_id == space_id)
    if action_prefix:
        stmt = stmt.where(ActivityLogEntry.action.startswith(action_prefix))
    stmt = stmt.order_by(ActivityLogEntry.created_at.desc()).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def is_first_visit(db: AsyncSession, space_id: str, actor_email: str) -> bool:
    stmt = (
        select(ActivityLogEntry.id)
        .where(
            ActivityLogEntry.space_id == space_id,
            ActivityLogEntry.actor_email == actor_email,
            ActivityLogEntry.action.in_(VISIT_ACTIONS),
        )
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.first() is None


def serialize_entry(entry: ActivityLogEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "space_id": entry.space_id,
        "actor_email": entry.actor_email,
        "action": entry.action,
        "resource_type": entry.resource_type,
        "resource_id": entry.resource_id,
        "metadata": entry.details or {},
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


activity_logger = ActivityLogger()


def get_activity_logger() -> ActivityLogger:
    """FastAPI dependency"""
    return activity_logger
