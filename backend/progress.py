# progress.py — Project completion progress
# Counts the interactive units in a space (or one page) and how many are done:
# - tasks: every task in task / action-plan content; legacy Task row otherwise
# - forms: every question; a question-less form counts once
# - files: every file_upload block, done once it holds a non-deleted file

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from blocks import (
    ChecklistContent, FormContent, TaskContent,
    iter_tasks, parse_block_content, upgrade_response_value,
)
from composite_keys import SubEntityRef, read_sub_entity, QUESTIONS_CONTAINER, TASKS_CONTAINER
from models import Block, BlockFile, BlockType, Page, Response, Task, TaskStatus

logger = logging.getLogger("clientspace.progress")


class ProgressStats(BaseModel):
    total_tasks: int = 0
    completed_tasks: int = 0
    total_forms: int = 0
    answered_forms: int = 0
    total_files: int = 0
    uploaded_files: int = 0
    progress_percentage: int = 0


class DueTask(BaseModel):
    key: str
    block_id: str
    task_id: str
    title: str
    due_date: str
    status: str
    milestone: Optional[str] = None


# ============================================================
# SNAPSHOT
# ============================================================

@dataclass
class ContentSnapshot:
    """Blocks of a space or page together with everything needed to score them."""
    blocks: List[Block] = field(default_factory=list)
    responses: Dict[str, Any] = field(default_factory=dict)
    legacy_tasks: Dict[str, TaskStatus] = field(default_factory=dict)
    file_counts: Dict[str, int] = field(default_factory=dict)

    def response(self, block: Block) -> Any:
        return upgrade_response_value(block.type, self.responses.get(block.id))


async def load_snapshot(db: AsyncSession, space_id: Optional[str] = None, page_id: Optional[str] = None) -> ContentSnapshot:
    stmt = (
        select(Block)
        .join(Page, Page.id == Block.page_id)
        .where(Page.deleted_at.is_(None), Block.deleted_at.is_(None))
        .order_by(Page.sort_order.asc(), Block.sort_order.asc())
    )
    if space_id is not None:
        stmt = stmt.where(Page.space_id == space_id)
    if page_id is not None:
        stmt = stmt.where(Page.id == page_id)

    blocks = list((await db.execute(stmt)).scalars().all())
    snapshot = ContentSnapshot(blocks=blocks)
    block_ids = [b.id for b in blocks]
    if not block_ids:
        return snapshot

    rows = await db.execute(select(Response.block_id, Response.value).where(Response.block_id.in_(block_ids)))
    snapshot.responses = {block_id: value for block_id, value in rows.all()}

    rows = await db.execute(select(Task.block_id, Task.status).where(Task.block_id.in_(block_ids)))
    snapshot.legacy_tasks = {block_id: status for block_id, status in rows.all()}

    rows = await db.execute(
        select(BlockFile.block_id, func.count(BlockFile.id))
        .where(BlockFile.block_id.in_(block_ids), BlockFile.deleted_at.is_(None))
        .group_by(BlockFile.block_id)
    )
    snapshot.file_counts = {block_id: count for block_id, count in rows.all()}
    return snapshot


# ============================================================
# UNIT COUNTING
# ============================================================

def is_answered(answer: Any) -> bool:
    """A question answer counts once it carries text, a selection or a date."""
    if not isinstance(answer, dict):
        return has_value(answer)
    text = answer.get("text")
    if isinstance(text, str) and text.strip():
        return True
    selected = answer.get("selected")
    if isinstance(selected, list) and selected:
        return True
    if isinstance(selected, str) and selected.strip():
        return True
    return bool(answer.get("date"))


def has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, dict)):
        return bool(value)
    return True


def count_tasks(snapshot: ContentSnapshot) -> tuple:
    total = completed = 0
    for block in snapshot.blocks:
        if block.type not in (BlockType.TASK.value, BlockType.ACTION_PLAN.value):
            continue
        content = parse_block_content(block.type, block.content)
        tasks = iter_tasks(content)
        value = snapshot.response(block)

        if not tasks:
            if isinstance(content, TaskContent) and block.id in snapshot.legacy_tasks:
                total += 1
                completed += snapshot.legacy_tasks[block.id] == TaskStatus.COMPLETED
            continue

        for task, _milestone in tasks:
            total += 1
            completed += read_sub_entity(value, TASKS_CONTAINER, task.id) == TaskStatus.COMPLETED.value
    return total, int(completed)


def count_forms(snapshot: ContentSnapshot) -> tuple:
    total = answered = 0
    for block in snapshot.blocks:
        if block.type != BlockType.FORM.value:
            continue
        content = parse_block_content(block.type, block.content)
        value = snapshot.response(block)
        questions = content.questions if isinstance(content, FormContent) else []

        if not questions:
            total += 1
            answered += has_value(value)
            continue

        for question in questions:
            total += 1
            answered += is_answered(read_sub_entity(value, QUESTIONS_CONTAINER, question.id))
    return total, int(answered)


def count_files(snapshot: ContentSnapshot) -> tuple:
    uploads = [b for b in snapshot.blocks if b.type == BlockType.FILE_UPLOAD.value]
    uploaded = sum(1 for b in uploads if snapshot.file_counts.get(b.id, 0) > 0)
    return len(uploads), uploaded


def count_checklist_items(snapshot: ContentSnapshot) -> tuple:
    total = checked = 0
    for block in snapshot.blocks:
        if block.type != BlockType.CHECKLIST.value:
            continue
        content = parse_block_content(block.type, block.content)
        if not isinstance(content, ChecklistContent):
            continue
        value = snapshot.response(block)
        ticked = set(value.get("checked") or []) if isinstance(value, dict) else set()
        item_ids = [item.id for item in content.items]
        total += len(item_ids)
        checked += sum(1 for item_id in item_ids if item_id in ticked)
    return total, checked


def percentage(done: int, total: int) -> int:
    if total <= 0:
        return 0
    return max(0, min(100, round(100 * done / total)))


def stats_from_snapshot(snapshot: ContentSnapshot) -> ProgressStats:
    total_tasks, completed_tasks = count_tasks(snapshot)
    total_forms, answered_forms = count_forms(snapshot)
    total_files, uploaded_files = count_files(snapshot)
    return ProgressStats(
        total_tasks=total_tasks,
        completed_tasks=completed_tasks,
        total_forms=total_forms,
        answered_forms=answered_forms,
        total_files=total_files,
        uploaded_files=uploaded_files,
        progress_percentage=percentage(
            completed_tasks + answered_forms + uploaded_files,
            total_tasks + total_forms + total_files,
        ),
    )


async def compute_progress(db: AsyncSession, space_id: str) -> ProgressStats:
    return stats_from_snapshot(await load_snapshot(db, space_id=space_id))


async def compute_page_progress(db: AsyncSession, page_id: str) -> ProgressStats:
    return stats_from_snapshot(await load_snapshot(db, page_id=page_id))


# ============================================================
# DUE DATES
# ============================================================

def parse_due_date(raw: Optional[str]) -> Optional[date]:
    if not raw:
        return None
    try:
        return date.fromisoformat(str(raw)[:10])
    except ValueError:
        logger.debug(f"Ignoring unparseable due date {raw!r}")
        return None


def pending_tasks_with_due_dates(snapshot: ContentSnapshot) -> List[tuple]:
    """(due date, DueTask) for every pending task that has a due date."""
    found = []
    for block in snapshot.blocks:
        if block.type not in (BlockType.TASK.value, BlockType.ACTION_PLAN.value):
            continue
        content = parse_block_content(block.type, block.content)
        value = snapshot.response(block)
        for task, milestone in iter_tasks(content):
            status = read_sub_entity(value, TASKS_CONTAINER, task.id) or TaskStatus.PENDING.value
            if status != TaskStatus.PENDING.value:
                continue
            raw_due = task.due_date or (milestone.due_date if milestone else None)
            due = parse_due_date(raw_due)
            if due is None:
                continue
            found.append((due, DueTask(
                key=SubEntityRef(block.id, task.id).key,
                block_id=block.id,
                task_id=task.id,
                title=task.title,
                due_date=due.isoformat(),
                status=status,
                milestone=milestone.title if milestone else None,
            )))
    found.sort(key=lambda pair: pair[0])
    return found


async def upcoming_tasks(db: AsyncSession, space_id: str, limit: int = 5) -> List[DueTask]:
    snapshot = await load_snapshot(db, space_id=space_id)
    return [task for _due, task in pending_tasks_with_due_dates(snapshot)[:limit]]


async def overdue_tasks(db: AsyncSession, space_id: str, today: Optional[date] = None) -> List[DueTask]:
    today = today or date.today()
    snapshot = await load_snapshot(db, space_id=space_id)
    return [task for due, task in pending_tasks_with_due_dates(snapshot) if due < today]
