# content_store.py — Gated reads and writes over the space content graph
# Features:
# - Every call takes an explicit RequestContext and re-evaluates access
# - Mutations fail fast on read-only (completed) spaces
# - Response writes are compare-and-swap on Response.version_id, retried on conflict
# - Activity is emitted after commit, outside the write's transaction
# - Store errors roll back, are logged in full and surface as StoreFailure

import os
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from access_policy import AccessDecision, AccessReason, evaluate, denial_error, load_space
from activity import ActivityAction, ActivityEntry, ActivityLogger, VISIT_ACTIONS, is_first_visit
from blocks import (
    dump_content, find_task, parse_block_content, content_title, upgrade_response_value,
)
from composite_keys import (
    QUESTIONS_CONTAINER, TASKS_CONTAINER, SubEntityRef,
    expand_answers, expand_task_statuses, flatten, merge_sub_entity, read_sub_entity,
)
from errors import NotFoundError, ReadOnlyViolation, StoreFailure, UnauthorizedError
from identity import PortalSession, RequestContext, Staff
from models import (
    ActivityLogEntry, Block, BlockFile, BlockType, Page, Response, Space, SpaceMember,
    Task, TaskStatus, utcnow,
)

logger = logging.getLogger("clientspace.content")

MAX_MERGE_ATTEMPTS = 3
VISIT_DEDUP_WINDOW = timedelta(minutes=int(os.getenv("PORTAL_VISIT_DEDUP_MINUTES", "15")))

TASK_BLOCK_TYPES = (BlockType.TASK.value, BlockType.ACTION_PLAN.value)


# ============================================================
# VIEWS
# ============================================================

class PageView(BaseModel):
    id: str
    title: str
    slug: str
    sort_order: int

    @classmethod
    def of(cls, page: Page) -> "PageView":
        return cls(id=page.id, title=page.title, slug=page.slug, sort_order=page.sort_order)


class BlockView(BaseModel):
    id: str
    page_id: str
    type: str
    content: Dict[str, Any]
    sort_order: int

    @classmethod
    def of(cls, block: Block) -> "BlockView":
        return cls(
            id=block.id,
            page_id=block.page_id,
            type=block.type,
            content=dump_content(parse_block_content(block.type, block.content)),
            sort_order=block.sort_order,
        )


class PageWithBlocks(BaseModel):
    page: PageView
    blocks: List[BlockView]


class ActionPlanBlockView(BaseModel):
    block: BlockView
    page_slug: str


class PortalSpaceView(BaseModel):
    id: str
    name: str
    client_name: Optional[str] = None
    status: str
    access_mode: str
    read_only: bool
    target_go_live_date: Optional[str] = None
    welcome_popup: Optional[Dict[str, Any]] = None
    show_welcome_popup: bool = False


class FileMeta(BaseModel):
    original_name: str = Field(..., min_length=1, max_length=500)
    mime_type: Optional[str] = None
    size_bytes: int = Field(default=0, ge=0)
    storage_path: str = Field(..., min_length=1)


class FileView(BaseModel):
    id: str
    block_id: str
    original_name: str
    mime_type: Optional[str] = None
    size_bytes: int
    storage_path: str
    uploaded_by_email: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def of(cls, file: BlockFile) -> "FileView":
        return cls(
            id=file.id,
            block_id=file.block_id,
            original_name=file.original_name,
            mime_type=file.mime_type,
            size_bytes=file.size_bytes or 0,
            storage_path=file.storage_path,
            uploaded_by_email=file.uploaded_by_email,
            created_at=file.created_at.isoformat() if file.created_at else None,
        )


class TaskToggleResult(BaseModel):
    key: str
    status: str


class VisitResult(BaseModel):
    recorded: bool
    first_visit: bool = False


# ============================================================
# CONTENT STORE
# ============================================================

class ContentStore:
    """Portal-facing operations on one space's pages, blocks, responses and files."""

    def __init__(self, db: AsyncSession, activity: ActivityLogger, max_merge_attempts: int = MAX_MERGE_ATTEMPTS):
        self.db = db
        self.activity = activity
        self.max_merge_attempts = max_merge_attempts

    # ── Access ───────────────────────────────────────────────

    async def access_decision(self, ctx: RequestContext) -> AccessDecision:
        space = await load_space(self.db, ctx.space_id)
        return await evaluate(self.db, space, ctx.identity)

    async def _authorize(self, ctx: RequestContext) -> Tuple[Space, AccessDecision]:
        space = await load_space(self.db, ctx.space_id)
        decision = await evaluate(self.db, space, ctx.identity)
        if not decision.allowed:
            raise denial_error(decision)
        return space, decision

    async def _authorize_mutation(self, ctx: RequestContext) -> Space:
        space, decision = await self._authorize(ctx)
        if decision.read_only:
            raise ReadOnlyViolation()
        return space

    # ── Loading helpers ──────────────────────────────────────

    def _page_filters(self, ctx: RequestContext) -> list:
        filters = [Page.space_id == ctx.space_id, Page.deleted_at.is_(None)]
        # Staff preview hidden pages; portal visitors do not
        if not isinstance(ctx.identity, Staff):
            filters.append(Page.is_visible.is_(True))
        return filters

    async def _load_page(self, ctx: RequestContext, page_id: str) -> Page:
        stmt = select(Page).where(Page.id == page_id, *self._page_filters(ctx))
        page = (await self.db.execute(stmt)).scalar_one_or_none()
        if page is None:
            raise NotFoundError("Page not found")
        return page

    async def _load_block(self, ctx: RequestContext, block_id: str) -> Block:
        stmt = (
            select(Block)
            .join(Page, Page.id == Block.page_id)
            .where(Block.id == block_id, Block.deleted_at.is_(None), *self._page_filters(ctx))
        )
        block = (await self.db.execute(stmt)).scalar_one_or_none()
        if block is None:
            raise NotFoundError("Block not found")
        return block

    async def _page_blocks(self, page_id: str) -> List[Block]:
        stmt = (
            select(Block)
            .where(Block.page_id == page_id, Block.deleted_at.is_(None))
            .order_by(Block.sort_order.asc(), Block.created_at.asc())
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def _responses_for(self, block_ids: List[str]) -> List[Response]:
        if not block_ids:
            return []
        stmt = select(Response).where(Response.block_id.in_(block_ids))
        return list((await self.db.execute(stmt)).scalars().all())

    def _activity(self, ctx: RequestContext, action: ActivityAction, resource_type: str,
                  resource_id: str, **metadata) -> None:
        self.activity.emit(ActivityEntry(
            space_id=ctx.space_id,
            actor_email=ctx.actor_email,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            metadata=metadata,
        ))

    async def _fail(self, operation: str, ctx: RequestContext) -> StoreFailure:
        await self.db.rollback()
        logger.exception(f"{operation} failed for space {ctx.space_id}")
        return StoreFailure()

    # ── Reads ────────────────────────────────────────────────

    async def get_portal_space(self, ctx: RequestContext) -> PortalSpaceView:
        space = await load_space(self.db, ctx.space_id)
        decision = await evaluate(self.db, space, ctx.identity)
        if not decision.allowed:
            # Drafts and archived spaces are indistinguishable from missing ones here
            if decision.reason in (AccessReason.NOT_READY, AccessReason.ARCHIVED):
                raise NotFoundError()
            raise denial_error(decision)

        popup = space.welcome_popup if isinstance(space.welcome_popup, dict) else None
        return PortalSpaceView(
            id=space.id,
            name=space.name,
            client_name=space.client_name,
            status=space.status.value,
            access_mode=space.access_mode.value,
            read_only=decision.read_only,
            target_go_live_date=space.target_go_live_date.isoformat() if space.target_go_live_date else None,
            welcome_popup=popup,
            show_welcome_popup=await self._should_show_welcome_popup(ctx, popup),
        )

    async def _should_show_welcome_popup(self, ctx: RequestContext, popup: Optional[Dict[str, Any]]) -> bool:
        if not popup or not popup.get("enabled"):
            return False
        if not isinstance(ctx.identity, PortalSession):
            return False
        member = await self._find_member(ctx.space_id, ctx.identity.email)
        return member is None or member.welcome_popup_dismissed_at is None

    async def list_pages(self, ctx: RequestContext) -> List[PageView]:
        await self._authorize(ctx)
        stmt = (
            select(Page)
            .where(*self._page_filters(ctx))
            .order_by(Page.sort_order.asc(), Page.created_at.asc())
        )
        pages = (await self.db.execute(stmt)).scalars().all()
        return [PageView.of(page) for page in pages]

    async def get_page(self, ctx: RequestContext, slug: str) -> PageWithBlocks:
        await self._authorize(ctx)
        stmt = select(Page).where(Page.slug == slug, *self._page_filters(ctx))
        page = (await self.db.execute(stmt)).scalar_one_or_none()
        if page is None:
            raise NotFoundError("Page not found")
        blocks = await self._page_blocks(page.id)
        return PageWithBlocks(page=PageView.of(page), blocks=[BlockView.of(block) for block in blocks])

    async def get_responses(self, ctx: RequestContext, page_id: str) -> List[Response]:
        await self._authorize(ctx)
        await self._load_page(ctx, page_id)
        blocks = await self._page_blocks(page_id)
        return await self._responses_for([block.id for block in blocks])

    async def get_response_map(self, ctx: RequestContext, page_id: str) -> Dict[str, Any]:
        await self._authorize(ctx)
        await self._load_page(ctx, page_id)
        blocks = {block.id: block for block in await self._page_blocks(page_id)}
        answers: Dict[SubEntityRef, Any] = {}
        for response in await self._responses_for(list(blocks)):
            value = upgrade_response_value(blocks[response.block_id].type, response.value)
            answers.update(expand_answers(response.block_id, value))
        return flatten(answers)

    async def get_task_map(self, ctx: RequestContext, page_id: str) -> Dict[str, str]:
        await self._authorize(ctx)
        await self._load_page(ctx, page_id)

        page_blocks = [b for b in await self._page_blocks(page_id) if b.type in TASK_BLOCK_TYPES]
        # Action plans are summarised on other pages too, so include all of them
        plans = await self._action_plan_blocks(ctx)
        block_ids = {b.id for b in page_blocks} | {b.id for b, _slug in plans}

        statuses: Dict[SubEntityRef, str] = {}
        for response in await self._responses_for(sorted(block_ids)):
            statuses.update(expand_task_statuses(response.block_id, response.value))

        legacy_ids = [b.id for b in page_blocks if b.type == BlockType.TASK.value]
        if legacy_ids:
            rows = (await self.db.execute(select(Task).where(Task.block_id.in_(legacy_ids)))).scalars().all()
            for row in rows:
                statuses[SubEntityRef(row.block_id)] = row.status.value
        return flatten(statuses)

    async def _action_plan_blocks(self, ctx: RequestContext, block_ids: Optional[List[str]] = None) -> List[Tuple[Block, str]]:
        stmt = (
            select(Block, Page.slug)
            .join(Page, Page.id == Block.page_id)
            .where(
                Block.type == BlockType.ACTION_PLAN.value,
                Block.deleted_at.is_(None),
                *self._page_filters(ctx),
            )
            .order_by(Page.sort_order.asc(), Block.sort_order.asc())
        )
        if block_ids is not None:
            stmt = stmt.where(Block.id.in_(block_ids))
        return [(block, slug) for block, slug in (await self.db.execute(stmt)).all()]

    async def list_action_plan_blocks(self, ctx: RequestContext, block_ids: Optional[List[str]] = None) -> List[ActionPlanBlockView]:
        await self._authorize(ctx)
        return [
            ActionPlanBlockView(block=BlockView.of(block), page_slug=slug)
            for block, slug in await self._action_plan_blocks(ctx, block_ids)
        ]

    async def list_files(self, ctx: RequestContext, block_id: str) -> List[FileView]:
        await self._authorize(ctx)
        await self._load_block(ctx, block_id)
        stmt = (
            select(BlockFile)
            .where(BlockFile.block_id == block_id, BlockFile.deleted_at.is_(None))
            .order_by(BlockFile.created_at.desc())
        )
        return [FileView.of(f) for f in (await self.db.execute(stmt)).scalars().all()]

    # ── Response writes ──────────────────────────────────────

    async def _write_response(
        self,
        ctx: RequestContext,
        block_id: str,
        build_value: Callable[[Any], Any],
    ) -> Response:
        """
        Compare-and-swap write of a block's single response row.

        build_value receives the current stored value and returns the new one.
        A concurrent update (stale version) or a concurrent first insert
        (unique block_id) re-reads and retries up to max_merge_attempts.

        Rollback expires every instance in the session, so nothing loaded
        before the loop is read again once a conflict has been seen.
        """
        for attempt in range(1, self.max_merge_attempts + 1):
            try:
                stmt = (
                    select(Response)
                    .where(Response.block_id == block_id)
                    .execution_options(populate_existing=True)
                )
                response = (await self.db.execute(stmt)).scalar_one_or_none()
                new_value = build_value(response.value if response is not None else None)

                if response is None:
                    response = Response(block_id=block_id, value=new_value)
                    self.db.add(response)
                else:
                    response.value = new_value

                if isinstance(ctx.identity, Staff):
                    response.user_id = ctx.identity.user_id
                else:
                    response.customer_email = ctx.actor_email

                await self.db.commit()
                return response
            except (StaleDataError, IntegrityError) as exc:
                await self.db.rollback()
                logger.info(f"Response write conflict on block {block_id} (attempt {attempt}): {type(exc).__name__}")
            except SQLAlchemyError:
                raise await self._fail("Response write", ctx)

        logger.error(f"Response write on block {block_id} gave up after {self.max_merge_attempts} attempts")
        raise StoreFailure()

    async def upsert_response(self, ctx: RequestContext, block_id: str, value: Any) -> Response:
        await self._authorize_mutation(ctx)
        block = await self._load_block(ctx, block_id)
        block_type = block.type
        title = content_title(parse_block_content(block.type, block.content))
        response = await self._write_response(ctx, block_id, lambda _current: value)

        if block_type == BlockType.FORM.value:
            self._activity(ctx, ActivityAction.FORM_SUBMITTED, "block", block_id, formTitle=title)
        elif block_type == BlockType.CHECKLIST.value:
            self._activity(ctx, ActivityAction.CHECKLIST_UPDATED, "block", block_id)
        return response

    async def answer_question(self, ctx: RequestContext, block_id: str, question_id: str, answer: Any) -> Response:
        await self._authorize_mutation(ctx)
        block = await self._load_block(ctx, block_id)
        if block.type != BlockType.FORM.value:
            raise NotFoundError("Form not found")
        title = content_title(parse_block_content(block.type, block.content))

        response = await self._write_response(
            ctx, block_id,
            lambda current: merge_sub_entity(current, QUESTIONS_CONTAINER, question_id, answer),
        )
        self._activity(
            ctx, ActivityAction.FORM_SUBMITTED, "block", block_id,
            formTitle=title, questionId=question_id,
        )
        return response

    # ── Tasks ────────────────────────────────────────────────

    async def toggle_task(self, ctx: RequestContext, block_id: str) -> TaskToggleResult:
        """Flip a legacy single-item task block."""
        await self._authorize_mutation(ctx)
        block = await self._load_block(ctx, block_id)
        if block.type != BlockType.TASK.value:
            raise NotFoundError("Task not found")

        try:
            task = (await self.db.execute(select(Task).where(Task.block_id == block.id))).scalar_one_or_none()
            if task is None:
                task = Task(block_id=block.id, status=TaskStatus.PENDING)
                self.db.add(task)

            if task.status == TaskStatus.COMPLETED:
                task.status = TaskStatus.PENDING
                task.completed_at = None
            else:
                task.status = TaskStatus.COMPLETED
                task.completed_at = utcnow()
            status = task.status
            await self.db.commit()
        except SQLAlchemyError:
            raise await self._fail("Task toggle", ctx)

        action = ActivityAction.TASK_COMPLETED if status == TaskStatus.COMPLETED else ActivityAction.TASK_REOPENED
        self._activity(ctx, action, "task", block_id)
        return TaskToggleResult(key=SubEntityRef(block_id).key, status=status.value)

    async def toggle_sub_task(self, ctx: RequestContext, block_id: str, task_id: str) -> TaskToggleResult:
        """Flip one task inside a task list or action plan."""
        await self._authorize_mutation(ctx)
        block = await self._load_block(ctx, block_id)
        if block.type not in TASK_BLOCK_TYPES:
            raise NotFoundError("Task not found")
        task = find_task(parse_block_content(block.type, block.content), task_id)
        if task is None:
            raise NotFoundError("Task not found")

        def flip(current: Any) -> Dict[str, Any]:
            # Blank or unknown status counts as pending
            completed = read_sub_entity(current, TASKS_CONTAINER, task_id) == TaskStatus.COMPLETED.value
            new_status = TaskStatus.PENDING if completed else TaskStatus.COMPLETED
            return merge_sub_entity(current, TASKS_CONTAINER, task_id, new_status.value)

        response = await self._write_response(ctx, block_id, flip)
        status = read_sub_entity(response.value, TASKS_CONTAINER, task_id)
        ref = SubEntityRef(block_id, task_id)

        action = ActivityAction.TASK_COMPLETED if status == TaskStatus.COMPLETED.value else ActivityAction.TASK_REOPENED
        self._activity(ctx, action, "task", ref.key, taskTitle=task.title)
        return TaskToggleResult(key=ref.key, status=status)

    # ── Files ────────────────────────────────────────────────

    async def add_file(self, ctx: RequestContext, block_id: str, meta: FileMeta) -> FileView:
        await self._authorize_mutation(ctx)
        block = await self._load_block(ctx, block_id)
        try:
            file = BlockFile(
                block_id=block.id,
                space_id=ctx.space_id,
                original_name=meta.original_name,
                mime_type=meta.mime_type,
                size_bytes=meta.size_bytes,
                storage_path=meta.storage_path,
                uploaded_by_email=ctx.actor_email,
            )
            self.db.add(file)
            await self.db.commit()
        except SQLAlchemyError:
            raise await self._fail("File add", ctx)

        self._activity(
            ctx, ActivityAction.FILE_UPLOADED, "file", file.id,
            fileName=file.original_name, fileSize=file.size_bytes, blockId=block.id,
        )
        return FileView.of(file)

    async def _load_file(self, ctx: RequestContext, file_id: str) -> BlockFile:
        stmt = select(BlockFile).where(
            BlockFile.id == file_id,
            BlockFile.space_id == ctx.space_id,
            BlockFile.deleted_at.is_(None),
        )
        file = (await self.db.execute(stmt)).scalar_one_or_none()
        if file is None:
            raise NotFoundError("File not found")
        return file

    async def soft_delete_file(self, ctx: RequestContext, file_id: str) -> None:
        await self._authorize_mutation(ctx)
        file = await self._load_file(ctx, file_id)
        try:
            file.deleted_at = utcnow()
            await self.db.commit()
        except SQLAlchemyError:
            raise await self._fail("File delete", ctx)

        self._activity(
            ctx, ActivityAction.FILE_DELETED, "file", file.id,
            fileName=file.original_name, blockId=file.block_id,
        )

    # ── Tracking ─────────────────────────────────────────────

    async def record_visit(self, ctx: RequestContext) -> VisitResult:
        """
        Log a portal visit. Repeat visits by the same actor inside the dedup
        window are not logged again; staff previews are never logged.
        """
        await self._authorize(ctx)
        if isinstance(ctx.identity, Staff):
            return VisitResult(recorded=False)

        since = utcnow() - VISIT_DEDUP_WINDOW
        stmt = (
            select(ActivityLogEntry.id)
            .where(
                ActivityLogEntry.space_id == ctx.space_id,
                ActivityLogEntry.actor_email == ctx.actor_email,
                ActivityLogEntry.action.in_(VISIT_ACTIONS),
                ActivityLogEntry.created_at >= since,
            )
            .limit(1)
        )
        if (await self.db.execute(stmt)).first() is not None:
            return VisitResult(recorded=False)

        first = await is_first_visit(self.db, ctx.space_id, ctx.actor_email)
        action = ActivityAction.PORTAL_FIRST_VISIT if first else ActivityAction.PORTAL_VISIT
        recorded = await self.activity.record(ActivityEntry(
            space_id=ctx.space_id,
            actor_email=ctx.actor_email,
            action=action,
            resource_type="portal",
            resource_id=ctx.space_id,
            metadata={"firstVisit": first},
        ))
        return VisitResult(recorded=recorded, first_visit=first)

    async def record_page_view(self, ctx: RequestContext, page_id: str) -> None:
        await self._authorize(ctx)
        page = await self._load_page(ctx, page_id)
        self._activity(ctx, ActivityAction.PAGE_VIEWED, "page", page.id, pageName=page.title)

    async def record_file_download(self, ctx: RequestContext, file_id: str) -> FileView:
        await self._authorize(ctx)
        file = await self._load_file(ctx, file_id)
        self._activity(ctx, ActivityAction.FILE_DOWNLOADED, "file", file.id, fileName=file.original_name)
        return FileView.of(file)

    # ── Welcome popup ────────────────────────────────────────

    async def _find_member(self, space_id: str, email: str) -> Optional[SpaceMember]:
        stmt = (
            select(SpaceMember)
            .where(
                SpaceMember.space_id == space_id,
                func.lower(SpaceMember.invited_email) == email.strip().lower(),
                SpaceMember.deleted_at.is_(None),
            )
            .order_by(SpaceMember.created_at.asc())
            .limit(1)
        )
        return (await self.db.execute(stmt)).scalars().first()

    async def dismiss_welcome_popup(self, ctx: RequestContext) -> bool:
        """
        Remember that this stakeholder has seen the welcome popup. Returns
        False when there is no member row to stamp (public visitors).
        """
        await self._authorize(ctx)
        if not isinstance(ctx.identity, PortalSession):
            raise UnauthorizedError()

        member = await self._find_member(ctx.space_id, ctx.identity.email)
        if member is None:
            logger.info(f"No member row for welcome popup dismissal in space {ctx.space_id}")
            return False
        if member.welcome_popup_dismissed_at is not None:
            return True
        try:
            member.welcome_popup_dismissed_at = utcnow()
            await self.db.commit()
        except SQLAlchemyError:
            raise await self._fail("Welcome popup dismissal", ctx)
        return True
