# routers/portal.py — Stakeholder portal over one space
# Identity per request: staff bearer token (if a member of the space), else the
# portal session from the `portal_session_{space_id}` cookie or X-Portal-Session
# header, else anonymous. Access is re-evaluated inside every store call.
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from access_policy import AccessDecision
from activity import ActivityLogger, get_activity_logger
from auth import CurrentUser, get_optional_staff
from content_store import (
    ContentStore, FileMeta, FileView, PageView, PageWithBlocks, PortalSpaceView,
    ActionPlanBlockView, TaskToggleResult, VisitResult,
)
from database import get_db_session
from identity import RequestContext, resolve_context
from models import Response as ResponseRow
from portal_auth import PortalSessionManager, get_session_manager, session_cookie_name

router = APIRouter(prefix="/api/v1/portal", tags=["Portal"])

SESSION_HEADER = "X-Portal-Session"


class ResponseWrite(BaseModel):
    value: Any = None


class AnswerWrite(BaseModel):
    answer: Any = None


# ============================================================
# DEPENDENCIES
# ============================================================

async def get_request_context(
    space_id: str,
    request: Request,
    staff: Optional[CurrentUser] = Depends(get_optional_staff),
    db: AsyncSession = Depends(get_db_session),
    sessions: PortalSessionManager = Depends(get_session_manager),
) -> RequestContext:
    token = request.cookies.get(session_cookie_name(space_id)) or request.headers.get(SESSION_HEADER)
    return await resolve_context(db, space_id, staff, token, sessions)


def get_content_store(
    db: AsyncSession = Depends(get_db_session),
    activity: ActivityLogger = Depends(get_activity_logger),
) -> ContentStore:
    return ContentStore(db, activity)


def _response_dict(row: ResponseRow) -> dict:
    return {
        "id": row.id,
        "block_id": row.block_id,
        "value": row.value,
        "customer_email": row.customer_email,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


# ============================================================
# SPACE & PAGES
# ============================================================

@router.get("/{space_id}/access", response_model=AccessDecision)
async def access_decision(
    ctx: RequestContext = Depends(get_request_context),
    store: ContentStore = Depends(get_content_store),
):
    """Access decision with reason, for choosing which screen to render"""
    return await store.access_decision(ctx)


@router.get("/{space_id}", response_model=PortalSpaceView)
async def get_space(
    ctx: RequestContext = Depends(get_request_context),
    store: ContentStore = Depends(get_content_store),
):
    return await store.get_portal_space(ctx)


@router.get("/{space_id}/pages", response_model=List[PageView])
async def list_pages(
    ctx: RequestContext = Depends(get_request_context),
    store: ContentStore = Depends(get_content_store),
):
    return await store.list_pages(ctx)


@router.get("/{space_id}/pages/{slug}", response_model=PageWithBlocks)
async def get_page(
    slug: str,
    ctx: RequestContext = Depends(get_request_context),
    store: ContentStore = Depends(get_content_store),
):
    return await store.get_page(ctx, slug)


@router.get("/{space_id}/pages/{page_id}/responses")
async def get_responses(
    page_id: str,
    ctx: RequestContext = Depends(get_request_context),
    store: ContentStore = Depends(get_content_store),
):
    rows = await store.get_responses(ctx, page_id)
    return [_response_dict(row) for row in rows]


@router.get("/{space_id}/pages/{page_id}/response-map")
async def get_response_map(
    page_id: str,
    ctx: RequestContext = Depends(get_request_context),
    store: ContentStore = Depends(get_content_store),
):
    """Answers keyed by block id or `<block_id>-<question_id>`"""
    return await store.get_response_map(ctx, page_id)


@router.get("/{space_id}/pages/{page_id}/task-map")
async def get_task_map(
    page_id: str,
    ctx: RequestContext = Depends(get_request_context),
    store: ContentStore = Depends(get_content_store),
):
    return await store.get_task_map(ctx, page_id)


@router.get("/{space_id}/action-plans", response_model=List[ActionPlanBlockView])
async def list_action_plans(
    block_ids: Optional[List[str]] = Query(default=None),
    ctx: RequestContext = Depends(get_request_context),
    store: ContentStore = Depends(get_content_store),
):
    return await store.list_action_plan_blocks(ctx, block_ids)


# ============================================================
# RESPONSES & TASKS
# ============================================================

@router.put("/{space_id}/blocks/{block_id}/response")
async def upsert_response(
    block_id: str,
    body: ResponseWrite,
    ctx: RequestContext = Depends(get_request_context),
    store: ContentStore = Depends(get_content_store),
):
    row = await store.upsert_response(ctx, block_id, body.value)
    return _response_dict(row)


@router.put("/{space_id}/blocks/{block_id}/questions/{question_id}")
async def answer_question(
    block_id: str,
    question_id: str,
    body: AnswerWrite,
    ctx: RequestContext = Depends(get_request_context),
    store: ContentStore = Depends(get_content_store),
):
    row = await store.answer_question(ctx, block_id, question_id, body.answer)
    return _response_dict(row)


@router.post("/{space_id}/blocks/{block_id}/toggle", response_model=TaskToggleResult)
async def toggle_task(
    block_id: str,
    ctx: RequestContext = Depends(get_request_context),
    store: ContentStore = Depends(get_content_store),
):
    return await store.toggle_task(ctx, block_id)


@router.post("/{space_id}/blocks/{block_id}/tasks/{task_id}/toggle", response_model=TaskToggleResult)
async def toggle_sub_task(
    block_id: str,
    task_id: str,
    ctx: RequestContext = Depends(get_request_context),
    store: ContentStore = Depends(get_content_store),
):
    return await store.toggle_sub_task(ctx, block_id, task_id)


# ============================================================
# FILES
# ============================================================

@router.get("/{space_id}/blocks/{block_id}/files", response_model=List[FileView])
async def list_files(
    block_id: str,
    ctx: RequestContext = Depends(get_request_context),
    store: ContentStore = Depends(get_content_store),
):
    return await store.list_files(ctx, block_id)


@router.post("/{space_id}/blocks/{block_id}/files", response_model=FileView, status_code=201)
async def add_file(
    block_id: str,
    body: FileMeta,
    ctx: RequestContext = Depends(get_request_context),
    store: ContentStore = Depends(get_content_store),
):
    """Register a file already placed in storage under `storage_path`"""
    return await store.add_file(ctx, block_id, body)


@router.delete("/{space_id}/files/{file_id}")
async def delete_file(
    file_id: str,
    ctx: RequestContext = Depends(get_request_context),
    store: ContentStore = Depends(get_content_store),
):
    await store.soft_delete_file(ctx, file_id)
    return {"status": "deleted", "id": file_id}


@router.post("/{space_id}/files/{file_id}/download", response_model=FileView)
async def record_download(
    file_id: str,
    ctx: RequestContext = Depends(get_request_context),
    store: ContentStore = Depends(get_content_store),
):
    return await store.record_file_download(ctx, file_id)


# ============================================================
# TRACKING & WELCOME POPUP
# ============================================================

@router.post("/{space_id}/visit", response_model=VisitResult)
async def record_visit(
    ctx: RequestContext = Depends(get_request_context),
    store: ContentStore = Depends(get_content_store),
):
    return await store.record_visit(ctx)


@router.post("/{space_id}/pages/{page_id}/view")
async def record_page_view(
    page_id: str,
    ctx: RequestContext = Depends(get_request_context),
    store: ContentStore = Depends(get_content_store),
):
    await store.record_page_view(ctx, page_id)
    return {"status": "recorded"}


@router.post("/{space_id}/welcome-popup/dismiss")
async def dismiss_welcome_popup(
    ctx: RequestContext = Depends(get_request_context),
    store: ContentStore = Depends(get_content_store),
):
    persisted = await store.dismiss_welcome_popup(ctx)
    return {"status": "dismissed", "persisted": persisted}
