# routers/access.py — Portal access: settings, session grants, magic links, logout
import os
from typing import Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from access_flow import (
    PortalAccessSettings, get_access_settings, grant_public_access, grant_restricted_access,
    request_portal_access, validate_portal_token,
)
from database import get_db_session
from portal_auth import PortalSessionManager, get_session_manager, session_cookie_name

router = APIRouter(prefix="/api/v1/access", tags=["Portal Access"])


class PublicAccessRequest(BaseModel):
    password: Optional[str] = None
    email: Optional[str] = Field(default=None, max_length=320)


class RestrictedAccessRequest(BaseModel):
    email: EmailStr
    password: Optional[str] = None


class AccessLinkRequest(BaseModel):
    email: EmailStr


class AccessTokenRequest(BaseModel):
    token: str = Field(min_length=1, max_length=128)


def _session_response(response: Response, space_id: str, token: str, claims, sessions: PortalSessionManager) -> dict:
    response.set_cookie(
        key=session_cookie_name(space_id),
        value=token,
        max_age=int(sessions.lifetime.total_seconds()),
        httponly=True,
        samesite="lax",
        secure=os.getenv("ENVIRONMENT") == "production",
        path="/",
    )
    return {
        "session_token": token,
        "email": claims.email,
        "grant": claims.grant,
        "expires_at": claims.expires_at.isoformat(),
    }


@router.get("/{space_id}", response_model=PortalAccessSettings)
async def access_settings(space_id: str, db: AsyncSession = Depends(get_db_session)):
    """What the access page needs to render: mode and whether a password is asked"""
    return await get_access_settings(db, space_id)


@router.post("/{space_id}/public")
async def public_access(
    space_id: str,
    body: PublicAccessRequest,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
    sessions: PortalSessionManager = Depends(get_session_manager),
):
    token, claims = await grant_public_access(db, sessions, space_id, body.password, body.email)
    return _session_response(response, space_id, token, claims, sessions)


@router.post("/{space_id}/restricted")
async def restricted_access(
    space_id: str,
    body: RestrictedAccessRequest,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
    sessions: PortalSessionManager = Depends(get_session_manager),
):
    token, claims = await grant_restricted_access(db, sessions, space_id, body.email, body.password)
    return _session_response(response, space_id, token, claims, sessions)


@router.post("/{space_id}/request-link")
async def request_link(space_id: str, body: AccessLinkRequest, db: AsyncSession = Depends(get_db_session)):
    """Same reply for members and strangers"""
    message = await request_portal_access(db, space_id, body.email)
    return {"status": "ok", "message": message}


@router.post("/{space_id}/token")
async def redeem_token(
    space_id: str,
    body: AccessTokenRequest,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
    sessions: PortalSessionManager = Depends(get_session_manager),
):
    token, claims = await validate_portal_token(db, sessions, space_id, body.token)
    return _session_response(response, space_id, token, claims, sessions)


@router.post("/{space_id}/logout")
async def logout(space_id: str, response: Response):
    response.delete_cookie(session_cookie_name(space_id), path="/")
    return {"status": "logged_out"}
