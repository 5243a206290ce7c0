"""
Quilkalam Backend — Like Routes
================================

What:  POST /api/likes toggles the caller's like; GET reports it.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from quilkalam.database import get_db_session
from quilkalam.dependencies import get_current_identity
from quilkalam.schemas.common import ErrorResponse
from quilkalam.schemas.social import LikeStateResponse, LikeToggleRequest, LikeToggleResponse
from quilkalam.services.identity_service import Identity
from quilkalam.services.social_service import social_service

router = APIRouter(prefix="/api/likes", tags=["Likes"])


@router.post(
    "",
    response_model=LikeToggleResponse,
    responses={
        401: {"description": "Missing or invalid token", "model": ErrorResponse},
        404: {"description": "Project not found or private", "model": ErrorResponse},
        409: {"description": "Concurrent duplicate like", "model": ErrorResponse},
    },
    summary="Like or unlike a project",
)
async def toggle_like(
    payload: LikeToggleRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> LikeToggleResponse:
    return await social_service.toggle_like(db, identity, payload.project_id)


@router.get("", response_model=LikeStateResponse, summary="Has the caller liked this project?")
async def like_state(
    project_id: UUID = Query(alias="projectId"),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> LikeStateResponse:
    return await social_service.like_state(db, identity, project_id)
