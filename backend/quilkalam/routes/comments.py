"""
Quilkalam Backend — Comment Routes
===================================

What:  Create, list and delete comments on a project.
Who:   Listing is public; creating and deleting need a bearer token.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from quilkalam.database import get_db_session
from quilkalam.dependencies import get_current_identity
from quilkalam.schemas.common import ErrorResponse, SuccessResponse
from quilkalam.schemas.social import CommentCreate, CommentEnvelope, CommentListResponse
from quilkalam.services.identity_service import Identity
from quilkalam.services.social_service import social_service

router = APIRouter(prefix="/api/comments", tags=["Comments"])


@router.get("", response_model=CommentListResponse, summary="Comments on a project, newest first")
async def list_comments(
    project_id: UUID = Query(alias="projectId"),
    db: AsyncSession = Depends(get_db_session),
) -> CommentListResponse:
    return await social_service.list_comments(db, project_id)


@router.post(
    "",
    response_model=CommentEnvelope,
    responses={
        401: {"description": "Missing or invalid token", "model": ErrorResponse},
        403: {"description": "Comments disabled for this project", "model": ErrorResponse},
        404: {"description": "Project not found or private", "model": ErrorResponse},
    },
    summary="Comment on a project",
)
async def create_comment(
    payload: CommentCreate,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> CommentEnvelope:
    return await social_service.create_comment(db, identity, payload)


@router.delete(
    "",
    response_model=SuccessResponse,
    responses={
        403: {"description": "Not the comment's author", "model": ErrorResponse},
        404: {"description": "Comment not found", "model": ErrorResponse},
    },
    summary="Delete one of the caller's comments",
)
async def delete_comment(
    comment_id: UUID = Query(alias="id"),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> SuccessResponse:
    return await social_service.delete_comment(db, identity, comment_id)
