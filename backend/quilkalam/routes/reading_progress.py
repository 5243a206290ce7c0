"""
Quilkalam Backend — Reading Progress Routes
============================================

What:  GET returns one project's progress (with ?projectId) or the caller's
       recent reading history; POST upserts progress for a project.
"""

from typing import Optional, Union
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from quilkalam.database import get_db_session
from quilkalam.dependencies import get_current_identity
from quilkalam.schemas.common import ErrorResponse, SuccessResponse
from quilkalam.schemas.social import (
    ReadingHistoryResponse,
    ReadingProgressResponse,
    ReadingProgressUpdate,
)
from quilkalam.services.identity_service import Identity
from quilkalam.services.social_service import social_service

router = APIRouter(prefix="/api/reading-progress", tags=["Reading Progress"])


# The two shapes overlap (every field optional), so the returned model is
# serialized as-is instead of being re-validated against a Union.
@router.get(
    "",
    response_model=None,
    responses={
        200: {"description": "`progress` with ?projectId, otherwise `history`"},
    },
    summary="Progress on one project, or recent history",
)
async def get_reading_progress(
    project_id: Optional[UUID] = Query(default=None, alias="projectId"),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> Union[ReadingProgressResponse, ReadingHistoryResponse]:
    if project_id is not None:
        return await social_service.get_progress(db, identity, project_id)
    return await social_service.get_history(db, identity)


@router.post(
    "",
    response_model=SuccessResponse,
    responses={
        400: {"description": "Invalid percentage or item", "model": ErrorResponse},
        404: {"description": "Project not found or private", "model": ErrorResponse},
    },
    summary="Save reading progress",
)
async def save_reading_progress(
    payload: ReadingProgressUpdate,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> SuccessResponse:
    return await social_service.upsert_progress(db, identity, payload)
