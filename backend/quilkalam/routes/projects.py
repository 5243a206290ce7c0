"""
Quilkalam Backend — Project Route Handlers
===========================================

What:  Publish, list, read, edit and delete projects.
How:   Extracts path/query/body, delegates to ProjectService, returns JSON.
Who:   Called by the reader (list/read, no token) and by authors (the rest).

Caching Strategy:
    - GET /api/projects: short cache with revalidation (new works appear often)
    - GET /api/projects/{id}: no-store, the read itself bumps view_count
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from quilkalam.database import get_db_session
from quilkalam.dependencies import get_current_identity
from quilkalam.schemas.common import ErrorResponse, SuccessResponse
from quilkalam.schemas.project import (
    ProjectDetailResponse,
    ProjectListResponse,
    ProjectUpdate,
    PublishRequest,
    PublishResponse,
)
from quilkalam.services.identity_service import Identity
from quilkalam.services.project_service import project_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects", tags=["Projects"])

_OWNER_ERRORS = {
    401: {"description": "Missing or invalid token", "model": ErrorResponse},
    403: {"description": "Caller does not own the project", "model": ErrorResponse},
    404: {"description": "Project not found", "model": ErrorResponse},
}


@router.get(
    "",
    response_model=ProjectListResponse,
    responses={400: {"description": "Invalid page or limit", "model": ErrorResponse}},
    summary="List public projects",
    description=(
        "Public, published projects newest first. Filters: type, genre, userId, "
        "and `search` (case-insensitive substring of title or description)."
    ),
)
async def list_projects(
    response: Response,
    page: int = Query(default=1, description="1-based page number"),
    limit: Optional[int] = Query(default=None, description="Page size (max MAX_PAGE_SIZE)"),
    project_type: Optional[str] = Query(default=None, alias="type"),
    genre: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None),
    user_id: Optional[UUID] = Query(default=None, alias="userId"),
    db: AsyncSession = Depends(get_db_session),
) -> ProjectListResponse:
    result = await project_service.list_projects(
        db,
        page=page,
        limit=limit,
        project_type=project_type,
        genre=genre,
        search=search,
        user_id=user_id,
    )
    response.headers["X-Total-Count"] = str(result.pagination.total)
    response.headers["Cache-Control"] = "public, max-age=5, must-revalidate"
    return result


@router.post(
    "/publish",
    response_model=PublishResponse,
    responses={
        400: {"description": "Invalid project shape", "model": ErrorResponse},
        401: {"description": "Missing or invalid token", "model": ErrorResponse},
    },
    summary="Publish a project with its items",
    description=(
        "Creates the project and all of its items in one transaction. Items are "
        "inserted in the order given; `parentItemId` names the `ref` of an earlier "
        "item, otherwise the item becomes a root."
    ),
)
async def publish_project(
    payload: PublishRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> PublishResponse:
    return await project_service.publish(db, identity, payload)


@router.get(
    "/{project_id}",
    response_model=ProjectDetailResponse,
    responses={404: {"description": "Project not found or private", "model": ErrorResponse}},
    summary="Read a public project and its items",
)
async def get_project(
    project_id: UUID,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
) -> ProjectDetailResponse:
    result = await project_service.get_project(db, project_id)
    response.headers["Cache-Control"] = "no-store"
    return result


@router.put(
    "/{project_id}",
    response_model=SuccessResponse,
    responses=_OWNER_ERRORS,
    summary="Edit project metadata (owner only)",
)
async def update_project(
    project_id: UUID,
    payload: ProjectUpdate,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> SuccessResponse:
    return await project_service.update_project(db, identity, project_id, payload)


@router.delete(
    "/{project_id}",
    response_model=SuccessResponse,
    responses=_OWNER_ERRORS,
    summary="Delete a project and everything attached to it (owner only)",
)
async def delete_project(
    project_id: UUID,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> SuccessResponse:
    return await project_service.delete_project(db, identity, project_id)
