"""
Quilkalam Backend — Item (Chapter) Route Handlers
==================================================

What:  CRUD over a project's items, single and batch.
Who:   Reads are public (project must be public); writes are owner-only.

Route order matters: the `/chapters/batch` routes are registered before
`/chapters/{chapter_id}` so "batch" is never parsed as an item id.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from quilkalam.database import get_db_session
from quilkalam.dependencies import get_current_identity
from quilkalam.schemas.common import ErrorResponse, SuccessResponse
from quilkalam.schemas.project import (
    ItemBatchCreate,
    ItemBatchResponse,
    ItemBatchUpdate,
    ItemCreate,
    ItemDetailResponse,
    ItemEnvelope,
    ItemListResponse,
    ItemUpdate,
)
from quilkalam.services.identity_service import Identity
from quilkalam.services.item_service import item_service

router = APIRouter(prefix="/api/projects/{project_id}/chapters", tags=["Chapters"])

_OWNER_ERRORS = {
    400: {"description": "Invalid body", "model": ErrorResponse},
    401: {"description": "Missing or invalid token", "model": ErrorResponse},
    403: {"description": "Caller does not own the project", "model": ErrorResponse},
    404: {"description": "Project or chapter not found", "model": ErrorResponse},
}


@router.get("", response_model=ItemListResponse, summary="List a project's items")
async def list_items(
    project_id: UUID,
    db: AsyncSession = Depends(get_db_session),
) -> ItemListResponse:
    return await item_service.list_items(db, project_id)


@router.post(
    "",
    response_model=ItemEnvelope,
    responses=_OWNER_ERRORS,
    summary="Add one item",
    description=(
        "Depth is derived from the stored parent; word count from content. "
        "The project's word count is recomputed afterwards."
    ),
)
async def add_item(
    project_id: UUID,
    payload: ItemCreate,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> ItemEnvelope:
    return await item_service.add_item(db, identity, project_id, payload)


@router.post(
    "/batch",
    response_model=ItemBatchResponse,
    responses=_OWNER_ERRORS,
    summary="Add several items in request order",
)
async def add_items(
    project_id: UUID,
    payload: ItemBatchCreate,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> ItemBatchResponse:
    return await item_service.add_items(db, identity, project_id, payload)


@router.put(
    "/batch",
    response_model=ItemBatchResponse,
    responses=_OWNER_ERRORS,
    summary="Sparse update of several items",
)
async def update_items(
    project_id: UUID,
    payload: ItemBatchUpdate,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> ItemBatchResponse:
    return await item_service.update_items(db, identity, project_id, payload)


@router.get(
    "/{chapter_id}",
    response_model=ItemDetailResponse,
    responses={404: {"description": "Chapter not found", "model": ErrorResponse}},
    summary="Read one item",
)
async def get_item(
    project_id: UUID,
    chapter_id: UUID,
    db: AsyncSession = Depends(get_db_session),
) -> ItemDetailResponse:
    return await item_service.get_item(db, project_id, chapter_id)


@router.put(
    "/{chapter_id}",
    response_model=ItemEnvelope,
    responses=_OWNER_ERRORS,
    summary="Sparse update of one item",
)
async def update_item(
    project_id: UUID,
    chapter_id: UUID,
    payload: ItemUpdate,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> ItemEnvelope:
    return await item_service.update_item(db, identity, project_id, chapter_id, payload)


@router.delete(
    "/{chapter_id}",
    response_model=SuccessResponse,
    responses=_OWNER_ERRORS,
    summary="Delete an item and its subtree",
)
async def delete_item(
    project_id: UUID,
    chapter_id: UUID,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> SuccessResponse:
    return await item_service.delete_item(db, identity, project_id, chapter_id)
