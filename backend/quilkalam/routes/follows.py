"""
Quilkalam Backend — Follow Routes
==================================

What:  POST /api/follows toggles following a user; GET lists followers or
       followed users of `userId` (default: the caller).
"""

from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from quilkalam.database import get_db_session
from quilkalam.dependencies import get_current_identity
from quilkalam.schemas.common import ErrorResponse
from quilkalam.schemas.social import FollowListResponse, FollowToggleRequest, FollowToggleResponse
from quilkalam.services.identity_service import Identity
from quilkalam.services.social_service import social_service

router = APIRouter(prefix="/api/follows", tags=["Follows"])


@router.post(
    "",
    response_model=FollowToggleResponse,
    responses={
        400: {"description": "Cannot follow yourself", "model": ErrorResponse},
        401: {"description": "Missing or invalid token", "model": ErrorResponse},
        404: {"description": "User not found", "model": ErrorResponse},
    },
    summary="Follow or unfollow a user",
)
async def toggle_follow(
    payload: FollowToggleRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> FollowToggleResponse:
    return await social_service.toggle_follow(db, identity, payload.following_id)


@router.get("", response_model=FollowListResponse, summary="List followers or following")
async def list_follows(
    direction: Literal["followers", "following"] = Query(default="following", alias="type"),
    user_id: Optional[UUID] = Query(default=None, alias="userId"),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> FollowListResponse:
    return await social_service.list_follows(db, user_id or identity.user_id, direction)
