"""
Quilkalam Backend — Profile Routes
===================================

What:  GET/PUT /api/user/profile for the authenticated caller.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from quilkalam.database import get_db_session
from quilkalam.dependencies import get_current_identity
from quilkalam.schemas.common import ErrorResponse
from quilkalam.schemas.user import ProfileResponse, ProfileUpdate, ProfileUpdateResponse
from quilkalam.services.identity_service import Identity
from quilkalam.services.user_service import user_service

router = APIRouter(prefix="/api/user", tags=["Users"])


@router.get(
    "/profile",
    response_model=ProfileResponse,
    responses={
        401: {"description": "Missing or invalid token", "model": ErrorResponse},
        404: {"description": "Account no longer exists", "model": ErrorResponse},
    },
    summary="Get the caller's profile",
)
async def get_profile(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> ProfileResponse:
    return ProfileResponse(user=await user_service.get_profile(db, identity))


@router.put(
    "/profile",
    response_model=ProfileUpdateResponse,
    responses={
        400: {"description": "No fields to update, or invalid image", "model": ErrorResponse},
        401: {"description": "Missing or invalid token", "model": ErrorResponse},
    },
    summary="Update the caller's profile",
    description=(
        "Sparse update: only the keys present in the body are written. "
        "`profileImage` may be a data URL; it is stored and replaced by its URL."
    ),
)
async def update_profile(
    payload: ProfileUpdate,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> ProfileUpdateResponse:
    user = await user_service.update_profile(db, identity, payload)
    return ProfileUpdateResponse(user=user)
