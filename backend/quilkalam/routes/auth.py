"""
Quilkalam Backend — Auth Routes
================================

What:  POST /api/auth/register and POST /api/auth/login.
Who:   The only write endpoints that do not take a bearer token; both hand
       one back.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from quilkalam.database import get_db_session
from quilkalam.schemas.common import ErrorResponse
from quilkalam.schemas.user import AuthResponse, LoginRequest, RegisterRequest
from quilkalam.services.user_service import user_service

router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post(
    "/register",
    response_model=AuthResponse,
    responses={
        400: {"description": "Invalid phone number or password", "model": ErrorResponse},
        409: {"description": "Phone number already registered", "model": ErrorResponse},
    },
    summary="Create an account",
)
async def register(
    payload: RegisterRequest,
    db: AsyncSession = Depends(get_db_session),
) -> AuthResponse:
    return await user_service.register(db, payload)


@router.post(
    "/login",
    response_model=AuthResponse,
    responses={401: {"description": "Invalid credentials", "model": ErrorResponse}},
    summary="Exchange phone number and password for a bearer token",
)
async def login(
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db_session),
) -> AuthResponse:
    return await user_service.login(db, payload)
