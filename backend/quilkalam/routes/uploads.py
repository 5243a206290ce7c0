"""
Quilkalam Backend — Upload & File Routes
=========================================

What:  POST /api/upload/image stores an inline image; GET /api/files/{path}
       serves stored images back.
Who:   The editor uploads covers and inline art; <img> tags load them.

Security:
    - Uploads need a bearer token
    - Served paths are resolved by the blob store and must stay inside
      STORAGE_ROOT; anything else is a 404
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from quilkalam.config import settings
from quilkalam.dependencies import get_current_identity
from quilkalam.schemas.common import ErrorResponse
from quilkalam.schemas.upload import ImageUploadRequest, ImageUploadResponse
from quilkalam.services.blob_service import blob_store
from quilkalam.services.identity_service import Identity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Uploads"])


@router.post(
    "/upload/image",
    response_model=ImageUploadResponse,
    responses={
        400: {"description": "Invalid image or folder", "model": ErrorResponse},
        401: {"description": "Missing or invalid token", "model": ErrorResponse},
        502: {"description": "Image could not be stored", "model": ErrorResponse},
    },
    summary="Upload an inline image",
)
async def upload_image(
    payload: ImageUploadRequest,
    identity: Identity = Depends(get_current_identity),
) -> ImageUploadResponse:
    stored = await blob_store.store_image(
        payload.image, payload.folder or settings.default_upload_folder
    )
    logger.info("User %s uploaded %s", identity.user_id, stored.public_id)
    return ImageUploadResponse(**stored.model_dump())


@router.get(
    "/files/{file_path:path}",
    summary="Serve a stored image",
    responses={
        200: {"description": "Image file"},
        404: {"description": "File not found", "model": ErrorResponse},
    },
)
async def serve_file(file_path: str) -> FileResponse:
    full_path = blob_store.resolve_file(file_path)
    # Filenames are UUIDs, so content never changes under a URL
    return FileResponse(
        path=str(full_path),
        headers={"Cache-Control": "public, max-age=86400, immutable"},
    )
