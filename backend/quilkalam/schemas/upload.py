"""
Quilkalam Backend — Upload Schemas
===================================

What:  Contract for POST /api/upload/image.
"""

from typing import Optional

from pydantic import Field

from quilkalam.schemas.common import CamelModel


class ImageUploadRequest(CamelModel):
    image: str = Field(min_length=1, description="data:image/...;base64 URL or bare base64")
    folder: Optional[str] = Field(default=None, description="Namespace for the stored file")


class StoredImage(CamelModel):
    """What the blob store hands back for a stored image."""
    url: str
    public_id: str
    width: Optional[int] = None
    height: Optional[int] = None


class ImageUploadResponse(StoredImage):
    success: bool = True
