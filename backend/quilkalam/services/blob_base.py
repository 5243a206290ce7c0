"""
Quilkalam Backend — Abstract Blob Store Interface
==================================================

What:  Contract for storing inline images and handing back a durable URL.
How:   Concrete stores inherit from BlobStore and implement store_image(),
       resolve_file() and cleanup_image().
Who:   Called by ProjectService (cover/back images), UserService (profile
       image) and the upload route.
When:  Before the URL is written into an image column.

The content store never looks inside a stored image: it passes the inline
payload in and substitutes the returned `url` into the relevant column.

Implementations:
    - LocalBlobStore: date-organized files under settings.storage_root,
      served back by GET /api/files/{path}
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from quilkalam.schemas.upload import StoredImage


def is_inline_image(value: Optional[str]) -> bool:
    """True for `data:` URLs, which must be stored before use as a URL."""
    return bool(value) and value.startswith("data:")


class BlobStore(ABC):
    """
    Abstract interface for image storage.

    Contract:
        - store_image() accepts a data URL (or bare base64) and a namespace
        - Invalid payloads (bad base64, wrong type, too large) raise
          ValidationError before anything is written
        - Storage failures after retries raise UpstreamServiceError
    """

    @abstractmethod
    async def store_image(self, data: str, namespace: str) -> StoredImage:
        """
        Persist an inline image.

        Args:
            data:      `data:image/<type>;base64,<payload>` or bare base64.
            namespace: Folder hint such as "quilkalam/covers".

        Returns:
            StoredImage with url, public_id and, when readable from the
            header, width and height.
        """
        ...

    @abstractmethod
    def resolve_file(self, relative_path: str) -> Path:
        """
        Map a public file path back to the stored file.

        Raises:
            NotFoundError: Unknown path, or one outside the store.
        """
        ...

    @abstractmethod
    async def cleanup_image(self, url: str) -> None:
        """
        Remove an image stored by this store, identified by its public URL.

        Best-effort: used when the row that would reference the image is
        never written. Missing files and foreign URLs are ignored.
        """
        ...
