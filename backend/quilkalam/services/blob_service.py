"""
Quilkalam Backend — Local Blob Store
=====================================

What:  Validates, stores and serves inline images on the local filesystem.
How:   Decodes the data URL, checks size and sniffed MIME type, writes the
       bytes under a date-organized directory with a UUID filename, and
       retries transient write failures with tenacity.
Who:   ProjectService, UserService and routes/uploads.py.

Security Model:
    1. Size check:        Decoded payload must fit settings.max_image_size
    2. MIME type check:   libmagic inspects the header bytes; the declared
                          data-URL type is not trusted
    3. Namespace check:   Folder hints are restricted to [A-Za-z0-9_-] segments
    4. UUID filename:     No client input reaches the filename
    5. Serving:           resolve_file() refuses paths outside storage_root

Directory Structure:
    storage/
    └── quilkalam/
        └── covers/
            └── 2024/
                └── 01/
                    └── 15/
                        └── a1b2c3d4-....png
"""

import base64
import binascii
import logging
import re
import struct
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple

import aiofiles
import aiofiles.os
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from quilkalam.config import settings
from quilkalam.exceptions import NotFoundError, UpstreamServiceError, ValidationError
from quilkalam.schemas.upload import StoredImage
from quilkalam.services.blob_base import BlobStore

logger = logging.getLogger(__name__)

# ── Allowed Image Types ───────────────────────────────────────────────────
ALLOWED_MIME_TYPES = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
}

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^,;]*)*),(?P<payload>.*)$", re.S)
_NAMESPACE_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def decode_inline_image(data: str) -> bytes:
    """
    Decode a `data:<mime>;base64,<payload>` URL or bare base64 string.

    Raises:
        ValidationError: Not base64, or a data URL without `;base64`.
    """
    payload = data.strip()
    match = _DATA_URL_RE.match(payload)
    if match:
        if ";base64" not in match.group("params"):
            raise ValidationError(
                message="Inline images must be base64 encoded",
                field="image",
            )
        payload = match.group("payload")

    try:
        return base64.b64decode("".join(payload.split()), validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError(message="Image data is not valid base64", field="image")


def read_dimensions(content: bytes) -> Tuple[Optional[int], Optional[int]]:
    """Width and height from PNG or GIF headers; (None, None) otherwise."""
    if content[:8] == b"\x89PNG\r\n\x1a\n" and len(content) >= 24:
        width, height = struct.unpack(">II", content[16:24])
        return width, height
    if content[:6] in (b"GIF87a", b"GIF89a") and len(content) >= 10:
        width, height = struct.unpack("<HH", content[6:10])
        return width, height
    return None, None


class LocalBlobStore(BlobStore):
    """
    Filesystem-backed blob store.

    Args:
        storage_root:     Override settings.storage_root (used in tests).
        public_files_url: Override the URL prefix returned to clients.
    """

    def __init__(
        self,
        storage_root: Optional[str] = None,
        public_files_url: Optional[str] = None,
    ):
        self.storage_root = Path(storage_root or settings.storage_root).resolve()
        self.public_files_url = (public_files_url or settings.public_files_url).rstrip("/")
        self.storage_root.mkdir(parents=True, exist_ok=True)
        logger.info("LocalBlobStore initialized with storage_root=%s", self.storage_root)

    # ── Validation ────────────────────────────────────────────────────────

    def validate_namespace(self, namespace: str) -> str:
        segments = [s for s in namespace.strip("/").split("/") if s]
        if not segments or not all(_NAMESPACE_SEGMENT_RE.match(s) for s in segments):
            raise ValidationError(
                message=f"Invalid upload folder '{namespace}'",
                field="folder",
            )
        return "/".join(segments)

    def validate_size(self, actual_size: int) -> None:
        max_mb = settings.max_image_size / (1024 * 1024)
        if actual_size == 0:
            raise ValidationError(message="Image is empty", field="image")
        if actual_size > settings.max_image_size:
            raise ValidationError(
                message=(
                    f"Image size ({actual_size / (1024 * 1024):.1f}MB) "
                    f"exceeds maximum of {max_mb:.0f}MB."
                ),
                field="image",
                context={"max_size_mb": max_mb, "actual_size": actual_size},
            )

    def validate_mime_type(self, content: bytes) -> str:
        """
        Sniff the MIME type from the image's magic bytes.

        Returns:
            Detected MIME type (e.g., "image/png")

        Raises:
            ValidationError: Not one of the allowed image types
            UpstreamServiceError: libmagic could not be loaded or failed
        """
        try:
            import magic
            mime_type = magic.from_buffer(content, mime=True)
        except Exception as e:
            logger.error("MIME type detection failed: %s", str(e))
            raise UpstreamServiceError(
                message="Could not verify image type. Please try again.",
                service="blob_store",
                context={"error": type(e).__name__},
            )

        if mime_type not in ALLOWED_MIME_TYPES:
            raise ValidationError(
                message=(
                    f"Image content type '{mime_type}' is not supported. "
                    f"Allowed types: PNG, JPEG, GIF, WebP."
                ),
                field="image",
                context={"detected_mime": mime_type, "allowed": list(ALLOWED_MIME_TYPES)},
            )
        return mime_type

    # ── Storage ───────────────────────────────────────────────────────────

    def _generate_storage_path(self, namespace: str, extension: str) -> Tuple[Path, str]:
        """`<namespace>/YYYY/MM/DD/<uuid><ext>` under storage_root."""
        date_dir = datetime.now(timezone.utc).strftime("%Y/%m/%d")
        relative_path = f"{namespace}/{date_dir}/{uuid.uuid4()}{extension}"
        return self.storage_root / relative_path, relative_path

    @retry(
        retry=retry_if_exception_type(OSError),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _write_with_retry(self, absolute_path: Path, content: bytes) -> None:
        absolute_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(absolute_path, "wb") as f:
            await f.write(content)

    async def store_image(self, data: str, namespace: str) -> StoredImage:
        namespace = self.validate_namespace(namespace)
        content = decode_inline_image(data)
        self.validate_size(len(content))
        mime_type = self.validate_mime_type(content)

        absolute_path, relative_path = self._generate_storage_path(
            namespace, ALLOWED_MIME_TYPES[mime_type]
        )
        try:
            await self._write_with_retry(absolute_path, content)
        except OSError as e:
            logger.error("Failed to store image at %s: %s", absolute_path, str(e))
            raise UpstreamServiceError(
                message="Failed to save image. Please try again.",
                service="blob_store",
                context={"os_error": str(e)},
            )

        width, height = read_dimensions(content)
        logger.info("Image stored: %s (%d bytes, %s)", relative_path, len(content), mime_type)
        return StoredImage(
            url=f"{self.public_files_url}/{relative_path}",
            public_id=relative_path.rsplit(".", 1)[0],
            width=width,
            height=height,
        )

    # ── Serving ───────────────────────────────────────────────────────────

    def resolve_file(self, relative_path: str) -> Path:
        """
        Map a public file path back to disk.

        Raises:
            NotFoundError: The path escapes storage_root or does not exist.
        """
        candidate = (self.storage_root / relative_path).resolve()
        if not candidate.is_relative_to(self.storage_root) or not candidate.is_file():
            raise NotFoundError(resource="file", resource_id=relative_path)
        return candidate

    # ── Cleanup ───────────────────────────────────────────────────────────

    async def cleanup_image(self, url: str) -> None:
        """
        Remove a stored image by its public URL after the write that would
        have referenced it failed.

        Missing files and URLs from elsewhere are skipped; an OS error is
        logged, not raised, so the original failure is what the caller sees.
        """
        prefix = f"{self.public_files_url}/"
        if not url.startswith(prefix):
            logger.debug("Cleanup: %s is not a stored image", url)
            return
        try:
            path = self.resolve_file(url[len(prefix):])
        except NotFoundError:
            logger.debug("Cleanup: file already gone: %s", url)
            return
        try:
            await aiofiles.os.remove(path)
            logger.info("Cleaned up orphaned image: %s", path.name)
        except OSError as e:
            logger.warning("Failed to clean up image %s: %s", path, str(e))


# ── Singleton Instance ────────────────────────────────────────────────────
blob_store = LocalBlobStore()
