"""
Quilkalam Backend — Project Service (Content Store)
====================================================

What:  Publishing, reading, listing, editing and deleting projects, plus the
       two consistency helpers the item service shares: the ownership check
       and the word-count recomputation.
Who:   Called by routes/projects.py; ItemService and SocialService reuse
       require_owner(), require_public() and recompute_word_count().

Publish Flow (POST /api/projects/publish):
    ┌──────────┐    ┌─────────────┐    ┌──────────────┐    ┌──────────────┐
    │  Shape   │───▶│ Inline      │───▶│  Project     │───▶│ Items, in    │
    │ (Schema) │    │ images →    │    │  row         │    │ request      │
    └──────────┘    │ BlobStore   │    └──────────────┘    │ order        │
                    └─────────────┘                        └──────────────┘

Aggregate Strategy:
    word_count    Full recomputation: SUM(items.word_count) written back in a
                  single UPDATE after every item mutation. Idempotent, so
                  concurrent writers converge on the right total.
    view_count    Atomic `view_count + 1` on every public read.
    like_count,   Atomic `col + 1` / floored `col - 1`, issued in the same
    comment_count transaction as the row insert/delete (see SocialService).

Publish trusts the caller's word counts (project and per item); every other
path recomputes them from content.
"""

import logging
import math
import uuid
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from quilkalam.config import settings
from quilkalam.exceptions import (
    DatabaseError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from quilkalam.models.project import PROJECT_STATUS_PUBLISHED, Item, Project
from quilkalam.models.user import User, utcnow
from quilkalam.schemas.common import Pagination, SuccessResponse
from quilkalam.schemas.project import (
    ProjectDetailResponse,
    ProjectListResponse,
    ProjectResponse,
    ProjectUpdate,
    PublishRequest,
    PublishResponse,
    item_response,
)
from quilkalam.services.blob_base import BlobStore, is_inline_image
from quilkalam.services.blob_service import blob_store
from quilkalam.services.identity_service import Identity
from quilkalam.services.partial_update import PROJECT_FIELDS, PartialUpdate

logger = logging.getLogger(__name__)

COVER_IMAGE_NAMESPACE = "quilkalam/covers"


def _project_response(project: Project, **author) -> ProjectResponse:
    return ProjectResponse.model_validate(project).model_copy(update=author)


class ProjectService:
    """
    Business logic for projects.

    Error Handling Strategy:
        Ownership and visibility failures raise ForbiddenError/NotFoundError
        before any write. Unexpected SQLAlchemy errors on the read paths are
        wrapped in DatabaseError; write paths let them propagate so the
        request transaction rolls back as a whole, and the app-level
        SQLAlchemyError handler answers 500 `server_error`.
    """

    def __init__(self, blobs: BlobStore = blob_store):
        self.blobs = blobs

    # ══════════════════════════════════════════════════════════════════════
    # Shared guards and aggregates
    # ══════════════════════════════════════════════════════════════════════

    async def require_owner(
        self,
        db: AsyncSession,
        project_id: uuid.UUID,
        identity: Identity,
    ) -> None:
        """
        Raises:
            NotFoundError:  No such project
            ForbiddenError: The caller does not own it
        """
        owner_id = await db.scalar(select(Project.user_id).where(Project.id == project_id))
        if owner_id is None:
            raise NotFoundError(resource="project", resource_id=str(project_id))
        if owner_id != identity.user_id:
            logger.info("User %s denied write on project %s", identity.user_id, project_id)
            raise ForbiddenError(context={"project_id": str(project_id)})

    async def require_public(self, db: AsyncSession, project_id: uuid.UUID) -> Project:
        """Fetch a project readable by anyone; private ones are reported as missing."""
        project = await db.scalar(
            select(Project).where(Project.id == project_id, Project.is_public.is_(True))
        )
        if project is None:
            raise NotFoundError(resource="project", resource_id=str(project_id))
        return project

    async def recompute_word_count(self, db: AsyncSession, project_id: uuid.UUID) -> None:
        """
        Set the project's word_count to the SUM over its current items and
        refresh updated_at.

        One UPDATE with a scalar subquery; never incremental.
        """
        total = (
            select(func.coalesce(func.sum(Item.word_count), 0))
            .where(Item.project_id == project_id)
            .scalar_subquery()
        )
        await db.execute(
            update(Project)
            .where(Project.id == project_id)
            .values(word_count=total, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    # ══════════════════════════════════════════════════════════════════════
    # Publish
    # ══════════════════════════════════════════════════════════════════════

    async def _store_if_inline(self, value: Optional[str], stored: List[str]) -> Optional[str]:
        """Store a data-URL image and record its URL in `stored`; pass URLs through."""
        if is_inline_image(value):
            url = (await self.blobs.store_image(value, COVER_IMAGE_NAMESPACE)).url
            stored.append(url)
            return url
        return value or None

    async def _cleanup_images(self, urls: List[str]) -> None:
        for url in urls:
            await self.blobs.cleanup_image(url)

    async def publish(
        self,
        db: AsyncSession,
        identity: Identity,
        payload: PublishRequest,
    ) -> PublishResponse:
        """
        Create a project and its items in one transaction.

        Parent resolution:
            Each item may carry a client `ref`. `parentItemId` names the ref
            of an item earlier in the list; the map below holds
            ref → (generated id, depth) for every item inserted so far. A
            parent that is not (yet) in the map resolves to nothing and the
            item is stored as a root with depth 0.

        Inline images are stored before the rows are written. If storing or
        writing fails here, images already stored for this call are removed.
        A failure at commit time (after this returns) can still leave them
        on disk unreferenced.

        Returns:
            PublishResponse with the new project id and publish timestamp
        """
        stored: List[str] = []
        try:
            cover_url = await self._store_if_inline(payload.cover_image, stored)
            back_url = await self._store_if_inline(payload.back_image, stored)
            return await self._insert_published(db, identity, payload, cover_url, back_url)
        except Exception:
            await self._cleanup_images(stored)
            raise

    async def _insert_published(
        self,
        db: AsyncSession,
        identity: Identity,
        payload: PublishRequest,
        cover_url: Optional[str],
        back_url: Optional[str],
    ) -> PublishResponse:
        project = Project(
            user_id=identity.user_id,
            type=payload.type,
            title=payload.title,
            description=payload.description,
            genre=payload.genre,
            author_name=payload.author_name,
            cover_image_url=cover_url,
            back_image_url=back_url,
            word_count=payload.word_count,
            isbn=payload.isbn,
            publisher=payload.publisher,
            publication_date=payload.publication_date,
            price=Decimal(str(payload.price)) if payload.price is not None else None,
            language=payload.language,
            copyright_text=payload.copyright_text,
            categories=list(payload.categories),
            tags=list(payload.tags),
            is_public=payload.is_public,
            allow_comments=payload.allow_comments,
            allow_downloads=payload.allow_downloads,
            status=PROJECT_STATUS_PUBLISHED,
        )
        db.add(project)
        await db.flush()  # Assigns id and published_at

        resolved: Dict[str, Tuple[uuid.UUID, int]] = {}
        for entry in payload.items:
            parent = resolved.get(entry.parent_item_id) if entry.parent_item_id else None
            if entry.parent_item_id and parent is None:
                logger.debug(
                    "Publish %s: parent ref %r unresolved, storing %r as root",
                    project.id, entry.parent_item_id, entry.name,
                )
            parent_id, depth = (parent[0], parent[1] + 1) if parent else (None, 0)

            item = Item(
                project_id=project.id,
                parent_item_id=parent_id,
                item_type=entry.item_type,
                name=entry.name,
                description=entry.description,
                content=entry.content,
                item_metadata=entry.item_metadata,
                order_index=entry.order_index,
                depth_level=depth,
                word_count=entry.word_count,
            )
            db.add(item)
            await db.flush()
            if entry.ref:
                resolved[entry.ref] = (item.id, depth)

        logger.info(
            "Project %s published by %s with %d items",
            project.id, identity.user_id, len(payload.items),
        )
        return PublishResponse(project_id=project.id, published_at=project.published_at)

    # ══════════════════════════════════════════════════════════════════════
    # Read
    # ══════════════════════════════════════════════════════════════════════

    async def get_project(self, db: AsyncSession, project_id: uuid.UUID) -> ProjectDetailResponse:
        """
        Public project with author snapshot and flat item list.

        Side effect: view_count is incremented on every call, including
        repeat reads and the owner's own reads. The returned project shows
        the count as it was before this read.
        """
        try:
            row = (
                await db.execute(
                    select(Project, User.display_name, User.profile_image_url, User.bio)
                    .outerjoin(User, User.id == Project.user_id)
                    .where(Project.id == project_id, Project.is_public.is_(True))
                )
            ).one_or_none()
            if row is None:
                raise NotFoundError(resource="project", resource_id=str(project_id))

            items = (
                await db.scalars(
                    select(Item)
                    .where(Item.project_id == project_id)
                    .order_by(Item.order_index.asc(), Item.created_at.asc())
                )
            ).all()

            project, display_name, profile_image, bio = row
            response = ProjectDetailResponse(
                project=_project_response(
                    project,
                    author_display_name=display_name,
                    author_profile_image=profile_image,
                    author_bio=bio,
                ),
                items=[item_response(item) for item in items],
            )

            await db.execute(
                update(Project)
                .where(Project.id == project_id)
                .values(view_count=Project.view_count + 1)
                .execution_options(synchronize_session=False)
            )
            return response

        except NotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error("Database error fetching project %s: %s", project_id, str(e))
            raise DatabaseError(
                message="Could not retrieve the project. Please try again.",
                context={"project_id": str(project_id)},
            )

    async def list_projects(
        self,
        db: AsyncSession,
        page: int = 1,
        limit: Optional[int] = None,
        project_type: Optional[str] = None,
        genre: Optional[str] = None,
        search: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> ProjectListResponse:
        """
        Page through public, published projects, newest first.

        Filters:
            project_type / genre / user_id: exact match
            search: case-insensitive substring of title OR description;
                    LIKE wildcards in the term are matched literally

        Pagination:
            Offset-based; `page` is 1-based and `limit` is capped at
            settings.max_page_size. id breaks ties on equal published_at so
            pages never overlap.

        Raises:
            ValidationError: page < 1, or limit outside 1..max_page_size
        """
        limit = settings.default_page_size if limit is None else limit
        if page < 1:
            raise ValidationError("page must be at least 1", field="page")
        if limit < 1 or limit > settings.max_page_size:
            raise ValidationError(
                f"limit must be between 1 and {settings.max_page_size}",
                field="limit",
                context={"max_page_size": settings.max_page_size},
            )

        conditions = [
            Project.is_public.is_(True),
            Project.status == PROJECT_STATUS_PUBLISHED,
        ]
        if project_type:
            conditions.append(Project.type == project_type)
        if genre:
            conditions.append(Project.genre == genre)
        if search:
            conditions.append(
                Project.title.icontains(search, autoescape=True)
                | Project.description.icontains(search, autoescape=True)
            )
        if user_id:
            conditions.append(Project.user_id == user_id)

        try:
            total = await db.scalar(
                select(func.count()).select_from(Project).where(*conditions)
            ) or 0

            rows = (
                await db.execute(
                    select(Project, User.display_name, User.profile_image_url)
                    .outerjoin(User, User.id == Project.user_id)
                    .where(*conditions)
                    .order_by(Project.published_at.desc(), Project.id.desc())
                    .limit(limit)
                    .offset((page - 1) * limit)
                )
            ).all()
        except SQLAlchemyError as e:
            logger.error("Database error listing projects: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not retrieve projects. Please try again.",
                context={"error_type": type(e).__name__},
            )

        return ProjectListResponse(
            projects=[
                _project_response(
                    project,
                    author_display_name=display_name,
                    author_profile_image=profile_image,
                )
                for project, display_name, profile_image in rows
            ],
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                total_pages=math.ceil(total / limit),
            ),
        )

    # ══════════════════════════════════════════════════════════════════════
    # Owner-only writes
    # ══════════════════════════════════════════════════════════════════════

    async def update_project(
        self,
        db: AsyncSession,
        identity: Identity,
        project_id: uuid.UUID,
        payload: ProjectUpdate,
    ) -> SuccessResponse:
        """Sparse metadata edit. An empty edit is a successful no-op."""
        await self.require_owner(db, project_id, identity)

        overrides = {}
        stored: List[str] = []
        try:
            for attribute in ("cover_image", "back_image"):
                value = getattr(payload, attribute)
                if attribute in payload.model_fields_set and is_inline_image(value):
                    overrides[attribute] = await self._store_if_inline(value, stored)

            values = PartialUpdate(PROJECT_FIELDS).collect(payload, overrides)
            if values:
                await db.execute(
                    update(Project)
                    .where(Project.id == project_id)
                    .values({**values, Project.updated_at: utcnow()})
                    .execution_options(synchronize_session=False)
                )
                logger.info("Project %s updated: %d column(s)", project_id, len(values))
        except Exception:
            await self._cleanup_images(stored)
            raise
        return SuccessResponse()

    async def delete_project(
        self,
        db: AsyncSession,
        identity: Identity,
        project_id: uuid.UUID,
    ) -> SuccessResponse:
        """Items, likes, comments and reading history go with it (FK cascade)."""
        await self.require_owner(db, project_id, identity)
        await db.execute(delete(Project).where(Project.id == project_id))
        logger.info("Project %s deleted by %s", project_id, identity.user_id)
        return SuccessResponse()


# ── Singleton Instance ────────────────────────────────────────────────────
project_service = ProjectService()
