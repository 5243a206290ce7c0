"""
Quilkalam Backend — Social Service
===================================

What:  Likes, follows, comments and reading progress.
Who:   Called by routes/likes.py, routes/follows.py, routes/comments.py and
       routes/reading_progress.py.

Toggle Semantics:
    The presence of the unique (project, user) or (follower, following) row
    IS the state. A toggle looks the row up and either deletes it or inserts
    it. The lookup only picks the branch; the UNIQUE constraint is what
    prevents duplicates. A racing duplicate insert fails inside a savepoint
    and surfaces as ConflictError without poisoning the request transaction.

Counter Consistency:
    like_count and comment_count move by atomic in-database expressions
    (`col + 1`, floored `col - n`) issued in the same transaction as the
    row insert/delete they accompany. A decrement is only issued when the
    DELETE reports a removed row, so two racing deletes of the same row move
    the counter once.
"""

import logging
import uuid
from decimal import Decimal

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from quilkalam.exceptions import (
    ConflictError,
    DatabaseError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from quilkalam.models.project import Item, Project
from quilkalam.models.social import Comment, Follow, Like, ReadingHistory
from quilkalam.models.user import User, utcnow
from quilkalam.schemas.common import SuccessResponse
from quilkalam.schemas.social import (
    CommentCreate,
    CommentEnvelope,
    CommentListResponse,
    CommentResponse,
    FollowListResponse,
    FollowToggleResponse,
    FollowUser,
    LikeStateResponse,
    LikeToggleResponse,
    ReadingHistoryEntry,
    ReadingHistoryResponse,
    ReadingProgress,
    ReadingProgressResponse,
    ReadingProgressUpdate,
)
from quilkalam.services.identity_service import Identity
from quilkalam.services.project_service import ProjectService, project_service

logger = logging.getLogger(__name__)

READING_HISTORY_LIMIT = 50

# ON CONFLICT ... DO UPDATE builders for the dialects we run on
_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _decrement(column, amount=1):
    """`column - amount`, never below zero."""
    return case((column > amount, column - amount), else_=0)


def _comment_response(comment: Comment, display_name=None, profile_image_url=None) -> CommentResponse:
    return CommentResponse.model_validate(comment).model_copy(
        update={"display_name": display_name, "profile_image_url": profile_image_url}
    )


class SocialService:
    def __init__(self, projects: ProjectService = project_service):
        self.projects = projects

    # ══════════════════════════════════════════════════════════════════════
    # Likes
    # ══════════════════════════════════════════════════════════════════════

    async def toggle_like(
        self,
        db: AsyncSession,
        identity: Identity,
        project_id: uuid.UUID,
    ) -> LikeToggleResponse:
        """
        Flip the caller's like on a public project.

        Returns:
            LikeToggleResponse with `liked` = state after the call

        Raises:
            NotFoundError: Project missing or private
            ConflictError: A concurrent request inserted the same like
        """
        await self.projects.require_public(db, project_id)

        existing = await db.scalar(
            select(Like.id).where(Like.project_id == project_id, Like.user_id == identity.user_id)
        )

        if existing is not None:
            result = await db.execute(
                delete(Like)
                .where(Like.id == existing)
                .execution_options(synchronize_session=False)
            )
            # A concurrent unlike may have removed the row since the lookup
            if result.rowcount:
                await db.execute(
                    update(Project)
                    .where(Project.id == project_id)
                    .values(like_count=_decrement(Project.like_count))
                    .execution_options(synchronize_session=False)
                )
            logger.info("User %s unliked project %s", identity.user_id, project_id)
            return LikeToggleResponse(liked=False)

        try:
            async with db.begin_nested():
                db.add(Like(project_id=project_id, user_id=identity.user_id))
        except IntegrityError:
            raise ConflictError(
                "Like already recorded",
                context={"project_id": str(project_id)},
            )
        await db.execute(
            update(Project)
            .where(Project.id == project_id)
            .values(like_count=Project.like_count + 1)
            .execution_options(synchronize_session=False)
        )
        logger.info("User %s liked project %s", identity.user_id, project_id)
        return LikeToggleResponse(liked=True)

    async def like_state(
        self,
        db: AsyncSession,
        identity: Identity,
        project_id: uuid.UUID,
    ) -> LikeStateResponse:
        existing = await db.scalar(
            select(Like.id).where(Like.project_id == project_id, Like.user_id == identity.user_id)
        )
        return LikeStateResponse(liked=existing is not None)

    # ══════════════════════════════════════════════════════════════════════
    # Follows
    # ══════════════════════════════════════════════════════════════════════

    async def toggle_follow(
        self,
        db: AsyncSession,
        identity: Identity,
        following_id: uuid.UUID,
    ) -> FollowToggleResponse:
        """
        Raises:
            ValidationError: Caller tried to follow themself (checked before any write)
            NotFoundError:   Target user does not exist
            ConflictError:   A concurrent request inserted the same follow
        """
        if following_id == identity.user_id:
            raise ValidationError("Cannot follow yourself", field="followingId")

        target = await db.scalar(select(User.id).where(User.id == following_id))
        if target is None:
            raise NotFoundError(resource="user", resource_id=str(following_id))

        existing = await db.scalar(
            select(Follow.id).where(
                Follow.follower_id == identity.user_id,
                Follow.following_id == following_id,
            )
        )
        if existing is not None:
            await db.execute(delete(Follow).where(Follow.id == existing))
            return FollowToggleResponse(following=False)

        try:
            async with db.begin_nested():
                db.add(Follow(follower_id=identity.user_id, following_id=following_id))
        except IntegrityError:
            raise ConflictError(
                "Already following this user",
                context={"following_id": str(following_id)},
            )
        return FollowToggleResponse(following=True)

    async def list_follows(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        direction: str = "following",
    ) -> FollowListResponse:
        """
        Followers of `user_id` (direction="followers") or the users it
        follows (anything else), newest first.
        """
        if direction == "followers":
            match, other = Follow.following_id, Follow.follower_id
        else:
            match, other = Follow.follower_id, Follow.following_id

        rows = (
            await db.execute(
                select(
                    User.id,
                    User.display_name,
                    User.profile_image_url,
                    User.bio,
                    Follow.created_at.label("followed_at"),
                )
                .select_from(Follow)
                .join(User, User.id == other)
                .where(match == user_id)
                .order_by(Follow.created_at.desc())
            )
        ).all()
        return FollowListResponse(users=[FollowUser.model_validate(row) for row in rows])

    # ══════════════════════════════════════════════════════════════════════
    # Comments
    # ══════════════════════════════════════════════════════════════════════

    async def create_comment(
        self,
        db: AsyncSession,
        identity: Identity,
        payload: CommentCreate,
    ) -> CommentEnvelope:
        """
        Raises:
            NotFoundError:   Project missing or private
            ForbiddenError:  The project has comments switched off
            ValidationError: parent_comment_id belongs to another project
        """
        project = await self.projects.require_public(db, payload.project_id)
        if not project.allow_comments:
            raise ForbiddenError(
                "Comments are disabled for this project",
                context={"project_id": str(payload.project_id)},
            )

        if payload.parent_comment_id is not None:
            parent_project = await db.scalar(
                select(Comment.project_id).where(Comment.id == payload.parent_comment_id)
            )
            if parent_project != payload.project_id:
                raise ValidationError(
                    "Parent comment does not belong to this project",
                    field="parentCommentId",
                )

        comment = Comment(
            project_id=payload.project_id,
            user_id=identity.user_id,
            parent_comment_id=payload.parent_comment_id,
            content=payload.content,
        )
        db.add(comment)
        await db.flush()

        await db.execute(
            update(Project)
            .where(Project.id == payload.project_id)
            .values(comment_count=Project.comment_count + 1)
            .execution_options(synchronize_session=False)
        )

        author = (
            await db.execute(
                select(User.display_name, User.profile_image_url).where(User.id == identity.user_id)
            )
        ).one_or_none()
        display_name, profile_image_url = author if author else (None, None)
        return CommentEnvelope(comment=_comment_response(comment, display_name, profile_image_url))

    async def list_comments(self, db: AsyncSession, project_id: uuid.UUID) -> CommentListResponse:
        await self.projects.require_public(db, project_id)
        rows = (
            await db.execute(
                select(Comment, User.display_name, User.profile_image_url)
                .outerjoin(User, User.id == Comment.user_id)
                .where(Comment.project_id == project_id)
                .order_by(Comment.created_at.desc())
            )
        ).all()
        return CommentListResponse(
            comments=[_comment_response(c, name, image) for c, name, image in rows]
        )

    async def delete_comment(
        self,
        db: AsyncSession,
        identity: Identity,
        comment_id: uuid.UUID,
    ) -> SuccessResponse:
        """
        Author-only delete. Replies go with the comment (FK cascade), so
        comment_count drops by the size of the removed thread.
        """
        comment = await db.scalar(select(Comment).where(Comment.id == comment_id))
        if comment is None:
            raise NotFoundError(resource="comment", resource_id=str(comment_id))
        if comment.user_id != identity.user_id:
            raise ForbiddenError(
                "You can only delete your own comments",
                context={"comment_id": str(comment_id)},
            )

        thread = (
            select(Comment.id)
            .where(Comment.id == comment_id)
            .cte("thread", recursive=True)
        )
        thread = thread.union_all(
            select(Comment.id).where(Comment.parent_comment_id == thread.c.id)
        )
        removed = await db.scalar(select(func.count()).select_from(thread)) or 1

        result = await db.execute(
            delete(Comment)
            .where(Comment.id == comment_id)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            # Deleted by a concurrent request, which also adjusted the counter
            logger.info("Comment %s already deleted", comment_id)
            return SuccessResponse()

        await db.execute(
            update(Project)
            .where(Project.id == comment.project_id)
            .values(comment_count=_decrement(Project.comment_count, removed))
            .execution_options(synchronize_session=False)
        )
        logger.info("Comment %s deleted (%d with replies)", comment_id, removed)
        return SuccessResponse()

    # ══════════════════════════════════════════════════════════════════════
    # Reading progress
    # ══════════════════════════════════════════════════════════════════════

    async def upsert_progress(
        self,
        db: AsyncSession,
        identity: Identity,
        payload: ReadingProgressUpdate,
    ) -> SuccessResponse:
        """
        Insert-or-update the (user, project) reading-history row.

        One INSERT ... ON CONFLICT (user_id, project_id) DO UPDATE, so two
        concurrent saves never produce two rows.
        """
        await self.projects.require_public(db, payload.project_id)
        if payload.last_read_item_id is not None:
            in_project = await db.scalar(
                select(Item.id).where(
                    Item.id == payload.last_read_item_id,
                    Item.project_id == payload.project_id,
                )
            )
            if in_project is None:
                raise ValidationError(
                    "Item does not belong to this project",
                    field="lastReadItemId",
                )

        dialect = db.get_bind().dialect.name
        insert = _UPSERT_INSERTS.get(dialect)
        if insert is None:
            raise DatabaseError(
                message="Reading progress is not supported on this database.",
                context={"dialect": dialect},
            )

        stmt = insert(ReadingHistory).values(
            id=uuid.uuid4(),
            user_id=identity.user_id,
            project_id=payload.project_id,
            last_read_item_id=payload.last_read_item_id,
            progress_percentage=Decimal(str(round(payload.progress_percentage, 2))),
            last_read_at=utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "project_id"],
            set_={
                "last_read_item_id": stmt.excluded.last_read_item_id,
                "progress_percentage": stmt.excluded.progress_percentage,
                "last_read_at": stmt.excluded.last_read_at,
            },
        )
        await db.execute(stmt)
        return SuccessResponse()

    async def get_progress(
        self,
        db: AsyncSession,
        identity: Identity,
        project_id: uuid.UUID,
    ) -> ReadingProgressResponse:
        row = await db.scalar(
            select(ReadingHistory)
            .where(
                ReadingHistory.user_id == identity.user_id,
                ReadingHistory.project_id == project_id,
            )
            .execution_options(populate_existing=True)
        )
        return ReadingProgressResponse(
            progress=ReadingProgress.model_validate(row) if row is not None else None
        )

    async def get_history(self, db: AsyncSession, identity: Identity) -> ReadingHistoryResponse:
        """The caller's most recently read projects, newest first."""
        rows = (
            await db.execute(
                select(
                    ReadingHistory,
                    Project.title,
                    Project.cover_image_url,
                    Project.back_image_url,
                    Project.type,
                    Project.author_name,
                )
                .outerjoin(Project, Project.id == ReadingHistory.project_id)
                .where(ReadingHistory.user_id == identity.user_id)
                .order_by(ReadingHistory.last_read_at.desc())
                .limit(READING_HISTORY_LIMIT)
                .execution_options(populate_existing=True)
            )
        ).all()
        return ReadingHistoryResponse(
            history=[
                ReadingHistoryEntry(
                    **ReadingProgress.model_validate(history).model_dump(),
                    title=title,
                    cover_image_url=cover,
                    back_image_url=back,
                    type=project_type,
                    author_name=author_name,
                )
                for history, title, cover, back, project_type, author_name in rows
            ]
        )


# ── Singleton Instance ────────────────────────────────────────────────────
social_service = SocialService()