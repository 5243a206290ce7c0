"""
Quilkalam Backend — Social Service Tests
=========================================

What:  Likes, follows, comments and reading progress against a real SQLite
       schema (unique constraints and cascades included).

What we test:
    ✅ Like toggled twice restores like_count with no duplicate row
    ✅ like_count never drops below zero
    ✅ An unlike racing another unlike decrements like_count once
    ✅ A duplicate like or follow slipping past the lookup → ConflictError, session still usable
    ✅ Self-follow rejected before any write; follow lists in both directions
    ✅ Comments: count bookkeeping, threading, author-only delete, thread-size decrement
    ✅ Deleting a comment another request already removed leaves comment_count alone
    ✅ Reading progress: one row per (user, project), upserted in place
    ✅ Deleting the bookmarked item nulls last_read_item_id
"""

import uuid

import pytest
from sqlalchemy import delete, func, select, update

from conftest import publish_request, stale_lookup
from quilkalam.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from quilkalam.models import Comment, Follow, Item, Like, Project, ReadingHistory
from quilkalam.schemas.project import ProjectUpdate
from quilkalam.schemas.social import CommentCreate, ReadingProgressUpdate
from quilkalam.services.item_service import item_service
from quilkalam.services.project_service import project_service
from quilkalam.services.social_service import SocialService


async def _project_column(db, column, project_id):
    return await db.scalar(select(column).where(Project.id == project_id))


class TestLikes:

    def setup_method(self):
        self.service = SocialService()

    @pytest.mark.asyncio
    async def test_toggle_twice_restores_count(self, db_session, reader, published):
        _, identity = reader

        liked = await self.service.toggle_like(db_session, identity, published)
        assert liked.liked is True
        assert await _project_column(db_session, Project.like_count, published) == 1
        assert (await self.service.like_state(db_session, identity, published)).liked is True

        unliked = await self.service.toggle_like(db_session, identity, published)
        assert unliked.liked is False
        assert await _project_column(db_session, Project.like_count, published) == 0
        assert await db_session.scalar(
            select(func.count()).select_from(Like).where(Like.project_id == published)
        ) == 0
        assert (await self.service.like_state(db_session, identity, published)).liked is False

    @pytest.mark.asyncio
    async def test_likes_from_two_users(self, db_session, author, reader, published):
        for _, identity in (author, reader):
            await self.service.toggle_like(db_session, identity, published)
        assert await _project_column(db_session, Project.like_count, published) == 2

    @pytest.mark.asyncio
    async def test_count_never_negative(self, db_session, reader, published):
        _, identity = reader
        await self.service.toggle_like(db_session, identity, published)
        # Counter drifted below the row count
        await db_session.execute(
            update(Project).where(Project.id == published).values(like_count=0)
            .execution_options(synchronize_session=False)
        )

        await self.service.toggle_like(db_session, identity, published)

        assert await _project_column(db_session, Project.like_count, published) == 0

    @pytest.mark.asyncio
    async def test_concurrent_unlike_decrements_once(self, db_session, author, reader, published):
        for _, identity in (author, reader):
            await self.service.toggle_like(db_session, identity, published)
        _, identity = reader
        like_id = await db_session.scalar(
            select(Like.id).where(Like.project_id == published, Like.user_id == identity.user_id)
        )
        # The other request's unlike lands after our lookup
        await db_session.execute(
            delete(Like).where(Like.id == like_id).execution_options(synchronize_session=False)
        )
        await db_session.execute(
            update(Project).where(Project.id == published).values(like_count=1)
            .execution_options(synchronize_session=False)
        )

        with stale_lookup(db_session, "likes", like_id):
            result = await self.service.toggle_like(db_session, identity, published)

        assert result.liked is False
        assert await _project_column(db_session, Project.like_count, published) == 1
        assert await db_session.scalar(
            select(func.count()).select_from(Like).where(Like.project_id == published)
        ) == 1

    @pytest.mark.asyncio
    async def test_duplicate_like_conflicts(self, db_session, reader, published):
        _, identity = reader
        await self.service.toggle_like(db_session, identity, published)

        with stale_lookup(db_session, "likes", None):
            with pytest.raises(ConflictError, match="Like already recorded"):
                await self.service.toggle_like(db_session, identity, published)

        # Only the savepoint rolled back
        assert await db_session.scalar(
            select(func.count()).select_from(Like).where(Like.project_id == published)
        ) == 1
        assert await _project_column(db_session, Project.like_count, published) == 1
        assert (await self.service.like_state(db_session, identity, published)).liked is True

    @pytest.mark.asyncio
    async def test_private_project_cannot_be_liked(self, db_session, author, reader):
        _, owner = author
        _, identity = reader
        private = (
            await project_service.publish(db_session, owner, publish_request(is_public=False))
        ).project_id
        with pytest.raises(NotFoundError):
            await self.service.toggle_like(db_session, identity, private)


class TestFollows:

    def setup_method(self):
        self.service = SocialService()

    @pytest.mark.asyncio
    async def test_self_follow_rejected(self, db_session, author):
        user, identity = author
        with pytest.raises(ValidationError, match="Cannot follow yourself"):
            await self.service.toggle_follow(db_session, identity, user.id)
        assert await db_session.scalar(select(func.count()).select_from(Follow)) == 0

    @pytest.mark.asyncio
    async def test_unknown_user(self, db_session, author):
        _, identity = author
        with pytest.raises(NotFoundError):
            await self.service.toggle_follow(db_session, identity, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_toggle_and_list(self, db_session, author, reader):
        author_user, _ = author
        reader_user, reader_identity = reader

        followed = await self.service.toggle_follow(db_session, reader_identity, author_user.id)
        assert followed.following is True

        followers = await self.service.list_follows(db_session, author_user.id, "followers")
        assert [u.id for u in followers.users] == [reader_user.id]
        assert followers.users[0].display_name == "Reader"

        following = await self.service.list_follows(db_session, reader_user.id, "following")
        assert [u.id for u in following.users] == [author_user.id]

        unfollowed = await self.service.toggle_follow(db_session, reader_identity, author_user.id)
        assert unfollowed.following is False
        assert (await self.service.list_follows(db_session, author_user.id, "followers")).users == []

    @pytest.mark.asyncio
    async def test_duplicate_follow_conflicts(self, db_session, author, reader):
        author_user, _ = author
        reader_user, reader_identity = reader
        await self.service.toggle_follow(db_session, reader_identity, author_user.id)

        with stale_lookup(db_session, "follows", None):
            with pytest.raises(ConflictError, match="Already following"):
                await self.service.toggle_follow(db_session, reader_identity, author_user.id)

        assert await db_session.scalar(select(func.count()).select_from(Follow)) == 1
        followers = await self.service.list_follows(db_session, author_user.id, "followers")
        assert [u.id for u in followers.users] == [reader_user.id]


class TestComments:

    def setup_method(self):
        self.service = SocialService()

    @pytest.mark.asyncio
    async def test_create_increments_count(self, db_session, reader, published):
        _, identity = reader
        result = await self.service.create_comment(
            db_session, identity, CommentCreate(project_id=published, content="Great read")
        )
        assert result.comment.display_name == "Reader"
        assert result.comment.content == "Great read"
        assert await _project_column(db_session, Project.comment_count, published) == 1

        listed = await self.service.list_comments(db_session, published)
        assert [c.id for c in listed.comments] == [result.comment.id]

    @pytest.mark.asyncio
    async def test_comments_disabled(self, db_session, author, reader, published):
        _, owner = author
        _, identity = reader
        await project_service.update_project(
            db_session, owner, published, ProjectUpdate.model_validate({"allowComments": False})
        )
        db_session.expunge_all()
        with pytest.raises(ForbiddenError):
            await self.service.create_comment(
                db_session, identity, CommentCreate(project_id=published, content="Hi")
            )

    @pytest.mark.asyncio
    async def test_parent_from_other_project_rejected(self, db_session, author, reader, published):
        _, owner = author
        _, identity = reader
        other = (
            await project_service.publish(db_session, owner, publish_request("Other"))
        ).project_id
        foreign = await self.service.create_comment(
            db_session, identity, CommentCreate(project_id=other, content="Elsewhere")
        )
        with pytest.raises(ValidationError):
            await self.service.create_comment(
                db_session, identity,
                CommentCreate(
                    project_id=published, content="Reply", parent_comment_id=foreign.comment.id
                ),
            )

    @pytest.mark.asyncio
    async def test_only_author_can_delete(self, db_session, author, reader, published):
        _, owner = author
        _, identity = reader
        created = await self.service.create_comment(
            db_session, identity, CommentCreate(project_id=published, content="Mine")
        )
        # Not even the project owner
        with pytest.raises(ForbiddenError):
            await self.service.delete_comment(db_session, owner, created.comment.id)

        await self.service.delete_comment(db_session, identity, created.comment.id)
        assert await _project_column(db_session, Project.comment_count, published) == 0

    @pytest.mark.asyncio
    async def test_delete_thread_decrements_by_thread_size(
        self, db_session, author, reader, published
    ):
        _, owner = author
        _, identity = reader
        top = await self.service.create_comment(
            db_session, identity, CommentCreate(project_id=published, content="Top")
        )
        reply = await self.service.create_comment(
            db_session, owner,
            CommentCreate(project_id=published, content="Reply", parent_comment_id=top.comment.id),
        )
        await self.service.create_comment(
            db_session, identity,
            CommentCreate(project_id=published, content="Nested", parent_comment_id=reply.comment.id),
        )
        await self.service.create_comment(
            db_session, owner, CommentCreate(project_id=published, content="Unrelated")
        )
        assert await _project_column(db_session, Project.comment_count, published) == 4

        await self.service.delete_comment(db_session, identity, top.comment.id)

        remaining = list(
            await db_session.scalars(select(Comment.content).where(Comment.project_id == published))
        )
        assert remaining == ["Unrelated"]
        assert await _project_column(db_session, Project.comment_count, published) == 1

    @pytest.mark.asyncio
    async def test_delete_after_concurrent_delete(self, db_session, author, reader, published):
        _, owner = author
        _, identity = reader
        mine = await self.service.create_comment(
            db_session, identity, CommentCreate(project_id=published, content="Mine")
        )
        await self.service.create_comment(
            db_session, owner, CommentCreate(project_id=published, content="Theirs")
        )
        stale = await db_session.scalar(select(Comment).where(Comment.id == mine.comment.id))
        # The other request removed the comment and adjusted the counter
        await db_session.execute(
            delete(Comment).where(Comment.id == mine.comment.id)
            .execution_options(synchronize_session=False)
        )
        await db_session.execute(
            update(Project).where(Project.id == published).values(comment_count=1)
            .execution_options(synchronize_session=False)
        )

        with stale_lookup(db_session, "comments", stale):
            await self.service.delete_comment(db_session, identity, mine.comment.id)

        assert await _project_column(db_session, Project.comment_count, published) == 1
        remaining = list(
            await db_session.scalars(select(Comment.content).where(Comment.project_id == published))
        )
        assert remaining == ["Theirs"]

    @pytest.mark.asyncio
    async def test_delete_unknown_comment(self, db_session, reader):
        _, identity = reader
        with pytest.raises(NotFoundError):
            await self.service.delete_comment(db_session, identity, uuid.uuid4())


class TestReadingProgress:

    def setup_method(self):
        self.service = SocialService()

    @pytest.mark.asyncio
    async def test_upsert_keeps_one_row(self, db_session, reader, published):
        _, identity = reader
        item_id = await db_session.scalar(select(Item.id).where(Item.project_id == published))

        await self.service.upsert_progress(
            db_session, identity,
            ReadingProgressUpdate(project_id=published, last_read_item_id=item_id, progress_percentage=10),
        )
        await self.service.upsert_progress(
            db_session, identity,
            ReadingProgressUpdate(project_id=published, last_read_item_id=item_id, progress_percentage=42.5),
        )

        assert await db_session.scalar(
            select(func.count()).select_from(ReadingHistory)
            .where(ReadingHistory.user_id == identity.user_id)
        ) == 1
        progress = (await self.service.get_progress(db_session, identity, published)).progress
        assert progress.progress_percentage == pytest.approx(42.5)
        assert progress.last_read_item_id == item_id

    @pytest.mark.asyncio
    async def test_no_progress_yet(self, db_session, reader, published):
        _, identity = reader
        assert (await self.service.get_progress(db_session, identity, published)).progress is None

    @pytest.mark.asyncio
    async def test_item_must_belong_to_project(self, db_session, author, reader, published):
        _, owner = author
        _, identity = reader
        other = (
            await project_service.publish(db_session, owner, publish_request("Other"))
        ).project_id
        foreign = await db_session.scalar(select(Item.id).where(Item.project_id == other))
        with pytest.raises(ValidationError):
            await self.service.upsert_progress(
                db_session, identity,
                ReadingProgressUpdate(
                    project_id=published, last_read_item_id=foreign, progress_percentage=5
                ),
            )

    @pytest.mark.asyncio
    async def test_history_joins_project_fields(self, db_session, reader, published):
        _, identity = reader
        await self.service.upsert_progress(
            db_session, identity, ReadingProgressUpdate(project_id=published, progress_percentage=3)
        )

        history = (await self.service.get_history(db_session, identity)).history

        assert len(history) == 1
        assert history[0].title == "The Dragon's Road"
        assert history[0].type == "novel"

    @pytest.mark.asyncio
    async def test_deleting_bookmarked_item_clears_reference(
        self, db_session, author, reader, published
    ):
        _, owner = author
        _, identity = reader
        item_id = await db_session.scalar(select(Item.id).where(Item.project_id == published))
        await self.service.upsert_progress(
            db_session, identity,
            ReadingProgressUpdate(project_id=published, last_read_item_id=item_id, progress_percentage=50),
        )

        await item_service.delete_item(db_session, owner, published, item_id)

        progress = (await self.service.get_progress(db_session, identity, published)).progress
        assert progress is not None
        assert progress.last_read_item_id is None
        assert progress.progress_percentage == pytest.approx(50)

