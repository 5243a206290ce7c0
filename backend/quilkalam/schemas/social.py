"""
Quilkalam Backend — Social Schemas
===================================

What:  Contracts for likes, follows, comments and reading progress.
Who:   routes/likes.py, routes/follows.py, routes/comments.py,
       routes/reading_progress.py and SocialService.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import Field

from quilkalam.schemas.common import CamelModel


# ── Likes ─────────────────────────────────────────────────────────────────


class LikeToggleRequest(CamelModel):
    project_id: uuid.UUID


class LikeToggleResponse(CamelModel):
    success: bool = True
    liked: bool = Field(description="State after the toggle")


class LikeStateResponse(CamelModel):
    liked: bool


# ── Follows ───────────────────────────────────────────────────────────────


class FollowToggleRequest(CamelModel):
    following_id: uuid.UUID


class FollowToggleResponse(CamelModel):
    success: bool = True
    following: bool = Field(description="State after the toggle")


class FollowUser(CamelModel):
    id: uuid.UUID
    display_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    bio: Optional[str] = None
    followed_at: datetime


class FollowListResponse(CamelModel):
    users: List[FollowUser]


# ── Comments ──────────────────────────────────────────────────────────────


class CommentCreate(CamelModel):
    project_id: uuid.UUID
    content: str = Field(min_length=1)
    parent_comment_id: Optional[uuid.UUID] = None


class CommentResponse(CamelModel):
    """A comment with its author's display name and image."""
    id: uuid.UUID
    project_id: uuid.UUID
    user_id: uuid.UUID
    parent_comment_id: Optional[uuid.UUID] = None
    content: str
    is_edited: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    display_name: Optional[str] = None
    profile_image_url: Optional[str] = None


class CommentEnvelope(CamelModel):
    success: bool = True
    comment: CommentResponse


class CommentListResponse(CamelModel):
    comments: List[CommentResponse]


# ── Reading progress ──────────────────────────────────────────────────────


class ReadingProgressUpdate(CamelModel):
    project_id: uuid.UUID
    last_read_item_id: Optional[uuid.UUID] = None
    progress_percentage: float = Field(ge=0, le=100)


class ReadingProgress(CamelModel):
    id: uuid.UUID
    user_id: uuid.UUID
    project_id: uuid.UUID
    last_read_item_id: Optional[uuid.UUID] = None
    progress_percentage: float
    last_read_at: Optional[datetime] = None


class ReadingProgressResponse(CamelModel):
    progress: Optional[ReadingProgress] = None


class ReadingHistoryEntry(ReadingProgress):
    """A reading-history row joined with the project's display fields."""
    title: Optional[str] = None
    cover_image_url: Optional[str] = None
    back_image_url: Optional[str] = None
    type: Optional[str] = None
    author_name: Optional[str] = None


class ReadingHistoryResponse(CamelModel):
    history: List[ReadingHistoryEntry]
