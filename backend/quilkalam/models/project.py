"""
Quilkalam Backend — Project & Item SQLAlchemy Models
=====================================================

What:  ORM models for `published_projects` and `published_items`, the
       hierarchical content model at the heart of the service.
Who:   Used by ProjectService and ItemService; Alembic mirrors them in 001.

Table Design:
    published_projects
        - Owned by a user (ON DELETE CASCADE).
        - word_count is a cached aggregate: always the SUM of its items'
          word_count, recomputed in full after every item mutation.
        - view/like/comment/download counters are adjusted in place with
          atomic `col = col ± 1` expressions.
        - Partial index over public rows backs the public listing.

    published_items
        - Flat storage of a tree: nullable parent_item_id referencing the same
          table, ON DELETE CASCADE, so deleting an item deletes its subtree
          at the storage layer.
        - depth_level is denormalized (parent depth + 1, or 0 for roots) and
          fixed at creation time.
        - order_index orders siblings; it is not globally unique.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from quilkalam.database import Base
from quilkalam.models.user import utcnow

PROJECT_STATUS_PUBLISHED = "published"


class Project(Base):
    """
    A published work.

    Lifecycle:
        1. Created by publish (status = 'published')
        2. Metadata mutated by owner-only edits; word_count by item mutations
        3. Counters mutated by reads, likes and comments
        4. Deleted by owner; items, likes, comments and reading history cascade
    """

    __tablename__ = "published_projects"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    genre: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    author_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cover_image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    back_image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    word_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # ── Book metadata ─────────────────────────────────────────────────────
    isbn: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    publisher: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    publication_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    language: Mapped[str] = mapped_column(String(16), nullable=False, default="en")
    copyright_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    categories: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    tags: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    # ── Visibility & permissions ──────────────────────────────────────────
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    allow_comments: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    allow_downloads: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # ── Counters ──────────────────────────────────────────────────────────
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    download_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    like_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    comment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=PROJECT_STATUS_PUBLISHED
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    published_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_published_projects_user", "user_id"),
        Index(
            "idx_published_projects_public",
            "is_public",
            postgresql_where=text("is_public = TRUE"),
            sqlite_where=text("is_public = 1"),
        ),
    )

    def __repr__(self) -> str:
        return f"<Project(id={self.id}, type='{self.type}', title='{self.title}')>"


class Item(Base):
    """A node (chapter, section, poem, ...) in a project's content tree."""

    __tablename__ = "published_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("published_projects.id", ondelete="CASCADE"), nullable=False
    )
    parent_item_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("published_items.id", ondelete="CASCADE"), nullable=True
    )

    item_type: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # `metadata` is reserved on declarative classes; the column keeps its name.
    item_metadata: Mapped[Optional[Any]] = mapped_column("metadata", JSON, nullable=True)

    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    depth_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    word_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_published_items_project", "project_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Item(id={self.id}, project_id={self.project_id}, "
            f"depth_level={self.depth_level}, name='{self.name}')>"
        )
