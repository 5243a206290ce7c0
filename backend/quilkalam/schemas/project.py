"""
Quilkalam Backend — Project & Item Schemas
===========================================

What:  Request/response contracts for the content store: publishing a work,
       editing its metadata, and reading or mutating its item tree.
How:   Update schemas leave every field optional. Which keys the client
       actually sent is read from `model_fields_set`, so an explicit null
       ("clear this column") is distinguishable from an absent key ("leave it
       alone"). The partial-update builder relies on that distinction.
Who:   routes/projects.py, routes/items.py, ProjectService, ItemService.

Wire names are camelCase (`parentItemId`, `orderIndex`); the item's
free-form `metadata` attribute is exposed as `metadata` but stored on the
ORM model as `item_metadata`.
"""

import uuid
from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import Field, field_validator

from quilkalam.schemas.common import CamelModel, Pagination

ProjectType = Literal["novel", "poetry", "shortStory", "manuscript"]


def _reject_null(v: Any, field: str) -> Any:
    if v is None:
        raise ValueError(f"{field} cannot be null")
    return v


# ══════════════════════════════════════════════════════════════════════════
# Request Models — Publish
# ══════════════════════════════════════════════════════════════════════════


class PublishItem(CamelModel):
    """
    One item of a publish batch.

    ref:            Client-side handle for this item, unique within the batch.
    parent_item_id: The `ref` of an item earlier in the same batch. A
                    reference to a later (or unknown) ref leaves the item as
                    a root.
    word_count:     Taken as supplied; publish does not tokenize content.
    """
    ref: Optional[str] = None
    parent_item_id: Optional[str] = None
    item_type: str
    name: str
    description: Optional[str] = None
    content: Optional[str] = None
    item_metadata: Optional[Any] = Field(default=None, alias="metadata")
    order_index: int = 0
    word_count: int = Field(default=0, ge=0)


class PublishRequest(CamelModel):
    """
    Full project metadata plus its ordered item list.

    Shape validation (type enum, non-empty title) happens here, before any
    write is attempted.
    """
    type: ProjectType
    title: str = Field(min_length=1)
    description: Optional[str] = None
    genre: Optional[str] = None
    author_name: Optional[str] = None
    cover_image: Optional[str] = Field(default=None, description="URL or inline image")
    back_image: Optional[str] = Field(default=None, description="URL or inline image")
    word_count: int = Field(default=0, ge=0)
    isbn: Optional[str] = None
    publisher: Optional[str] = None
    publication_date: Optional[datetime] = None
    price: Optional[float] = Field(default=None, ge=0)
    language: str = "en"
    copyright_text: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    is_public: bool = True
    allow_comments: bool = True
    allow_downloads: bool = False
    items: List[PublishItem]


class ProjectUpdate(CamelModel):
    """Sparse metadata edit. Absent keys leave their column untouched."""
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    genre: Optional[str] = None
    cover_image: Optional[str] = None
    back_image: Optional[str] = None
    categories: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    is_public: Optional[bool] = None
    allow_comments: Optional[bool] = None
    allow_downloads: Optional[bool] = None

    @field_validator(
        "title", "categories", "tags", "is_public", "allow_comments", "allow_downloads"
    )
    @classmethod
    def validate_not_null(cls, v: Any, info) -> Any:
        return _reject_null(v, info.field_name)


# ══════════════════════════════════════════════════════════════════════════
# Request Models — Items
# ══════════════════════════════════════════════════════════════════════════


class ItemCreate(CamelModel):
    parent_item_id: Optional[uuid.UUID] = None
    item_type: str = "chapter"
    name: str = Field(min_length=1)
    description: Optional[str] = None
    content: Optional[str] = None
    item_metadata: Optional[Any] = Field(default=None, alias="metadata")
    order_index: int = 0


class ItemBatchCreate(CamelModel):
    chapters: List[ItemCreate]


class ItemUpdate(CamelModel):
    """Sparse item edit; `content` also rewrites the stored word count."""
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    content: Optional[str] = None
    item_metadata: Optional[Any] = Field(default=None, alias="metadata")
    order_index: Optional[int] = None

    @field_validator("name", "order_index")
    @classmethod
    def validate_not_null(cls, v: Any, info) -> Any:
        return _reject_null(v, info.field_name)


class ItemBatchUpdateEntry(ItemUpdate):
    id: uuid.UUID


class ItemBatchUpdate(CamelModel):
    updates: List[ItemBatchUpdateEntry]


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class ItemResponse(CamelModel):
    id: uuid.UUID
    project_id: uuid.UUID
    parent_item_id: Optional[uuid.UUID] = None
    item_type: str
    name: str
    description: Optional[str] = None
    content: Optional[str] = None
    item_metadata: Optional[Any] = Field(default=None, alias="metadata")
    order_index: int
    depth_level: int
    word_count: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProjectResponse(CamelModel):
    """
    A project row plus a snapshot of its author.

    author_bio is only filled on the single-project read; the list endpoint
    returns display name and image only.
    """
    id: uuid.UUID
    user_id: uuid.UUID
    type: str
    title: str
    description: Optional[str] = None
    genre: Optional[str] = None
    author_name: Optional[str] = None
    cover_image_url: Optional[str] = None
    back_image_url: Optional[str] = None
    word_count: int
    isbn: Optional[str] = None
    publisher: Optional[str] = None
    publication_date: Optional[datetime] = None
    price: Optional[float] = None
    language: str
    copyright_text: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    is_public: bool
    allow_comments: bool
    allow_downloads: bool
    view_count: int
    download_count: int
    like_count: int
    comment_count: int
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    published_at: Optional[datetime] = None

    author_display_name: Optional[str] = None
    author_profile_image: Optional[str] = None
    author_bio: Optional[str] = None


class ProjectDetailResponse(CamelModel):
    """Project plus its items as a flat list; clients rebuild the tree."""
    project: ProjectResponse
    items: List[ItemResponse]


class ProjectListResponse(CamelModel):
    success: bool = True
    projects: List[ProjectResponse]
    pagination: Pagination


class PublishResponse(CamelModel):
    success: bool = True
    project_id: uuid.UUID
    published_at: datetime


class ItemEnvelope(CamelModel):
    success: bool = True
    chapter: ItemResponse


class ItemDetailResponse(CamelModel):
    chapter: ItemResponse


class ItemListResponse(CamelModel):
    chapters: List[ItemResponse]


class ItemBatchResponse(CamelModel):
    success: bool = True
    chapters: List[ItemResponse]
    count: int


def item_response(item: Any) -> ItemResponse:
    """Build an ItemResponse from an Item row (`metadata` lives on item_metadata)."""
    return ItemResponse(
        id=item.id,
        project_id=item.project_id,
        parent_item_id=item.parent_item_id,
        item_type=item.item_type,
        name=item.name,
        description=item.description,
        content=item.content,
        item_metadata=item.item_metadata,
        order_index=item.order_index,
        depth_level=item.depth_level,
        word_count=item.word_count,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )
