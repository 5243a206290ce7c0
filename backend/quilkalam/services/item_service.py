"""
Quilkalam Backend — Item Service (Content Store)
=================================================

What:  Reading and mutating the items of a project: the chapter/section
       tree stored as flat rows with a nullable parent_item_id.
Who:   Called by routes/items.py.

Rules every mutation follows:
    1. Ownership is checked through the project, never the item.
    2. depth_level is parent.depth_level + 1, read from storage within the
       same project; an unknown parent makes the item a root (depth 0).
    3. word_count is derived from content on the server.
    4. After any insert, update or delete, the project's word_count is
       recomputed from scratch (ProjectService.recompute_word_count).

Deleting an item removes its whole subtree through the self-referential
ON DELETE CASCADE; no application code walks the tree.
"""

import logging
import uuid
from typing import List, Optional, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from quilkalam.exceptions import NotFoundError, ValidationError
from quilkalam.models.project import Item
from quilkalam.models.user import utcnow
from quilkalam.schemas.common import SuccessResponse
from quilkalam.schemas.project import (
    ItemBatchCreate,
    ItemBatchResponse,
    ItemBatchUpdate,
    ItemCreate,
    ItemDetailResponse,
    ItemEnvelope,
    ItemListResponse,
    ItemUpdate,
    item_response,
)
from quilkalam.services.identity_service import Identity
from quilkalam.services.partial_update import ITEM_FIELDS, PartialUpdate, count_words
from quilkalam.services.project_service import ProjectService, project_service

logger = logging.getLogger(__name__)


class ItemService:
    def __init__(self, projects: ProjectService = project_service):
        self.projects = projects

    # ── Reads ─────────────────────────────────────────────────────────────

    async def list_items(self, db: AsyncSession, project_id: uuid.UUID) -> ItemListResponse:
        await self.projects.require_public(db, project_id)
        items = (
            await db.scalars(
                select(Item)
                .where(Item.project_id == project_id)
                .order_by(Item.order_index.asc(), Item.created_at.asc())
            )
        ).all()
        return ItemListResponse(chapters=[item_response(item) for item in items])

    async def get_item(
        self,
        db: AsyncSession,
        project_id: uuid.UUID,
        item_id: uuid.UUID,
    ) -> ItemDetailResponse:
        await self.projects.require_public(db, project_id)
        item = await db.scalar(
            select(Item).where(Item.id == item_id, Item.project_id == project_id)
        )
        if item is None:
            raise NotFoundError(resource="chapter", resource_id=str(item_id))
        return ItemDetailResponse(chapter=item_response(item))

    # ── Inserts ───────────────────────────────────────────────────────────

    async def _resolve_parent(
        self,
        db: AsyncSession,
        project_id: uuid.UUID,
        parent_item_id: Optional[uuid.UUID],
    ) -> Tuple[Optional[uuid.UUID], int]:
        """(parent id, depth) for a new item; (None, 0) when the parent is unknown."""
        if parent_item_id is None:
            return None, 0
        parent_depth = await db.scalar(
            select(Item.depth_level).where(
                Item.id == parent_item_id,
                Item.project_id == project_id,
            )
        )
        if parent_depth is None:
            logger.debug("Parent %s not in project %s; storing as root", parent_item_id, project_id)
            return None, 0
        return parent_item_id, parent_depth + 1

    async def _insert(self, db: AsyncSession, project_id: uuid.UUID, payload: ItemCreate) -> Item:
        parent_id, depth = await self._resolve_parent(db, project_id, payload.parent_item_id)
        item = Item(
            project_id=project_id,
            parent_item_id=parent_id,
            item_type=payload.item_type,
            name=payload.name,
            description=payload.description,
            content=payload.content,
            item_metadata=payload.item_metadata,
            order_index=payload.order_index,
            depth_level=depth,
            word_count=count_words(payload.content),
        )
        db.add(item)
        # Flushed one at a time so a later item in the batch can find this one
        await db.flush()
        return item

    async def add_item(
        self,
        db: AsyncSession,
        identity: Identity,
        project_id: uuid.UUID,
        payload: ItemCreate,
    ) -> ItemEnvelope:
        await self.projects.require_owner(db, project_id, identity)
        item = await self._insert(db, project_id, payload)
        await self.projects.recompute_word_count(db, project_id)
        logger.info("Item %s added to project %s", item.id, project_id)
        return ItemEnvelope(chapter=item_response(item))

    async def add_items(
        self,
        db: AsyncSession,
        identity: Identity,
        project_id: uuid.UUID,
        payload: ItemBatchCreate,
    ) -> ItemBatchResponse:
        """Insert in request order; parents must precede their children."""
        await self.projects.require_owner(db, project_id, identity)
        inserted: List[Item] = []
        for entry in payload.chapters:
            inserted.append(await self._insert(db, project_id, entry))
        await self.projects.recompute_word_count(db, project_id)
        logger.info("%d items added to project %s", len(inserted), project_id)
        return ItemBatchResponse(
            chapters=[item_response(item) for item in inserted],
            count=len(inserted),
        )

    # ── Updates ───────────────────────────────────────────────────────────

    async def _apply_update(
        self,
        db: AsyncSession,
        project_id: uuid.UUID,
        item_id: uuid.UUID,
        payload: ItemUpdate,
    ) -> Tuple[bool, Optional[Item]]:
        """
        Run the sparse UPDATE for one item.

        Returns:
            (False, None) when the payload had no recognized field and nothing
            was written; otherwise (True, updated item or None if the id is
            not in this project).
        """
        values = PartialUpdate(ITEM_FIELDS).collect(payload)
        if not values:
            return False, None
        item = await db.scalar(
            update(Item)
            .where(Item.id == item_id, Item.project_id == project_id)
            .values({**values, Item.updated_at: utcnow()})
            .returning(Item)
        )
        return True, item

    async def update_item(
        self,
        db: AsyncSession,
        identity: Identity,
        project_id: uuid.UUID,
        item_id: uuid.UUID,
        payload: ItemUpdate,
    ) -> ItemEnvelope:
        """
        Raises:
            ValidationError: "No fields to update" for an empty payload
            NotFoundError:   item_id is not an item of this project
        """
        await self.projects.require_owner(db, project_id, identity)
        written, item = await self._apply_update(db, project_id, item_id, payload)
        if not written:
            raise ValidationError("No fields to update", field="body")
        if item is None:
            raise NotFoundError(resource="chapter", resource_id=str(item_id))

        await self.projects.recompute_word_count(db, project_id)
        return ItemEnvelope(chapter=item_response(item))

    async def update_items(
        self,
        db: AsyncSession,
        identity: Identity,
        project_id: uuid.UUID,
        payload: ItemBatchUpdate,
    ) -> ItemBatchResponse:
        """
        Batch variant: empty entries and ids from other projects are
        skipped, and the word count is recomputed even if nothing changed.
        """
        await self.projects.require_owner(db, project_id, identity)
        updated: List[Item] = []
        for entry in payload.updates:
            _, item = await self._apply_update(db, project_id, entry.id, entry)
            if item is not None:
                updated.append(item)

        await self.projects.recompute_word_count(db, project_id)
        logger.info(
            "Batch update on project %s: %d of %d items changed",
            project_id, len(updated), len(payload.updates),
        )
        return ItemBatchResponse(
            chapters=[item_response(item) for item in updated],
            count=len(updated),
        )

    # ── Delete ────────────────────────────────────────────────────────────

    async def delete_item(
        self,
        db: AsyncSession,
        identity: Identity,
        project_id: uuid.UUID,
        item_id: uuid.UUID,
    ) -> SuccessResponse:
        await self.projects.require_owner(db, project_id, identity)
        result = await db.execute(
            delete(Item)
            .where(Item.id == item_id, Item.project_id == project_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError(resource="chapter", resource_id=str(item_id))

        await self.projects.recompute_word_count(db, project_id)
        logger.info("Item %s (and subtree) deleted from project %s", item_id, project_id)
        return SuccessResponse()


# ── Singleton Instance ────────────────────────────────────────────────────
item_service = ItemService()
