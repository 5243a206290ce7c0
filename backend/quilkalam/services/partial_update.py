"""
Quilkalam Backend — Partial Update Builder
===========================================

What:  Turns a sparse request (only the keys the client sent) into the
       SET clause of an UPDATE statement.
How:   Each updatable table has a fixed, enumerated list of UpdatableField
       entries. A field contributes to the update only when its key is in the
       request's `model_fields_set`. A field may also carry a derived
       side-column: item `content` always writes `word_count` next to it.
Who:   ItemService (single and batch item edits), ProjectService (metadata
       edits) and UserService (profile edits).

The builder returns a mapping of ORM attribute → value that is handed to
`sqlalchemy.update(...).values(...)`. Values always travel as bind
parameters; no SQL text is assembled from request data.

The timestamp touch (`updated_at`) is not part of the built set: callers
add it only when the set is non-empty, so an update with zero recognized
fields never issues a write.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy.orm import InstrumentedAttribute

from quilkalam.models.project import Item, Project
from quilkalam.models.user import User


def count_words(content: Optional[str]) -> int:
    """
    Count maximal runs of non-whitespace in `content`.

    >>> count_words("a  b   c")
    3
    >>> count_words("   ")
    0
    """
    if not content:
        return 0
    return len(content.split())


@dataclass(frozen=True)
class UpdatableField:
    """
    One updatable request key and where it lands.

    attribute:  Field name on the request schema (snake_case).
    column:     ORM attribute that receives the value.
    derived:    Extra (column, fn) pairs written alongside, computed from the
                same request value.
    """
    attribute: str
    column: InstrumentedAttribute
    derived: Tuple[Tuple[InstrumentedAttribute, Callable[[Any], Any]], ...] = ()


class PartialUpdate:
    """
    Accumulates the column values for one sparse update.

    Usage:
        values = PartialUpdate(ITEM_FIELDS).collect(payload)
        if values:
            await db.execute(update(Item).where(...).values(values))

    `overrides` replaces the request value for a field before it is
    recorded; ProjectService uses it to swap inline images for stored URLs.
    """

    def __init__(self, fields: Iterable[UpdatableField]):
        self.fields = tuple(fields)
        self.values: Dict[InstrumentedAttribute, Any] = {}

    def set(self, field: UpdatableField, value: Any) -> None:
        self.values[field.column] = value
        for column, derive in field.derived:
            self.values[column] = derive(value)

    def collect(
        self,
        payload: BaseModel,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> Dict[InstrumentedAttribute, Any]:
        overrides = overrides or {}
        present = payload.model_fields_set
        for field in self.fields:
            if field.attribute not in present:
                continue
            value = overrides.get(field.attribute, getattr(payload, field.attribute))
            self.set(field, value)
        return self.values

    def __bool__(self) -> bool:
        return bool(self.values)

    def __len__(self) -> int:
        return len(self.values)


# ══════════════════════════════════════════════════════════════════════════
# Enumerated updatable fields per table
# ══════════════════════════════════════════════════════════════════════════

ITEM_FIELDS = (
    UpdatableField("name", Item.name),
    UpdatableField("description", Item.description),
    UpdatableField("content", Item.content, derived=((Item.word_count, count_words),)),
    UpdatableField("item_metadata", Item.item_metadata),
    UpdatableField("order_index", Item.order_index),
)

PROJECT_FIELDS = (
    UpdatableField("title", Project.title),
    UpdatableField("description", Project.description),
    UpdatableField("genre", Project.genre),
    UpdatableField("cover_image", Project.cover_image_url),
    UpdatableField("back_image", Project.back_image_url),
    UpdatableField("categories", Project.categories),
    UpdatableField("tags", Project.tags),
    UpdatableField("is_public", Project.is_public),
    UpdatableField("allow_comments", Project.allow_comments),
    UpdatableField("allow_downloads", Project.allow_downloads),
)

USER_FIELDS = (
    UpdatableField("display_name", User.display_name),
    UpdatableField("email", User.email),
    UpdatableField("bio", User.bio),
    UpdatableField("profile_image", User.profile_image_url),
)
