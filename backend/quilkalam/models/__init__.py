"""
Quilkalam Backend — ORM Models
===============================

Importing this package registers every table on `Base.metadata`, which is
what Alembic autogenerate and the test suite's `create_all` rely on.
"""

from quilkalam.models.project import Item, Project
from quilkalam.models.social import Comment, Follow, Like, ReadingHistory
from quilkalam.models.user import User

__all__ = [
    "Comment",
    "Follow",
    "Item",
    "Like",
    "Project",
    "ReadingHistory",
    "User",
]
