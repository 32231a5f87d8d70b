"""Folder model — one row per node of a user's namespace tree.

Provides ``FolderBase`` (non-table base) and ``Folder`` (concrete table).
Subclass ``FolderBase`` with ``table=True`` and a custom ``__tablename__``
to use a different table name per deployment.
"""

from __future__ import annotations

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class FolderBase(SQLModel):
    """Base fields for a folder. Subclass with ``table=True`` for a concrete table.

    ``parent_id`` is ``None`` only for the per-user root.  Direct children
    of the root are *mount folders* and carry the ``mount_id`` of their
    backend; deeper folders leave it ``None`` and inherit the mount by
    walking up the tree.
    """

    id: int | None = Field(default=None, primary_key=True)
    name: str
    parent_id: int | None = Field(default=None, index=True)
    user_id: str = Field(index=True)
    mount_id: str | None = Field(default=None)
    share_token: str | None = Field(default=None, unique=True)
    share_expires_at: int | None = Field(default=None)
    """Epoch milliseconds; ``None`` means the share never expires."""


class Folder(FolderBase, table=True):
    """Default folder table — ``davspace_folders``."""

    __tablename__ = "davspace_folders"
    __table_args__ = (UniqueConstraint("name", "parent_id", "user_id"),)
