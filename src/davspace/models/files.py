"""DriveFile model — metadata for a file whose bytes live on a mount.

Provides ``DriveFileBase`` (non-table base) and ``DriveFile`` (concrete
table).  Subclass ``DriveFileBase`` with ``table=True`` and a custom
``__tablename__`` to use a different table name per deployment.
"""

from __future__ import annotations

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class DriveFileBase(SQLModel):
    """Base fields for a file record. Subclass with ``table=True`` for a concrete table."""

    message_id: int | None = Field(default=None, primary_key=True)
    file_name: str
    folder_id: int = Field(index=True)
    user_id: str = Field(index=True)
    storage_type: str = Field(default="webdav")
    file_id: str = Field(index=True)
    """Physical path on the backend, rooted at the mount root (``/docs/a.txt``)."""
    mount_id: str | None = Field(default=None, index=True)
    size: int | None = Field(default=None)
    mimetype: str | None = Field(default=None)
    date: int | None = Field(default=None)
    """Last-modified time in epoch milliseconds."""
    share_token: str | None = Field(default=None, unique=True)
    share_expires_at: int | None = Field(default=None)


class DriveFile(DriveFileBase, table=True):
    """Default file table — ``davspace_files``."""

    __tablename__ = "davspace_files"
    __table_args__ = (UniqueConstraint("file_name", "folder_id", "user_id"),)
