"""davspace: a multi-user virtual drive over WebDAV-style storage backends.

Folder trees live in a relational store; file bytes live on mounted
backends.  Moves, merges and deletes keep both sides consistent.
"""

__version__ = "0.1.0"

from davspace._drive import DriveAsync
from davspace.fs.exceptions import (
    ConflictError,
    CrossMountError,
    DavspaceError,
    LogicalTransactionError,
    MountNotFoundError,
    NotFoundError,
    PhysicalBackendError,
)
from davspace.fs.local_disk import LocalDiskStorage
from davspace.fs.mounts import MountConfig, MountRegistry
from davspace.fs.protocol import StorageAdapter
from davspace.fs.types import (
    BatchDeleteResult,
    DeleteResult,
    ItemKind,
    MoveReport,
    RenameResult,
    Resolution,
    ShareResult,
)
from davspace.models import DriveFile, Folder

__all__ = [
    "BatchDeleteResult",
    "ConflictError",
    "CrossMountError",
    "DavspaceError",
    "DeleteResult",
    "DriveAsync",
    "DriveFile",
    "Folder",
    "ItemKind",
    "LocalDiskStorage",
    "LogicalTransactionError",
    "MountConfig",
    "MountNotFoundError",
    "MountRegistry",
    "MoveReport",
    "NotFoundError",
    "PhysicalBackendError",
    "RenameResult",
    "Resolution",
    "ShareResult",
    "StorageAdapter",
    "__version__",
]
