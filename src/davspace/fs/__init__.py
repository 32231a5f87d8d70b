"""Namespace layer — path resolution, moves, deletes, shares, backends."""

from davspace.fs.config import load_mounts, save_mounts
from davspace.fs.deletion import DeletionEngine
from davspace.fs.exceptions import (
    ConflictError,
    ConsistencyError,
    CrossMountError,
    DavspaceError,
    LogicalTransactionError,
    MountNotFoundError,
    NotFoundError,
    PhysicalBackendError,
)
from davspace.fs.local_disk import LocalDiskStorage, host_dir_client
from davspace.fs.mounts import MountConfig, MountRegistry
from davspace.fs.moves import MoveEngine
from davspace.fs.namespace import NamespaceStore
from davspace.fs.paths import PathResolver
from davspace.fs.protocol import StorageAdapter, SupportsDirectories, SupportsScan
from davspace.fs.scan import ScanService
from davspace.fs.sharing import SHARE_DURATIONS, SharingService
from davspace.fs.types import (
    BatchDeleteResult,
    ConflictReport,
    DeleteResult,
    ExistenceCheck,
    FolderContents,
    ItemKind,
    ItemRef,
    ListSharesResult,
    MoveReport,
    PathSegment,
    PhysicalItem,
    PhysicalLocation,
    RemoteEntry,
    RenameResult,
    Resolution,
    ScanResult,
    ShareInfo,
    ShareResult,
    UploadResult,
)

__all__ = [
    "SHARE_DURATIONS",
    "BatchDeleteResult",
    "ConflictError",
    "ConflictReport",
    "ConsistencyError",
    "CrossMountError",
    "DavspaceError",
    "DeleteResult",
    "DeletionEngine",
    "ExistenceCheck",
    "FolderContents",
    "ItemKind",
    "ItemRef",
    "ListSharesResult",
    "LocalDiskStorage",
    "LogicalTransactionError",
    "MountConfig",
    "MountNotFoundError",
    "MountRegistry",
    "MoveEngine",
    "MoveReport",
    "NamespaceStore",
    "NotFoundError",
    "PathResolver",
    "PathSegment",
    "PhysicalBackendError",
    "PhysicalItem",
    "PhysicalLocation",
    "RemoteEntry",
    "RenameResult",
    "Resolution",
    "ScanResult",
    "ScanService",
    "ShareInfo",
    "ShareResult",
    "SharingService",
    "StorageAdapter",
    "SupportsDirectories",
    "SupportsScan",
    "UploadResult",
    "host_dir_client",
    "load_mounts",
    "save_mounts",
]
