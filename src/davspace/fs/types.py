"""Result types and small value objects shared by the services."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ItemKind(str, Enum):
    """Which table an item id refers to."""

    FILE = "file"
    FOLDER = "folder"


class Resolution(str, Enum):
    """Conflict policy for a single relative path during a move."""

    SKIP = "skip"
    SKIP_DEFAULT = "skip_default"
    OVERWRITE = "overwrite"
    RENAME = "rename"
    MERGE = "merge"
    MOVE = "move"


@dataclass(frozen=True)
class ItemRef:
    """A folder or file identified by id, with its display name."""

    id: int
    name: str
    kind: ItemKind


@dataclass(frozen=True)
class PathSegment:
    """One entry of an ancestor chain."""

    id: int
    name: str


@dataclass(frozen=True)
class PhysicalLocation:
    """Where an item lives on its backend."""

    remote_path: str
    mount_id: str


@dataclass(frozen=True)
class PhysicalItem:
    """A path handed to ``StorageAdapter.remove``."""

    physical_path: str
    mount_id: str


@dataclass(frozen=True)
class RemoteEntry:
    """A file discovered on a backend by a scan."""

    path: str
    size: int | None = None
    mimetype: str | None = None
    modified: int | None = None


@dataclass
class MoveReport:
    """Aggregated outcome of a (possibly recursive) move."""

    moved: int = 0
    skipped: int = 0
    errors: int = 0
    messages: list[str] = field(default_factory=list)

    def add(self, other: MoveReport) -> MoveReport:
        """Accumulate *other* into this report and return self."""
        self.moved += other.moved
        self.skipped += other.skipped
        self.errors += other.errors
        self.messages.extend(other.messages)
        return self

    def error(self, message: str) -> None:
        self.errors += 1
        self.messages.append(message)

    @property
    def success(self) -> bool:
        return self.errors == 0


@dataclass
class RenameResult:
    """Result of a rename operation."""

    success: bool
    message: str
    old_name: str | None = None
    new_name: str | None = None


@dataclass
class DeleteResult:
    """Result of a single-item delete."""

    success: bool
    message: str
    files_deleted: int = 0
    folders_deleted: int = 0


@dataclass
class BatchDeleteResult:
    """Result of a heterogeneous batch delete."""

    success: bool
    message: str
    files_deleted: int = 0
    folders_deleted: int = 0
    failed_mounts: dict[str, str] = field(default_factory=dict)
    missing: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class ConflictReport:
    """Top-level names that would clash in a move target."""

    file_conflicts: list[str] = field(default_factory=list)
    folder_conflicts: list[str] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.file_conflicts or self.folder_conflicts)


@dataclass
class ShareInfo:
    """An active share on a file or folder."""

    item_id: int
    kind: ItemKind
    name: str
    token: str
    expires_at: int | None = None


@dataclass
class ShareResult:
    """Result of a share/unshare operation."""

    success: bool
    message: str
    token: str | None = None
    expires_at: int | None = None


@dataclass
class ListSharesResult:
    """Result of a list_active_shares operation."""

    success: bool
    message: str
    shares: list[ShareInfo] = field(default_factory=list)


@dataclass
class UploadResult:
    """Result of a physical upload."""

    success: bool
    message: str
    file_id: str | None = None
    mount_id: str | None = None
    size: int | None = None
    date: int | None = None
    message_id: int | None = None


@dataclass
class ExistenceCheck:
    """Whether a relative path already names a file."""

    name: str
    relative_path: str
    exists: bool
    message_id: int | None = None


@dataclass
class FolderContents:
    """Direct children of a folder, folders first."""

    folders: list[ItemRef] = field(default_factory=list)
    files: list[ItemRef] = field(default_factory=list)


@dataclass
class ScanResult:
    """Result of importing a backend's files into the namespace."""

    success: bool
    message: str
    imported: int = 0
    skipped: int = 0
    log: list[str] = field(default_factory=list)
