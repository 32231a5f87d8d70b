"""StorageAdapter protocol — runtime-checkable interfaces.

Split into a core protocol and opt-in capability protocols so that a
backend can implement just the four physical operations the engines
need, and add directory creation or scanning when it supports them.

Every method may raise ``PhysicalBackendError`` on network, auth or
disk failure.  Callers treat that as fatal to the enclosing operation;
no method is retried.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from .types import ItemKind, PhysicalItem, PhysicalLocation, RemoteEntry, UploadResult


@runtime_checkable
class StorageAdapter(Protocol):
    """Core interface every physical backend must implement.

    ``session`` is optional.  Adapters that need to resolve folder ids
    into physical paths use it; others ignore it.
    """

    async def move(
        self,
        old_path: str,
        new_path: str,
        mount_id: str,
        overwrite: bool = False,
    ) -> None:
        """Move a file or directory within one mount, creating parents."""
        ...

    async def remove(
        self,
        files: list[PhysicalItem],
        folders: list[PhysicalItem],
        user_id: str,
    ) -> None:
        """Remove files and directories; already-missing paths are not errors."""
        ...

    async def upload(
        self,
        local_temp_path: str,
        remote_name: str,
        mime_type: str,
        user_id: str,
        target_folder_id: int,
        *,
        session: AsyncSession | None = None,
    ) -> UploadResult: ...

    async def get_remote_path(
        self,
        item_id: int,
        kind: ItemKind | str,
        user_id: str,
        *,
        session: AsyncSession | None = None,
    ) -> PhysicalLocation: ...


# =====================================================================
# Opt-in capability protocols
# =====================================================================


@runtime_checkable
class SupportsDirectories(Protocol):
    """Backends that can materialize an empty directory."""

    async def create_directory(self, remote_path: str, mount_id: str) -> None: ...


@runtime_checkable
class SupportsScan(Protocol):
    """Backends that can enumerate every file under a mount."""

    async def walk_files(self, mount_id: str) -> list[RemoteEntry]: ...
