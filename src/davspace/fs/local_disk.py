"""LocalDiskStorage — a StorageAdapter that maps each mount to a host directory.

Useful for development, tests, and deployments where the remote share is
already mounted on the host (davfs2, rclone mount, NFS).
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import unquote, urlparse

from .exceptions import DavspaceError, PhysicalBackendError
from .types import PhysicalItem, PhysicalLocation, RemoteEntry, UploadResult
from .utils import guess_mime_type, join_path, normalize_path, validate_name

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from .mounts import MountConfig, MountRegistry
    from .paths import PathResolver
    from .types import ItemKind

logger = logging.getLogger(__name__)


def host_dir_client(config: MountConfig) -> Path:
    """Client factory for ``MountRegistry``: the mount's host directory.

    ``config.url`` may be a plain path or a ``file://`` URL.
    """
    url = config.url
    if url.startswith("file://"):
        url = unquote(urlparse(url).path)
    host_dir = Path(url).expanduser().resolve()
    if not host_dir.exists():
        raise FileNotFoundError(f"Host directory does not exist: {host_dir}")
    if not host_dir.is_dir():
        raise NotADirectoryError(f"Host path is not a directory: {host_dir}")
    return host_dir


class LocalDiskStorage:
    """Direct disk access backend.

    Implements ``StorageAdapter``, ``SupportsDirectories`` and
    ``SupportsScan``.  Mount roots come from the registry's client
    handles, so the registry must be built with ``host_dir_client``
    (or a factory returning a ``Path``).

    Security: ``_resolve_path()`` keeps every path inside the mount root.
    """

    def __init__(self, registry: MountRegistry, resolver: PathResolver | None = None) -> None:
        self.registry = registry
        self.resolver = resolver

    # =========================================================================
    # Path Resolution & Security
    # =========================================================================

    def _mount_root(self, mount_id: str) -> Path:
        try:
            return Path(self.registry.client(mount_id))
        except (DavspaceError, OSError) as e:
            raise PhysicalBackendError(f"Mount {mount_id} is unavailable: {e}") from e

    def _resolve_path(self, mount_id: str, remote_path: str) -> Path:
        """Resolve a remote path to a host path inside the mount root."""
        root = self._mount_root(mount_id)
        rel = normalize_path(remote_path).lstrip("/")
        if not rel:
            return root

        resolved = (root / rel).resolve()
        try:
            resolved.relative_to(root)
        except ValueError:
            raise PhysicalBackendError(
                f"Path traversal detected: {remote_path} resolves outside mount {mount_id}"
            ) from None
        return resolved

    def _require_resolver(self, session: AsyncSession | None) -> tuple[PathResolver, AsyncSession]:
        if self.resolver is None or session is None:
            raise DavspaceError("LocalDiskStorage needs a resolver and a session for this call")
        return self.resolver, session

    # =========================================================================
    # StorageAdapter
    # =========================================================================

    async def move(
        self,
        old_path: str,
        new_path: str,
        mount_id: str,
        overwrite: bool = False,
    ) -> None:
        """Move a file or directory; a missing source is logged and ignored."""
        src = self._resolve_path(mount_id, old_path)
        dest = self._resolve_path(mount_id, new_path)
        root = self._mount_root(mount_id)

        if src == root or dest == root:
            raise PhysicalBackendError("Cannot move a mount root")
        if src == dest:
            return

        if not src.exists():
            logger.warning("Physical move skipped, source missing: [%s]%s", mount_id, old_path)
            return

        if dest.exists() and not overwrite:
            raise PhysicalBackendError(f"Destination already exists: [{mount_id}]{new_path}")

        def _move() -> None:
            if dest.exists():
                if dest.is_dir():
                    shutil.rmtree(dest)
                else:
                    dest.unlink()
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(src), str(dest))

        try:
            await asyncio.to_thread(_move)
        except OSError as e:
            raise PhysicalBackendError(f"Failed to move {old_path} to {new_path}: {e}") from e
        logger.info("Moved [%s]%s -> %s", mount_id, old_path, new_path)

    async def remove(
        self,
        files: list[PhysicalItem],
        folders: list[PhysicalItem],
        user_id: str,
    ) -> None:
        """Remove paths deepest first; mount roots are never removed."""
        items = sorted(
            [*files, *folders],
            key=lambda item: len(normalize_path(item.physical_path)),
            reverse=True,
        )
        errors: list[str] = []

        for item in items:
            path = normalize_path(item.physical_path)
            if path == "/":
                continue
            resolved = self._resolve_path(item.mount_id, path)

            def _delete(target: Path = resolved) -> bool:
                if not target.exists():
                    return False
                if target.is_dir():
                    shutil.rmtree(target)
                else:
                    target.unlink()
                return True

            try:
                removed = await asyncio.to_thread(_delete)
            except OSError as e:
                message = f"Failed to remove [{item.mount_id}]{path}: {e}"
                logger.error(message)
                errors.append(message)
                continue
            if removed:
                logger.info("Removed [%s]%s for user %s", item.mount_id, path, user_id)
            else:
                logger.warning("Remove skipped, path missing: [%s]%s", item.mount_id, path)

        if errors:
            raise PhysicalBackendError("; ".join(errors))

    async def upload(
        self,
        local_temp_path: str,
        remote_name: str,
        mime_type: str,
        user_id: str,
        target_folder_id: int,
        *,
        session: AsyncSession | None = None,
    ) -> UploadResult:
        """Copy a staged local file into the target folder's directory."""
        resolver, sess = self._require_resolver(session)

        valid, error = validate_name(remote_name)
        if not valid:
            return UploadResult(success=False, message=error)

        location = await resolver.folder_location(sess, target_folder_id, user_id)
        if self.registry.is_full(location.mount_id):
            return UploadResult(
                success=False,
                message=f"Mount {location.mount_id} is full; upload refused",
            )

        remote_path = join_path(location.remote_path, remote_name)
        dest = self._resolve_path(location.mount_id, remote_path)
        source = Path(local_temp_path)

        def _copy() -> os.stat_result:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, dest)
            return dest.stat()

        try:
            stat = await asyncio.to_thread(_copy)
        except OSError as e:
            raise PhysicalBackendError(f"Upload of {remote_name} failed: {e}") from e

        logger.info("Uploaded %s to [%s]%s (%s)", remote_name, location.mount_id, remote_path, mime_type)
        return UploadResult(
            success=True,
            message=f"Uploaded: {remote_path}",
            file_id=remote_path,
            mount_id=location.mount_id,
            size=stat.st_size,
            date=int(stat.st_mtime * 1000),
        )

    async def get_remote_path(
        self,
        item_id: int,
        kind: ItemKind | str,
        user_id: str,
        *,
        session: AsyncSession | None = None,
    ) -> PhysicalLocation:
        resolver, sess = self._require_resolver(session)
        return await resolver.physical_path(sess, item_id, kind, user_id)

    # =========================================================================
    # Capabilities
    # =========================================================================

    async def create_directory(self, remote_path: str, mount_id: str) -> None:
        target = self._resolve_path(mount_id, remote_path)
        try:
            await asyncio.to_thread(target.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise PhysicalBackendError(f"Failed to create directory {remote_path}: {e}") from e

    async def walk_files(self, mount_id: str) -> list[RemoteEntry]:
        """Every regular file under the mount, sorted by path."""
        root = self._mount_root(mount_id)

        def _scan() -> list[RemoteEntry]:
            entries: list[RemoteEntry] = []
            for dirpath, _dirnames, filenames in os.walk(root):
                for filename in filenames:
                    full = Path(dirpath) / filename
                    try:
                        stat = full.stat()
                    except OSError:
                        continue
                    rel = "/" + full.relative_to(root).as_posix()
                    entries.append(
                        RemoteEntry(
                            path=rel,
                            size=stat.st_size,
                            mimetype=guess_mime_type(filename),
                            modified=int(stat.st_mtime * 1000),
                        )
                    )
            return sorted(entries, key=lambda e: e.path)

        try:
            return await asyncio.to_thread(_scan)
        except OSError as e:
            raise PhysicalBackendError(f"Failed to scan mount {mount_id}: {e}") from e
