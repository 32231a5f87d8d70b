"""ScanService — import files that already exist on a backend."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .exceptions import ConflictError, PhysicalBackendError
from .protocol import SupportsScan
from .types import ScanResult
from .utils import guess_mime_type, path_parts, split_path, validate_name

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from .mounts import MountConfig
    from .namespace import NamespaceStore
    from .paths import PathResolver
    from .protocol import StorageAdapter

logger = logging.getLogger(__name__)


class ScanService:
    """Walks a mount and registers every file the namespace does not know.

    Files are matched by physical path and mount, so a file that was
    moved logically is never imported twice.  Folders are created on
    demand below the user's mount folder.
    """

    def __init__(
        self,
        namespace: NamespaceStore,
        resolver: PathResolver,
        storage: StorageAdapter,
    ) -> None:
        self._namespace = namespace
        self._resolver = resolver
        self._storage = storage

    async def import_mount(
        self, session: AsyncSession, user_id: str, mount: MountConfig
    ) -> ScanResult:
        if not isinstance(self._storage, SupportsScan):
            return ScanResult(success=False, message="Storage backend does not support scanning")

        log: list[str] = [f"Scanning mount {mount.mount_name}"]
        mount_folder_id = await self._resolver.ensure_mount_folder(session, user_id, mount)
        await session.commit()

        try:
            entries = await self._storage.walk_files(mount.mount_id)
        except PhysicalBackendError as e:
            logger.error("Scan of mount %s failed: %s", mount.mount_id, e)
            log.append(f"Error: {e}")
            return ScanResult(success=False, message=str(e), log=log)

        imported = 0
        skipped = 0
        for entry in entries:
            known = await self._namespace.find_file_by_physical_path(
                session, entry.path, mount.mount_id, user_id
            )
            if known is not None:
                skipped += 1
                log.append(f"Exists: {entry.path}")
                continue

            parent, name = split_path(entry.path)
            valid, error = validate_name(name)
            if not valid:
                skipped += 1
                log.append(f"Invalid name, skipped: {entry.path} ({error})")
                continue

            try:
                folder_id = await self._resolver.resolve_or_create(
                    session, mount_folder_id, path_parts(parent), user_id
                )
                if await self._namespace.find_file_in_folder(session, name, folder_id, user_id):
                    skipped += 1
                    log.append(f"Name taken, skipped: {entry.path}")
                    continue
                await self._namespace.add_file(
                    session,
                    file_name=name,
                    folder_id=folder_id,
                    user_id=user_id,
                    file_id=entry.path,
                    mount_id=mount.mount_id,
                    size=entry.size,
                    mimetype=entry.mimetype or guess_mime_type(name),
                    date=entry.modified,
                )
                await session.commit()
            except (ConflictError, ValueError) as e:
                skipped += 1
                log.append(f"Skipped {entry.path}: {e}")
                continue

            imported += 1
            log.append(f"Imported: {entry.path}")

        log.append(f"Scan of {mount.mount_name} finished")
        logger.info(
            "Scanned mount %s for user %s: %d imported, %d skipped",
            mount.mount_id, user_id, imported, skipped,
        )
        return ScanResult(
            success=True,
            message=f"Imported {imported} file(s), skipped {skipped}",
            imported=imported,
            skipped=skipped,
            log=log,
        )
