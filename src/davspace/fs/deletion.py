"""DeletionEngine — physical-then-logical removal of files and subtrees.

Order matters: the backend is cleaned first, and only when that
succeeds are the rows deleted in one transaction.  A failed backend
call therefore leaves the namespace untouched.  A failed transaction
after a successful backend call leaves rows pointing at paths that no
longer exist; that window is logged at error level and surfaced as
``LogicalTransactionError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError

from .exceptions import DavspaceError, LogicalTransactionError, PhysicalBackendError
from .types import BatchDeleteResult, DeleteResult, ItemKind, PhysicalItem
from .utils import join_path

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

    from davspace.models.files import DriveFileBase

    from .namespace import NamespaceStore
    from .paths import PathResolver
    from .protocol import StorageAdapter

logger = logging.getLogger(__name__)


@dataclass
class DeletionPlan:
    """Everything one item's deletion touches, gathered before any change."""

    mount_id: str
    file_ids: list[int] = field(default_factory=list)
    folder_ids: list[int] = field(default_factory=list)
    physical_files: list[PhysicalItem] = field(default_factory=list)
    physical_folders: list[PhysicalItem] = field(default_factory=list)


class DeletionEngine:
    """Delete files and folder subtrees across backend and namespace."""

    def __init__(
        self,
        namespace: NamespaceStore,
        resolver: PathResolver,
        storage: StorageAdapter,
    ) -> None:
        self._namespace = namespace
        self._resolver = resolver
        self._storage = storage

    # ------------------------------------------------------------------
    # Collection
    # ------------------------------------------------------------------

    async def _file_item(
        self, session: AsyncSession, file: DriveFileBase, user_id: str
    ) -> PhysicalItem:
        # file_id is the stored physical locator; fall back to the tree
        # walk only for rows registered without one.
        if file.file_id and file.mount_id:
            return PhysicalItem(physical_path=file.file_id, mount_id=file.mount_id)
        location = await self._resolver.physical_path(
            session, file.message_id, ItemKind.FILE, user_id  # type: ignore[arg-type]
        )
        return PhysicalItem(physical_path=location.remote_path, mount_id=location.mount_id)

    async def collect(
        self,
        session: AsyncSession,
        item_id: int,
        kind: ItemKind | str,
        user_id: str,
    ) -> DeletionPlan | None:
        """Gather rows and physical paths for an item; ``None`` if it is gone.

        Raises ``ValueError`` for a root folder and ``MountNotFoundError``
        when the item is not below a configured mount.
        """
        if ItemKind(kind) is ItemKind.FILE:
            file = await self._namespace.get_file(session, item_id, user_id)
            if file is None:
                return None
            item = await self._file_item(session, file, user_id)
            return DeletionPlan(
                mount_id=item.mount_id,
                file_ids=[file.message_id],  # type: ignore[list-item]
                physical_files=[item],
            )

        folder = await self._namespace.get_folder(session, item_id, user_id)
        if folder is None:
            return None
        if folder.parent_id is None:
            raise ValueError("Cannot delete the root folder")

        location = await self._resolver.folder_location(session, item_id, user_id)
        plan = DeletionPlan(mount_id=location.mount_id, folder_ids=[item_id])

        # Breadth-first order guarantees a parent path exists before its children.
        remote_paths = {item_id: location.remote_path}
        for child in await self._namespace.descendant_folders(session, item_id, user_id):
            remote_paths[child.id] = join_path(remote_paths[child.parent_id], child.name)  # type: ignore[index]
            plan.folder_ids.append(child.id)  # type: ignore[arg-type]

        for folder_id in plan.folder_ids:
            path = remote_paths[folder_id]
            if path != "/":
                plan.physical_folders.append(
                    PhysicalItem(physical_path=path, mount_id=location.mount_id)
                )

        for file in await self._namespace.files_in_folders(session, plan.folder_ids, user_id):
            plan.file_ids.append(file.message_id)  # type: ignore[arg-type]
            plan.physical_files.append(
                PhysicalItem(
                    physical_path=file.file_id or join_path(remote_paths[file.folder_id], file.file_name),
                    mount_id=file.mount_id or location.mount_id,
                )
            )

        return plan

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _remove_physical(
        self,
        files: list[PhysicalItem],
        folders: list[PhysicalItem],
        user_id: str,
    ) -> None:
        if not files and not folders:
            return
        try:
            await self._storage.remove(files, folders, user_id)
        except PhysicalBackendError:
            raise
        except Exception as e:
            raise PhysicalBackendError(f"Physical removal failed: {e}") from e

    async def _execute_deletion(
        self,
        session: AsyncSession,
        file_ids: Iterable[int],
        folder_ids: Iterable[int],
        user_id: str,
    ) -> None:
        """Delete rows in one transaction and commit.

        On failure the transaction is rolled back and the orphan window
        is reported.
        """
        file_ids = list(file_ids)
        folder_ids = list(folder_ids)
        if not file_ids and not folder_ids:
            return

        fm = self._namespace.file_model
        dm = self._namespace.folder_model
        try:
            if file_ids:
                await session.execute(
                    delete(fm).where(
                        fm.message_id.in_(file_ids),  # type: ignore[union-attr]
                        fm.user_id == user_id,
                    )
                )
            if folder_ids:
                await session.execute(
                    delete(dm).where(
                        dm.id.in_(folder_ids),  # type: ignore[union-attr]
                        dm.user_id == user_id,
                    )
                )
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(
                "Logical delete failed after physical removal for user %s; "
                "rows need manual reconciliation (files=%s, folders=%s): %s",
                user_id, file_ids, folder_ids, e,
            )
            raise LogicalTransactionError(
                f"Database delete failed after physical removal: {e}"
            ) from e

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def unified_delete(
        self,
        session: AsyncSession,
        item_id: int,
        kind: ItemKind | str,
        user_id: str,
        *,
        physical: bool = True,
    ) -> DeleteResult:
        """Delete a file or a whole folder subtree.

        With ``physical=False`` only the rows are deleted and the backend
        is left alone.  Raises ``PhysicalBackendError`` (nothing changed) or
        ``LogicalTransactionError`` (backend already cleaned).
        """
        kind = ItemKind(kind)
        try:
            plan = await self.collect(session, item_id, kind, user_id)
        except ValueError as e:
            return DeleteResult(success=False, message=str(e))
        if plan is None:
            return DeleteResult(success=False, message=f"{kind.value.capitalize()} not found: {item_id}")

        if physical:
            await self._remove_physical(plan.physical_files, plan.physical_folders, user_id)
        await self._execute_deletion(session, plan.file_ids, plan.folder_ids, user_id)

        logger.info(
            "Deleted %s %s for user %s (%d files, %d folders)",
            kind.value, item_id, user_id, len(plan.file_ids), len(plan.folder_ids),
        )
        return DeleteResult(
            success=True,
            message=f"Deleted {kind.value} {item_id}",
            files_deleted=len(plan.file_ids),
            folders_deleted=len(plan.folder_ids),
        )

    async def delete_items(
        self,
        session: AsyncSession,
        file_ids: Iterable[int],
        folder_ids: Iterable[int],
        user_id: str,
    ) -> BatchDeleteResult:
        """Delete many files and folders with one backend call per mount.

        A mount whose removal fails keeps all of its items; the rows of
        every other mount are deleted in a single transaction.
        """
        plans: list[DeletionPlan] = []
        missing: list[str] = []
        errors: list[str] = []

        requested = [(i, ItemKind.FILE) for i in file_ids]
        requested += [(i, ItemKind.FOLDER) for i in folder_ids]
        for item_id, kind in requested:
            try:
                plan = await self.collect(session, item_id, kind, user_id)
            except (ValueError, DavspaceError) as e:
                errors.append(f"{kind.value} {item_id}: {e}")
                continue
            if plan is None:
                missing.append(f"{kind.value} {item_id}")
                continue
            plans.append(plan)

        by_mount: dict[str, list[DeletionPlan]] = {}
        for plan in plans:
            by_mount.setdefault(plan.mount_id, []).append(plan)

        failed_mounts: dict[str, str] = {}
        succeeded: list[DeletionPlan] = []
        for mount_id, mount_plans in by_mount.items():
            files = [f for p in mount_plans for f in p.physical_files]
            folders = [f for p in mount_plans for f in p.physical_folders]
            try:
                await self._remove_physical(files, folders, user_id)
            except PhysicalBackendError as e:
                logger.error("Physical removal failed on mount %s: %s", mount_id, e)
                failed_mounts[mount_id] = str(e)
                continue
            succeeded.extend(mount_plans)

        # Nested selections can name the same row twice.
        del_files = list(dict.fromkeys(i for p in succeeded for i in p.file_ids))
        del_folders = list(dict.fromkeys(i for p in succeeded for i in p.folder_ids))
        await self._execute_deletion(session, del_files, del_folders, user_id)

        success = not failed_mounts and not errors and not missing
        message = f"Deleted {len(del_files)} files and {len(del_folders)} folders"
        if failed_mounts:
            message += f"; {len(failed_mounts)} mount(s) failed"
        logger.info("Batch delete for user %s: %s", user_id, message)
        return BatchDeleteResult(
            success=success,
            message=message,
            files_deleted=len(del_files),
            folders_deleted=len(del_folders),
            failed_mounts=failed_mounts,
            missing=missing,
            errors=errors,
        )
