"""MoveEngine — move, merge and rename items within one mount.

Every step moves the backend first and updates the rows second, then
commits, so the namespace never points at a path the backend has not
reached.  A failed backend call leaves the rows untouched.

Merges descend with an explicit stack instead of recursion.  When any
child of a merged folder is skipped or fails, the emptied-out source
folder is kept; the user sees both folders until the conflict is
resolved.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from .exceptions import CrossMountError, DavspaceError
from .types import ConflictReport, ItemKind, MoveReport, PhysicalLocation, RenameResult, Resolution
from .utils import join_path, join_relative, replace_prefix, suffixed_name, validate_name

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from sqlalchemy.ext.asyncio import AsyncSession

    from davspace.models.files import DriveFileBase
    from davspace.models.folders import FolderBase

    from .deletion import DeletionEngine
    from .namespace import NamespaceStore
    from .paths import PathResolver
    from .protocol import StorageAdapter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Visit:
    item_id: int
    kind: ItemKind
    target_folder_id: int
    path_prefix: str


@dataclass(frozen=True)
class _FinishMerge:
    source_folder_id: int
    skipped_before: int
    errors_before: int


class MoveEngine:
    """Move and rename folders and files, resolving name conflicts.

    ``resolutions`` maps a path relative to the move target (``"a"``,
    ``"a/b.txt"``) to a ``Resolution``.  Paths without an entry are moved
    when free and skipped when a same-named item is already there.
    """

    def __init__(
        self,
        namespace: NamespaceStore,
        resolver: PathResolver,
        storage: StorageAdapter,
        deletion: DeletionEngine,
    ) -> None:
        self._namespace = namespace
        self._resolver = resolver
        self._storage = storage
        self._deletion = deletion

    # ------------------------------------------------------------------
    # Names & conflicts
    # ------------------------------------------------------------------

    async def find_available_name(
        self,
        session: AsyncSession,
        name: str,
        folder_id: int,
        user_id: str,
        is_folder: bool,
    ) -> str:
        """First of ``name``, ``name (1)``, ``name (2)``... that is free in *folder_id*."""
        candidate = name
        counter = 1
        while await self._namespace.find_item_in_folder(session, candidate, folder_id, user_id):
            candidate = suffixed_name(name, counter, is_folder)
            counter += 1
        return candidate

    async def check_conflicts(
        self,
        session: AsyncSession,
        items: Iterable[tuple[int, ItemKind | str]],
        target_folder_id: int,
        user_id: str,
    ) -> ConflictReport:
        """Names in *items* that already exist in the target folder.

        Folder-onto-folder clashes can be merged and are reported
        separately from every other clash.
        """
        report = ConflictReport()
        for item_id, kind in items:
            kind = ItemKind(kind)
            row = await self._namespace.get_item(session, item_id, kind, user_id)
            if row is None:
                continue
            name = self._namespace.item_name(row)
            existing = await self._namespace.find_item_in_folder(
                session, name, target_folder_id, user_id
            )
            if existing is None or (existing.id == item_id and existing.kind is kind):
                continue
            if kind is ItemKind.FOLDER and existing.kind is ItemKind.FOLDER:
                report.folder_conflicts.append(name)
            else:
                report.file_conflicts.append(name)
        return report

    async def _is_mount_folder(
        self, session: AsyncSession, folder: FolderBase, user_id: str
    ) -> bool:
        if folder.parent_id is None:
            return False
        parent = await self._namespace.get_folder(session, folder.parent_id, user_id)
        return parent is not None and parent.parent_id is None

    # ------------------------------------------------------------------
    # Single step: backend first, then rows
    # ------------------------------------------------------------------

    async def _relocate(
        self,
        session: AsyncSession,
        row: FolderBase | DriveFileBase,
        kind: ItemKind,
        user_id: str,
        *,
        new_parent_id: int,
        new_name: str,
        overwrite: bool = False,
    ) -> str | None:
        """Move one item to *new_parent_id* under *new_name* and commit.

        Returns an error message, or ``None`` on success.
        """
        item_id: int = row.id if kind is ItemKind.FOLDER else row.message_id  # type: ignore[union-attr,assignment]
        if kind is ItemKind.FILE and row.file_id and row.mount_id:  # type: ignore[union-attr]
            old = PhysicalLocation(remote_path=row.file_id, mount_id=row.mount_id)  # type: ignore[union-attr]
        else:
            old = await self._resolver.physical_path(session, item_id, kind, user_id)
        parent = await self._resolver.folder_location(session, new_parent_id, user_id)
        new_path = join_path(parent.remote_path, new_name)

        try:
            await self._storage.move(old.remote_path, new_path, old.mount_id, overwrite=overwrite)
        except Exception as e:
            logger.error("Physical move of %s %s failed: %s", kind.value, item_id, e)
            return f"Physical move failed for {old.remote_path}: {e}"

        try:
            if kind is ItemKind.FILE:
                row.folder_id = new_parent_id  # type: ignore[union-attr]
                row.file_name = new_name  # type: ignore[union-attr]
                row.file_id = new_path  # type: ignore[union-attr]
                row.mount_id = old.mount_id  # type: ignore[union-attr]
            else:
                folder_ids = [item_id]
                folder_ids += await self._namespace.descendant_folder_ids(session, item_id, user_id)
                for file in await self._namespace.files_in_folders(session, folder_ids, user_id):
                    if not file.file_id:
                        continue
                    rewritten = replace_prefix(file.file_id, old.remote_path, new_path)
                    if rewritten is not None:
                        file.file_id = rewritten
                        session.add(file)
                row.parent_id = new_parent_id  # type: ignore[union-attr]
                row.name = new_name  # type: ignore[union-attr]
            session.add(row)
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(
                "Logical move of %s %s failed after physical move %s -> %s on mount %s: %s",
                kind.value, item_id, old.remote_path, new_path, old.mount_id, e,
            )
            return f"Database update failed after moving {old.remote_path}: {e}"

        logger.info(
            "Moved %s %s: [%s]%s -> %s", kind.value, item_id, old.mount_id, old.remote_path, new_path
        )
        return None

    # ------------------------------------------------------------------
    # Move / merge
    # ------------------------------------------------------------------

    async def move_item(
        self,
        session: AsyncSession,
        item_id: int,
        kind: ItemKind | str,
        target_folder_id: int,
        user_id: str,
        resolutions: Mapping[str, Resolution | str] | None = None,
        path_prefix: str = "",
    ) -> MoveReport:
        """Move a file or folder into *target_folder_id*.

        Raises ``CrossMountError`` when source and target sit on different
        mounts; every other failure is counted in the returned report.
        """
        kind = ItemKind(kind)
        policies = {k: Resolution(v) for k, v in (resolutions or {}).items()}
        report = MoveReport()

        target = await self._namespace.get_folder(session, target_folder_id, user_id)
        if target is None:
            report.error(f"Target folder not found: {target_folder_id}")
            return report
        if target.parent_id is None:
            report.error("Items cannot be moved into the root folder")
            return report

        source_mount = await self._resolver.mount_of(session, item_id, kind, user_id)
        target_mount = await self._resolver.mount_of(session, target_folder_id, ItemKind.FOLDER, user_id)
        if source_mount and target_mount and source_mount != target_mount:
            raise CrossMountError(
                f"Cannot move between mounts ({source_mount} -> {target_mount})"
            )

        stack: list[_Visit | _FinishMerge] = [
            _Visit(item_id, kind, target_folder_id, path_prefix)
        ]
        while stack:
            frame = stack.pop()
            if isinstance(frame, _FinishMerge):
                await self._finish_merge(session, frame, report, user_id)
                continue
            try:
                await self._visit(session, frame, policies, report, stack, user_id)
            except DavspaceError as e:
                logger.error("Move of %s %s failed: %s", frame.kind.value, frame.item_id, e)
                report.error(str(e))

        return report

    async def _visit(
        self,
        session: AsyncSession,
        frame: _Visit,
        policies: dict[str, Resolution],
        report: MoveReport,
        stack: list[_Visit | _FinishMerge],
        user_id: str,
    ) -> None:
        row = await self._namespace.get_item(session, frame.item_id, frame.kind, user_id)
        if row is None:
            report.error(f"{frame.kind.value.capitalize()} not found: {frame.item_id}")
            return

        if frame.kind is ItemKind.FOLDER:
            if row.parent_id is None:  # type: ignore[union-attr]
                report.error("The root folder cannot be moved")
                return
            if await self._is_mount_folder(session, row, user_id):  # type: ignore[arg-type]
                report.error(f"Mount folder {row.name!r} cannot be moved")  # type: ignore[union-attr]
                return
            if await self._resolver.is_within(session, frame.target_folder_id, frame.item_id, user_id):
                report.error(f"Cannot move folder {row.name!r} into itself")  # type: ignore[union-attr]
                return

        name = self._namespace.item_name(row)
        current = join_relative(frame.path_prefix, name)
        existing = await self._namespace.find_item_in_folder(
            session, name, frame.target_folder_id, user_id
        )
        if existing is not None and existing.id == frame.item_id and existing.kind is frame.kind:
            report.skipped += 1
            report.messages.append(f"{current}: already in target")
            return

        action = policies.get(current)
        if action is None:
            action = Resolution.SKIP_DEFAULT if existing else Resolution.MOVE
        logger.debug("Move %s %s as %r: %s", frame.kind.value, frame.item_id, current, action.value)

        if action in (Resolution.SKIP, Resolution.SKIP_DEFAULT):
            report.skipped += 1
            report.messages.append(f"{current}: skipped")
            return

        # With no clash in the target every policy is a plain move.
        new_name = name
        overwrite = False
        if existing is not None:
            if action is Resolution.MERGE:
                if frame.kind is not ItemKind.FOLDER or existing.kind is not ItemKind.FOLDER:
                    report.skipped += 1
                    report.messages.append(f"{current}: cannot merge a file and a folder")
                    return
                stack.append(_FinishMerge(frame.item_id, report.skipped, report.errors))
                await self._push_children(session, frame.item_id, existing.id, current, stack, user_id)
                return
            if action is Resolution.OVERWRITE:
                source_parent = row.parent_id if frame.kind is ItemKind.FOLDER else row.folder_id  # type: ignore[union-attr]
                if existing.kind is ItemKind.FOLDER and await self._resolver.is_within(
                    session, source_parent, existing.id, user_id
                ):
                    report.error(f"{current}: cannot overwrite a folder that contains the item")
                    return
                result = await self._deletion.unified_delete(session, existing.id, existing.kind, user_id)
                if not result.success:
                    report.error(f"{current}: could not remove existing item: {result.message}")
                    return
                overwrite = True
            elif action is Resolution.RENAME:
                new_name = await self.find_available_name(
                    session, name, frame.target_folder_id, user_id, frame.kind is ItemKind.FOLDER
                )
            else:
                report.error(f"{current}: an item with this name already exists")
                return

        error = await self._relocate(
            session,
            row,
            frame.kind,
            user_id,
            new_parent_id=frame.target_folder_id,
            new_name=new_name,
            overwrite=overwrite,
        )
        if error:
            report.error(error)
            return
        report.moved += 1
        if new_name != name:
            report.messages.append(f"{current}: moved as {new_name!r}")

    async def _push_children(
        self,
        session: AsyncSession,
        source_folder_id: int,
        into_folder_id: int,
        current: str,
        stack: list[_Visit | _FinishMerge],
        user_id: str,
    ) -> None:
        children = await self._namespace.list_children(session, source_folder_id, user_id)
        # Reversed so children pop in listing order, all before the finish frame.
        for child in reversed(children):
            stack.append(_Visit(child.id, child.kind, into_folder_id, current))

    async def _finish_merge(
        self,
        session: AsyncSession,
        frame: _FinishMerge,
        report: MoveReport,
        user_id: str,
    ) -> None:
        if report.skipped != frame.skipped_before or report.errors != frame.errors_before:
            logger.info(
                "Merge kept source folder %s: some children were skipped or failed",
                frame.source_folder_id,
            )
            return
        try:
            result = await self._deletion.unified_delete(
                session, frame.source_folder_id, ItemKind.FOLDER, user_id
            )
        except DavspaceError as e:
            report.error(f"Could not remove merged folder {frame.source_folder_id}: {e}")
            return
        if not result.success:
            report.error(f"Could not remove merged folder {frame.source_folder_id}: {result.message}")

    async def move_items(
        self,
        session: AsyncSession,
        items: Iterable[tuple[int, ItemKind | str]],
        target_folder_id: int,
        user_id: str,
        resolutions: Mapping[str, Resolution | str] | None = None,
    ) -> MoveReport:
        """Move several items, summing their reports."""
        total = MoveReport()
        for item_id, kind in items:
            try:
                report = await self.move_item(
                    session, item_id, kind, target_folder_id, user_id, resolutions
                )
            except DavspaceError as e:
                logger.error("Move of %s %s failed: %s", kind, item_id, e)
                total.error(str(e))
                continue
            total.add(report)
        return total

    # ------------------------------------------------------------------
    # Rename
    # ------------------------------------------------------------------

    async def rename_item(
        self,
        session: AsyncSession,
        item_id: int,
        kind: ItemKind | str,
        new_name: str,
        user_id: str,
    ) -> RenameResult:
        """Rename in place.  Mount folders are renamed in the namespace only."""
        kind = ItemKind(kind)
        valid, error = validate_name(new_name)
        if not valid:
            return RenameResult(success=False, message=error)

        row = await self._namespace.get_item(session, item_id, kind, user_id)
        if row is None:
            return RenameResult(success=False, message=f"{kind.value.capitalize()} not found: {item_id}")

        old_name = self._namespace.item_name(row)
        if old_name == new_name:
            return RenameResult(success=True, message="Name unchanged", old_name=old_name, new_name=new_name)

        parent_id = row.parent_id if kind is ItemKind.FOLDER else row.folder_id  # type: ignore[union-attr]
        if parent_id is None:
            return RenameResult(success=False, message="The root folder cannot be renamed")

        existing = await self._namespace.find_item_in_folder(session, new_name, parent_id, user_id)
        if existing is not None:
            return RenameResult(
                success=False,
                message=f"An item named {new_name!r} already exists",
                old_name=old_name,
            )

        if kind is ItemKind.FOLDER and await self._is_mount_folder(session, row, user_id):  # type: ignore[arg-type]
            row.name = new_name  # type: ignore[union-attr]
            session.add(row)
            await session.commit()
            logger.info("Renamed mount folder %s: %r -> %r", item_id, old_name, new_name)
            return RenameResult(success=True, message="Renamed", old_name=old_name, new_name=new_name)

        error = await self._relocate(
            session, row, kind, user_id, new_parent_id=parent_id, new_name=new_name
        )
        if error:
            return RenameResult(success=False, message=error, old_name=old_name)
        return RenameResult(success=True, message="Renamed", old_name=old_name, new_name=new_name)

