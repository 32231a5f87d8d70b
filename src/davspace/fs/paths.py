"""PathResolver — virtual path ⇄ folder id ⇄ physical path translation.

Walks the ``parent_id`` chain with explicit loops (no recursion) and
bounds the walk by ``max_depth`` so a corrupt tree cannot spin forever.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .exceptions import ConsistencyError, MountNotFoundError, NotFoundError
from .types import ItemKind, PathSegment, PhysicalLocation
from .utils import join_path, path_parts, validate_name

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from davspace.models.folders import FolderBase

    from .mounts import MountConfig
    from .namespace import NamespaceStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 256


class PathResolver:
    """Resolve folder ids from name paths and physical paths from folder ids.

    The folder one level below a user's root is a *mount folder*: its own
    name is the mount's display name and maps to the backend's root
    directory, so it never appears in a physical path.
    """

    def __init__(self, namespace: NamespaceStore, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self._namespace = namespace
        self.max_depth = max_depth

    # ------------------------------------------------------------------
    # Ancestors
    # ------------------------------------------------------------------

    async def _ancestor_rows(
        self, session: AsyncSession, folder_id: int, user_id: str
    ) -> list[FolderBase]:
        """Folder rows from *folder_id* up to the root, returned root first."""
        rows: list[FolderBase] = []
        seen: set[int] = set()
        current: int | None = folder_id

        while current is not None:
            if current in seen:
                raise ConsistencyError(f"Cycle in folder tree at folder {current}")
            if len(rows) >= self.max_depth:
                raise ConsistencyError(
                    f"Folder {folder_id} is deeper than max_depth={self.max_depth}"
                )
            seen.add(current)
            folder = await self._namespace.get_folder(session, current, user_id)
            if folder is None:
                break
            rows.append(folder)
            current = folder.parent_id

        rows.reverse()
        return rows

    async def ancestor_chain(
        self, session: AsyncSession, folder_id: int, user_id: str
    ) -> list[PathSegment]:
        """Breadcrumb for *folder_id*: ``[root, mount, ..., folder]``."""
        rows = await self._ancestor_rows(session, folder_id, user_id)
        return [PathSegment(id=r.id, name=r.name) for r in rows]  # type: ignore[arg-type]

    async def is_within(
        self, session: AsyncSession, folder_id: int, ancestor_id: int, user_id: str
    ) -> bool:
        """True when *folder_id* is *ancestor_id* or one of its descendants."""
        rows = await self._ancestor_rows(session, folder_id, user_id)
        return any(r.id == ancestor_id for r in rows)

    # ------------------------------------------------------------------
    # Physical paths
    # ------------------------------------------------------------------

    def _location_from_rows(self, rows: Sequence[FolderBase], folder_id: int) -> PhysicalLocation:
        if not rows or rows[0].parent_id is not None:
            raise MountNotFoundError(f"Folder {folder_id} is not attached to a root")
        if len(rows) < 2:
            raise MountNotFoundError(f"Folder {folder_id} is a root folder, not on a mount")
        mount_folder = rows[1]
        if not mount_folder.mount_id:
            raise MountNotFoundError(
                f"Mount folder {mount_folder.name!r} has no configured mount"
            )
        remote = join_path(*(r.name for r in rows[2:]))
        return PhysicalLocation(remote_path=remote, mount_id=mount_folder.mount_id)

    async def folder_location(
        self, session: AsyncSession, folder_id: int, user_id: str
    ) -> PhysicalLocation:
        rows = await self._ancestor_rows(session, folder_id, user_id)
        if not rows:
            raise NotFoundError(f"Folder not found: {folder_id}")
        return self._location_from_rows(rows, folder_id)

    async def physical_path(
        self,
        session: AsyncSession,
        item_id: int,
        kind: ItemKind | str,
        user_id: str,
    ) -> PhysicalLocation:
        """Compute where a folder or file lives on its backend.

        Joins the names strictly below the mount folder.  The mount folder
        itself resolves to ``/``.  Raises ``MountNotFoundError`` for the
        root and for orphans, ``NotFoundError`` for unknown ids.
        """
        if ItemKind(kind) is ItemKind.FOLDER:
            return await self.folder_location(session, item_id, user_id)

        file = await self._namespace.get_file(session, item_id, user_id)
        if file is None:
            raise NotFoundError(f"File not found: {item_id}")
        folder = await self.folder_location(session, file.folder_id, user_id)
        return PhysicalLocation(
            remote_path=join_path(folder.remote_path, file.file_name),
            mount_id=folder.mount_id,
        )

    async def mount_of(
        self,
        session: AsyncSession,
        item_id: int,
        kind: ItemKind | str,
        user_id: str,
    ) -> str | None:
        """Mount id of the nearest mount folder, or ``None`` if unresolvable."""
        try:
            location = await self.physical_path(session, item_id, kind, user_id)
        except (MountNotFoundError, NotFoundError):
            return None
        return location.mount_id

    # ------------------------------------------------------------------
    # Name paths → folder ids
    # ------------------------------------------------------------------

    async def resolve_existing(
        self,
        session: AsyncSession,
        start_folder_id: int,
        parts: Sequence[str],
        user_id: str,
    ) -> int | None:
        """Walk *parts* below *start_folder_id*; ``None`` at the first gap."""
        current = start_folder_id
        for part in parts:
            if not part:
                continue
            folder = await self._namespace.find_folder_by_name(session, part, current, user_id)
            if folder is None:
                return None
            current = folder.id  # type: ignore[assignment]
        return current

    async def resolve_or_create(
        self,
        session: AsyncSession,
        start_folder_id: int,
        parts: Sequence[str],
        user_id: str,
        mount_id: str | None = None,
    ) -> int:
        """Walk *parts* below *start_folder_id*, creating missing folders.

        A folder created directly under the root becomes a mount folder and
        stores *mount_id*; deeper folders inherit it through the tree.
        Flushes but does not commit.
        """
        start = await self._namespace.require_folder(session, start_folder_id, user_id)
        current = start_folder_id
        parent_is_root = start.parent_id is None

        for part in parts:
            if not part:
                continue
            folder = await self._namespace.find_folder_by_name(session, part, current, user_id)
            if folder is None:
                valid, error = validate_name(part)
                if not valid:
                    raise ValueError(error)
                folder = await self._namespace.create_folder(
                    session,
                    part,
                    current,
                    user_id,
                    mount_id=mount_id if parent_is_root else None,
                )
                logger.debug("Created folder %r (%s) under %s", part, folder.id, current)
            current = folder.id  # type: ignore[assignment]
            parent_is_root = False

        return current

    async def folder_for_path(
        self,
        session: AsyncSession,
        virtual_path: str,
        user_id: str,
        *,
        create: bool = False,
        mount_id: str | None = None,
        sep: str = "/",
    ) -> int | None:
        """Resolve a virtual path from the user's root to a folder id.

        ``"/photos/2024"`` and (with ``sep="."``) ``"photos.2024"`` are
        equivalent.  The root itself is returned for an empty path.
        """
        root = await self._namespace.get_root(session, user_id)
        if root is None:
            raise NotFoundError(f"User {user_id} has no root folder")
        parts = path_parts(virtual_path, sep)
        if create:
            return await self.resolve_or_create(session, root.id, parts, user_id, mount_id)  # type: ignore[arg-type]
        return await self.resolve_existing(session, root.id, parts, user_id)  # type: ignore[arg-type]

    async def virtual_path(self, session: AsyncSession, folder_id: int, user_id: str) -> str:
        """Slash path of a folder from below the root (``/mount/a/b``)."""
        chain = await self.ancestor_chain(session, folder_id, user_id)
        if not chain:
            raise NotFoundError(f"Folder not found: {folder_id}")
        return join_path(*(seg.name for seg in chain[1:]))

    # ------------------------------------------------------------------
    # Mount folders
    # ------------------------------------------------------------------

    async def ensure_mount_folder(
        self, session: AsyncSession, user_id: str, mount: MountConfig
    ) -> int:
        """Return the user's folder for *mount*, creating root and folder as needed."""
        root = await self._namespace.create_root(session, user_id)
        folder = await self._namespace.find_folder_by_name(
            session, mount.mount_name, root.id, user_id  # type: ignore[arg-type]
        )
        if folder is None:
            folder = await self._namespace.create_folder(
                session, mount.mount_name, root.id, user_id, mount_id=mount.mount_id  # type: ignore[arg-type]
            )
            logger.info(
                "Created mount folder %r for user %s (mount %s)",
                mount.mount_name, user_id, mount.mount_id,
            )
        elif folder.mount_id != mount.mount_id:
            folder.mount_id = mount.mount_id
            session.add(folder)
            await session.flush()
        return folder.id  # type: ignore[return-value]
