"""NamespaceStore — folder/file row CRUD and tree queries.

Stateless service that receives the concrete models at construction
and a session at call time.  Every query is scoped to a ``user_id``.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from .exceptions import ConflictError, NotFoundError
from .types import FolderContents, ItemKind, ItemRef

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

    from davspace.models.files import DriveFileBase
    from davspace.models.folders import FolderBase

logger = logging.getLogger(__name__)

ROOT_NAME = "/"


class NamespaceStore:
    """Row-level access to a user's namespace tree.

    Constructor receives the concrete folder and file models so callers
    can use custom SQLModel subclasses with different table names.
    Methods flush but never commit; the engines decide commit points.
    """

    def __init__(
        self,
        folder_model: type[FolderBase],
        file_model: type[DriveFileBase],
    ) -> None:
        self._folder_model = folder_model
        self._file_model = file_model

    @property
    def folder_model(self) -> type[FolderBase]:
        return self._folder_model

    @property
    def file_model(self) -> type[DriveFileBase]:
        return self._file_model

    # ------------------------------------------------------------------
    # Single-row lookup
    # ------------------------------------------------------------------

    async def get_folder(
        self, session: AsyncSession, folder_id: int, user_id: str
    ) -> FolderBase | None:
        model = self._folder_model
        result = await session.execute(
            select(model).where(model.id == folder_id, model.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_file(
        self, session: AsyncSession, message_id: int, user_id: str
    ) -> DriveFileBase | None:
        model = self._file_model
        result = await session.execute(
            select(model).where(
                model.message_id == message_id,
                model.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_item(
        self, session: AsyncSession, item_id: int, kind: ItemKind | str, user_id: str
    ) -> FolderBase | DriveFileBase | None:
        """Fetch a folder or file row depending on *kind*."""
        if ItemKind(kind) is ItemKind.FOLDER:
            return await self.get_folder(session, item_id, user_id)
        return await self.get_file(session, item_id, user_id)

    async def require_folder(
        self, session: AsyncSession, folder_id: int, user_id: str
    ) -> FolderBase:
        folder = await self.get_folder(session, folder_id, user_id)
        if folder is None:
            raise NotFoundError(f"Folder not found: {folder_id}")
        return folder

    @staticmethod
    def item_name(row: FolderBase | DriveFileBase) -> str:
        """Display name of a folder or file row."""
        name = getattr(row, "file_name", None)
        if name is not None:
            return name
        return row.name  # type: ignore[union-attr]

    # ------------------------------------------------------------------
    # Roots
    # ------------------------------------------------------------------

    async def get_root(self, session: AsyncSession, user_id: str) -> FolderBase | None:
        model = self._folder_model
        result = await session.execute(
            select(model).where(
                model.user_id == user_id,
                model.parent_id.is_(None),  # type: ignore[union-attr]
            )
        )
        return result.scalars().first()

    async def create_root(self, session: AsyncSession, user_id: str) -> FolderBase:
        """Return the user's root folder, creating it on first call."""
        existing = await self.get_root(session, user_id)
        if existing is not None:
            return existing
        root = self._folder_model(name=ROOT_NAME, parent_id=None, user_id=user_id)
        session.add(root)
        await session.flush()
        logger.info("Created root folder %s for user %s", root.id, user_id)
        return root

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_folder(
        self,
        session: AsyncSession,
        name: str,
        parent_id: int,
        user_id: str,
        mount_id: str | None = None,
    ) -> FolderBase:
        """Insert a folder row. Flushes but does not commit.

        A unique-constraint violation rolls the session back and surfaces
        as ``ConflictError``.
        """
        folder = self._folder_model(
            name=name,
            parent_id=parent_id,
            user_id=user_id,
            mount_id=mount_id,
        )
        session.add(folder)
        try:
            await session.flush()
        except IntegrityError as e:
            await session.rollback()
            raise ConflictError(
                f"A folder named {name!r} already exists in folder {parent_id}"
            ) from e
        return folder

    async def add_file(
        self,
        session: AsyncSession,
        *,
        file_name: str,
        folder_id: int,
        user_id: str,
        file_id: str,
        mount_id: str | None,
        size: int | None = None,
        mimetype: str | None = None,
        date: int | None = None,
        storage_type: str = "webdav",
    ) -> DriveFileBase:
        """Insert a file row. Flushes but does not commit."""
        file = self._file_model(
            file_name=file_name,
            folder_id=folder_id,
            user_id=user_id,
            file_id=file_id,
            mount_id=mount_id,
            size=size,
            mimetype=mimetype,
            date=date,
            storage_type=storage_type,
        )
        session.add(file)
        try:
            await session.flush()
        except IntegrityError as e:
            await session.rollback()
            raise ConflictError(
                f"A file named {file_name!r} already exists in folder {folder_id}"
            ) from e
        return file

    # ------------------------------------------------------------------
    # Name lookup
    # ------------------------------------------------------------------

    async def find_folder_by_name(
        self, session: AsyncSession, name: str, parent_id: int, user_id: str
    ) -> FolderBase | None:
        model = self._folder_model
        result = await session.execute(
            select(model).where(
                model.name == name,
                model.parent_id == parent_id,
                model.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def find_file_in_folder(
        self, session: AsyncSession, file_name: str, folder_id: int, user_id: str
    ) -> DriveFileBase | None:
        model = self._file_model
        result = await session.execute(
            select(model).where(
                model.file_name == file_name,
                model.folder_id == folder_id,
                model.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def find_item_in_folder(
        self, session: AsyncSession, name: str, folder_id: int, user_id: str
    ) -> ItemRef | None:
        """Find a folder or file named *name* directly inside *folder_id*.

        Folders win when both exist.
        """
        folder = await self.find_folder_by_name(session, name, folder_id, user_id)
        if folder is not None:
            return ItemRef(id=folder.id, name=folder.name, kind=ItemKind.FOLDER)  # type: ignore[arg-type]
        file = await self.find_file_in_folder(session, name, folder_id, user_id)
        if file is not None:
            return ItemRef(id=file.message_id, name=file.file_name, kind=ItemKind.FILE)  # type: ignore[arg-type]
        return None

    async def find_file_by_physical_path(
        self, session: AsyncSession, file_id: str, mount_id: str, user_id: str
    ) -> DriveFileBase | None:
        model = self._file_model
        result = await session.execute(
            select(model).where(
                model.file_id == file_id,
                model.mount_id == mount_id,
                model.user_id == user_id,
            )
        )
        return result.scalars().first()

    # ------------------------------------------------------------------
    # Children & descendants
    # ------------------------------------------------------------------

    async def child_folders(
        self, session: AsyncSession, folder_id: int, user_id: str
    ) -> list[FolderBase]:
        model = self._folder_model
        result = await session.execute(
            select(model)
            .where(model.parent_id == folder_id, model.user_id == user_id)
            .order_by(model.name)
        )
        return list(result.scalars().all())

    async def child_files(
        self, session: AsyncSession, folder_id: int, user_id: str
    ) -> list[DriveFileBase]:
        model = self._file_model
        result = await session.execute(
            select(model)
            .where(model.folder_id == folder_id, model.user_id == user_id)
            .order_by(model.file_name)
        )
        return list(result.scalars().all())

    async def list_children(
        self, session: AsyncSession, folder_id: int, user_id: str
    ) -> list[ItemRef]:
        """Direct children of a folder, folders first then files."""
        contents = await self.get_folder_contents(session, folder_id, user_id)
        return [*contents.folders, *contents.files]

    async def get_folder_contents(
        self, session: AsyncSession, folder_id: int, user_id: str
    ) -> FolderContents:
        folders = await self.child_folders(session, folder_id, user_id)
        files = await self.child_files(session, folder_id, user_id)
        return FolderContents(
            folders=[
                ItemRef(id=f.id, name=f.name, kind=ItemKind.FOLDER)  # type: ignore[arg-type]
                for f in folders
            ],
            files=[
                ItemRef(id=f.message_id, name=f.file_name, kind=ItemKind.FILE)  # type: ignore[arg-type]
                for f in files
            ],
        )

    async def descendant_folders(
        self, session: AsyncSession, folder_id: int, user_id: str
    ) -> list[FolderBase]:
        """All folders below *folder_id*, breadth-first, parents before children.

        Uses an explicit queue; a visited set guards against cycles in a
        corrupt tree.
        """
        model = self._folder_model
        descendants: list[FolderBase] = []
        queue = deque([folder_id])
        visited = {folder_id}

        while queue:
            current = queue.popleft()
            result = await session.execute(
                select(model).where(
                    model.parent_id == current,
                    model.user_id == user_id,
                )
            )
            for child in result.scalars().all():
                if child.id in visited:
                    continue
                visited.add(child.id)  # type: ignore[arg-type]
                descendants.append(child)
                queue.append(child.id)  # type: ignore[arg-type]

        return descendants

    async def descendant_folder_ids(
        self, session: AsyncSession, folder_id: int, user_id: str
    ) -> list[int]:
        folders = await self.descendant_folders(session, folder_id, user_id)
        return [f.id for f in folders]  # type: ignore[misc]

    async def files_in_folders(
        self, session: AsyncSession, folder_ids: Iterable[int], user_id: str
    ) -> list[DriveFileBase]:
        ids = list(folder_ids)
        if not ids:
            return []
        model = self._file_model
        result = await session.execute(
            select(model).where(
                model.folder_id.in_(ids),  # type: ignore[union-attr]
                model.user_id == user_id,
            )
        )
        return list(result.scalars().all())

    async def list_folders(self, session: AsyncSession, user_id: str) -> list[FolderBase]:
        """Every folder of a user, ordered by parent then name."""
        model = self._folder_model
        result = await session.execute(
            select(model)
            .where(model.user_id == user_id)
            .order_by(model.parent_id, model.name)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Mount folders across users
    # ------------------------------------------------------------------

    async def user_ids(self, session: AsyncSession) -> list[str]:
        """Every user that has a root folder."""
        model = self._folder_model
        result = await session.execute(
            select(model.user_id)
            .where(model.parent_id.is_(None))  # type: ignore[union-attr]
            .distinct()
            .order_by(model.user_id)
        )
        return list(result.scalars().all())

    async def mount_folders(self, session: AsyncSession, mount_id: str) -> list[FolderBase]:
        """The folder of every user that maps to *mount_id*."""
        model = self._folder_model
        result = await session.execute(
            select(model).where(model.mount_id == mount_id).order_by(model.user_id)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search_items(
        self, session: AsyncSession, query: str, user_id: str
    ) -> list[ItemRef]:
        """Case-insensitive substring match over folder and file names.

        The root folder is never returned.
        """
        escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"

        fm = self._folder_model
        folders = await session.execute(
            select(fm)
            .where(
                fm.user_id == user_id,
                fm.parent_id.is_not(None),  # type: ignore[union-attr]
                fm.name.ilike(pattern, escape="\\"),  # type: ignore[attr-defined]
            )
            .order_by(fm.name)
        )
        dm = self._file_model
        files = await session.execute(
            select(dm)
            .where(
                dm.user_id == user_id,
                dm.file_name.ilike(pattern, escape="\\"),  # type: ignore[attr-defined]
            )
            .order_by(dm.file_name)
        )
        return [
            *(ItemRef(id=f.id, name=f.name, kind=ItemKind.FOLDER) for f in folders.scalars()),  # type: ignore[arg-type]
            *(
                ItemRef(id=f.message_id, name=f.file_name, kind=ItemKind.FILE)  # type: ignore[arg-type]
                for f in files.scalars()
            ),
        ]
