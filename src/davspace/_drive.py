"""DriveAsync — async facade over the namespace, mounts and storage backend."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from davspace.fs.config import load_mounts, save_mounts
from davspace.fs.deletion import DeletionEngine
from davspace.fs.exceptions import ConflictError, NotFoundError
from davspace.fs.local_disk import LocalDiskStorage, host_dir_client
from davspace.fs.mounts import MountConfig, MountRegistry
from davspace.fs.moves import MoveEngine
from davspace.fs.namespace import NamespaceStore
from davspace.fs.paths import DEFAULT_MAX_DEPTH, PathResolver
from davspace.fs.protocol import SupportsDirectories
from davspace.fs.scan import ScanService
from davspace.fs.sharing import SharingService
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
    PhysicalLocation,
    RenameResult,
    Resolution,
    ScanResult,
    ShareResult,
    UploadResult,
)
from davspace.fs.utils import guess_mime_type, join_path, path_parts, split_path, validate_name
from davspace.models.files import DriveFile
from davspace.models.folders import Folder

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable, Iterable, Mapping
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

    from davspace.fs.protocol import StorageAdapter
    from davspace.models.files import DriveFileBase
    from davspace.models.folders import FolderBase

logger = logging.getLogger(__name__)


class DriveAsync:
    """Async facade wiring namespace, path resolution, moves, deletes and shares.

    Engine-based::

        engine = create_async_engine("sqlite+aiosqlite:///drive.db")
        drive = DriveAsync(engine=engine, config_path="config.json")
        await drive.create_tables()
        root_id = await drive.create_user_root("alice")

    Every public method runs in its own session.  Engines commit at their
    step boundaries; whatever is left pending is committed on success and
    rolled back on error.
    """

    def __init__(
        self,
        *,
        engine: AsyncEngine | None = None,
        session_factory: Callable[..., AsyncSession] | None = None,
        registry: MountRegistry | None = None,
        storage: StorageAdapter | None = None,
        config_path: str | Path | None = None,
        folder_model: type[FolderBase] | None = None,
        file_model: type[DriveFileBase] | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        if engine is not None and session_factory is not None:
            raise ValueError("Provide engine or session_factory, not both")
        if engine is not None:
            session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        if session_factory is None:
            raise ValueError("Provide engine or session_factory")

        self._engine = engine
        self._session_factory = session_factory
        self._config_path = config_path

        if registry is None:
            registry = (
                load_mounts(config_path, host_dir_client)
                if config_path is not None
                else MountRegistry(host_dir_client)
            )
        self._registry = registry

        self._folder_model = folder_model or Folder
        self._file_model = file_model or DriveFile
        self._namespace = NamespaceStore(self._folder_model, self._file_model)
        self._resolver = PathResolver(self._namespace, max_depth)

        if storage is None:
            storage = LocalDiskStorage(registry, self._resolver)
        elif isinstance(storage, LocalDiskStorage) and storage.resolver is None:
            storage.resolver = self._resolver
        self._storage = storage

        self._deletion = DeletionEngine(self._namespace, self._resolver, storage)
        self._moves = MoveEngine(self._namespace, self._resolver, storage, self._deletion)
        self._sharing = SharingService(self._folder_model, self._file_model)
        self._scan = ScanService(self._namespace, self._resolver, storage)

    # ------------------------------------------------------------------
    # Sessions & schema
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession]:
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def create_tables(self) -> None:
        """Create the folder and file tables if they do not exist."""
        if self._engine is None:
            raise ValueError("create_tables() needs an engine")
        fm = self._folder_model
        dm = self._file_model
        async with self._engine.begin() as conn:
            await conn.run_sync(
                lambda c: fm.__table__.create(c, checkfirst=True)  # type: ignore[attr-defined]
            )
            await conn.run_sync(
                lambda c: dm.__table__.create(c, checkfirst=True)  # type: ignore[attr-defined]
            )

    def _save_config(self) -> None:
        if self._config_path is not None:
            save_mounts(self._registry, self._config_path)

    # ------------------------------------------------------------------
    # Users & mounts
    # ------------------------------------------------------------------

    async def create_user_root(self, user_id: str) -> int:
        """Create a user's root folder and one folder per configured mount."""
        async with self._session() as session:
            root = await self._namespace.create_root(session, user_id)
            for mount in self._registry.list_mounts():
                await self._resolver.ensure_mount_folder(session, user_id, mount)
            return root.id  # type: ignore[return-value]

    async def add_mount(self, config: MountConfig) -> MountConfig:
        """Register a mount and give every existing user a folder for it."""
        self._registry.add_mount(config)
        async with self._session() as session:
            for user_id in await self._namespace.user_ids(session):
                await self._resolver.ensure_mount_folder(session, user_id, config)
        self._save_config()
        logger.info("Added mount %s (%s)", config.mount_name, config.mount_id)
        return config

    async def rename_mount(self, mount_id: str, new_name: str) -> MountConfig:
        """Rename a mount and every user's mount folder; the backend is untouched."""
        valid, error = validate_name(new_name)
        if not valid:
            raise ValueError(f"Invalid mount name: {error}")
        config = self._registry.get(mount_id)
        for other in self._registry.list_mounts():
            if other.mount_name == new_name and other.mount_id != mount_id:
                raise ConflictError(f"Mount name already in use: {new_name}")

        old_name = config.mount_name
        async with self._session() as session:
            for folder in await self._namespace.mount_folders(session, mount_id):
                result = await self._moves.rename_item(
                    session, folder.id, ItemKind.FOLDER, new_name, folder.user_id  # type: ignore[arg-type]
                )
                if not result.success:
                    raise ConflictError(
                        f"Cannot rename mount folder for user {folder.user_id}: {result.message}"
                    )

        config.mount_name = new_name
        self._registry.add_mount(config)
        self._save_config()
        logger.info("Renamed mount %s: %r -> %r", mount_id, old_name, new_name)
        return config

    async def remove_mount(self, mount_id: str, *, purge: bool = False) -> BatchDeleteResult:
        """Drop a mount and every user's rows below it.

        With ``purge=True`` the backend contents are deleted as well.
        """
        self._registry.get(mount_id)
        files_deleted = 0
        folders_deleted = 0
        async with self._session() as session:
            for folder in await self._namespace.mount_folders(session, mount_id):
                result = await self._deletion.unified_delete(
                    session, folder.id, ItemKind.FOLDER, folder.user_id, physical=purge  # type: ignore[arg-type]
                )
                files_deleted += result.files_deleted
                folders_deleted += result.folders_deleted

        config = self._registry.remove_mount(mount_id)
        self._save_config()
        logger.info("Removed mount %s (%s)", config.mount_name if config else "?", mount_id)
        return BatchDeleteResult(
            success=True,
            message=f"Removed mount {mount_id}",
            files_deleted=files_deleted,
            folders_deleted=folders_deleted,
        )

    def set_mount_full(self, mount_id: str, full: bool = True) -> None:
        """Set or clear a mount's capacity flag and persist it."""
        self._registry.set_full(mount_id, full)
        self._save_config()

    # ------------------------------------------------------------------
    # Folders & listing
    # ------------------------------------------------------------------

    async def create_folder(self, name: str, parent_id: int, user_id: str) -> int:
        """Create a folder below a mount folder or one of its descendants."""
        valid, error = validate_name(name)
        if not valid:
            raise ValueError(error)
        async with self._session() as session:
            parent = await self._namespace.require_folder(session, parent_id, user_id)
            if parent.parent_id is None:
                raise ValueError("Folders cannot be created directly under the root")
            if await self._namespace.find_item_in_folder(session, name, parent_id, user_id):
                raise ConflictError(f"An item named {name!r} already exists")

            folder = await self._namespace.create_folder(session, name, parent_id, user_id)
            if isinstance(self._storage, SupportsDirectories):
                location = await self._resolver.folder_location(session, folder.id, user_id)  # type: ignore[arg-type]
                await self._storage.create_directory(location.remote_path, location.mount_id)
            return folder.id  # type: ignore[return-value]

    async def folder_contents(self, folder_id: int, user_id: str) -> FolderContents:
        async with self._session() as session:
            await self._namespace.require_folder(session, folder_id, user_id)
            return await self._namespace.get_folder_contents(session, folder_id, user_id)

    async def list_folders(self, user_id: str) -> list[FolderBase]:
        async with self._session() as session:
            return await self._namespace.list_folders(session, user_id)

    async def search(self, query: str, user_id: str) -> list[ItemRef]:
        async with self._session() as session:
            return await self._namespace.search_items(session, query, user_id)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    async def physical_path(
        self, item_id: int, kind: ItemKind | str, user_id: str
    ) -> PhysicalLocation:
        async with self._session() as session:
            return await self._resolver.physical_path(session, item_id, kind, user_id)

    async def resolve_or_create(
        self,
        start_folder_id: int,
        parts: Iterable[str],
        user_id: str,
        mount_id: str | None = None,
    ) -> int:
        async with self._session() as session:
            return await self._resolver.resolve_or_create(
                session, start_folder_id, list(parts), user_id, mount_id
            )

    async def resolve_existing(
        self, start_folder_id: int, parts: Iterable[str], user_id: str
    ) -> int | None:
        async with self._session() as session:
            return await self._resolver.resolve_existing(session, start_folder_id, list(parts), user_id)

    async def ancestor_chain(self, folder_id: int, user_id: str) -> list[PathSegment]:
        async with self._session() as session:
            return await self._resolver.ancestor_chain(session, folder_id, user_id)

    async def virtual_path(self, folder_id: int, user_id: str) -> str:
        async with self._session() as session:
            return await self._resolver.virtual_path(session, folder_id, user_id)

    async def folder_for_path(
        self, virtual_path: str, user_id: str, *, create: bool = False, sep: str = "/"
    ) -> int | None:
        async with self._session() as session:
            return await self._resolver.folder_for_path(
                session, virtual_path, user_id, create=create, sep=sep
            )

    # ------------------------------------------------------------------
    # Move & rename
    # ------------------------------------------------------------------

    async def move_item(
        self,
        item_id: int,
        kind: ItemKind | str,
        target_folder_id: int,
        user_id: str,
        resolutions: Mapping[str, Resolution | str] | None = None,
    ) -> MoveReport:
        async with self._session() as session:
            return await self._moves.move_item(
                session, item_id, kind, target_folder_id, user_id, resolutions
            )

    async def move_items(
        self,
        items: Iterable[tuple[int, ItemKind | str]],
        target_folder_id: int,
        user_id: str,
        resolutions: Mapping[str, Resolution | str] | None = None,
    ) -> MoveReport:
        async with self._session() as session:
            return await self._moves.move_items(
                session, list(items), target_folder_id, user_id, resolutions
            )

    async def check_move_conflicts(
        self,
        items: Iterable[tuple[int, ItemKind | str]],
        target_folder_id: int,
        user_id: str,
    ) -> ConflictReport:
        async with self._session() as session:
            return await self._moves.check_conflicts(session, list(items), target_folder_id, user_id)

    async def rename_item(
        self, item_id: int, kind: ItemKind | str, new_name: str, user_id: str
    ) -> RenameResult:
        async with self._session() as session:
            return await self._moves.rename_item(session, item_id, kind, new_name, user_id)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete_item(self, item_id: int, kind: ItemKind | str, user_id: str) -> DeleteResult:
        async with self._session() as session:
            return await self._deletion.unified_delete(session, item_id, kind, user_id)

    async def delete_items(
        self,
        user_id: str,
        *,
        file_ids: Iterable[int] = (),
        folder_ids: Iterable[int] = (),
    ) -> BatchDeleteResult:
        async with self._session() as session:
            return await self._deletion.delete_items(session, file_ids, folder_ids, user_id)

    # ------------------------------------------------------------------
    # Shares
    # ------------------------------------------------------------------

    async def create_share_link(
        self, item_id: int, kind: ItemKind | str, duration: str, user_id: str
    ) -> ShareResult:
        async with self._session() as session:
            return await self._sharing.create_share_link(session, item_id, kind, duration, user_id)

    async def resolve_share_token(self, token: str, kind: ItemKind | str) -> Any:
        """The shared folder or file row for *token*, or ``None``."""
        async with self._session() as session:
            return await self._sharing.resolve_share_token(session, token, kind)

    async def cancel_share(self, item_id: int, kind: ItemKind | str, user_id: str) -> ShareResult:
        async with self._session() as session:
            return await self._sharing.cancel_share(session, item_id, kind, user_id)

    async def list_shares(self, user_id: str) -> ListSharesResult:
        async with self._session() as session:
            return await self._sharing.list_active_shares(session, user_id)

    async def find_file_in_shared_folder(self, file_id: int, folder_token: str) -> DriveFileBase | None:
        async with self._session() as session:
            return await self._sharing.find_file_in_shared_folder(session, file_id, folder_token)

    # ------------------------------------------------------------------
    # Upload, existence check, import
    # ------------------------------------------------------------------

    async def upload_file(
        self,
        local_temp_path: str,
        relative_path: str,
        folder_id: int,
        user_id: str,
        *,
        mime_type: str | None = None,
        resolution: Resolution | str | None = None,
    ) -> UploadResult:
        """Store a staged file below *folder_id* and register it.

        *relative_path* may contain folders (``"a/b/c.txt"``), which are
        created as needed.  On a name clash the file is skipped unless
        *resolution* is ``overwrite`` or ``rename``.
        """
        action = Resolution(resolution) if resolution is not None else None
        if action in (Resolution.SKIP, Resolution.SKIP_DEFAULT):
            return UploadResult(success=False, message=f"Skipped: {relative_path}")

        parent, name = split_path(relative_path)
        async with self._session() as session:
            target_id = await self._resolver.resolve_or_create(
                session, folder_id, path_parts(parent), user_id
            )
            existing = await self._namespace.find_item_in_folder(session, name, target_id, user_id)
            if existing is not None:
                if action is Resolution.OVERWRITE:
                    result = await self._deletion.unified_delete(session, existing.id, existing.kind, user_id)
                    if not result.success:
                        return UploadResult(success=False, message=result.message)
                elif action is Resolution.RENAME:
                    name = await self._moves.find_available_name(session, name, target_id, user_id, False)
                else:
                    return UploadResult(success=False, message=f"Skipped, name exists: {relative_path}")

            upload = await self._storage.upload(
                local_temp_path,
                name,
                mime_type or guess_mime_type(name),
                user_id,
                target_id,
                session=session,
            )
            if not upload.success:
                return upload

            file = await self._namespace.add_file(
                session,
                file_name=name,
                folder_id=target_id,
                user_id=user_id,
                file_id=upload.file_id,  # type: ignore[arg-type]
                mount_id=upload.mount_id,
                size=upload.size,
                mimetype=mime_type or guess_mime_type(name),
                date=upload.date,
            )
            upload.message_id = file.message_id
            logger.info("Registered upload %s as file %s for user %s", upload.file_id, file.message_id, user_id)
            return upload

    async def check_existence(
        self, folder_id: int, relative_paths: Iterable[str], user_id: str
    ) -> list[ExistenceCheck]:
        """Which of *relative_paths* below *folder_id* already name a file."""
        checks: list[ExistenceCheck] = []
        async with self._session() as session:
            for relative_path in relative_paths:
                parent, name = split_path(relative_path)
                target_id = await self._resolver.resolve_existing(
                    session, folder_id, path_parts(parent), user_id
                )
                file = None
                if target_id is not None:
                    file = await self._namespace.find_file_in_folder(session, name, target_id, user_id)
                checks.append(
                    ExistenceCheck(
                        name=name,
                        relative_path=join_path(relative_path).lstrip("/"),
                        exists=file is not None,
                        message_id=file.message_id if file else None,
                    )
                )
        return checks

    async def import_mount(self, mount_id: str, user_id: str) -> ScanResult:
        """Register files that exist on a mount's backend but not in the namespace."""
        mount = self._registry.get(mount_id)
        async with self._session() as session:
            if await self._namespace.get_root(session, user_id) is None:
                raise NotFoundError(f"User {user_id} has no root folder")
            return await self._scan.import_mount(session, user_id, mount)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def registry(self) -> MountRegistry:
        return self._registry

    @property
    def storage(self) -> StorageAdapter:
        return self._storage

    @property
    def namespace(self) -> NamespaceStore:
        return self._namespace
