"""Shared fixtures for davspace tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel, select

from davspace.fs.deletion import DeletionEngine
from davspace.fs.local_disk import LocalDiskStorage, host_dir_client
from davspace.fs.mounts import MountConfig, MountRegistry
from davspace.fs.moves import MoveEngine
from davspace.fs.namespace import NamespaceStore
from davspace.fs.paths import PathResolver
from davspace.fs.utils import join_path
from davspace.models import DriveFile, Folder

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

USER = "alice"
MOUNT_ID = "m1"
MOUNT_NAME = "nas"


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Async in-memory SQLite engine with all tables created."""
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def async_session(async_engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Async SQLModel session with ``expire_on_commit=False``."""
    factory = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with factory() as session:
        yield session


@pytest.fixture
def mount_dir(tmp_path: Path) -> Path:
    """Host directory backing the test mount."""
    d = tmp_path / "nas"
    d.mkdir()
    return d


@pytest.fixture
def registry(mount_dir: Path) -> MountRegistry:
    reg = MountRegistry(host_dir_client)
    reg.add_mount(MountConfig(mount_name=MOUNT_NAME, url=str(mount_dir), mount_id=MOUNT_ID))
    return reg


@pytest.fixture
def namespace() -> NamespaceStore:
    return NamespaceStore(Folder, DriveFile)


@pytest.fixture
def resolver(namespace: NamespaceStore) -> PathResolver:
    return PathResolver(namespace)


@pytest.fixture
def storage(registry: MountRegistry, resolver: PathResolver) -> LocalDiskStorage:
    return LocalDiskStorage(registry, resolver)


@pytest.fixture
def deletion(
    namespace: NamespaceStore, resolver: PathResolver, storage: LocalDiskStorage
) -> DeletionEngine:
    return DeletionEngine(namespace, resolver, storage)


@pytest.fixture
def moves(
    namespace: NamespaceStore,
    resolver: PathResolver,
    storage: LocalDiskStorage,
    deletion: DeletionEngine,
) -> MoveEngine:
    return MoveEngine(namespace, resolver, storage, deletion)


# ---------------------------------------------------------------------------
# Workspace: rows and matching files on disk
# ---------------------------------------------------------------------------


class Workspace:
    """Builds a user's tree in the database and on the mount directory together."""

    def __init__(
        self,
        session: AsyncSession,
        namespace: NamespaceStore,
        resolver: PathResolver,
        registry: MountRegistry,
        mount_dir: Path,
    ) -> None:
        self.session = session
        self.namespace = namespace
        self.resolver = resolver
        self.registry = registry
        self.mount_dir = mount_dir
        self.user = USER
        self.root_id = 0
        self.mount_folder_id = 0

    async def setup(self) -> Workspace:
        root = await self.namespace.create_root(self.session, self.user)
        self.root_id = root.id  # type: ignore[assignment]
        self.mount_folder_id = await self.resolver.ensure_mount_folder(
            self.session, self.user, self.registry.get(MOUNT_ID)
        )
        await self.session.commit()
        return self

    def disk(self, remote_path: str) -> Path:
        return self.mount_dir / remote_path.lstrip("/")

    async def folder(self, parent_id: int, name: str) -> int:
        folder = await self.namespace.create_folder(self.session, name, parent_id, self.user)
        await self.session.commit()
        location = await self.resolver.folder_location(self.session, folder.id, self.user)  # type: ignore[arg-type]
        self.disk(location.remote_path).mkdir(parents=True, exist_ok=True)
        return folder.id  # type: ignore[return-value]

    async def file(self, folder_id: int, name: str, content: bytes = b"data") -> int:
        location = await self.resolver.folder_location(self.session, folder_id, self.user)
        remote = join_path(location.remote_path, name)
        target = self.disk(remote)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        row = await self.namespace.add_file(
            self.session,
            file_name=name,
            folder_id=folder_id,
            user_id=self.user,
            file_id=remote,
            mount_id=location.mount_id,
            size=len(content),
        )
        await self.session.commit()
        return row.message_id  # type: ignore[return-value]

    async def count_folders(self) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(Folder).where(Folder.user_id == self.user)
        )
        return result.scalar_one()

    async def count_files(self) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(DriveFile).where(DriveFile.user_id == self.user)
        )
        return result.scalar_one()


@pytest.fixture
async def ws(
    async_session: AsyncSession,
    namespace: NamespaceStore,
    resolver: PathResolver,
    registry: MountRegistry,
    mount_dir: Path,
) -> Workspace:
    """A user with a root and one mount folder (``/nas`` -> ``mount_dir``)."""
    return await Workspace(async_session, namespace, resolver, registry, mount_dir).setup()
