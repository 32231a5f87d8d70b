"""MountRegistry and MountConfig."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .exceptions import MountNotFoundError
from .utils import validate_name

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


def new_mount_id() -> str:
    """Short random id for a newly configured mount."""
    return secrets.token_hex(4)


@dataclass
class MountConfig:
    """Configuration for a single backend mount."""

    mount_name: str
    """Display name; also the name of the mount folder under each user's root."""

    url: str
    """Backend location, e.g. ``https://dav.example.com/remote.php/dav`` or a host directory."""

    username: str = ""
    password: str = field(default="", repr=False)

    mount_id: str = field(default_factory=new_mount_id)
    """Stable identifier stored on mount folders and file rows."""

    full: bool = False
    """Capacity flag; uploads are refused while set."""

    def __post_init__(self) -> None:
        valid, error = validate_name(self.mount_name)
        if not valid:
            raise ValueError(f"Invalid mount name: {error}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.mount_id,
            "mount_name": self.mount_name,
            "url": self.url,
            "username": self.username,
            "password": self.password,
        }


class MountRegistry:
    """Registry of configured mounts and their backend client handles.

    The registry is owned by the caller and handed to a storage adapter.
    Client handles are built lazily by *client_factory* and cached per
    mount id; they are dropped whenever the mount's configuration changes
    or ``invalidate()`` is called.
    """

    def __init__(self, client_factory: Callable[[MountConfig], Any] | None = None) -> None:
        self._mounts: dict[str, MountConfig] = {}
        self._clients: dict[str, Any] = {}
        self._client_factory = client_factory

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def add_mount(self, config: MountConfig) -> None:
        """Add or replace a mount.

        Mount names must be unique across mounts; replacing a mount with
        the same id drops its cached client.
        """
        for other in self._mounts.values():
            if other.mount_name == config.mount_name and other.mount_id != config.mount_id:
                raise ValueError(f"Mount name already in use: {config.mount_name}")
        self._mounts[config.mount_id] = config
        self.invalidate(config.mount_id)

    def remove_mount(self, mount_id: str) -> MountConfig | None:
        """Remove a mount and its cached client."""
        self.invalidate(mount_id)
        return self._mounts.pop(mount_id, None)

    def get(self, mount_id: str) -> MountConfig:
        config = self._mounts.get(mount_id)
        if config is None:
            raise MountNotFoundError(f"No mount configured with id: {mount_id}")
        return config

    def get_by_name(self, mount_name: str) -> MountConfig:
        for config in self._mounts.values():
            if config.mount_name == mount_name:
                return config
        raise MountNotFoundError(f"No mount configured with name: {mount_name}")

    def has_mount(self, mount_id: str) -> bool:
        return mount_id in self._mounts

    def list_mounts(self) -> list[MountConfig]:
        """List all registered mounts, sorted by name."""
        return sorted(self._mounts.values(), key=lambda m: m.mount_name)

    # ------------------------------------------------------------------
    # Client handles
    # ------------------------------------------------------------------

    def client(self, mount_id: str) -> Any:
        """Return the cached client for *mount_id*, building it on first use."""
        if mount_id in self._clients:
            return self._clients[mount_id]
        config = self.get(mount_id)
        if self._client_factory is None:
            raise MountNotFoundError(f"No client factory configured for mount {mount_id}")
        client = self._client_factory(config)
        self._clients[mount_id] = client
        logger.info("Created backend client for mount %s (%s)", config.mount_name, mount_id)
        return client

    def invalidate(self, mount_id: str | None = None) -> None:
        """Drop one cached client, or all of them when *mount_id* is None."""
        if mount_id is None:
            if self._clients:
                logger.info("Resetting all backend clients")
            self._clients.clear()
            return
        self._clients.pop(mount_id, None)

    # ------------------------------------------------------------------
    # Capacity flag
    # ------------------------------------------------------------------

    def set_full(self, mount_id: str, full: bool = True) -> None:
        config = self.get(mount_id)
        config.full = full
        logger.info("Mount %s marked %s", config.mount_name, "full" if full else "available")

    def is_full(self, mount_id: str) -> bool:
        config = self._mounts.get(mount_id)
        return bool(config and config.full)

    def clear_full(self, mount_id: str) -> None:
        if self.is_full(mount_id):
            self.set_full(mount_id, False)
