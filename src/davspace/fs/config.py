"""Mount configuration file — load and save ``MountRegistry`` contents.

The file is JSON::

    {
      "webdav": [
        {"id": "a1b2c3d4", "mount_name": "nas", "url": "...",
         "username": "...", "password": "..."}
      ],
      "circuitBreaker": {"nas": false}
    }

``circuitBreaker`` maps mount names to the capacity flag.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .mounts import MountConfig, MountRegistry

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


def read_config(path: str | Path) -> dict[str, Any]:
    """Read the raw config document; missing or malformed files yield defaults."""
    path = Path(path)
    config: dict[str, Any] = {}
    if path.exists():
        try:
            config = json.loads(path.read_text("utf-8"))
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable mount config at %s", path, exc_info=True)
            config = {}
    if not isinstance(config, dict):
        config = {}
    if not isinstance(config.get("webdav"), list):
        config["webdav"] = []
    if not isinstance(config.get("circuitBreaker"), dict):
        config["circuitBreaker"] = {}
    return config


def load_mounts(
    path: str | Path,
    client_factory: Callable[[MountConfig], Any] | None = None,
) -> MountRegistry:
    """Build a registry from the config file at *path*."""
    config = read_config(path)
    registry = MountRegistry(client_factory)
    breaker: dict[str, bool] = config["circuitBreaker"]

    for entry in config["webdav"]:
        try:
            mount = MountConfig(
                mount_name=entry["mount_name"],
                url=entry["url"],
                username=entry.get("username", ""),
                password=entry.get("password", ""),
                mount_id=entry["id"],
                full=bool(breaker.get(entry["mount_name"], False)),
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("Skipping invalid mount entry in %s: %r", path, entry)
            continue
        registry.add_mount(mount)

    return registry


def save_mounts(registry: MountRegistry, path: str | Path) -> None:
    """Write the registry to *path*, replacing the previous file."""
    path = Path(path)
    mounts = registry.list_mounts()
    document = {
        "webdav": [m.to_dict() for m in mounts],
        "circuitBreaker": {m.mount_name: m.full for m in mounts},
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(document, indent=2), "utf-8")
    tmp.replace(path)
