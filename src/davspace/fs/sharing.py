"""SharingService — share links on files and folders.

Stateless service that receives the folder and file models at
construction and a session at call time, following the
NamespaceStore pattern.  A share is a random token plus an optional
expiry (epoch milliseconds) stored on the item's own row.
"""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from .types import ItemKind, ListSharesResult, ShareInfo, ShareResult
from .utils import now_ms

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from davspace.models.files import DriveFileBase
    from davspace.models.folders import FolderBase

logger = logging.getLogger(__name__)

_HOUR_MS = 60 * 60 * 1000

SHARE_DURATIONS: dict[str, int | None] = {
    "1h": _HOUR_MS,
    "3h": 3 * _HOUR_MS,
    "5h": 5 * _HOUR_MS,
    "7h": 7 * _HOUR_MS,
    "24h": 24 * _HOUR_MS,
    "7d": 7 * 24 * _HOUR_MS,
    "0": None,
}
"""Accepted share durations in milliseconds; ``None`` never expires."""

DEFAULT_DURATION = "24h"


def expiry_for(duration: str, now: int) -> int | None:
    """Expiry timestamp for *duration*; unknown durations fall back to 24h."""
    if duration not in SHARE_DURATIONS:
        duration = DEFAULT_DURATION
    delta = SHARE_DURATIONS[duration]
    return None if delta is None else now + delta


def is_expired(expires_at: int | None, now: int) -> bool:
    return expires_at is not None and expires_at <= now


class SharingService:
    """Creates, resolves and cancels share links.

    Constructor receives the concrete models so callers can use custom
    SQLModel subclasses with different table names.
    """

    def __init__(
        self,
        folder_model: type[FolderBase],
        file_model: type[DriveFileBase],
    ) -> None:
        self._folder_model = folder_model
        self._file_model = file_model

    def _model_and_key(self, kind: ItemKind | str) -> tuple[type, object]:
        if ItemKind(kind) is ItemKind.FOLDER:
            return self._folder_model, self._folder_model.id
        return self._file_model, self._file_model.message_id

    async def create_share_link(
        self,
        session: AsyncSession,
        item_id: int,
        kind: ItemKind | str,
        duration: str,
        user_id: str,
        *,
        now: int | None = None,
    ) -> ShareResult:
        """Attach a fresh token to an item, replacing any previous one.

        Flushes but does not commit.
        """
        now = now_ms() if now is None else now
        token = secrets.token_hex(16)
        expires_at = expiry_for(duration, now)

        model, key = self._model_and_key(kind)
        result = await session.execute(
            update(model)
            .where(key == item_id, model.user_id == user_id)  # type: ignore[attr-defined]
            .values(share_token=token, share_expires_at=expires_at)
        )
        if result.rowcount == 0:  # type: ignore[attr-defined]
            return ShareResult(success=False, message=f"{ItemKind(kind).value.capitalize()} not found: {item_id}")
        await session.flush()
        logger.info("Shared %s %s for user %s until %s", ItemKind(kind).value, item_id, user_id, expires_at)
        return ShareResult(success=True, message="Share link created", token=token, expires_at=expires_at)

    async def resolve_share_token(
        self,
        session: AsyncSession,
        token: str,
        kind: ItemKind | str,
        *,
        now: int | None = None,
    ) -> FolderBase | DriveFileBase | None:
        """Return the item shared under *token*, or ``None``.

        An expired share is cleared on the spot and committed, so the
        token stops resolving even if the caller never writes again.
        Failure to clear is logged and does not change the answer.
        """
        if not token:
            return None
        now = now_ms() if now is None else now
        model, key = self._model_and_key(kind)
        result = await session.execute(select(model).where(model.share_token == token))  # type: ignore[attr-defined]
        row = result.scalars().first()
        if row is None:
            return None
        if not is_expired(row.share_expires_at, now):
            return row

        item_id = row.id if ItemKind(kind) is ItemKind.FOLDER else row.message_id
        try:
            await session.execute(
                update(model)
                .where(key == item_id)
                .values(share_token=None, share_expires_at=None)
            )
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.warning("Could not clear expired share on %s %s: %s", ItemKind(kind).value, item_id, e)
        else:
            logger.info("Cleared expired share on %s %s", ItemKind(kind).value, item_id)
        return None

    async def cancel_share(
        self,
        session: AsyncSession,
        item_id: int,
        kind: ItemKind | str,
        user_id: str,
    ) -> ShareResult:
        """Remove an item's share. Flushes but does not commit."""
        model, key = self._model_and_key(kind)
        result = await session.execute(
            update(model)
            .where(
                key == item_id,
                model.user_id == user_id,  # type: ignore[attr-defined]
                model.share_token.is_not(None),  # type: ignore[attr-defined]
            )
            .values(share_token=None, share_expires_at=None)
        )
        if result.rowcount == 0:  # type: ignore[attr-defined]
            return ShareResult(success=False, message="Item not found or not shared")
        await session.flush()
        logger.info("Cancelled share on %s %s for user %s", ItemKind(kind).value, item_id, user_id)
        return ShareResult(success=True, message="Share cancelled")

    async def list_active_shares(
        self,
        session: AsyncSession,
        user_id: str,
        *,
        now: int | None = None,
    ) -> ListSharesResult:
        """Every unexpired share a user owns, files first."""
        now = now_ms() if now is None else now
        shares: list[ShareInfo] = []

        fm = self._file_model
        files = await session.execute(
            select(fm).where(
                fm.user_id == user_id,
                fm.share_token.is_not(None),  # type: ignore[union-attr]
                (fm.share_expires_at.is_(None)) | (fm.share_expires_at > now),  # type: ignore[union-attr,operator]
            )
        )
        for f in files.scalars():
            shares.append(
                ShareInfo(
                    item_id=f.message_id,  # type: ignore[arg-type]
                    kind=ItemKind.FILE,
                    name=f.file_name,
                    token=f.share_token,  # type: ignore[arg-type]
                    expires_at=f.share_expires_at,
                )
            )

        dm = self._folder_model
        folders = await session.execute(
            select(dm).where(
                dm.user_id == user_id,
                dm.share_token.is_not(None),  # type: ignore[union-attr]
                (dm.share_expires_at.is_(None)) | (dm.share_expires_at > now),  # type: ignore[union-attr,operator]
            )
        )
        for d in folders.scalars():
            shares.append(
                ShareInfo(
                    item_id=d.id,  # type: ignore[arg-type]
                    kind=ItemKind.FOLDER,
                    name=d.name,
                    token=d.share_token,  # type: ignore[arg-type]
                    expires_at=d.share_expires_at,
                )
            )

        return ListSharesResult(
            success=True,
            message=f"Found {len(shares)} active share(s)",
            shares=shares,
        )

    async def find_file_in_shared_folder(
        self,
        session: AsyncSession,
        file_id: int,
        folder_token: str,
        *,
        now: int | None = None,
    ) -> DriveFileBase | None:
        """A file sitting directly in the folder shared under *folder_token*."""
        folder = await self.resolve_share_token(session, folder_token, ItemKind.FOLDER, now=now)
        if folder is None:
            return None
        fm = self._file_model
        result = await session.execute(
            select(fm).where(fm.message_id == file_id, fm.folder_id == folder.id)
        )
        return result.scalar_one_or_none()
