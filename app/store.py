"""Local persisted state: watch history, watchlist, subscriptions and settings."""

from __future__ import annotations

import logging
import time
from typing import Callable

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db_models import HistoryRecord, SettingsRecord, SubRecord, WatchlistRecord
from .models import ExperienceSettings, HistoryEntry, SubEntry, WatchlistEntry

logger = logging.getLogger(__name__)

SETTINGS_ROW_ID = 1


def _now_ms() -> int:
    return int(time.time() * 1000)


def _history_entry(record: HistoryRecord) -> HistoryEntry:
    return HistoryEntry(
        vod_id=record.vod_id,
        timecode=record.timecode,
        duration=record.duration,
        updated_at=record.updated_at,
    )


def _watchlist_entry(record: WatchlistRecord) -> WatchlistEntry:
    return WatchlistEntry(
        vod_id=record.vod_id,
        title=record.title,
        preview_thumbnail_url=record.preview_thumbnail_url,
        length_seconds=record.length_seconds,
        added_at=record.added_at,
    )


def _sub_entry(record: SubRecord) -> SubEntry:
    return SubEntry(
        login=record.login,
        display_name=record.display_name,
        profile_image_url=record.profile_image_url,
    )


class LocalStore:
    """Reads and writes the single local user's state.

    Every mutation commits before returning. Timestamps are epoch
    milliseconds taken from ``clock``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Callable[[], int] = _now_ms,
    ):
        self._session_factory = session_factory
        self._clock = clock

    # History ----------------------------------------------------------------

    async def get_all_history(self) -> dict[str, HistoryEntry]:
        async with self._session_factory() as session:
            result = await session.execute(select(HistoryRecord))
            return {
                record.vod_id: _history_entry(record) for record in result.scalars()
            }

    async def get_history(self, vod_id: str) -> HistoryEntry | None:
        async with self._session_factory() as session:
            record = await session.get(HistoryRecord, vod_id)
            return _history_entry(record) if record is not None else None

    async def update_history(
        self, vod_id: str, timecode: float, duration: float
    ) -> HistoryEntry:
        """Insert or replace the playback position of ``vod_id``."""

        async with self._session_factory() as session:
            record = await session.get(HistoryRecord, vod_id)
            if record is None:
                record = HistoryRecord(vod_id=vod_id)
                session.add(record)
            record.timecode = max(float(timecode), 0.0)
            record.duration = float(duration)
            record.updated_at = self._clock()
            await session.commit()
            return _history_entry(record)

    # Watchlist --------------------------------------------------------------

    async def get_watchlist(self) -> list[WatchlistEntry]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(WatchlistRecord).order_by(WatchlistRecord.added_at)
            )
            return [_watchlist_entry(record) for record in result.scalars()]

    async def add_to_watchlist(self, entry: WatchlistEntry) -> list[WatchlistEntry]:
        async with self._session_factory() as session:
            existing = await session.get(WatchlistRecord, entry.vod_id)
            if existing is None:
                session.add(
                    WatchlistRecord(
                        vod_id=entry.vod_id,
                        title=entry.title,
                        preview_thumbnail_url=entry.preview_thumbnail_url,
                        length_seconds=entry.length_seconds,
                        added_at=self._clock(),
                    )
                )
                await session.commit()
        return await self.get_watchlist()

    async def remove_from_watchlist(self, vod_id: str) -> list[WatchlistEntry]:
        async with self._session_factory() as session:
            await session.execute(
                delete(WatchlistRecord).where(WatchlistRecord.vod_id == vod_id)
            )
            await session.commit()
        return await self.get_watchlist()

    # Settings ---------------------------------------------------------------

    async def get_settings(self) -> ExperienceSettings:
        async with self._session_factory() as session:
            record = await session.get(SettingsRecord, SETTINGS_ROW_ID)
            if record is None:
                return ExperienceSettings()
            return ExperienceSettings(one_sync=record.one_sync)

    async def update_settings(self, one_sync: bool | None) -> ExperienceSettings:
        async with self._session_factory() as session:
            record = await session.get(SettingsRecord, SETTINGS_ROW_ID)
            if record is None:
                record = SettingsRecord(id=SETTINGS_ROW_ID, one_sync=False)
                session.add(record)
            if one_sync is not None:
                record.one_sync = one_sync
            await session.commit()
            return ExperienceSettings(one_sync=record.one_sync)

    # Subscriptions ----------------------------------------------------------

    async def get_subs(self) -> list[SubEntry]:
        async with self._session_factory() as session:
            result = await session.execute(select(SubRecord).order_by(SubRecord.id))
            return [_sub_entry(record) for record in result.scalars()]

    async def add_sub(self, entry: SubEntry) -> list[SubEntry]:
        login = entry.login.strip().lower()
        if not login:
            return await self.get_subs()

        async with self._session_factory() as session:
            existing = await session.scalar(
                select(SubRecord).where(SubRecord.login == login)
            )
            if existing is None:
                session.add(
                    SubRecord(
                        login=login,
                        display_name=entry.display_name,
                        profile_image_url=entry.profile_image_url,
                    )
                )
                await session.commit()
                logger.info("Subscribed to %s", login)
        return await self.get_subs()

    async def remove_sub(self, login: str) -> list[SubEntry]:
        normalized = login.strip().lower()
        async with self._session_factory() as session:
            await session.execute(delete(SubRecord).where(SubRecord.login == normalized))
            await session.commit()
        return await self.get_subs()
