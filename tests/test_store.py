"""Tests for the persisted local state."""

from __future__ import annotations

from typing import AsyncIterator

import pytest

from app.database import Database
from app.models import SubEntry, WatchlistEntry
from app.store import LocalStore


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


class StepClock:
    def __init__(self, start: int = 1_000) -> None:
        self.now = start

    def __call__(self) -> int:
        self.now += 1
        return self.now


@pytest.fixture
async def store(tmp_path, anyio_backend: str) -> AsyncIterator[LocalStore]:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    await database.create_all()
    try:
        yield LocalStore(database.session_factory, clock=StepClock())
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_history_upsert_keeps_one_entry_per_video(store: LocalStore) -> None:
    first = await store.update_history("42", 10.0, 600.0)
    second = await store.update_history("42", 125.5, 600.0)
    await store.update_history("7", -3.0, 0.0)

    history = await store.get_all_history()

    assert set(history) == {"42", "7"}
    assert history["42"].timecode == 125.5
    assert history["42"].updated_at == second.updated_at > first.updated_at
    assert history["7"].timecode == 0.0
    assert await store.get_history("missing") is None


@pytest.mark.anyio("asyncio")
async def test_watchlist_ignores_duplicates(store: LocalStore) -> None:
    entry = WatchlistEntry(vod_id="1", title="First", length_seconds=60)

    await store.add_to_watchlist(entry)
    await store.add_to_watchlist(WatchlistEntry(vod_id="2", title="Second"))
    watchlist = await store.add_to_watchlist(entry.model_copy(update={"title": "Renamed"}))

    assert [item.vod_id for item in watchlist] == ["1", "2"]
    assert watchlist[0].title == "First"

    remaining = await store.remove_from_watchlist("1")
    assert [item.vod_id for item in remaining] == ["2"]


@pytest.mark.anyio("asyncio")
async def test_subs_are_lowercased_and_unique(store: LocalStore) -> None:
    await store.add_sub(SubEntry(login="SomeOne", display_name="SomeOne"))
    subs = await store.add_sub(SubEntry(login="someone", display_name="Duplicate"))

    assert [(sub.login, sub.display_name) for sub in subs] == [("someone", "SomeOne")]
    assert await store.add_sub(SubEntry(login="  ")) == subs
    assert await store.remove_sub("SOMEONE") == []


@pytest.mark.anyio("asyncio")
async def test_settings_default_and_partial_update(store: LocalStore) -> None:
    assert (await store.get_settings()).one_sync is False

    updated = await store.update_settings(True)
    unchanged = await store.update_settings(None)

    assert updated.one_sync is True
    assert unchanged.one_sync is True
    assert (await store.get_settings()).to_payload() == {"oneSync": True}
