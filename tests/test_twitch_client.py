"""Tests for the platform GraphQL client and query catalogue."""

from __future__ import annotations

import json
import re
from typing import Any, Callable

import httpx
import pytest

from app.cache import TTLCache
from app.config import Settings
from app.errors import NotFoundError, UpstreamError
from app.services.gql import GraphQLClient
from app.services.schemas import GameVideosData
from app.services.twitch import TwitchClient


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def build_settings(**overrides: Any) -> Settings:
    """Return a settings object with defaults suitable for tests."""

    return Settings(_env_file=None, **overrides)  # type: ignore[arg-type]


def stream_node(stream_id: str, login: str, viewers: int) -> dict[str, Any]:
    return {
        "id": stream_id,
        "title": f"{login} live",
        "viewersCount": viewers,
        "previewImageURL": f"https://static-cdn.jtvnw.net/{login}.jpg",
        "createdAt": "2024-01-01T00:00:00Z",
        "language": "fr",
        "broadcaster": {"id": f"b-{login}", "login": login, "displayName": login.title()},
    }


def client_for(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.anyio("asyncio")
async def test_execute_sends_client_headers() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"data": {"ok": True}})

    async with client_for(handler) as http:
        gql = GraphQLClient(build_settings(GQL_CLIENT_ID="client-123"), http)
        data = await gql.execute("query { ok }")

    assert data == {"ok": True}
    request = captured[0]
    assert str(request.url) == "https://gql.twitch.tv/gql"
    assert request.headers["Client-Id"] == "client-123"
    assert json.loads(request.content) == {"query": "query { ok }"}


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(502, text="bad gateway"),
        httpx.Response(200, text="<html>"),
        httpx.Response(200, json={"data": {"game": {"videos": {"edges": "nope"}}}}),
    ],
)
async def test_failures_become_upstream_errors(response: httpx.Response) -> None:
    async with client_for(lambda request: response) as http:
        gql = GraphQLClient(build_settings(), http)

        with pytest.raises(UpstreamError):
            await gql.query("query { game }", GameVideosData)


@pytest.mark.anyio("asyncio")
async def test_network_errors_become_upstream_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    async with client_for(handler) as http:
        gql = GraphQLClient(build_settings(), http)

        with pytest.raises(UpstreamError, match="request failed"):
            await gql.execute("query { ok }")


@pytest.mark.anyio("asyncio")
async def test_user_info_is_cached_and_missing_users_raise() -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        query = json.loads(request.content)["query"]
        calls.append(query)
        if '"ghost"' in query:
            return httpx.Response(200, json={"data": {"user": None}})
        return httpx.Response(
            200,
            json={
                "data": {
                    "user": {
                        "id": "1",
                        "login": "someone",
                        "displayName": "Someone",
                        "profileImageURL": "https://static-cdn.jtvnw.net/a.png",
                    }
                }
            },
        )

    async with client_for(handler) as http:
        twitch = TwitchClient(GraphQLClient(build_settings(), http), TTLCache())
        first = await twitch.fetch_user_info("someone")
        second = await twitch.fetch_user_info("someone")
        with pytest.raises(NotFoundError):
            await twitch.fetch_user_info("ghost")

    assert first == second
    assert first.display_name == "Someone"
    assert len(calls) == 2


@pytest.mark.anyio("asyncio")
async def test_live_status_drops_invalid_and_failed_logins() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        query = json.loads(request.content)["query"]
        if '"broken"' in query:
            return httpx.Response(500)
        if '"offline"' in query:
            return httpx.Response(200, json={"data": {"user": {"id": "2", "login": "offline", "stream": None}}})
        return httpx.Response(
            200,
            json={
                "data": {
                    "user": {
                        "id": "3",
                        "login": "online",
                        "displayName": "Online",
                        "profileImageURL": "https://static-cdn.jtvnw.net/o.png",
                        "stream": {
                            "id": "s1",
                            "title": None,
                            "viewersCount": 12,
                            "game": {"id": "g", "name": "Chess"},
                        },
                    }
                }
            },
        )

    async with client_for(handler) as http:
        twitch = TwitchClient(GraphQLClient(build_settings(), http), TTLCache())
        statuses = await twitch.fetch_live_status(
            ["Online", "offline", "broken", "x", "bad-login!", "online"]
        )

    assert list(statuses) == ["online"]
    live = statuses["online"]
    assert live.title == "Live stream"
    assert live.viewer_count == 12
    assert live.broadcaster.display_name == "Online"
    assert live.game is not None and live.game.name == "Chess"


@pytest.mark.anyio("asyncio")
async def test_live_streams_page_exposes_cursor_only_when_more_pages_exist() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        query = json.loads(request.content)["query"]
        assert "streams(first: 8" in query
        return httpx.Response(
            200,
            json={
                "data": {
                    "streams": {
                        "edges": [
                            {"cursor": "c1", "node": stream_node("1", "a", 10)},
                            {"cursor": "c2", "node": {"id": "2", "broadcaster": None}},
                        ],
                        "pageInfo": {"hasNextPage": True},
                    }
                }
            },
        )

    async with client_for(handler) as http:
        twitch = TwitchClient(GraphQLClient(build_settings(), http), TTLCache())
        page = await twitch.fetch_live_streams(first=2)

    assert [stream.id for stream in page.items] == ["1"]
    assert page.next_cursor == "c2"
    assert page.has_more is True


@pytest.mark.anyio("asyncio")
async def test_live_search_merges_sources_by_viewers() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        query = json.loads(request.content)["query"]
        if "searchFor" in query:
            return httpx.Response(
                200,
                json={
                    "data": {
                        "searchFor": {
                            "results": [
                                {"item": {"id": "u1", "login": "a", "stream": stream_node("1", "a", 10)}},
                                {"item": {"id": "u2", "login": "c", "displayName": "C", "stream": stream_node("3", "c", 500)}},
                                {"item": {"id": "u3", "login": "d", "stream": None}},
                            ]
                        }
                    }
                },
            )
        return httpx.Response(
            200,
            json={
                "data": {
                    "game": {
                        "streams": {
                            "edges": [
                                {"cursor": "x", "node": stream_node("1", "a", 10)},
                                {"cursor": "y", "node": stream_node("2", "b", 50)},
                            ],
                            "pageInfo": {"hasNextPage": True},
                        }
                    }
                }
            },
        )

    async with client_for(handler) as http:
        twitch = TwitchClient(GraphQLClient(build_settings(), http), TTLCache())
        page = await twitch.search_live_streams("chess")

    assert [stream.id for stream in page.items] == ["3", "2", "1"]
    assert page.has_more is False
    assert page.items[1].game is not None and page.items[1].game.name == "chess"


@pytest.mark.anyio("asyncio")
async def test_category_page_degrades_to_empty_on_failure() -> None:
    async with client_for(lambda request: httpx.Response(503)) as http:
        twitch = TwitchClient(GraphQLClient(build_settings(), http), TTLCache())
        page = await twitch.fetch_category_videos_page("Chess", first=100)

    assert page.items == []
    assert page.has_more is False


@pytest.mark.anyio("asyncio")
async def test_videos_by_ids_batches_numeric_ids() -> None:
    queries: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        queries.append(json.loads(request.content)["query"])
        return httpx.Response(
            200,
            json={
                "data": {
                    "v0": {"id": "11", "title": "first", "lengthSeconds": 60},
                    "v1": None,
                }
            },
        )

    async with client_for(handler) as http:
        twitch = TwitchClient(GraphQLClient(build_settings(), http), TTLCache())
        videos = await twitch.fetch_videos_by_ids(["11", "abc", "12", "11"])
        empty = await twitch.fetch_videos_by_ids(["abc"])

    assert [video.id for video in videos] == ["11"]
    assert empty == []
    assert len(queries) == 1
    assert 'v0: video(id: "11")' in queries[0]
    assert 'v1: video(id: "12")' in queries[0]


@pytest.mark.anyio("asyncio")
async def test_user_videos_skip_undecodable_nodes() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "data": {
                    "user": {
                        "videos": {
                            "edges": [
                                {"node": {"id": "1", "title": "good"}},
                                {"node": {"title": "no id"}},
                                {"node": {"id": "3", "lengthSeconds": "long"}},
                                {"node": None},
                            ]
                        }
                    }
                }
            },
        )

    async with client_for(handler) as http:
        twitch = TwitchClient(GraphQLClient(build_settings(), http), TTLCache())
        videos = await twitch.fetch_user_videos("someone")

    assert [video.id for video in videos] == ["1"]


@pytest.mark.anyio("asyncio")
async def test_all_videos_by_ids_splits_into_batches_of_thirty() -> None:
    queries: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        query = json.loads(request.content)["query"]
        queries.append(query)
        data = {
            alias: {"id": video_id, "title": f"video {video_id}"}
            for alias, video_id in re.findall(r'(v\d+): video\(id: "(\d+)"\)', query)
        }
        return httpx.Response(200, json={"data": data})

    ids = [str(number) for number in range(100, 165)]

    async with client_for(handler) as http:
        twitch = TwitchClient(GraphQLClient(build_settings(), http), TTLCache())
        videos = await twitch.fetch_all_videos_by_ids(ids + ["100"])

    assert len(queries) == 3
    assert sorted(video.id for video in videos) == ids
