"""Query catalogue for the video platform, with response caching."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Iterable

from ..cache import TTLCache
from ..errors import NotFoundError, UpstreamError, ValidationError
from ..models import (
    ChatPage,
    LiveCategory,
    LiveGame,
    LiveStream,
    LiveStreamsPage,
    UserInfo,
    Video,
    VideoPage,
)
from ..utils import fingerprint, gql_escape
from .gql import GraphQLClient
from .schemas import (
    ChannelSearchData,
    ChatData,
    GameStreamsData,
    GameVideosData,
    GlobalSearchData,
    LiveSearchData,
    ManifestVideo,
    ManifestVideoData,
    MarkersData,
    PlaybackAccessToken,
    PlaybackAccessTokenData,
    StreamConnection,
    StreamsData,
    TopGamesData,
    UserData,
    UserStreamData,
    UserVideosData,
    decode_videos,
)

logger = logging.getLogger(__name__)

LOGIN_RE = re.compile(r"^[a-z0-9_]{2,25}$")
NUMERIC_ID_RE = re.compile(r"^\d+$")
MAX_STATUS_LOGINS = 80
MAX_METADATA_IDS = 30

VIDEO_FIELDS = (
    "id, title, lengthSeconds, previewThumbnailURL(width: 320, height: 180), "
    "createdAt, viewCount, language, game { name }, "
    "owner { login, displayName, profileImageURL(width: 50) }"
)
STREAM_NODE_FIELDS = (
    "id title viewersCount previewImageURL(width: 640, height: 360) createdAt language"
)
BROADCASTER_FIELDS = "broadcaster { id login displayName profileImageURL(width: 70) }"
USER_STREAM_FIELDS = (
    "id login displayName profileImageURL(width: 70) stream { "
    f"{STREAM_NODE_FIELDS} game {{ id name boxArtURL(width: 110, height: 147) }} }}"
)
PLAYBACK_TOKEN_QUERY = (
    "query PlaybackAccessToken_Template($login: String!) { "
    "streamPlaybackAccessToken(channelName: $login, params: "
    '{platform: "web", playerBackend: "mediaplayer", playerType: "site"}) '
    "{ value signature } }"
)


def _after_clause(after: str | None) -> str:
    cursor = (after or "").strip()
    if not cursor:
        return ""
    return f", after: {json.dumps(cursor)}"


def _bounded(value: int, minimum: int, maximum: int) -> int:
    return max(minimum, min(int(value), maximum))


class TwitchClient:
    """Typed wrappers around the platform queries used by the gateway."""

    def __init__(self, gql: GraphQLClient, cache: TTLCache[Any]):
        self._gql = gql
        self._cache = cache

    # Videos -----------------------------------------------------------------

    async def fetch_game_videos(
        self,
        game_name: str,
        *,
        languages: list[str] | None = None,
        first: int = 18,
    ) -> list[Video]:
        """Return recent videos of a game, optionally limited to languages."""

        language_filter = f", languages: {json.dumps(languages)}" if languages else ""
        query = (
            f'query {{ game(name: "{gql_escape(game_name)}") {{ '
            f"videos(first: {int(first)}{language_filter}) {{ edges {{ node {{ {VIDEO_FIELDS} }} }} }} }} }}"
        )
        data = await self._gql.query(query, GameVideosData)
        if data.game is None or data.game.videos is None:
            return []
        return data.game.videos.videos()

    async def fetch_category_videos_page(
        self, game_name: str, *, first: int = 36, after: str | None = None
    ) -> VideoPage:
        safe_first = _bounded(first, 4, 50)
        query = (
            f'query {{ game(name: "{gql_escape(game_name)}") {{ '
            f"videos(first: {safe_first}{_after_clause(after)}) {{ "
            f"edges {{ cursor node {{ {VIDEO_FIELDS} }} }} pageInfo {{ hasNextPage }} }} }} }}"
        )
        try:
            data = await self._gql.query(query, GameVideosData)
        except UpstreamError as exc:
            logger.warning("Category video lookup failed for %s: %s", game_name, exc)
            return VideoPage()
        if data.game is None or data.game.videos is None:
            return VideoPage()

        connection = data.game.videos
        has_next = connection.page_info.has_next_page
        return VideoPage(
            items=connection.videos(),
            next_cursor=connection.last_cursor() if has_next else None,
            has_more=has_next,
        )

    async def fetch_videos_by_ids(self, video_ids: Iterable[str]) -> list[Video]:
        """Batch-fetch metadata for up to 30 numeric video ids."""

        safe_ids: list[str] = []
        for raw in video_ids:
            candidate = str(raw).strip()
            if candidate and NUMERIC_ID_RE.match(candidate) and candidate not in safe_ids:
                safe_ids.append(candidate)
            if len(safe_ids) >= MAX_METADATA_IDS:
                break
        if not safe_ids:
            return []

        body = " ".join(
            f'v{index}: video(id: "{video_id}") {{ {VIDEO_FIELDS} }}'
            for index, video_id in enumerate(safe_ids)
        )
        try:
            data = await self._gql.execute(f"query {{ {body} }}")
        except UpstreamError as exc:
            logger.warning("Watched video metadata lookup failed: %s", exc)
            return []

        return decode_videos(data.values())

    async def fetch_all_videos_by_ids(self, video_ids: Iterable[str]) -> list[Video]:
        """Fetch metadata for any number of ids, 30 per concurrent query."""

        unique = list(dict.fromkeys(str(raw).strip() for raw in video_ids))
        batches = [
            unique[start : start + MAX_METADATA_IDS]
            for start in range(0, len(unique), MAX_METADATA_IDS)
        ]
        results = await asyncio.gather(
            *(self.fetch_videos_by_ids(batch) for batch in batches)
        )
        return [video for batch in results for video in batch]

    async def fetch_manifest_video(self, vod_id: str) -> ManifestVideo:
        query = (
            f'query {{ video(id: "{gql_escape(vod_id)}") {{ '
            "broadcastType, createdAt, seekPreviewsURL, owner { login } } }"
        )
        data = await self._gql.query(query, ManifestVideoData)
        if data.video is None:
            raise NotFoundError("Video not found")
        return data.video

    async def fetch_video_chat(self, vod_id: str, offset: float = 0.0) -> ChatPage:
        query = (
            f'query {{ video(id: "{gql_escape(vod_id)}") {{ '
            f"comments(contentOffsetSeconds: {int(max(offset, 0.0))}) {{ edges {{ node {{ id, "
            "commenter { displayName, login, profileImageURL(width: 50) }, "
            "message { fragments { text, emote { id, setID } } }, "
            "contentOffsetSeconds, createdAt } }, pageInfo { hasNextPage } } } }"
        )
        data = await self._gql.query(query, ChatData)
        if data.video is None or data.video.comments is None:
            return ChatPage()
        comments = data.video.comments
        return ChatPage(
            messages=[edge.node for edge in comments.edges if edge.node is not None],
            has_next_page=comments.page_info.has_next_page,
        )

    async def fetch_video_markers(self, vod_id: str) -> list[dict[str, Any]]:
        query = (
            f'query {{ video(id: "{gql_escape(vod_id)}") {{ '
            "markers { id, displayTime, description, type } } }"
        )
        data = await self._gql.query(query, MarkersData)
        if data.video is None or data.video.markers is None:
            return []
        return data.video.markers

    # Users ------------------------------------------------------------------

    async def fetch_user_info(self, login: str) -> UserInfo:
        cache_key = f"user_{login}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        query = (
            f'query {{ user(login: "{gql_escape(login)}") {{ '
            "id, login, displayName, profileImageURL(width: 300) } }"
        )
        data = await self._gql.query(query, UserData)
        if data.user is None:
            raise NotFoundError("User not found")
        self._cache.set(cache_key, data.user, 3_600)
        return data.user

    async def fetch_user_videos(self, login: str) -> list[Video]:
        cache_key = f"vods_{login}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        query = (
            f'query {{ user(login: "{gql_escape(login)}") {{ '
            f"videos(first: 30) {{ edges {{ node {{ {VIDEO_FIELDS} }} }} }} }} }}"
        )
        data = await self._gql.query(query, UserVideosData)
        if data.user is None:
            raise NotFoundError("User not found")
        videos = data.user.videos.videos() if data.user.videos else []
        self._cache.set(cache_key, videos, 600)
        return videos

    async def fetch_user_live_stream(self, login: str) -> LiveStream | None:
        """Return the channel's current stream, or ``None`` when offline."""

        normalized = login.strip().lower()
        if not normalized:
            return None

        cache_key = f"live_user_{normalized}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached[0]

        query = (
            f'query {{ user(login: "{gql_escape(normalized)}") {{ {USER_STREAM_FIELDS} }} }}'
        )
        data = await self._gql.query(query, UserStreamData)
        user = data.user
        if user is None or user.stream is None:
            self._cache.set(cache_key, (None,), 25)
            return None

        live = user.stream.to_live_stream(broadcaster=user.broadcaster(normalized))
        self._cache.set(cache_key, (live,), 20)
        return live

    async def fetch_live_status(self, logins: Iterable[str]) -> dict[str, LiveStream]:
        """Look up many channels at once; failed or offline logins are omitted."""

        normalized: list[str] = []
        for raw in logins:
            login = raw.strip().lower()
            if login and LOGIN_RE.match(login) and login not in normalized:
                normalized.append(login)
            if len(normalized) >= MAX_STATUS_LOGINS:
                break
        if not normalized:
            return {}

        cache_key = f"live_status_{fingerprint(sorted(normalized))}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return dict(cached)

        results = await asyncio.gather(
            *(self.fetch_user_live_stream(login) for login in normalized),
            return_exceptions=True,
        )
        statuses: dict[str, LiveStream] = {}
        for login, result in zip(normalized, results):
            if isinstance(result, Exception):
                logger.debug("Live status lookup failed for %s: %s", login, result)
                continue
            if result is not None:
                statuses[login] = result

        self._cache.set(cache_key, dict(statuses), 18)
        return statuses

    async def search_channels(self, query_text: str) -> list[UserInfo]:
        query = (
            f'query {{ searchFor(userQuery: "{gql_escape(query_text)}", platform: "web") {{ '
            "channels { edges { item { ... on User { id, login, displayName, "
            "profileImageURL(width: 300) } } } } } }"
        )
        data = await self._gql.query(query, ChannelSearchData)
        if data.search_for is None or data.search_for.channels is None:
            return []
        return [
            edge.item
            for edge in data.search_for.channels.edges
            if edge.item is not None and edge.item.login
        ]

    async def search_global(self, query_text: str) -> list[dict[str, Any]]:
        """Return matching games followed by matching channels."""

        query = (
            f'query {{ searchFor(userQuery: "{gql_escape(query_text)}", platform: "web") {{ '
            "channels { edges { item { ... on User { id, login, displayName, "
            "profileImageURL(width: 300), stream { id title viewersCount "
            "previewImageURL(width: 640, height: 360) }, __typename } } } }, "
            "games { edges { item { ... on Game { id, name, "
            "boxArtURL(width: 150, height: 200), __typename } } } } } }"
        )
        data = await self._gql.query(query, GlobalSearchData)
        if data.search_for is None:
            return []
        games = data.search_for.games.items() if data.search_for.games else []
        channels = data.search_for.channels.items() if data.search_for.channels else []
        return games + channels

    # Live -------------------------------------------------------------------

    async def fetch_top_live_categories(self) -> list[LiveCategory]:
        cache_key = "top_live_categories"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        query = (
            "query { topGames(first: 5) { edges { node { id name "
            "boxArtURL(width: 80, height: 107) } } } }"
        )
        data = await self._gql.query(query, TopGamesData)
        categories: list[LiveCategory] = []
        if data.top_games is not None:
            for edge in data.top_games.edges:
                if edge.node is None:
                    continue
                categories.append(
                    LiveCategory(
                        id=edge.node.id,
                        name=edge.node.name,
                        box_art_url=edge.node.box_art_url,
                    )
                )
        self._cache.set(cache_key, categories, 120)
        return categories

    async def fetch_live_streams(
        self, *, first: int = 24, after: str | None = None
    ) -> LiveStreamsPage:
        safe_first = _bounded(first, 8, 48)
        safe_after = (after or "").strip()
        cache_key = f"live_streams_{safe_first}_{safe_after or 'first'}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        query = (
            f"query {{ streams(first: {safe_first}{_after_clause(safe_after)}) {{ "
            f"edges {{ cursor node {{ {STREAM_NODE_FIELDS} type "
            "game { id name boxArtURL(width: 110, height: 147) } "
            f"{BROADCASTER_FIELDS} }} }} pageInfo {{ hasNextPage }} }} }}"
        )
        data = await self._gql.query(query, StreamsData)
        page = self._streams_page(data.streams)
        self._cache.set(cache_key, page, 25)
        return page

    async def fetch_live_streams_by_category(
        self, category_name: str, *, first: int = 24, after: str | None = None
    ) -> LiveStreamsPage:
        safe_first = _bounded(first, 4, 48)
        safe_after = (after or "").strip()
        cache_key = (
            f"live_cat_{fingerprint([category_name])}_{safe_after or 'first'}_{safe_first}"
        )
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        query = (
            f'query {{ game(name: "{gql_escape(category_name)}") {{ '
            f"streams(first: {safe_first}{_after_clause(safe_after)}) {{ "
            f"edges {{ cursor node {{ {STREAM_NODE_FIELDS} {BROADCASTER_FIELDS} }} }} "
            "pageInfo { hasNextPage } } } }"
        )
        data = await self._gql.query(query, GameStreamsData)
        connection = data.game.streams if data.game is not None else None
        page = self._streams_page(connection, game=LiveGame(name=category_name))
        self._cache.set(cache_key, page, 25)
        return page

    async def search_live_streams(
        self, query_text: str, *, first: int = 24
    ) -> LiveStreamsPage:
        """Merge category streams and live channels matching ``query_text``."""

        safe_first = _bounded(first, 4, 48)
        cache_key = f"live_search_{fingerprint([query_text])}_{safe_first}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        escaped = gql_escape(query_text)
        category_query = (
            f'query {{ game(name: "{escaped}") {{ streams(first: {safe_first}) {{ '
            f"edges {{ cursor node {{ {STREAM_NODE_FIELDS} {BROADCASTER_FIELDS} }} }} "
            "pageInfo { hasNextPage } } } }"
        )
        channel_query = (
            f'query {{ searchFor(userQuery: "{escaped}", target: {{ index: "CHANNEL" }}, '
            f"first: {safe_first}) {{ results {{ item {{ ... on User {{ "
            f"{USER_STREAM_FIELDS} }} }} }} }} }}"
        )
        category_result, channel_result = await asyncio.gather(
            self._gql.query(category_query, GameStreamsData),
            self._gql.query(channel_query, LiveSearchData),
            return_exceptions=True,
        )

        items: list[LiveStream] = []
        seen: set[str] = set()

        if isinstance(category_result, GameStreamsData):
            game = LiveGame(name=query_text)
            connection = category_result.game.streams if category_result.game else None
            for stream in self._streams_page(connection, game=game).items:
                if stream.id and stream.id not in seen:
                    seen.add(stream.id)
                    items.append(stream)
        else:
            logger.warning("Live category search failed for %s: %s", query_text, category_result)

        if isinstance(channel_result, LiveSearchData):
            results = channel_result.search_for.results if channel_result.search_for else []
            for result in results:
                user = result.item
                if user is None or user.stream is None:
                    continue
                if not user.stream.id or user.stream.id in seen:
                    continue
                seen.add(user.stream.id)
                items.append(user.stream.to_live_stream(broadcaster=user.broadcaster()))
        else:
            logger.warning("Live channel search failed for %s: %s", query_text, channel_result)

        items.sort(key=lambda stream: stream.viewer_count, reverse=True)
        page = LiveStreamsPage(items=items, next_cursor=None, has_more=False)
        self._cache.set(cache_key, page, 30)
        return page

    async def fetch_playback_token(self, login: str) -> PlaybackAccessToken:
        """Request the signed grant needed to open a channel's live manifest."""

        normalized = login.strip().lower()
        if not normalized:
            raise ValidationError("Missing channel login")
        data = await self._gql.query(
            PLAYBACK_TOKEN_QUERY,
            PlaybackAccessTokenData,
            variables={"login": normalized},
            operation_name="PlaybackAccessToken_Template",
        )
        token = data.token
        if token is None or not token.value:
            raise UpstreamError("Missing token value")
        if not token.signature:
            raise UpstreamError("Missing token signature")
        return token

    @staticmethod
    def _streams_page(
        connection: StreamConnection | None, *, game: LiveGame | None = None
    ) -> LiveStreamsPage:
        if connection is None:
            return LiveStreamsPage()

        items: list[LiveStream] = []
        for edge in connection.edges:
            node = edge.node
            if node is None or node.broadcaster is None or not node.broadcaster.login:
                continue
            items.append(node.to_live_stream(game=game))

        has_next = connection.page_info.has_next_page
        last_cursor = connection.last_cursor()
        return LiveStreamsPage(
            items=items,
            next_cursor=last_cursor if has_next else None,
            has_more=has_next and last_cursor is not None,
        )
