"""Typed views of the GraphQL responses the gateway relies on.

Each query gets its own ``*Data`` model describing the ``data`` object it
returns. Absent or ``null`` branches decode to ``None`` or empty collections.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from pydantic import Field
from pydantic import ValidationError as SchemaError

from ..models import (
    LiveBroadcaster,
    LiveGame,
    LiveStream,
    PayloadModel,
    UserInfo,
    Video,
)

logger = logging.getLogger(__name__)


class PageInfo(PayloadModel):
    has_next_page: bool = Field(default=False, alias="hasNextPage")


class GraphQLErrorItem(PayloadModel):
    message: str = ""


class GraphQLResponse(PayloadModel):
    data: dict[str, Any] | None = None
    errors: list[GraphQLErrorItem] = Field(default_factory=list)


# Videos ---------------------------------------------------------------------


def decode_videos(payloads: Iterable[Any]) -> list[Video]:
    """Validate each payload on its own, skipping the ones that do not decode."""

    videos: list[Video] = []
    for payload in payloads:
        if not isinstance(payload, dict):
            continue
        try:
            videos.append(Video.model_validate(payload))
        except SchemaError:
            logger.debug("Skipping undecodable video payload: %s", payload)
    return videos


class VideoEdge(PayloadModel):
    cursor: str | None = None
    node: dict[str, Any] | None = None


class VideoConnection(PayloadModel):
    edges: list[VideoEdge] = Field(default_factory=list)
    page_info: PageInfo = Field(default_factory=PageInfo, alias="pageInfo")

    def videos(self) -> list[Video]:
        return decode_videos(edge.node for edge in self.edges)

    def last_cursor(self) -> str | None:
        return self.edges[-1].cursor if self.edges else None


class GameVideos(PayloadModel):
    videos: VideoConnection | None = None


class GameVideosData(PayloadModel):
    game: GameVideos | None = None


class UserVideos(PayloadModel):
    videos: VideoConnection | None = None


class UserVideosData(PayloadModel):
    user: UserVideos | None = None


class ManifestOwner(PayloadModel):
    login: str | None = None


class ManifestVideo(PayloadModel):
    broadcast_type: str | None = Field(default=None, alias="broadcastType")
    created_at: str | None = Field(default=None, alias="createdAt")
    seek_previews_url: str | None = Field(default=None, alias="seekPreviewsURL")
    owner: ManifestOwner | None = None


class ManifestVideoData(PayloadModel):
    video: ManifestVideo | None = None


class ChatEdge(PayloadModel):
    node: dict[str, Any] | None = None


class ChatComments(PayloadModel):
    edges: list[ChatEdge] = Field(default_factory=list)
    page_info: PageInfo = Field(default_factory=PageInfo, alias="pageInfo")


class ChatVideo(PayloadModel):
    comments: ChatComments | None = None


class ChatData(PayloadModel):
    video: ChatVideo | None = None


class MarkersVideo(PayloadModel):
    markers: list[dict[str, Any]] | None = None


class MarkersData(PayloadModel):
    video: MarkersVideo | None = None


# Live -----------------------------------------------------------------------


class StreamNode(PayloadModel):
    """A stream as embedded in ``streams``/``game.streams`` connections."""

    id: str = ""
    title: str = "Live stream"
    viewers_count: int = Field(default=0, alias="viewersCount")
    preview_image_url: str = Field(default="", alias="previewImageURL")
    created_at: str = Field(default="", alias="createdAt")
    language: str | None = None
    game: LiveGame | None = None
    broadcaster: LiveBroadcaster | None = None

    def to_live_stream(
        self,
        broadcaster: LiveBroadcaster | None = None,
        game: LiveGame | None = None,
    ) -> LiveStream:
        return LiveStream(
            id=self.id,
            title=self.title,
            preview_image_url=self.preview_image_url,
            viewer_count=self.viewers_count,
            language=self.language,
            started_at=self.created_at,
            broadcaster=broadcaster or self.broadcaster or LiveBroadcaster(),
            game=game or self.game,
        )


class StreamEdge(PayloadModel):
    cursor: str | None = None
    node: StreamNode | None = None


class StreamConnection(PayloadModel):
    edges: list[StreamEdge] = Field(default_factory=list)
    page_info: PageInfo = Field(default_factory=PageInfo, alias="pageInfo")

    def last_cursor(self) -> str | None:
        return self.edges[-1].cursor if self.edges else None


class StreamsData(PayloadModel):
    streams: StreamConnection | None = None


class GameStreams(PayloadModel):
    streams: StreamConnection | None = None


class GameStreamsData(PayloadModel):
    game: GameStreams | None = None


class UserWithStream(PayloadModel):
    id: str = ""
    login: str = ""
    display_name: str = Field(default="", alias="displayName")
    profile_image_url: str = Field(default="", alias="profileImageURL")
    stream: StreamNode | None = None

    def broadcaster(self, fallback_login: str = "") -> LiveBroadcaster:
        login = self.login or fallback_login
        return LiveBroadcaster(
            id=self.id,
            login=login,
            display_name=self.display_name or login,
            profile_image_url=self.profile_image_url,
        )


class UserStreamData(PayloadModel):
    user: UserWithStream | None = None


class SearchResult(PayloadModel):
    item: UserWithStream | None = None


class SearchResults(PayloadModel):
    results: list[SearchResult] = Field(default_factory=list)


class LiveSearchData(PayloadModel):
    search_for: SearchResults | None = Field(default=None, alias="searchFor")


class PlaybackAccessToken(PayloadModel):
    value: str | None = None
    signature: str | None = None


class PlaybackAccessTokenData(PayloadModel):
    token: PlaybackAccessToken | None = Field(
        default=None, alias="streamPlaybackAccessToken"
    )


class TopGameNode(PayloadModel):
    id: str = ""
    name: str = ""
    box_art_url: str = Field(default="", alias="boxArtURL")


class TopGameEdge(PayloadModel):
    node: TopGameNode | None = None


class TopGames(PayloadModel):
    edges: list[TopGameEdge] = Field(default_factory=list)


class TopGamesData(PayloadModel):
    top_games: TopGames | None = Field(default=None, alias="topGames")


# Users and search -----------------------------------------------------------


class UserData(PayloadModel):
    user: UserInfo | None = None


class ChannelEdge(PayloadModel):
    item: UserInfo | None = None


class ChannelConnection(PayloadModel):
    edges: list[ChannelEdge] = Field(default_factory=list)


class ChannelSearch(PayloadModel):
    channels: ChannelConnection | None = None


class ChannelSearchData(PayloadModel):
    search_for: ChannelSearch | None = Field(default=None, alias="searchFor")


class RawEdge(PayloadModel):
    item: dict[str, Any] | None = None


class RawConnection(PayloadModel):
    edges: list[RawEdge] = Field(default_factory=list)

    def items(self) -> list[dict[str, Any]]:
        return [edge.item for edge in self.edges if edge.item is not None]


class GlobalSearch(PayloadModel):
    channels: RawConnection | None = None
    games: RawConnection | None = None


class GlobalSearchData(PayloadModel):
    search_for: GlobalSearch | None = Field(default=None, alias="searchFor")
