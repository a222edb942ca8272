"""Pydantic models describing gateway payloads."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PayloadModel(BaseModel):
    """Base model using the platform's camelCase names on the wire.

    ``null`` values from upstream fall back to the field default instead of
    failing validation.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class VideoGame(PayloadModel):
    name: str = ""


class VideoOwner(PayloadModel):
    login: str = ""
    display_name: str = Field(default="", alias="displayName")
    profile_image_url: str = Field(default="", alias="profileImageURL")


class Video(PayloadModel):
    """Snapshot of an on-demand video as reported by the platform."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str
    title: str = ""
    length_seconds: int = Field(default=0, alias="lengthSeconds")
    preview_thumbnail_url: str = Field(default="", alias="previewThumbnailURL")
    created_at: str = Field(default="", alias="createdAt")
    view_count: int = Field(default=0, alias="viewCount")
    language: str | None = None
    game: VideoGame | None = None
    owner: VideoOwner | None = None

    @property
    def owner_login(self) -> str:
        return (self.owner.login if self.owner else "").lower()

    @property
    def game_name(self) -> str:
        return self.game.name if self.game else ""


class VideoPage(PayloadModel):
    items: list[Video] = Field(default_factory=list)
    next_cursor: str | None = Field(default=None, alias="nextCursor")
    has_more: bool = Field(default=False, alias="hasMore")


class LiveGame(PayloadModel):
    id: str | None = None
    name: str = ""
    box_art_url: str | None = Field(default=None, alias="boxArtURL")


class LiveBroadcaster(PayloadModel):
    id: str = ""
    login: str = ""
    display_name: str = Field(default="", alias="displayName")
    profile_image_url: str = Field(default="", alias="profileImageURL")


class LiveStream(PayloadModel):
    id: str = ""
    title: str = "Live stream"
    preview_image_url: str = Field(default="", alias="previewImageURL")
    viewer_count: int = Field(default=0, alias="viewerCount")
    language: str | None = None
    started_at: str = Field(default="", alias="startedAt")
    broadcaster: LiveBroadcaster = Field(default_factory=LiveBroadcaster)
    game: LiveGame | None = None


class LiveStreamsPage(PayloadModel):
    items: list[LiveStream] = Field(default_factory=list)
    next_cursor: str | None = Field(default=None, alias="nextCursor")
    has_more: bool = Field(default=False, alias="hasMore")


class LiveCategory(PayloadModel):
    id: str = ""
    name: str = ""
    box_art_url: str = Field(default="", alias="boxArtURL")


class UserInfo(PayloadModel):
    id: str = ""
    login: str = ""
    display_name: str = Field(default="", alias="displayName")
    profile_image_url: str = Field(default="", alias="profileImageURL")


class ChatPage(PayloadModel):
    messages: list[dict[str, Any]] = Field(default_factory=list)
    has_next_page: bool = Field(default=False, alias="hasNextPage")


class HistoryEntry(PayloadModel):
    """Playback position recorded for a single video."""

    vod_id: str = Field(alias="vodId")
    timecode: float = 0.0
    duration: float = 0.0
    updated_at: int = Field(default=0, alias="updatedAt")


class HistoryListItem(HistoryEntry):
    vod: Video | None = None


class HistoryUpdate(PayloadModel):
    vod_id: str | None = Field(default=None, alias="vodId")
    timecode: float | None = None
    duration: float | None = None


class WatchlistEntry(PayloadModel):
    vod_id: str = Field(alias="vodId")
    title: str = ""
    preview_thumbnail_url: str = Field(default="", alias="previewThumbnailURL")
    length_seconds: int = Field(default=0, alias="lengthSeconds")
    added_at: int = Field(default=0, alias="addedAt")


class SubEntry(PayloadModel):
    login: str = ""
    display_name: str = Field(default="", alias="displayName")
    profile_image_url: str = Field(default="", alias="profileImageURL")


class ExperienceSettings(PayloadModel):
    one_sync: bool = Field(default=False, alias="oneSync")


class SettingsPatch(PayloadModel):
    one_sync: bool | None = Field(default=None, alias="oneSync")
