"""Live channel master playlists routed through the variant proxy."""

from __future__ import annotations

import logging

import httpx

from ..errors import UpstreamError, ValidationError
from ..tokens import TokenSource
from ..utils import percent_encode
from .playlist import make_absolute_url, rewrite_playlist
from .proxy_registry import VariantProxyRegistry
from .twitch import TwitchClient

logger = logging.getLogger(__name__)

PLAYER_PARAMS = (
    ("allow_source", "true"),
    ("allow_audio_only", "true"),
    ("fast_bread", "true"),
    ("playlist_include_framerate", "true"),
    ("player_backend", "mediaplayer"),
    ("player", "twitchweb"),
)


class LiveManifestGenerator:
    def __init__(
        self,
        twitch: TwitchClient,
        registry: VariantProxyRegistry,
        http_client: httpx.AsyncClient,
        tokens: TokenSource,
        *,
        hls_base_url: str = "https://usher.ttvnw.net/api/channel/hls",
    ):
        self._twitch = twitch
        self._registry = registry
        self._client = http_client
        self._tokens = tokens
        self._hls_base_url = hls_base_url.rstrip("/")

    def build_source_url(self, login: str, value: str, signature: str) -> str:
        params = [
            *PLAYER_PARAMS,
            ("p", str(self._tokens.cache_buster())),
            ("sig", signature),
            ("token", value),
        ]
        query = "&".join(f"{key}={percent_encode(item)}" for key, item in params)
        return f"{self._hls_base_url}/{percent_encode(login)}.m3u8?{query}"

    async def generate(self, login: str) -> str:
        normalized = (login or "").strip().lower()
        if not normalized:
            raise ValidationError("Missing channel login")

        token = await self._twitch.fetch_playback_token(normalized)
        source_url = self.build_source_url(normalized, token.value or "", token.signature or "")

        try:
            response = await self._client.get(source_url)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Live manifest request failed: {exc}") from exc
        if not response.is_success:
            raise UpstreamError(f"Upstream returned HTTP {response.status_code}")

        return rewrite_playlist(
            response.text, lambda uri: self._proxy_reference(uri, source_url)
        )

    def _proxy_reference(self, uri: str, source_url: str) -> str:
        absolute = make_absolute_url(uri, source_url)
        try:
            return self._registry.register_proxy_path(absolute)
        except ValidationError as exc:
            logger.debug("Leaving %s unproxied: %s", absolute, exc)
            return absolute
