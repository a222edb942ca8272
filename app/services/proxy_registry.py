"""Short-lived tokens standing in for sanitised upstream playlist URLs."""

from __future__ import annotations

import re
from urllib.parse import parse_qsl, urlsplit, urlunsplit

from ..cache import TTLCache
from ..errors import ValidationError
from ..tokens import TokenSource
from ..utils import percent_encode

ALLOWED_HOSTS = ("ttvnw.net", "twitch.tv", "jtvnw.net", "cloudfront.net")
ALLOWED_QUERY_PARAMS = frozenset(
    {
        "allow_source",
        "allow_audio_only",
        "fast_bread",
        "playlist_include_framerate",
        "player_backend",
        "player",
        "p",
        "sig",
        "token",
    }
)
TOKEN_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$"
)
PROXY_PATH = "/api/stream/variant.m3u8"
DEFAULT_TTL_SECONDS = 300


def _host_allowed(host: str) -> bool:
    return any(host == allowed or host.endswith(f".{allowed}") for allowed in ALLOWED_HOSTS)


def _path_allowed(path: str) -> bool:
    is_live_hls = "/api/channel/hls/" in path and path.endswith(".m3u8")
    return (
        is_live_hls
        or path.startswith("/vod/")
        or path.startswith("/chunked/")
        or path.endswith(".m3u8")
    )


def sanitize_target_url(target_url: str) -> str:
    """Validate ``target_url`` against the allow-list and strip its query.

    Raises :class:`ValidationError` for anything this gateway must not fetch.
    """

    try:
        parts = urlsplit(target_url.strip())
        host = (parts.hostname or "").lower()
    except ValueError as exc:
        raise ValidationError("Invalid URL") from exc

    if parts.scheme != "https":
        raise ValidationError("Only HTTPS URLs are allowed")
    if not host or not _host_allowed(host):
        raise ValidationError(f"Disallowed host: {host}")
    if not _path_allowed(parts.path.lower()):
        raise ValidationError("Disallowed target path")

    retained = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key in ALLOWED_QUERY_PARAMS
    ]
    query = "&".join(
        f"{percent_encode(key)}={percent_encode(value)}" for key, value in retained
    )
    return urlunsplit((parts.scheme, parts.netloc.lower(), parts.path, query, ""))


class VariantProxyRegistry:
    """Maps opaque tokens to validated upstream URLs for a limited time."""

    def __init__(
        self,
        cache: TTLCache[str],
        tokens: TokenSource,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ):
        self._cache = cache
        self._tokens = tokens
        self._ttl_seconds = ttl_seconds

    @staticmethod
    def _key(token: str) -> str:
        return f"variant_proxy_{token}"

    def register(self, target_url: str) -> str:
        sanitized = sanitize_target_url(target_url)
        token = self._tokens.proxy_token()
        self._cache.set(self._key(token), sanitized, self._ttl_seconds)
        return token

    def resolve(self, token: str) -> str:
        normalized = (token or "").strip()
        if not TOKEN_RE.match(normalized):
            raise ValidationError("Invalid variant proxy id")

        target = self._cache.get(self._key(normalized))
        if target is None:
            raise ValidationError("Variant proxy target not found or expired")
        return target

    @staticmethod
    def proxy_path(token: str) -> str:
        return f"{PROXY_PATH}?id={percent_encode(token)}"

    def register_proxy_path(self, target_url: str) -> str:
        """Register ``target_url`` and return the relay path clients should use."""

        return self.proxy_path(self.register(target_url))
