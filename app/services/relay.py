"""Relay of media playlists behind proxy tokens."""

from __future__ import annotations

import logging

import httpx

from ..errors import UpstreamError
from .playlist import base_directory, is_absolute_url, rewrite_playlist
from .proxy_registry import VariantProxyRegistry

logger = logging.getLogger(__name__)

# Segment names the platform swaps in for muted stretches.
UNMUTED_MARKER = "-unmuted"
MUTED_MARKER = "-muted"


def rewrite_media_playlist(body: str, target_url: str) -> str:
    """Make every relative reference in ``body`` absolute against ``target_url``."""

    base = base_directory(target_url)
    body = body.replace(UNMUTED_MARKER, MUTED_MARKER)
    return rewrite_playlist(
        body, lambda uri: uri if is_absolute_url(uri) else f"{base}{uri}"
    )


class VariantRelay:
    def __init__(self, registry: VariantProxyRegistry, http_client: httpx.AsyncClient):
        self._registry = registry
        self._client = http_client

    async def relay(self, token: str) -> str:
        target_url = self._registry.resolve(token)
        logger.debug("Relaying variant playlist %s", target_url)

        try:
            response = await self._client.get(target_url)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Variant playlist request failed: {exc}") from exc
        if not response.is_success:
            raise UpstreamError(f"Upstream HTTP {response.status_code}")

        return rewrite_media_playlist(response.text, target_url)
