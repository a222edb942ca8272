"""Wiring of the gateway services shared by every request."""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .cache import TTLCache
from .config import Settings
from .services.gql import GraphQLClient
from .services.live_manifest import LiveManifestGenerator
from .services.proxy_registry import VariantProxyRegistry
from .services.recommendations import RecommendationEngine
from .services.relay import VariantRelay
from .services.twitch import TwitchClient
from .services.vod_manifest import VodManifestGenerator
from .store import LocalStore
from .tokens import TokenSource


@dataclass(slots=True)
class Gateway:
    twitch: TwitchClient
    registry: VariantProxyRegistry
    vod_manifests: VodManifestGenerator
    live_manifests: LiveManifestGenerator
    relay: VariantRelay
    recommendations: RecommendationEngine
    store: LocalStore


def build_gateway(
    settings: Settings,
    gql_http: httpx.AsyncClient,
    media_http: httpx.AsyncClient,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    cache: TTLCache | None = None,
    tokens: TokenSource | None = None,
) -> Gateway:
    """Assemble the services around one cache and one random source.

    ``gql_http`` talks to the platform API; ``media_http`` fetches playlists
    from the CDN and the live HLS endpoint.
    """

    cache = cache if cache is not None else TTLCache()
    tokens = tokens if tokens is not None else TokenSource()

    twitch = TwitchClient(GraphQLClient(settings, gql_http), cache)
    registry = VariantProxyRegistry(
        cache, tokens, ttl_seconds=settings.variant_proxy_ttl_seconds
    )
    return Gateway(
        twitch=twitch,
        registry=registry,
        vod_manifests=VodManifestGenerator(
            twitch,
            registry,
            media_http,
            tokens,
            probe_timeout=settings.probe_timeout_seconds,
        ),
        live_manifests=LiveManifestGenerator(
            twitch,
            registry,
            media_http,
            tokens,
            hls_base_url=settings.usher_hls_base,
        ),
        relay=VariantRelay(registry, media_http),
        recommendations=RecommendationEngine(
            twitch, cache, cache_ttl_seconds=settings.trends_cache_seconds
        ),
        store=LocalStore(session_factory),
    )
