"""VOD master playlist generation tests."""

from __future__ import annotations

import asyncio
import json
import random
import re

import httpx
import pytest

from app.cache import TTLCache
from app.config import Settings
from app.errors import NotFoundError, UpstreamError, ValidationError
from app.services.gql import GraphQLClient
from app.services.proxy_registry import VariantProxyRegistry
from app.services.twitch import TwitchClient
from app.services.vod_manifest import (
    VodManifestGenerator,
    VodUrlInfo,
    build_stream_url,
    parse_vod_url_info,
)
from app.tokens import TokenSource
from app.utils import parse_iso8601

SEEK_PREVIEWS = "https://d2example.cloudfront.net/abc123/storyboards/998-info.json"
NOW = parse_iso8601("2024-01-20T00:00:00Z")


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def gql_transport(video: dict | None) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert "seekPreviewsURL" in body["query"]
        return httpx.Response(200, json={"data": {"video": video}})

    return httpx.MockTransport(handler)


def cdn_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/abc123/chunked/index-dvr.m3u8":
        return httpx.Response(200, text="#EXTM3U\n#EXTINF:10,\n0.ts\n")
    if path == "/abc123/720p60/index-dvr.m3u8":
        return httpx.Response(200, text="#EXTM3U\n#EXT-X-MAP:URI=\"init-0.mp4\"\n0.mp4\n")
    if path == "/abc123/720p60/init-0.mp4":
        return httpx.Response(200, content=b"\x00\x00ftyp....hev1....")
    if path == "/abc123/480p30/index-dvr.m3u8":
        return httpx.Response(200, text="#EXTM3U\n0.mp4\n")
    return httpx.Response(403)


def build_generator(
    gql_http: httpx.AsyncClient,
    cdn_http: httpx.AsyncClient,
    *,
    probe_timeout: float = 5.0,
) -> tuple[VodManifestGenerator, VariantProxyRegistry]:
    cache: TTLCache = TTLCache()
    tokens = TokenSource(random.Random(3))
    twitch = TwitchClient(GraphQLClient(Settings(_env_file=None), gql_http), cache)
    registry = VariantProxyRegistry(cache, tokens)
    generator = VodManifestGenerator(
        twitch,
        registry,
        cdn_http,
        tokens,
        probe_timeout=probe_timeout,
        clock=lambda: NOW,
    )
    return generator, registry


def test_parse_vod_url_info_extracts_domain_and_special_id() -> None:
    info = parse_vod_url_info(SEEK_PREVIEWS)

    assert info == VodUrlInfo(domain="d2example.cloudfront.net", special_id="abc123")


@pytest.mark.parametrize(
    "url",
    [
        "d2example.cloudfront.net/abc123/storyboards/x.json",
        "https://d2example.cloudfront.net/abc123/thumbs/x.json",
        "https://d2example.cloudfront.net/storyboards/x.json",
        "https://d2example.cloudfront.net//storyboards/x.json",
    ],
)
def test_parse_vod_url_info_rejects_unexpected_shapes(url: str) -> None:
    with pytest.raises(UpstreamError):
        parse_vod_url_info(url)


def test_build_stream_url_variants() -> None:
    info = VodUrlInfo(domain="cdn.cloudfront.net", special_id="sp")

    assert build_stream_url(info, "720p60", "42", "highlight", 1, "owner") == (
        "https://cdn.cloudfront.net/sp/720p60/highlight-42.m3u8"
    )
    assert build_stream_url(info, "720p60", "42", "upload", 8, "owner") == (
        "https://cdn.cloudfront.net/owner/42/sp/720p60/index-dvr.m3u8"
    )
    assert build_stream_url(info, "720p60", "42", "upload", 7, "owner") == (
        "https://cdn.cloudfront.net/sp/720p60/index-dvr.m3u8"
    )
    assert build_stream_url(info, "chunked", "42", "archive", 30, "owner") == (
        "https://cdn.cloudfront.net/sp/chunked/index-dvr.m3u8"
    )


@pytest.mark.anyio("asyncio")
async def test_generate_lists_available_variants_with_decreasing_bandwidth() -> None:
    video = {
        "broadcastType": "ARCHIVE",
        "createdAt": "2024-01-18T10:00:00Z",
        "seekPreviewsURL": SEEK_PREVIEWS,
        "owner": {"login": "someone"},
    }
    async with httpx.AsyncClient(transport=gql_transport(video)) as gql_http, httpx.AsyncClient(
        transport=httpx.MockTransport(cdn_handler)
    ) as cdn_http:
        generator, registry = build_generator(gql_http, cdn_http)
        playlist = await generator.generate("123456")

    lines = playlist.split("\n")
    assert lines[0] == "#EXTM3U"
    assert re.search(r'SERVING-ID="[0-9a-f]{32}"', lines[1])

    stream_infs = [line for line in lines if line.startswith("#EXT-X-STREAM-INF")]
    bandwidths = [int(re.search(r"BANDWIDTH=(\d+)", line).group(1)) for line in stream_infs]
    assert bandwidths == [8_534_030, 8_533_930, 8_533_830]

    assert 'CODECS="avc1.4D001E,mp4a.40.2",RESOLUTION=1920x1080,VIDEO="1080p",FRAME-RATE=60' in stream_infs[0]
    assert 'CODECS="hev1.1.6.L93.B0,mp4a.40.2",RESOLUTION=1280x720' in stream_infs[1]
    # Forbidden init segment still answers, and its body carries no hev1 marker.
    assert 'CODECS="avc1.4D001E,mp4a.40.2",RESOLUTION=854x480' in stream_infs[2]

    media = [line for line in lines if line.startswith("#EXT-X-MEDIA")]
    assert media[0].endswith('GROUP-ID="1080p",NAME="1080p",AUTOSELECT=YES,DEFAULT=YES')
    assert media[1].endswith('GROUP-ID="720p60",NAME="720p60",AUTOSELECT=NO,DEFAULT=NO')

    proxies = [line for line in lines if line.startswith("/api/stream/variant.m3u8?id=")]
    assert len(proxies) == 3
    token = proxies[1].split("id=", 1)[1]
    assert registry.resolve(token) == (
        "https://d2example.cloudfront.net/abc123/720p60/index-dvr.m3u8"
    )


@pytest.mark.anyio("asyncio")
async def test_generate_with_no_available_variant_is_still_a_playlist() -> None:
    video = {
        "broadcastType": "archive",
        "createdAt": "2024-01-18T10:00:00Z",
        "seekPreviewsURL": SEEK_PREVIEWS,
        "owner": {"login": "someone"},
    }

    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    async with httpx.AsyncClient(transport=gql_transport(video)) as gql_http, httpx.AsyncClient(
        transport=httpx.MockTransport(unreachable)
    ) as cdn_http:
        generator, _ = build_generator(gql_http, cdn_http)
        playlist = await generator.generate("123456")

    assert playlist.split("\n")[0] == "#EXTM3U"
    assert "#EXT-X-STREAM-INF" not in playlist


@pytest.mark.anyio("asyncio")
async def test_slow_probe_counts_as_unavailable() -> None:
    async def slow(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(1)
        return httpx.Response(200, text="0.ts")

    async with httpx.AsyncClient(transport=gql_transport(None)) as gql_http, httpx.AsyncClient(
        transport=httpx.MockTransport(slow)
    ) as cdn_http:
        generator, _ = build_generator(gql_http, cdn_http, probe_timeout=0.01)
        codec = await generator.probe("https://d2example.cloudfront.net/abc123/chunked/index-dvr.m3u8")

    assert codec is None


@pytest.mark.anyio("asyncio")
async def test_slow_init_segment_defaults_to_hevc() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("init-0.mp4"):
            await asyncio.sleep(0.3)
            return httpx.Response(200, content=b"avc1")
        await asyncio.sleep(0.15)
        return httpx.Response(200, text="#EXTM3U\n0.mp4\n")

    async with httpx.AsyncClient(transport=gql_transport(None)) as gql_http, httpx.AsyncClient(
        transport=httpx.MockTransport(handler)
    ) as cdn_http:
        generator, _ = build_generator(gql_http, cdn_http, probe_timeout=0.2)
        codec = await generator.probe("https://d2example.cloudfront.net/abc123/720p60/index-dvr.m3u8")

    assert codec == "hev1.1.6.L93.B0"


@pytest.mark.anyio("asyncio")
async def test_unreachable_init_segment_defaults_to_hevc() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("init-0.mp4"):
            raise httpx.ConnectError("reset", request=request)
        return httpx.Response(200, text="#EXTM3U\n0.mp4\n")

    async with httpx.AsyncClient(transport=gql_transport(None)) as gql_http, httpx.AsyncClient(
        transport=httpx.MockTransport(handler)
    ) as cdn_http:
        generator, _ = build_generator(gql_http, cdn_http)
        codec = await generator.probe("https://d2example.cloudfront.net/abc123/720p60/index-dvr.m3u8")

    assert codec == "hev1.1.6.L93.B0"


@pytest.mark.anyio("asyncio")
async def test_generate_rejects_invalid_id_and_missing_video() -> None:
    async with httpx.AsyncClient(transport=gql_transport(None)) as gql_http, httpx.AsyncClient(
        transport=httpx.MockTransport(cdn_handler)
    ) as cdn_http:
        generator, _ = build_generator(gql_http, cdn_http)

        with pytest.raises(ValidationError):
            await generator.generate("../etc/passwd")
        with pytest.raises(NotFoundError):
            await generator.generate("123456")
