"""Master playlist reconstruction for on-demand videos."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable

import httpx

from ..errors import UpstreamError, ValidationError
from ..tokens import TokenSource
from ..utils import days_since
from .proxy_registry import VariantProxyRegistry
from .twitch import TwitchClient

logger = logging.getLogger(__name__)

VOD_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
AVC_CODEC = "avc1.4D001E"
HEVC_CODEC = "hev1.1.6.L93.B0"
START_BANDWIDTH = 8_534_030
BANDWIDTH_STEP = 100
UPLOAD_OWNER_PATH_AFTER_DAYS = 7


@dataclass(frozen=True, slots=True)
class Resolution:
    key: str
    width: int
    height: int
    fps: int

    @property
    def size(self) -> str:
        return f"{self.width}x{self.height}"

    @property
    def quality(self) -> str:
        return f"{self.height}p" if self.key == "chunked" else self.key

    @property
    def is_default(self) -> bool:
        return self.key == "chunked"


RESOLUTIONS: tuple[Resolution, ...] = (
    Resolution("chunked", 1920, 1080, 60),
    Resolution("1080p60", 1920, 1080, 60),
    Resolution("720p60", 1280, 720, 60),
    Resolution("480p30", 854, 480, 30),
    Resolution("360p30", 640, 360, 30),
    Resolution("160p30", 284, 160, 30),
)


@dataclass(frozen=True, slots=True)
class VodUrlInfo:
    domain: str
    special_id: str


def parse_vod_url_info(seek_previews_url: str) -> VodUrlInfo:
    """Extract the CDN domain and the path segment preceding ``storyboards``."""

    _, separator, remainder = seek_previews_url.partition("//")
    if not separator:
        raise UpstreamError("Failed to parse seekPreviewsURL: missing scheme")

    domain, _, path = remainder.partition("/")
    segments = path.split("/")
    index = next(
        (position for position, segment in enumerate(segments) if "storyboards" in segment),
        -1,
    )
    if index == -1:
        raise UpstreamError("Failed to parse seekPreviewsURL: cannot find storyboards")
    if index == 0 or not segments[index - 1]:
        raise UpstreamError("Failed to parse seekPreviewsURL: cannot extract special id")
    return VodUrlInfo(domain=domain, special_id=segments[index - 1])


def build_stream_url(
    info: VodUrlInfo,
    resolution_key: str,
    vod_id: str,
    broadcast_type: str,
    age_days: float,
    owner_login: str,
) -> str:
    if broadcast_type == "highlight":
        return f"https://{info.domain}/{info.special_id}/{resolution_key}/highlight-{vod_id}.m3u8"
    if broadcast_type == "upload" and age_days > UPLOAD_OWNER_PATH_AFTER_DAYS:
        return (
            f"https://{info.domain}/{owner_login}/{vod_id}/{info.special_id}"
            f"/{resolution_key}/index-dvr.m3u8"
        )
    return f"https://{info.domain}/{info.special_id}/{resolution_key}/index-dvr.m3u8"


def twitch_info_line(serving_id: str) -> str:
    return (
        '#EXT-X-TWITCH-INFO:ORIGIN="s3",B="false",REGION="EU",USER-IP="127.0.0.1",'
        f'SERVING-ID="{serving_id}",CLUSTER="cloudfront_vod",USER-COUNTRY="BE",'
        'MANIFEST-CLUSTER="cloudfront_vod"'
    )


def variant_lines(resolution: Resolution, codec: str, bandwidth: int, uri: str) -> list[str]:
    enabled = "YES" if resolution.is_default else "NO"
    quality = resolution.quality
    return [
        f'#EXT-X-MEDIA:TYPE=VIDEO,GROUP-ID="{quality}",NAME="{quality}",'
        f"AUTOSELECT={enabled},DEFAULT={enabled}",
        f'#EXT-X-STREAM-INF:BANDWIDTH={bandwidth},CODECS="{codec},mp4a.40.2",'
        f'RESOLUTION={resolution.size},VIDEO="{quality}",FRAME-RATE={resolution.fps}',
        uri,
    ]


class VodManifestGenerator:
    """Builds a master playlist by probing which renditions exist on the CDN."""

    def __init__(
        self,
        twitch: TwitchClient,
        registry: VariantProxyRegistry,
        http_client: httpx.AsyncClient,
        tokens: TokenSource,
        *,
        probe_timeout: float = 5.0,
        clock: Callable[[], float] = time.time,
    ):
        self._twitch = twitch
        self._registry = registry
        self._client = http_client
        self._tokens = tokens
        self._probe_timeout = probe_timeout
        self._clock = clock

    async def generate(self, vod_id: str) -> str:
        if not VOD_ID_RE.match(vod_id or ""):
            raise ValidationError("Invalid VOD id")

        logger.info("Generating master playlist for VOD %s", vod_id)
        video = await self._twitch.fetch_manifest_video(vod_id)
        owner_login = video.owner.login if video.owner else None
        if not video.seek_previews_url or not owner_login:
            raise UpstreamError("Invalid VOD data (missing owner or seekPreviewsURL)")

        info = parse_vod_url_info(video.seek_previews_url)
        broadcast_type = (video.broadcast_type or "archive").lower()
        age_days = days_since(video.created_at or "", self._clock())

        lines = ["#EXTM3U", twitch_info_line(self._tokens.serving_id())]
        bandwidth = START_BANDWIDTH
        for resolution in RESOLUTIONS:
            stream_url = build_stream_url(
                info, resolution.key, vod_id, broadcast_type, age_days, owner_login
            )
            codec = await self.probe(stream_url)
            if codec is None:
                continue
            try:
                proxy_path = self._registry.register_proxy_path(stream_url)
            except ValidationError as exc:
                logger.warning("Skipping %s variant of %s: %s", resolution.key, vod_id, exc)
                continue
            lines.extend(variant_lines(resolution, codec, bandwidth, proxy_path))
            bandwidth -= BANDWIDTH_STEP

        return "\n".join(lines)

    async def probe(self, url: str) -> str | None:
        """Return the codec string for ``url`` or ``None`` when unavailable.

        The playlist and its init segment each get their own timeout. An init
        segment that cannot be fetched in time still counts as HEVC.
        """

        try:
            response = await asyncio.wait_for(self._client.get(url), self._probe_timeout)
        except asyncio.TimeoutError:
            logger.debug("Quality check timed out for %s", url)
            return None
        except httpx.HTTPError as exc:
            logger.debug("Quality check failed for %s: %s", url, exc)
            return None
        if not response.is_success:
            return None

        body = response.text
        if ".ts" in body:
            return AVC_CODEC
        if ".mp4" not in body:
            return None
        return await self._detect_fmp4_codec(url.replace("index-dvr.m3u8", "init-0.mp4"))

    async def _detect_fmp4_codec(self, init_url: str) -> str:
        try:
            init_response = await asyncio.wait_for(
                self._client.get(init_url), self._probe_timeout
            )
        except asyncio.TimeoutError:
            logger.debug("Init segment fetch timed out for %s", init_url)
            return HEVC_CODEC
        except httpx.HTTPError as exc:
            logger.debug("Init segment fetch failed for %s: %s", init_url, exc)
            return HEVC_CODEC
        return HEVC_CODEC if "hev1" in init_response.text else AVC_CODEC
