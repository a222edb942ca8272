"""Entry point for the FastAPI-powered NoSubVOD gateway."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from .config import settings
from .database import Database
from .errors import GatewayError, ValidationError
from .gateway import Gateway, build_gateway
from .models import (
    HistoryListItem,
    HistoryUpdate,
    SettingsPatch,
    SubEntry,
    VideoPage,
    WatchlistEntry,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

M3U8_MEDIA_TYPE = "application/vnd.apple.mpegurl"

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    timeout = httpx.Timeout(settings.upstream_timeout_seconds, connect=10.0)
    gql_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=timeout)
    )
    media_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": settings.user_agent},
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    fastapi_app.state.gateway = build_gateway(
        settings, gql_http, media_http, database.session_factory
    )
    fastapi_app.state.database = database
    logger.info(
        "%s listening on %s:%s", settings.app_name, settings.server_host, settings.server_port
    )

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Playback gateway for on-demand and live videos",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_gateway(app: FastAPI) -> Gateway:
    gateway = getattr(app.state, "gateway", None)
    if not isinstance(gateway, Gateway):
        raise RuntimeError("Gateway services not initialised")
    return gateway


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.exception_handler(GatewayError)
    async def gateway_error_handler(_: Request, exc: GatewayError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("Request failed: %s", exc)
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code)

    def _m3u8(body: str) -> Response:
        return Response(content=body, media_type=M3U8_MEDIA_TYPE)

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    # Videos -----------------------------------------------------------------

    @fastapi_app.get("/api/vod/{vod_id}/chat")
    async def vod_chat(vod_id: str, offset: str | None = None) -> dict[str, Any]:
        gateway = get_gateway(fastapi_app)
        chat = await gateway.twitch.fetch_video_chat(vod_id, _coerce_float(offset))
        return chat.to_payload()

    @fastapi_app.get("/api/vod/{vod_id}/markers")
    async def vod_markers(vod_id: str) -> list[dict[str, Any]]:
        return await get_gateway(fastapi_app).twitch.fetch_video_markers(vod_id)

    @fastapi_app.get("/api/vod/{vod_id}/master.m3u8")
    async def vod_master(vod_id: str) -> Response:
        gateway = get_gateway(fastapi_app)
        return _m3u8(await gateway.vod_manifests.generate(vod_id))

    @fastapi_app.get("/api/live/{login}/master.m3u8")
    async def live_master(login: str) -> Response:
        gateway = get_gateway(fastapi_app)
        return _m3u8(await gateway.live_manifests.generate(login))

    @fastapi_app.get("/api/stream/variant.m3u8")
    async def variant_playlist(
        proxy_id: str | None = Query(default=None, alias="id")
    ) -> Response:
        if not proxy_id:
            raise ValidationError("Missing id parameter")
        gateway = get_gateway(fastapi_app)
        return _m3u8(await gateway.relay.relay(proxy_id))

    # Feeds ------------------------------------------------------------------

    @fastapi_app.get("/api/trends")
    async def trends() -> list[dict[str, Any]]:
        gateway = get_gateway(fastapi_app)
        history = await gateway.store.get_all_history()
        subs = await gateway.store.get_subs()
        feed = await gateway.recommendations.trending(history.values(), subs)
        return [video.to_payload() for video in feed]

    @fastapi_app.get("/api/live")
    async def live(limit: str | None = None, cursor: str | None = None) -> dict[str, Any]:
        gateway = get_gateway(fastapi_app)
        page = await gateway.twitch.fetch_live_streams(
            first=_parse_limit(limit, default=24, minimum=8, maximum=48),
            after=_clean(cursor),
        )
        return page.to_payload()

    @fastapi_app.get("/api/live/top-categories")
    async def live_top_categories() -> list[dict[str, Any]]:
        categories = await get_gateway(fastapi_app).twitch.fetch_top_live_categories()
        return [category.to_payload() for category in categories]

    @fastapi_app.get("/api/live/category")
    async def live_category(
        name: str | None = None, cursor: str | None = None, limit: str | None = None
    ) -> dict[str, Any]:
        category = _clean(name)
        if not category:
            raise ValidationError("Missing category name")
        gateway = get_gateway(fastapi_app)
        page = await gateway.twitch.fetch_live_streams_by_category(
            category,
            first=_parse_limit(limit, default=24, minimum=4, maximum=48),
            after=_clean(cursor),
        )
        return page.to_payload()

    @fastapi_app.get("/api/live/search")
    async def live_search(q: str | None = None, limit: str | None = None) -> dict[str, Any]:
        query = _clean(q)
        if not query:
            raise ValidationError("Missing query")
        gateway = get_gateway(fastapi_app)
        page = await gateway.twitch.search_live_streams(
            query, first=_parse_limit(limit, default=24, minimum=4, maximum=48)
        )
        return page.to_payload()

    @fastapi_app.get("/api/live/status")
    async def live_status(logins: str | None = None) -> dict[str, Any]:
        requested = [login for login in (logins or "").split(",") if login.strip()]
        if not requested:
            return {}
        statuses = await get_gateway(fastapi_app).twitch.fetch_live_status(requested)
        return {login: stream.to_payload() for login, stream in statuses.items()}

    # Search -----------------------------------------------------------------

    @fastapi_app.get("/api/search/category-vods")
    async def search_category_vods(
        name: str | None = None, cursor: str | None = None, limit: str | None = None
    ) -> dict[str, Any]:
        category = _clean(name)
        if not category:
            return VideoPage().to_payload()
        gateway = get_gateway(fastapi_app)
        page = await gateway.twitch.fetch_category_videos_page(
            category,
            first=_parse_limit(limit, default=36, minimum=4, maximum=50),
            after=_clean(cursor),
        )
        return page.to_payload()

    @fastapi_app.get("/api/search/channels")
    async def search_channels(q: str | None = None) -> list[dict[str, Any]]:
        query = _clean(q)
        if not query:
            return []
        channels = await get_gateway(fastapi_app).twitch.search_channels(query)
        return [channel.to_payload() for channel in channels]

    @fastapi_app.get("/api/search/global")
    async def search_global(q: str | None = None) -> list[dict[str, Any]]:
        query = _clean(q)
        if not query:
            return []
        return await get_gateway(fastapi_app).twitch.search_global(query)

    # Users ------------------------------------------------------------------

    @fastapi_app.get("/api/user/{login}")
    async def user_info(login: str) -> dict[str, Any]:
        user = await get_gateway(fastapi_app).twitch.fetch_user_info(login)
        return user.to_payload()

    @fastapi_app.get("/api/user/{login}/vods")
    async def user_videos(login: str) -> list[dict[str, Any]]:
        videos = await get_gateway(fastapi_app).twitch.fetch_user_videos(login)
        return [video.to_payload() for video in videos]

    @fastapi_app.get("/api/user/{login}/live")
    async def user_live(login: str) -> dict[str, Any] | None:
        stream = await get_gateway(fastapi_app).twitch.fetch_user_live_stream(login)
        return stream.to_payload() if stream is not None else None

    # Local store ------------------------------------------------------------

    @fastapi_app.get("/api/history")
    async def history() -> dict[str, Any]:
        entries = await get_gateway(fastapi_app).store.get_all_history()
        return {vod_id: entry.to_payload() for vod_id, entry in entries.items()}

    @fastapi_app.get("/api/history/list")
    async def history_list(limit: str | None = None) -> list[dict[str, Any]]:
        gateway = get_gateway(fastapi_app)
        entries = sorted(
            (await gateway.store.get_all_history()).values(),
            key=lambda entry: entry.updated_at,
            reverse=True,
        )
        size = _coerce_int(limit)
        if size is not None:
            entries = entries[: max(1, min(size, 100))]

        videos = await gateway.twitch.fetch_all_videos_by_ids(
            entry.vod_id for entry in entries
        )
        by_id = {video.id: video for video in videos}
        return [
            HistoryListItem(
                **entry.model_dump(), vod=by_id.get(entry.vod_id)
            ).to_payload()
            for entry in entries
        ]

    @fastapi_app.get("/api/history/{vod_id}")
    async def history_entry(vod_id: str) -> dict[str, Any] | None:
        entry = await get_gateway(fastapi_app).store.get_history(vod_id)
        return entry.to_payload() if entry is not None else None

    @fastapi_app.post("/api/history")
    async def update_history(body: HistoryUpdate) -> dict[str, Any]:
        if not body.vod_id or body.timecode is None:
            raise ValidationError("Invalid parameters")
        entry = await get_gateway(fastapi_app).store.update_history(
            body.vod_id, body.timecode, body.duration or 0.0
        )
        return entry.to_payload()

    @fastapi_app.get("/api/watchlist")
    async def watchlist() -> list[dict[str, Any]]:
        entries = await get_gateway(fastapi_app).store.get_watchlist()
        return [entry.to_payload() for entry in entries]

    @fastapi_app.post("/api/watchlist")
    async def add_watchlist(body: WatchlistEntry) -> list[dict[str, Any]]:
        entries = await get_gateway(fastapi_app).store.add_to_watchlist(body)
        return [entry.to_payload() for entry in entries]

    @fastapi_app.delete("/api/watchlist/{vod_id}")
    async def remove_watchlist(vod_id: str) -> list[dict[str, Any]]:
        entries = await get_gateway(fastapi_app).store.remove_from_watchlist(vod_id)
        return [entry.to_payload() for entry in entries]

    @fastapi_app.get("/api/settings")
    async def experience_settings() -> dict[str, Any]:
        return (await get_gateway(fastapi_app).store.get_settings()).to_payload()

    @fastapi_app.post("/api/settings")
    async def update_experience_settings(body: SettingsPatch) -> dict[str, Any]:
        updated = await get_gateway(fastapi_app).store.update_settings(body.one_sync)
        return updated.to_payload()

    @fastapi_app.get("/api/subs")
    async def subs() -> list[dict[str, Any]]:
        entries = await get_gateway(fastapi_app).store.get_subs()
        return [entry.to_payload() for entry in entries]

    @fastapi_app.post("/api/subs")
    async def add_sub(body: SubEntry) -> list[dict[str, Any]]:
        if not (body.login and body.display_name and body.profile_image_url):
            raise ValidationError("Invalid sub payload")
        entries = await get_gateway(fastapi_app).store.add_sub(body)
        return [entry.to_payload() for entry in entries]

    @fastapi_app.delete("/api/subs/{login}")
    async def remove_sub(login: str) -> list[dict[str, Any]]:
        entries = await get_gateway(fastapi_app).store.remove_sub(login)
        return [entry.to_payload() for entry in entries]


def _clean(value: str | None) -> str | None:
    cleaned = (value or "").strip()
    return cleaned or None


def _coerce_int(value: Any, *, default: int | None = None) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _coerce_float(value: Any, *, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _parse_limit(value: str | None, *, default: int, minimum: int, maximum: int) -> int:
    parsed = _coerce_int(value)
    if parsed is None:
        parsed = default
    return max(minimum, min(parsed, maximum))


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
