"""Personalised "watch next" feed built from local history and subscriptions."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Sequence

from ..cache import TTLCache
from ..models import HistoryEntry, SubEntry, Video
from ..utils import clamp, days_since, fingerprint, normalize_language
from .twitch import TwitchClient

logger = logging.getLogger(__name__)

FRENCH = "fr"
FALLBACK_GAME = "Just Chatting"
RECENT_HISTORY_LIMIT = 35
MAX_SUB_CHANNELS = 10
GAME_VIDEOS_PER_QUERY = 18
SCORED_LIMIT = 120
FEED_SIZE = 40
STREAK_WINDOW = 4

SUBSCRIPTION_AFFINITY = 1.75
FRENCH_FLOOR = 1.2
HISTORY_DECAY_MS = 45 * 24 * 60 * 60 * 1000
UPDATE_BUCKET_MS = 10 * 60 * 1000
QUALITY_GATE = 0.05


@dataclass(slots=True)
class PreferenceProfile:
    games: dict[str, float] = field(default_factory=dict)
    channels: dict[str, float] = field(default_factory=dict)
    languages: dict[str, float] = field(default_factory=dict)

    def top_games(self, limit: int) -> list[str]:
        ranked = sorted(self.games.items(), key=lambda item: item[1], reverse=True)
        return [name for name, _ in ranked[:limit]]

    def foreign_share(self) -> float:
        total = sum(self.languages.values())
        if total <= 0:
            return 0.0
        foreign = sum(score for lang, score in self.languages.items() if lang != FRENCH)
        return foreign / total


@dataclass(slots=True)
class ScoredVideo:
    video: Video
    score: float

    @property
    def is_french(self) -> bool:
        return normalize_language(self.video.language) == FRENCH


def watch_weight(entry: HistoryEntry) -> float:
    if entry.duration > 0:
        return clamp(entry.timecode / entry.duration, 0.05, 1.0)
    return clamp(entry.timecode / 1800, 0.05, 1.0)


def build_profile(
    history: Mapping[str, HistoryEntry],
    watched: Iterable[Video],
    subs: Iterable[SubEntry],
    now_ms: float,
) -> PreferenceProfile:
    games: dict[str, float] = defaultdict(float)
    channels: dict[str, float] = defaultdict(float)
    languages: dict[str, float] = defaultdict(float)

    for video in watched:
        entry = history.get(video.id)
        if entry is None:
            continue
        age_ms = now_ms - entry.updated_at
        recency = clamp(1 - age_ms / HISTORY_DECAY_MS, 0.35, 1.0)
        weighted = watch_weight(entry) * recency

        if video.game_name:
            games[video.game_name] += weighted
        if video.owner_login:
            channels[video.owner_login] += weighted
        language = normalize_language(video.language)
        if language:
            languages[language] += weighted

    for sub in subs:
        channels[sub.login.lower()] += SUBSCRIPTION_AFFINITY

    if languages[FRENCH] < FRENCH_FLOOR:
        languages[FRENCH] += FRENCH_FLOOR

    return PreferenceProfile(dict(games), dict(channels), dict(languages))


def length_factor(length_seconds: float) -> float:
    if length_seconds < 60:
        return 0.01
    if length_seconds < 600:
        ratio = (length_seconds - 60) / 540
        return 0.01 + 0.17 * ratio * ratio
    if length_seconds < 1800:
        return 0.18 + 0.82 * (length_seconds - 600) / 1200
    return 1.0


def view_factor(view_count: int) -> float:
    if view_count <= 0:
        return 0.04
    if view_count < 5:
        return 0.04 + 0.46 * (view_count / 5)
    if view_count < 50:
        return 0.5 + 0.5 * (view_count / 50)
    return 1.0


def quality(video: Video) -> float:
    return length_factor(video.length_seconds) * view_factor(video.view_count)


def score_video(
    video: Video,
    profile: PreferenceProfile,
    subscribed: set[str],
    now: float,
) -> float:
    """Score ``video`` for the feed; ``now`` is epoch seconds.

    Short or unwatched videos are rejected by the quality gate before any
    personal signal is computed.
    """

    gate = quality(video)
    if gate < QUALITY_GATE:
        return gate

    login = video.owner_login
    language = normalize_language(video.language)

    popularity = math.log10(video.view_count + 10) * 1.15
    game_affinity = profile.games.get(video.game_name, 0.0) * 2.1
    channel_affinity = profile.channels.get(login, 0.0) * 2.4
    language_affinity = profile.languages.get(language, 0.0) * 1.15
    french_boost = 2.3 if language == FRENCH else 0.0
    sub_boost = 3.2 if login in subscribed else 0.0
    recency = clamp(2.1 - days_since(video.created_at, now) / 9, 0.0, 2.1)

    return (
        popularity
        + game_affinity
        + channel_affinity
        + language_affinity
        + french_boost
        + sub_boost
        + recency
    ) * gate


def diversify(
    scored: Sequence[ScoredVideo],
    profile: PreferenceProfile,
    subscribed: set[str],
) -> list[ScoredVideo]:
    """Cap videos per channel, keeping the best-scored ones."""

    counts: Counter[str] = Counter()
    kept: list[ScoredVideo] = []
    for item in scored:
        login = item.video.owner_login
        familiar = login in subscribed or (bool(login) and login in profile.channels)
        cap = 3 if familiar else 2
        if counts[login] < cap:
            counts[login] += 1
            kept.append(item)
    return kept


def foreign_ratio(profile: PreferenceProfile) -> float:
    return clamp(0.16 + profile.foreign_share() * 0.35, 0.16, 0.40)


def interleave(
    candidates: Iterable[ScoredVideo],
    ratio: float,
    max_items: int = FEED_SIZE,
) -> list[Video]:
    """Mix French and foreign videos so neither dominates a stretch of the feed.

    A foreign video is never picked right after a run of foreign videos in
    the last four picks; four French picks in a row force a foreign one.
    """

    french: list[ScoredVideo] = []
    foreign: list[ScoredVideo] = []
    for item in candidates:
        (french if item.is_french else foreign).append(item)
    french.sort(key=lambda item: item.score, reverse=True)
    foreign.sort(key=lambda item: item.score, reverse=True)

    feed: list[ScoredVideo] = []
    french_index = foreign_index = foreign_added = 0
    while len(feed) < max_items and (
        french_index < len(french) or foreign_index < len(foreign)
    ):
        recent = feed[-STREAK_WINDOW:]
        french_streak = len(recent) == STREAK_WINDOW and all(
            item.is_french for item in recent
        )
        foreign_streak = bool(recent) and not any(item.is_french for item in recent)
        target_foreign = math.floor((len(feed) + 1) * ratio)

        pick_foreign = (
            not foreign_streak
            and foreign_index < len(foreign)
            and (
                foreign_added < target_foreign
                or french_index >= len(french)
                or french_streak
            )
        )
        if pick_foreign or french_index >= len(french):
            feed.append(foreign[foreign_index])
            foreign_index += 1
            foreign_added += 1
        else:
            feed.append(french[french_index])
            french_index += 1

    return [item.video for item in feed]


def history_fingerprint(
    recent: Sequence[HistoryEntry], subs: Iterable[SubEntry]
) -> str:
    history_part = ";".join(
        f"{entry.vod_id},{int(entry.timecode)},{int(entry.duration)},"
        f"{entry.updated_at // UPDATE_BUCKET_MS}"
        for entry in recent
    )
    subs_part = ",".join(sorted(sub.login.lower() for sub in subs))
    return fingerprint([history_part, subs_part])


class RecommendationEngine:
    """Ranks candidate videos against a preference profile of the local user."""

    def __init__(
        self,
        twitch: TwitchClient,
        cache: TTLCache,
        *,
        cache_ttl_seconds: int = 900,
        clock: Callable[[], float] = time.time,
    ):
        self._twitch = twitch
        self._cache = cache
        self._cache_ttl_seconds = cache_ttl_seconds
        self._clock = clock

    async def trending(
        self,
        history: Iterable[HistoryEntry],
        subs: Sequence[SubEntry],
    ) -> list[Video]:
        history_by_id = {entry.vod_id: entry for entry in history}
        recent = sorted(
            history_by_id.values(), key=lambda entry: entry.updated_at, reverse=True
        )[:RECENT_HISTORY_LIMIT]

        cache_key = f"trending_vods_{history_fingerprint(recent, subs)}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return list(cached)

        now = self._clock()
        watched = await self._twitch.fetch_videos_by_ids(entry.vod_id for entry in recent)
        profile = build_profile(history_by_id, watched, subs, now * 1000)
        subscribed = {sub.login.lower() for sub in subs}

        candidates = await self._gather_candidates(profile, subs)
        scored = [
            ScoredVideo(video, score_video(video, profile, subscribed, now))
            for video in candidates
        ]
        scored.sort(key=lambda item: item.score, reverse=True)
        scored = diversify(scored[:SCORED_LIMIT], profile, subscribed)

        feed = interleave(scored, foreign_ratio(profile), FEED_SIZE)
        logger.info(
            "Built trending feed with %d videos from %d candidates", len(feed), len(candidates)
        )
        self._cache.set(cache_key, list(feed), self._cache_ttl_seconds)
        return feed

    async def _gather_candidates(
        self, profile: PreferenceProfile, subs: Sequence[SubEntry]
    ) -> list[Video]:
        games = profile.top_games(3)
        if FALLBACK_GAME not in games:
            games.append(FALLBACK_GAME)

        requests = []
        for game in games:
            requests.append(
                self._twitch.fetch_game_videos(
                    game, languages=[FRENCH], first=GAME_VIDEOS_PER_QUERY
                )
            )
            requests.append(
                self._twitch.fetch_game_videos(game, first=GAME_VIDEOS_PER_QUERY)
            )
        for sub in subs[:MAX_SUB_CHANNELS]:
            requests.append(self._twitch.fetch_user_videos(sub.login))

        results = await asyncio.gather(*requests, return_exceptions=True)

        unique: dict[str, Video] = {}
        for result in results:
            if isinstance(result, Exception):
                logger.warning("Candidate fetch failed: %s", result)
                continue
            for video in result:
                if video.id and video.id not in unique:
                    unique[video.id] = video
        return list(unique.values())
