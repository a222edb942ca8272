"""Utility helpers for the NoSubVOD gateway."""

from __future__ import annotations

import hashlib
import json
import re
from typing import Iterable

ISO_8601_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.\d+)?Z?$"
)
UNRESERVED_BYTES = frozenset(
    b"ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_.~"
)
SECONDS_PER_DAY = 86_400


def clamp(value: float, minimum: float, maximum: float) -> float:
    """Return ``value`` bounded to ``[minimum, maximum]``."""

    return min(max(value, minimum), maximum)


def normalize_language(language: str | None) -> str:
    return (language or "").strip().lower()


def percent_encode(value: str) -> str:
    """Percent-encode everything outside the RFC 3986 unreserved set."""

    return "".join(
        chr(byte) if byte in UNRESERVED_BYTES else f"%{byte:02X}"
        for byte in value.encode("utf-8")
    )


def gql_escape(value: str) -> str:
    """Escape a value for inclusion inside a double-quoted GraphQL string."""

    return json.dumps(value, ensure_ascii=False)[1:-1]


def fingerprint(parts: Iterable[str]) -> str:
    """Return a short stable digest for cache keys."""

    joined = "|".join(parts)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()[:12]


def days_from_civil(year: int, month: int, day: int) -> int:
    """Days since 1970-01-01 in the proleptic Gregorian calendar."""

    year = year - 1 if month <= 2 else year
    era = year // 400
    year_of_era = year - era * 400
    shifted_month = month - 3 if month > 2 else month + 9
    day_of_year = (153 * shifted_month + 2) // 5 + day - 1
    day_of_era = (
        year_of_era * 365 + year_of_era // 4 - year_of_era // 100 + day_of_year
    )
    return era * 146_097 + day_of_era - 719_468


def parse_iso8601(value: str) -> float | None:
    """Parse ``YYYY-MM-DDTHH:MM:SS[.fff]Z`` into epoch seconds.

    Fractional seconds are ignored. Returns ``None`` when the text does not
    follow that shape.
    """

    match = ISO_8601_RE.match((value or "").strip())
    if not match:
        return None
    year, month, day, hour, minute, second = (int(part) for part in match.groups())
    if not (1 <= month <= 12 and 1 <= day <= 31):
        return None
    days = days_from_civil(year, month, day)
    return float(days * SECONDS_PER_DAY + hour * 3_600 + minute * 60 + second)


def days_since(timestamp: str, now: float, *, maximum: float = 60.0) -> float:
    """Days elapsed between ``timestamp`` and ``now`` (epoch seconds).

    Unparseable timestamps count as zero days; the result is clamped to
    ``[0, maximum]``.
    """

    parsed = parse_iso8601(timestamp)
    if parsed is None:
        return 0.0
    elapsed = max(now - parsed, 0.0)
    return clamp(elapsed / SECONDS_PER_DAY, 0.0, maximum)
