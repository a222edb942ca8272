"""Line grammar for HLS playlists.

A playlist is read into a list of :class:`PlaylistLine` objects: blank lines,
tag lines (``#`` prefixed, possibly carrying ``URI="..."`` attributes) and
media-reference lines. Rewrites operate on that list and the result is
serialised back with ``\\n`` separators.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Iterable

URI_ATTRIBUTE_RE = re.compile(r'URI="([^"]*)"')

UriTransform = Callable[[str], str]


class LineKind(str, Enum):
    BLANK = "blank"
    TAG = "tag"
    URI = "uri"


@dataclass(frozen=True, slots=True)
class PlaylistLine:
    kind: LineKind
    text: str

    @property
    def uris(self) -> list[str]:
        """Quoted ``URI`` attribute values of a tag line."""

        if self.kind is not LineKind.TAG:
            return []
        return URI_ATTRIBUTE_RE.findall(self.text)

    def rewrite(self, transform: UriTransform) -> "PlaylistLine":
        """Return a copy with every reference passed through ``transform``."""

        if self.kind is LineKind.URI:
            return replace(self, text=transform(self.text))
        if self.kind is LineKind.TAG and self.uris:
            text = URI_ATTRIBUTE_RE.sub(
                lambda match: f'URI="{transform(match.group(1))}"', self.text
            )
            return replace(self, text=text)
        return self


def parse_line(raw: str) -> PlaylistLine:
    text = raw.rstrip("\r")
    stripped = text.strip()
    if not stripped:
        return PlaylistLine(LineKind.BLANK, text)
    if stripped.startswith("#"):
        return PlaylistLine(LineKind.TAG, text)
    return PlaylistLine(LineKind.URI, stripped)


def parse_playlist(text: str) -> list[PlaylistLine]:
    return [parse_line(raw) for raw in text.split("\n")]


def serialize_playlist(lines: Iterable[PlaylistLine]) -> str:
    return "\n".join(line.text for line in lines)


def rewrite_playlist(text: str, transform: UriTransform) -> str:
    """Parse ``text``, rewrite every reference and serialise it again."""

    return serialize_playlist(line.rewrite(transform) for line in parse_playlist(text))


def is_absolute_url(url: str) -> bool:
    return url.startswith("http://") or url.startswith("https://")


def base_directory(url: str) -> str:
    """Return ``url`` up to and including the last ``/`` of its path."""

    without_query = url.split("?", 1)[0]
    index = without_query.rfind("/")
    if index == -1:
        return without_query
    return without_query[: index + 1]


def make_absolute_url(url: str, base: str) -> str:
    """Resolve ``url`` against the directory of ``base``.

    Leading slashes on relative references are dropped so they stay under
    the base directory.
    """

    if is_absolute_url(url):
        return url
    return f"{base_directory(base)}{url.lstrip('/')}"
