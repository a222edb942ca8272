"""Random identifiers used for proxy tokens, serving ids and cache busters."""

from __future__ import annotations

import random
import uuid


class TokenSource:
    """Produces the random identifiers the gateway hands out.

    Passing a seeded :class:`random.Random` makes every identifier
    reproducible, which the tests rely on.
    """

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or random.SystemRandom()

    def proxy_token(self) -> str:
        """Return a UUID v4 in its canonical textual form."""

        return str(uuid.UUID(int=self._rng.getrandbits(128), version=4))

    def serving_id(self) -> str:
        return self.proxy_token().replace("-", "")

    def cache_buster(self) -> int:
        return self._rng.randrange(1_000_000)
