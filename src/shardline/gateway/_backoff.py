from __future__ import annotations

import random
import typing
from collections.abc import Sequence

__all__: Sequence[str] = ("ExponentialBackoff",)


@typing.final
class ExponentialBackoff:
    """delay = min(base * factor ** attempt, maximum) +/- jitter * delay"""

    def __init__(
        self,
        base: float = 1.0,
        factor: float = 2.0,
        maximum: float = 60.0,
        jitter: float = 0.1,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self.base: float = base
        self.factor: float = factor
        self.maximum: float = maximum
        self.jitter: float = jitter
        self.attempt: int = 0
        self._rng: random.Random = rng or random.Random()

    def next_delay(self) -> float:
        try:
            delay = min(self.base * (self.factor**self.attempt), self.maximum)
        except OverflowError:
            delay = self.maximum
        self.attempt += 1
        jitter_range = delay * self.jitter
        return min(max(0.0, delay + self._rng.uniform(-jitter_range, jitter_range)), self.maximum)

    def reset(self) -> None:
        self.attempt = 0
