"""
Named backoff strategies.

Each strategy is a pure function of the attempt number. Several curves
coexist on purpose: the fetch clients, the durable retry queue and the
in-process error handler each keep the curve their call sites were tuned for.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Protocol


class BackoffStrategy(Protocol):
    def delay(self, attempt: int) -> float:
        """
        Seconds to wait before the next attempt.
        """


@dataclass(frozen=True)
class LinearBackoff:
    """
    ``base * (attempt + 1)``; used by the durable retry queue.
    """

    base_seconds: float

    def delay(self, attempt: int) -> float:
        return self.base_seconds * (max(0, attempt) + 1)


@dataclass(frozen=True)
class StepBackoff:
    """
    ``attempt * step``; fhspb fetch retries (1s, 2s, ...).
    """

    step_seconds: float = 1.0

    def delay(self, attempt: int) -> float:
        return self.step_seconds * max(1, attempt)


@dataclass(frozen=True)
class PowerOfTwoBackoff:
    """
    ``2 ** (attempt + 1)`` seconds; mihf fetch retries (4s, 8s, ...).
    """

    unit_seconds: float = 1.0

    def delay(self, attempt: int) -> float:
        return self.unit_seconds * float(2 ** (max(1, attempt) + 1))


@dataclass(frozen=True)
class ExponentialJitterBackoff:
    """
    ``initial * multiplier ** attempt`` with +/- jitter, capped.
    """

    initial_seconds: float = 1.0
    multiplier: float = 2.0
    max_delay_seconds: float = 30.0
    jitter: float = 0.25
    rng: random.Random = field(default_factory=random.Random, compare=False)

    def delay(self, attempt: int) -> float:
        base = self.initial_seconds * (self.multiplier ** max(0, attempt))
        base = min(base, self.max_delay_seconds)
        spread = base * self.jitter
        return max(0.0, base + self.rng.uniform(-spread, spread))
