"""
Reconnection policy: exponential backoff with a fast first retry and jitter.
"""

import math
import random
from typing import Callable, Optional

from .config import ReconnectConfig


class ReconnectPolicy:
    """
    Computes reconnect delays and decides when to give up.

    Attempt ``k`` (0-based) waits ``fast_first_delay_ms`` when ``k == 0`` and
    a fast first delay is configured, otherwise
    ``min(max_delay_ms, base_delay_ms * multiplier ** k)``. Jitter multiplies
    the result by a random factor in ``[1.0, 1.3]``. Delays are whole
    milliseconds.
    """

    JITTER_RATIO = 0.3

    def __init__(
        self,
        config: Optional[ReconnectConfig] = None,
        rng: Optional[Callable[[], float]] = None
    ):
        """
        Args:
            config: Backoff settings
            rng: Uniform ``[0, 1)`` source (defaults to ``random.random``,
                injectable for testing)
        """
        self.config = config or ReconnectConfig()
        self._rng = rng or random.random

    @property
    def max_retries(self) -> int:
        return self.config.max_retries

    def delay_ms(self, attempt: int) -> int:
        """Delay before 0-based ``attempt``."""
        cfg = self.config
        if attempt == 0 and cfg.fast_first_delay_ms is not None:
            return int(cfg.fast_first_delay_ms)

        delay = min(cfg.base_delay_ms * (cfg.multiplier ** attempt), cfg.max_delay_ms)

        if cfg.jitter:
            delay *= 1 + self._rng() * self.JITTER_RATIO

        return int(math.floor(delay + 0.5))

    def exhausted(self, attempts: int) -> bool:
        """True once ``attempts`` scheduled retries reached the cap."""
        return attempts >= self.config.max_retries
