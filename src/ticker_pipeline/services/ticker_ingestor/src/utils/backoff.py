"""Delay policies for reconnect attempts."""

import random

from ..config.settings import ReconnectConfig


class ReconnectBackoff:
    """
    Delay between feed reconnect attempts.

    ``fixed``: always ``delay_seconds``.
    ``exponential``: ``delay_seconds * multiplier ** n`` capped at
    ``max_delay_seconds``, optionally with +/-25% jitter; ``reset()`` after a
    connection that actually opened.
    """

    def __init__(self, config: ReconnectConfig):
        self.config = config
        self.attempt = 0

    def next_delay(self) -> float:
        """Delay to wait before the next attempt."""
        if self.config.strategy == "fixed":
            self.attempt += 1
            return self.config.delay_seconds

        # exponent capped so the float cannot overflow on long outages
        exponent = min(self.attempt, 64)
        delay = self.config.delay_seconds * (self.config.multiplier ** exponent)
        self.attempt += 1

        if self.config.jitter:
            jitter_range = delay * 0.25
            delay += random.uniform(-jitter_range, jitter_range)

        return max(0.0, min(delay, self.config.max_delay_seconds))

    def reset(self):
        self.attempt = 0
