import math
import random
from typing import Union

from .classifier import ClassifiedError
from .types import RetryConfig


class BackoffPolicy:
    """Compute how long to wait before retrying a rate-limited or unavailable call.

    Honors a provider "retry in Ns" hint when present (plus a fixed buffer),
    otherwise grows exponentially with the attempt index. Jitter is always
    added so callers sharing keys don't retry in lockstep. Never sleeps.
    """

    def __init__(
        self,
        retry_config: Union[RetryConfig, None] = None,
        rng: Union[random.Random, None] = None,
    ):
        self.retry_config = retry_config or RetryConfig()
        self._rng = rng or random.Random()

    def jitter(self) -> float:
        return self._rng.random() * self.retry_config.jitter_ms

    def compute_delay(self, classified: ClassifiedError, attempt_index: int) -> float:
        """Return the delay in milliseconds for this attempt."""
        cfg = self.retry_config
        hint = getattr(classified, "retry_after_seconds", None)
        if hint is not None:
            base = math.ceil(hint * 1000) + cfg.hint_buffer_ms
        else:
            base = (2 ** max(1, attempt_index)) * cfg.base_delay_ms
        return base + self.jitter()
