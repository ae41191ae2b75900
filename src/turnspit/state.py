from dataclasses import dataclass, field


def mask_key(key: str) -> str:
    """Return a log-safe rendering of an API key."""
    if len(key) < 12:  # noqa: PLR2004
        return "********"
    return f"{key[:6]}...{key[-4:]}"


@dataclass
class RequestAttempt:
    selected_key: str = field(repr=False)
    attempt_index: int = 1
    remaining_retries: int = 0
    outcome: str | None = None     # "ok" or the classification kind
    delay_ms: float | None = None  # backoff awaited after this attempt

    @property
    def masked_key(self) -> str:
        return mask_key(self.selected_key)
