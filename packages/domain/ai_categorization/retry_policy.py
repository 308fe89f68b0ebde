"""
Retry Policy - How long to wait before resubmitting a rate-limited batch

The classifier's rate-limit errors often carry a hint such as
"Please retry in 37.2s". When present we honour it plus a safety buffer;
otherwise we back off linearly from a base delay. Both are capped.
"""
import re
from typing import Optional

RETRY_HINT_PATTERN = re.compile(r"retry in (\d+(?:\.\d+)?)\s*s", re.IGNORECASE)


class RetryPolicy:
    """
    Delay schedule for rate-limited batches.

    Args:
        base_delay: Fallback delay in seconds, multiplied by (attempt + 1)
        buffer: Seconds added to a server-suggested delay
        max_delay: Ceiling for any delay
        max_retries: Resubmissions allowed per batch (attempts = max_retries + 1)
    """

    def __init__(
        self,
        base_delay: float = 45.0,
        buffer: float = 5.0,
        max_delay: float = 120.0,
        max_retries: int = 5,
    ):
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        self.base_delay = base_delay
        self.buffer = buffer
        self.max_delay = max_delay
        self.max_retries = max_retries

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def can_retry(self, attempt: int) -> bool:
        """True if another submission is allowed after the zero-based `attempt` failed."""
        return attempt < self.max_retries

    @staticmethod
    def parse_hint(error: BaseException) -> Optional[float]:
        """Server-suggested wait in seconds, or None."""
        match = RETRY_HINT_PATTERN.search(str(error))
        if not match:
            return None
        return float(match.group(1))

    def next_delay(self, error: BaseException, attempt: int) -> float:
        """
        Seconds to sleep before the next submission.

        Args:
            error: The rate-limit failure
            attempt: Zero-based index of the attempt that just failed

        Returns:
            Delay in seconds, never above max_delay
        """
        hint = self.parse_hint(error)
        if hint is not None:
            delay = hint + self.buffer
        else:
            delay = self.base_delay * (attempt + 1)
        return min(delay, self.max_delay)
