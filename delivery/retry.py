"""Bounded exponential backoff for host timer calls"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from alarm_schedule.errors import TimerDriverUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
  attempts: int = 3
  base_delay: float = 0.5
  max_delay: float = 8.0

  def delay_for(self, attempt: int) -> float:
    """Delay before retry number `attempt` (1-based)"""
    return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))


def call_with_backoff(
  operation: Callable[[], T],
  policy: RetryPolicy,
  description: str,
  sleep: Callable[[float], None] = time.sleep,
) -> T:
  """Run `operation`, retrying only on TimerDriverUnavailable.

  The last failure is re-raised once `policy.attempts` calls have failed.
  """
  for attempt in range(1, policy.attempts + 1):
    try:
      return operation()
    except TimerDriverUnavailable as e:
      if attempt == policy.attempts:
        logger.error(f"{description} failed after {attempt} attempts: {e}")
        raise
      delay = policy.delay_for(attempt)
      logger.warning(
        f"{description} failed (attempt {attempt}/{policy.attempts}): {e}; "
        f"retrying in {delay:.1f}s"
      )
      sleep(delay)
  raise AssertionError("unreachable")
