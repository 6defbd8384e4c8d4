"""Retry policies for Action nodes.

The engine never sleeps between attempts. A failed attempt with attempts
remaining suspends the execution (status=waiting, resume_at=now+delay) and
the scheduler re-admits it, so the delay survives restarts.

Default policy: fixed schedule of 1s, 5s, 15s with at most 3 attempts per
node. A node may override it with a ``retry`` block in its config:

    {"retry": {"policy": "schedule", "max_attempts": 5, "delays": [2, 10, 30]}}
    {"retry": {"policy": "exponential", "max_attempts": 4, "base_delay": 1.0}}
    {"retry": {"policy": "none"}}
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class RetryPolicy(str, Enum):
    """Available retry policies."""
    SCHEDULE = "schedule"
    EXPONENTIAL = "exponential"
    NONE = "none"


DEFAULT_DELAYS = [1.0, 5.0, 15.0]


@dataclass
class RetryStrategy:
    """How many attempts a node gets and how long to wait between them."""
    policy: RetryPolicy = RetryPolicy.SCHEDULE
    max_attempts: int = 3
    delays: list[float] = field(default_factory=lambda: list(DEFAULT_DELAYS))
    base_delay: float = 1.0
    max_delay: float = 300.0

    @classmethod
    def none(cls) -> 'RetryStrategy':
        """No retries: the first failure is terminal."""
        return cls(policy=RetryPolicy.NONE, max_attempts=1, delays=[])

    @classmethod
    def schedule(cls, delays: list[float] = None, max_attempts: int = 3) -> 'RetryStrategy':
        """Fixed delay schedule; the last delay repeats if attempts outnumber it."""
        return cls(
            policy=RetryPolicy.SCHEDULE,
            max_attempts=max_attempts,
            delays=list(delays if delays is not None else DEFAULT_DELAYS),
        )

    @classmethod
    def exponential(
        cls,
        max_attempts: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 300.0,
    ) -> 'RetryStrategy':
        """Exponential backoff without jitter (delays stay predictable)."""
        return cls(
            policy=RetryPolicy.EXPONENTIAL,
            max_attempts=max_attempts,
            delays=[],
            base_delay=base_delay,
            max_delay=max_delay,
        )

    @classmethod
    def from_settings(cls, settings) -> 'RetryStrategy':
        return cls.schedule(
            delays=settings.WORKFLOW_RETRY_DELAYS,
            max_attempts=settings.WORKFLOW_MAX_ATTEMPTS,
        )

    @classmethod
    def from_dict(cls, config: Optional[dict], default: 'RetryStrategy' = None) -> 'RetryStrategy':
        """Build a node's strategy from its ``retry`` block, falling back to ``default``."""
        base = default or cls.schedule()
        if not config:
            return base
        policy = RetryPolicy(config.get('policy', base.policy.value))
        if policy == RetryPolicy.NONE:
            return cls.none()
        return cls(
            policy=policy,
            max_attempts=int(config.get('max_attempts', base.max_attempts)),
            delays=[float(d) for d in config.get('delays', base.delays)],
            base_delay=float(config.get('base_delay', base.base_delay)),
            max_delay=float(config.get('max_delay', base.max_delay)),
        )

    def to_dict(self) -> dict:
        """Serialize to dict for storage in a node config."""
        return {
            'policy': self.policy.value,
            'max_attempts': self.max_attempts,
            'delays': self.delays,
            'base_delay': self.base_delay,
            'max_delay': self.max_delay,
        }

    def compute_delay(self, failed_attempt: int) -> float:
        """Seconds to wait after the given failed attempt (1-based)."""
        if self.policy == RetryPolicy.NONE:
            return 0.0
        if self.policy == RetryPolicy.EXPONENTIAL:
            delay = self.base_delay * (2 ** (failed_attempt - 1))
        elif self.delays:
            delay = self.delays[min(failed_attempt, len(self.delays)) - 1]
        else:
            delay = self.base_delay
        return round(min(delay, self.max_delay), 3)

    def should_retry(self, failed_attempt: int, retryable: bool = True) -> bool:
        """True when another attempt is allowed after ``failed_attempt`` failures."""
        if self.policy == RetryPolicy.NONE or not retryable:
            return False
        return failed_attempt < self.max_attempts

    def total_delay(self) -> float:
        """Cumulative delay if every allowed attempt fails."""
        return sum(self.compute_delay(n) for n in range(1, self.max_attempts))
