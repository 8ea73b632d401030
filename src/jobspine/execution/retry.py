"""
Retry policy for failed job attempts.

An attempt that ends ``failed`` or ``timeout`` may be retried; ``success``
and ``cancelled`` never are. The delay before attempt ``n + 1`` grows
exponentially from the job's own settings::

    delay(n) = retry_delay * retry_backoff_multiplier ** n

so a job with ``retry_delay=60`` and multiplier ``2.0`` waits 60s, 120s,
240s... and stops after ``max_retries`` retries. Retry timing is
independent of the job's cron schedule.

Example:
    >>> policy = RetryPolicy()
    >>> decision = policy.decide(job, attempt=0, outcome=failed_outcome)
    >>> if isinstance(decision, Retry):
    ...     schedule_in(decision.after, attempt=decision.attempt)
"""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass

from jobspine.scheduling.models import ExecutionOutcome, JobDefinition, JobStatus


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Calculate delay before next retry attempt.

        Args:
            attempt: Zero-based attempt number of the attempt that just failed

        Returns:
            Delay in seconds before next attempt
        """
        ...

    @abstractmethod
    def should_retry(self, attempt: int) -> bool:
        """Determine if another retry should be attempted after *attempt*."""
        ...


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional cap and jitter.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) + jitter

    Attributes:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds (None = uncapped)
        multiplier: Exponential multiplier (default: 2)
        jitter: Add randomness to prevent thundering herd
        jitter_range: Range of jitter as fraction of delay (0.0-1.0)
    """

    max_retries: int = 3
    base_delay: float = 60.0
    max_delay: float | None = None
    multiplier: float = 2.0
    jitter: bool = False
    jitter_range: float = 0.25

    def next_delay(self, attempt: int) -> float:
        """Calculate exponential backoff delay."""
        delay = self.base_delay * (self.multiplier ** attempt)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay += random.uniform(-jitter_amount, jitter_amount)
            delay = max(0.0, delay)
        return delay

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_retries


@dataclass(frozen=True)
class Retry:
    """Run the job again after ``after`` seconds as attempt ``attempt``."""

    after: float
    attempt: int


@dataclass(frozen=True)
class Terminal:
    """The execution chain ends with ``status``."""

    status: JobStatus


RetryDecision = Retry | Terminal

RETRYABLE_STATUSES = frozenset({JobStatus.FAILED, JobStatus.TIMEOUT})


@dataclass
class RetryPolicy:
    """Decides what happens after an attempt, using the job's retry settings.

    Attributes:
        max_delay: Optional global cap on any single retry delay
        jitter: Apply jitter to delays (off by default so delays are exact)
    """

    max_delay: float | None = None
    jitter: bool = False

    def strategy_for(self, job: JobDefinition) -> ExponentialBackoff:
        return ExponentialBackoff(
            max_retries=job.max_retries,
            base_delay=job.retry_delay,
            max_delay=self.max_delay,
            multiplier=job.retry_backoff_multiplier,
            jitter=self.jitter,
        )

    def decide(self, job: JobDefinition, attempt: int, outcome: ExecutionOutcome) -> RetryDecision:
        """Return ``Retry`` or ``Terminal`` for the attempt that just ended.

        Args:
            job: Definition whose retry settings apply
            attempt: Zero-based attempt number that produced *outcome*
            outcome: What the executor reported
        """
        if outcome.status not in RETRYABLE_STATUSES:
            return Terminal(outcome.status)
        strategy = self.strategy_for(job)
        if not strategy.should_retry(attempt):
            return Terminal(outcome.status)
        return Retry(after=strategy.next_delay(attempt), attempt=attempt + 1)


__all__ = [
    "RetryStrategy",
    "ExponentialBackoff",
    "Retry",
    "Terminal",
    "RetryDecision",
    "RetryPolicy",
    "RETRYABLE_STATUSES",
]
