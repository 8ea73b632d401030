"""Cron trigger - next fire time for a 5-field cron expression.

Evaluation is pure and always in UTC. The returned instant is strictly
after the reference instant, so a job whose fire time was missed (the
process was down, or a tick ran late) simply moves to the next future
occurrence; missed runs are never replayed.

Examples:
    >>> from datetime import datetime, UTC
    >>> CronTrigger.next("0 0 * * *", datetime(2024, 1, 1, 10, 0, tzinfo=UTC))
    datetime.datetime(2024, 1, 2, 0, 0, tzinfo=datetime.timezone.utc)
    >>> CronTrigger.next("*/15 * * * *", datetime(2024, 1, 1, 10, 7, tzinfo=UTC))
    datetime.datetime(2024, 1, 1, 10, 15, tzinfo=datetime.timezone.utc)

Tags:
    jobspine, scheduling, cron, croniter
"""

from __future__ import annotations

from datetime import UTC, datetime

from croniter import croniter

from jobspine.core.errors import InvalidCronExpressionError

CRON_FIELDS = 5


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class CronTrigger:
    """Stateless cron evaluation backed by ``croniter``."""

    @staticmethod
    def validate(expression: str) -> None:
        """Raise ``InvalidCronExpressionError`` unless *expression* is a valid 5-field cron."""
        if not isinstance(expression, str) or not expression.strip():
            raise InvalidCronExpressionError(str(expression), "expression is empty")
        fields = expression.split()
        if len(fields) != CRON_FIELDS:
            raise InvalidCronExpressionError(
                expression, f"expected {CRON_FIELDS} fields, got {len(fields)}"
            )
        try:
            croniter(expression)
        except (ValueError, KeyError) as e:
            raise InvalidCronExpressionError(expression, str(e), cause=e) from e

    @staticmethod
    def next(expression: str, after: datetime) -> datetime:
        """Return the first occurrence of *expression* strictly after *after*.

        Naive *after* values are treated as UTC. The result is timezone-aware UTC.

        Raises:
            InvalidCronExpressionError: If the expression is malformed or never fires.
        """
        CronTrigger.validate(expression)
        start = _as_utc(after)
        try:
            occurrence = croniter(expression, start).get_next(datetime)
        except (ValueError, KeyError) as e:
            raise InvalidCronExpressionError(expression, str(e), cause=e) from e
        occurrence = _as_utc(occurrence)
        if occurrence <= start:
            # croniter works at minute resolution; never hand back the reference instant
            occurrence = _as_utc(croniter(expression, occurrence).get_next(datetime))
        return occurrence

    @staticmethod
    def upcoming(expression: str, after: datetime, count: int = 5) -> list[datetime]:
        """Return the next *count* occurrences after *after*."""
        occurrences: list[datetime] = []
        current = after
        for _ in range(count):
            current = CronTrigger.next(expression, current)
            occurrences.append(current)
        return occurrences

    @staticmethod
    def is_valid(expression: str) -> bool:
        try:
            CronTrigger.validate(expression)
        except InvalidCronExpressionError:
            return False
        return True
