"""
Retry backoff for failed notification jobs.
Delay is 2^attempts minutes, keyed to the attempt count AFTER the failed
attempt is recorded: attempt 1 waits 2 minutes, attempt 2 waits 4, attempt 3 waits 8.
"""
from datetime import datetime, timedelta

BACKOFF_BASE = 2
BACKOFF_UNIT = timedelta(minutes=1)


def retry_delay(attempts: int) -> timedelta:
    """Backoff window after `attempts` failed attempts."""
    return BACKOFF_UNIT * (BACKOFF_BASE ** max(attempts, 0))


def next_retry_at(attempts: int, now: datetime) -> datetime:
    """When a job that has failed `attempts` times becomes eligible again."""
    return now + retry_delay(attempts)
