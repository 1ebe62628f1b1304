"""
Server clock used for every expiry decision
"""

from datetime import datetime, timezone


class SystemClock:
    """Wall clock in UTC"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
