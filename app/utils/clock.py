"""Wall-clock helpers.

All persisted timestamps are naive UTC. Components that compare against
"now" take a clock callable so tests can pin time.
"""
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time as a naive UTC datetime"""
    return datetime.now(timezone.utc).replace(tzinfo=None)
