"""In-memory security state: replay guard, rate limiter, 401 alerting."""

from .alerting import SecurityAlerting, FailureRecord
from .rate_limiter import RateLimiter, RateLimitResult
from .replay_cache import ReplayCache

__all__ = [
    "SecurityAlerting",
    "FailureRecord",
    "RateLimiter",
    "RateLimitResult",
    "ReplayCache",
]
