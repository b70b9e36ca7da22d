"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in the route modules
(to apply per-route limits with @limiter.limit()). The limit decorator goes
directly on the endpoint function, below @router.<verb>(), so the router
registers the wrapped function:

    @router.get("/ci-types")
    @limiter.limit(read_limit)
    def list_ci_types(request: Request): ...

All routes share this single instance so they count against one in-memory
store. read_limit / write_limit read the current settings on every request;
RATE_LIMIT_ENABLED=false turns every limit off (test runs, load tests).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings


def read_limit() -> str:
    return get_settings().read_rate_limit


def write_limit() -> str:
    return get_settings().write_rate_limit


limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    enabled=get_settings().rate_limit_enabled,
)
