"""
bff_core.api.limiter

Per-client request rate limiting (slowapi).

Responsibilities:
- Build the limiter for one app from settings (one counter store per app).
- Exempt the load-balancer probes from the budget.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

from slowapi import Limiter
from slowapi.util import get_remote_address

from bff_core.settings import Settings

RATE_LIMIT_WINDOW = "15 minutes"


def build_limiter(settings: Settings, *, exempt: Iterable[Callable] = ()) -> Limiter:
    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[f"{settings.rate_limit_max}/{RATE_LIMIT_WINDOW}"],
        storage_uri="memory://",
    )
    for endpoint in exempt:
        limiter.exempt(endpoint)
    return limiter


# --- Module Notes -----------------------------------------------------------
# Counters are process-local; multi-worker deployments divide the budget per worker.
# SlowAPIMiddleware looks the limiter up on `app.state.limiter`.
