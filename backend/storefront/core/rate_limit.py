from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

from storefront.core.config import settings

limiter = Limiter(key_func=get_remote_address)


def maybe_limit(rule: str):
    """
    Applies a SlowAPI rule only when ENABLE_RATE_LIMITING is on.

    Decorators bind at import time, so toggling the setting needs a reload of the
    route modules (see tests/test_rate_limiting.py).
    """
    if not settings.ENABLE_RATE_LIMITING:
        def passthrough(fn):
            return fn
        return passthrough
    return limiter.limit(rule)
