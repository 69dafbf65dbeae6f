"""
Simple Memory-based Rate Limiter.
Per-client fixed window; enough for a single-process deployment.
"""
import logging
import time
from fastapi import Request, HTTPException
from typing import Dict, Tuple

logger = logging.getLogger(__name__)

# In-memory storage: {(scope, ip): (timestamp, count)}
_rate_limit_store: Dict[Tuple[str, str], Tuple[float, int]] = {}


def reset_rate_limits() -> None:
    _rate_limit_store.clear()


def rate_limit(requests: int, window: int, scope: str = "default"):
    """
    Dependency for rate limiting.
    Example: Depends(rate_limit(requests=5, window=60, scope="payment"))
    """
    def limiter(request: Request):
        ip = request.client.host if request.client else "unknown"
        key = (scope, ip)
        now = time.time()

        if key not in _rate_limit_store:
            _rate_limit_store[key] = (now, 1)
            return True

        last_ts, count = _rate_limit_store[key]

        # Reset window if expired
        if now - last_ts > window:
            _rate_limit_store[key] = (now, 1)
            return True

        if count >= requests:
            logger.warning("Rate limit hit for %s on %s", ip, scope)
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded. Try again in {int(window - (now - last_ts))} seconds."
            )

        _rate_limit_store[key] = (last_ts, count + 1)
        return True

    return limiter
