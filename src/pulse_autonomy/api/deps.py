"""
Shared API state, authentication and rate limiting.
"""

import logging
import os
import time
from collections import defaultdict
from typing import Optional

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import APIKeyHeader

from ..config import Settings
from ..runtime import AutonomyRuntime

logger = logging.getLogger(__name__)

RATE_LIMIT_PER_KEY = int(os.getenv("PULSE_RATE_LIMIT", "100"))  # requests per minute
RATE_LIMIT_WINDOW = 60  # seconds


# =============================================================================
# Shared State
# =============================================================================

class APIState:
    """Shared application state."""
    runtime: Optional[AutonomyRuntime] = None
    start_time: Optional[float] = None
    version: str = "0.1.0"


state = APIState()


def get_state() -> APIState:
    return state


def get_runtime() -> AutonomyRuntime:
    if state.runtime is None:
        raise HTTPException(status_code=503, detail="Autonomy engine not initialized")
    return state.runtime


# =============================================================================
# API Key Authentication
# =============================================================================

API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: Optional[str] = Security(API_KEY_HEADER)) -> str:
    """
    Verify API key is valid.

    Auth behavior:
    - If keys configured: require valid key
    - If no keys + PULSE_DEV_MODE=1: allow (dev mode)
    - If no keys + no dev mode: deny (safe default)
    """
    settings = Settings.from_env()

    if settings.api_keys:
        if api_key is None:
            raise HTTPException(status_code=401, detail="Missing API key")
        if api_key not in settings.api_keys:
            raise HTTPException(status_code=403, detail="Invalid API key")
        return api_key

    if settings.dev_mode:
        return "dev-mode"

    raise HTTPException(
        status_code=401,
        detail="No API keys configured. Set PULSE_API_KEYS, or PULSE_DEV_MODE=1 for development.",
    )


# =============================================================================
# Rate Limiting (per-key + per-IP fallback)
# =============================================================================

class RateLimiter:
    """In-memory sliding-window rate limiter."""

    def __init__(self, limit: int = 100, window: int = 60):
        self.limit = limit
        self.window = window
        self.requests: dict[str, list[float]] = defaultdict(list)

    def check(self, key: str) -> tuple[bool, int, int]:
        """
        Check if request is allowed.
        Returns: (allowed, remaining, retry_after)
        """
        now = time.time()
        cutoff = now - self.window
        self.requests[key] = [t for t in self.requests[key] if t > cutoff]

        count = len(self.requests[key])
        if count >= self.limit:
            oldest = min(self.requests[key])
            return False, 0, int(oldest + self.window - now) + 1

        self.requests[key].append(now)
        return True, self.limit - count - 1, 0


rate_limiter = RateLimiter(limit=RATE_LIMIT_PER_KEY, window=RATE_LIMIT_WINDOW)


async def check_rate_limit(request: Request, api_key: str = Depends(verify_api_key)) -> str:
    if api_key and api_key != "dev-mode":
        limit_key = f"key:{api_key[:16]}"
    else:
        limit_key = f"ip:{request.client.host if request.client else 'unknown'}"

    allowed, remaining, retry_after = rate_limiter.check(limit_key)
    if not allowed:
        logger.warning(f"Rate limit exceeded for {limit_key}")
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded",
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(rate_limiter.limit),
                "X-RateLimit-Remaining": "0",
            },
        )

    request.state.rate_limit_remaining = remaining
    return api_key
