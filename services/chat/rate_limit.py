"""Per-client fixed-window request limits for FastAPI routes."""

from __future__ import annotations

import asyncio
import time

from fastapi import HTTPException, Request

from services.common.structured_logging import get_logger


logger = get_logger(__name__, service_name="chat")

_MAX_TRACKED_CLIENTS = 10000


def client_key(request: Request) -> str:
    """Identify the caller by ``X-Forwarded-For`` or the peer address."""
    client_host = request.headers.get("x-forwarded-for")
    if client_host:
        client_host = client_host.split(",")[0].strip()
    if not client_host and request.client:
        client_host = request.client.host
    return client_host or "anonymous"


class RateLimiter:
    """Counts requests per client in one-minute windows.

    Instances are used directly as FastAPI dependencies. A limit of 0
    disables the check.
    """

    def __init__(self, per_minute: int, *, name: str = "default") -> None:
        if per_minute < 0:
            raise ValueError("per_minute must be >= 0")
        self.per_minute = per_minute
        self.name = name
        self._lock = asyncio.Lock()
        self._state: dict[str, tuple[int, int]] = {}

    async def __call__(self, request: Request) -> None:
        if self.per_minute <= 0:
            return
        key = client_key(request)
        window = int(time.time() // 60)
        async with self._lock:
            count, stored_window = self._state.get(key, (0, window))
            if stored_window != window:
                count = 0
                stored_window = window
            if count >= self.per_minute:
                logger.warning(
                    "rate_limit.exceeded",
                    limiter=self.name,
                    client=key,
                    limit=self.per_minute,
                )
                raise HTTPException(
                    status_code=429,
                    detail="Too many requests, please try again later",
                )
            self._state[key] = (count + 1, stored_window)
            if len(self._state) > _MAX_TRACKED_CLIENTS:
                self._state.pop(next(iter(self._state)))

    def reset(self) -> None:
        self._state.clear()
