"""Request admission: fixed-window rate limits and WebSocket connection caps.

The HTTP middleware speaks raw ASGI rather than ``BaseHTTPMiddleware`` so it
never buffers responses or interferes with the WebSocket route.
"""

import json
import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from typing import Any

from fastapi import Request

from config.settings import RateLimitPolicy, WebSocketConfig
from debate_engine.exceptions import RateLimitError

logger = logging.getLogger(__name__)

# Bound on tracked callers so rotating source addresses cannot grow memory without limit
_MAX_TRACKED_CALLERS = 10_000

HEALTH_PATHS = frozenset({"/health", "/api/health"})

POLICY_VIOLATION = 1008


def get_client_ip(headers: Any, client: Any) -> str:
    """Client address, honouring the first X-Forwarded-For hop."""
    forwarded = headers.get("x-forwarded-for") if headers is not None else None
    if forwarded:
        return forwarded.split(",")[0].strip()
    if client:
        return client[0] if isinstance(client, (tuple, list)) else client.host
    return "unknown"


def _get_scope_client_ip(scope: dict) -> str:
    for key, value in scope.get("headers", []):
        if key == b"x-forwarded-for":
            return value.decode("latin-1").split(",")[0].strip()
    client = scope.get("client")
    if client:
        return client[0]
    return "unknown"


class _Window:
    __slots__ = ("start", "count")

    def __init__(self, start: float) -> None:
        self.start = start
        self.count = 0


class FixedWindowRateLimiter:
    """Counts requests per caller inside fixed windows."""

    def __init__(
        self,
        policy: RateLimitPolicy,
        name: str = "general",
        clock: Callable[[], float] = time.monotonic,
        max_tracked: int = _MAX_TRACKED_CALLERS,
    ) -> None:
        self.policy = policy
        self.name = name
        self._clock = clock
        self._max_tracked = max_tracked
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    def hit(self, key: str) -> float | None:
        """Count one request. Returns seconds until reset when over the limit."""
        with self._lock:
            now = self._clock()
            window = self._windows.get(key)
            if window is None or now - window.start >= self.policy.window_seconds:
                if window is None and len(self._windows) >= self._max_tracked:
                    oldest_key = min(self._windows, key=lambda k: self._windows[k].start)
                    del self._windows[oldest_key]
                window = _Window(now)
                self._windows[key] = window

            if window.count >= self.policy.max_requests:
                return self.policy.window_seconds - (now - window.start)
            window.count += 1
            return None

    def check(self, key: str) -> None:
        """Count one request, raising ``RateLimitError`` when over the limit."""
        retry_after = self.hit(key)
        if retry_after is not None:
            logger.warning(f"Rate limit '{self.name}' exceeded for {key}")
            raise RateLimitError(
                "Too many requests, please try again later",
                retry_after=retry_after,
                details={
                    "policy": self.name,
                    "limit": self.policy.max_requests,
                    "windowSeconds": self.policy.window_seconds,
                },
            )

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    @property
    def tracked_callers(self) -> int:
        return len(self._windows)


async def _send_json(
    send: Any,
    status_code: int,
    body: dict,
    extra_headers: list[tuple[bytes, bytes]] | None = None,
) -> None:
    """Send a JSON response via raw ASGI protocol."""
    content = json.dumps(body).encode()
    headers: list[tuple[bytes, bytes]] = [
        (b"content-type", b"application/json"),
        (b"content-length", str(len(content)).encode()),
    ]
    if extra_headers:
        headers.extend(extra_headers)
    await send({"type": "http.response.start", "status": status_code, "headers": headers})
    await send({"type": "http.response.body", "body": content})


class GeneralRateLimitMiddleware:
    """Applies the general policy to every HTTP request except health checks."""

    def __init__(self, app: Any, limiter: FixedWindowRateLimiter | None = None) -> None:
        self.app = app
        self.limiter = limiter

    async def __call__(self, scope: dict, receive: Any, send: Any) -> None:
        if scope["type"] != "http" or self.limiter is None:
            await self.app(scope, receive, send)
            return

        if scope.get("path", "") in HEALTH_PATHS:
            await self.app(scope, receive, send)
            return

        try:
            self.limiter.check(_get_scope_client_ip(scope))
        except RateLimitError as e:
            await _send_json(
                send,
                e.status_code,
                e.to_dict(),
                [(b"retry-after", str(e.retry_after).encode())],
            )
            return

        await self.app(scope, receive, send)


def api_rate_limit(request: Request) -> None:
    """Dependency for state-mutating endpoints."""
    limiter = request.app.state.services.api_limiter
    if limiter is not None:
        limiter.check(get_client_ip(request.headers, request.client))


def generation_rate_limit(request: Request) -> None:
    """Dependency for endpoints that trigger model generation."""
    limiter = request.app.state.services.generation_limiter
    if limiter is not None:
        limiter.check(get_client_ip(request.headers, request.client))


class MessageBudget:
    """Rolling one-minute inbound message allowance for a single session."""

    def __init__(self, max_per_minute: int, clock: Callable[[], float] = time.monotonic) -> None:
        self.max_per_minute = max_per_minute
        self._clock = clock
        self._stamps: deque[float] = deque()

    def allow(self) -> bool:
        now = self._clock()
        while self._stamps and now - self._stamps[0] >= 60:
            self._stamps.popleft()
        if len(self._stamps) >= self.max_per_minute:
            return False
        self._stamps.append(now)
        return True


class ConnectionGate:
    """Caps concurrent WebSocket sessions per source address."""

    def __init__(self, config: WebSocketConfig, clock: Callable[[], float] = time.monotonic) -> None:
        self.config = config
        self._clock = clock
        self._sessions: dict[str, int] = {}
        self._lock = threading.Lock()

    def admit(self, client_ip: str) -> bool:
        with self._lock:
            current = self._sessions.get(client_ip, 0)
            if current >= self.config.max_connections_per_ip:
                logger.warning(f"Rejecting WebSocket from {client_ip}: {current} sessions open")
                return False
            self._sessions[client_ip] = current + 1
            return True

    def release(self, client_ip: str) -> None:
        with self._lock:
            current = self._sessions.get(client_ip, 0)
            if current <= 1:
                self._sessions.pop(client_ip, None)
            else:
                self._sessions[client_ip] = current - 1

    def message_budget(self) -> MessageBudget:
        return MessageBudget(self.config.max_messages_per_minute, self._clock)

    def open_sessions(self, client_ip: str) -> int:
        return self._sessions.get(client_ip, 0)
