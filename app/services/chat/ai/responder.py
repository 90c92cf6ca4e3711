# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
AI responder: bounded context window, provider call, context cache.

The context for a room is a sliding window of the last N entries
({content, isAI, timestamp}) cached under "ai:context:<roomId>". The cache
is not authoritative; when it is empty the caller's recent history is used.

Requests are rate limited by a global sliding window. Over-limit requests
are rejected immediately with UpstreamUnavailable, never queued.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Optional

import pybreaker

from app.core.cache import CacheManager
from app.core.circuit_breaker import ai_service_breaker, call_with_breaker
from app.core.config import settings
from app.core.exceptions import UpstreamUnavailable
from app.core.result import Result
from app.db.base import utcnow
from app.models.chat import AI_SENDER_ID
from app.services.chat.ai.providers import (
    AIProvider,
    ProviderConfig,
    format_messages,
    resolve_provider,
)

logger = logging.getLogger(__name__)

RATE_LIMIT_KEY = "ai:ratelimit"


def context_cache_key(room_id: str) -> str:
    return f"ai:context:{room_id}"


@dataclass
class AIConfig:
    enabled: bool = True
    provider: str = "default"
    context_window_size: int = 10
    max_tokens: int = 1000
    temperature: float = 0.7
    timeout: float = 30.0
    cache_ttl: int = 3600
    rate_limit_max: int = 20
    rate_limit_window: int = 3600
    persona: str = "helpful assistant"
    api_key: Optional[str] = None
    api_endpoint: Optional[str] = None
    model: str = "gpt-3.5-turbo"
    api_version: str = "2023-05-15"

    @classmethod
    def from_settings(cls) -> "AIConfig":
        return cls(
            enabled=settings.AI_ENABLED,
            provider=settings.AI_PROVIDER,
            context_window_size=settings.AI_CONTEXT_WINDOW_SIZE,
            max_tokens=settings.AI_MAX_TOKENS,
            temperature=settings.AI_TEMPERATURE,
            timeout=settings.AI_TIMEOUT_SECONDS,
            cache_ttl=settings.AI_CACHE_TTL,
            rate_limit_max=settings.AI_RATE_LIMIT_MAX,
            rate_limit_window=settings.AI_RATE_LIMIT_WINDOW,
            persona=settings.AI_PERSONA,
            api_key=settings.AI_API_KEY,
            api_endpoint=settings.AI_API_ENDPOINT,
            model=settings.AI_MODEL,
            api_version=settings.AI_AZURE_API_VERSION,
        )

    def provider_config(self) -> ProviderConfig:
        return ProviderConfig(
            api_key=self.api_key,
            base_url=self.api_endpoint,
            model_id=self.model,
            api_version=self.api_version,
            timeout=self.timeout,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            persona=self.persona,
        )


class SlidingWindowRateLimiter:
    """
    Global `max_requests` per `window_seconds`.

    Counts are shared through the cache; when the cache is unavailable the
    limiter falls back to a process-local window.
    """

    def __init__(
        self,
        cache: Optional[CacheManager],
        max_requests: int,
        window_seconds: int,
        key: str = RATE_LIMIT_KEY,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cache = cache
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.key = key
        self._clock = clock
        self._local: deque[float] = deque()

    async def acquire(self) -> bool:
        if self.max_requests <= 0:
            return True
        if self.cache is not None:
            try:
                hits = await self.cache.hit_sliding_window(
                    self.key, self.window_seconds, limit=self.max_requests
                )
                return hits <= self.max_requests
            except UpstreamUnavailable as e:
                logger.warning(f"[AIResponder] Rate limit cache unavailable, using local window: {e}")
        return self._acquire_local()

    def _acquire_local(self) -> bool:
        now = self._clock()
        while self._local and now - self._local[0] >= self.window_seconds:
            self._local.popleft()
        if len(self._local) >= self.max_requests:
            return False
        self._local.append(now)
        return True


class AIResponder:
    """Produces assistant replies for AI-directed chat messages."""

    def __init__(
        self,
        cache: Optional[CacheManager],
        config: Optional[AIConfig] = None,
        provider: Optional[AIProvider] = None,
        breaker: pybreaker.CircuitBreaker = ai_service_breaker,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
    ):
        self.cache = cache
        self.config = config or AIConfig.from_settings()
        self.provider = provider or resolve_provider(
            self.config.provider, self.config.provider_config()
        )
        self.breaker = breaker
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(
            cache, self.config.rate_limit_max, self.config.rate_limit_window
        )
        logger.info(
            f"[AIResponder] Initialized with provider: {self.provider.provider_name}"
        )

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def prepare_context_window(
        self, history: list[dict[str, Any]], message: dict[str, Any]
    ) -> list[dict[str, Any]]:
        """Append message to history and keep the most recent N entries."""
        window = [*history, message]
        return window[-self.config.context_window_size :]

    async def get_context(self, room_id: str) -> Result[Optional[list]]:
        if self.cache is None:
            return Result.success(None)
        try:
            return Result.success(await self.cache.get(context_cache_key(room_id)))
        except Exception as e:
            logger.warning(f"[AIResponder] Failed to read context for {room_id}: {e}")
            return Result.failure(e)

    async def update_context(
        self, room_id: str, window: list[dict[str, Any]], reply: str
    ) -> Result[bool]:
        """Store window + reply, truncated to N, with a fresh TTL."""
        if self.cache is None:
            return Result.success(False)
        entries = [
            *window,
            {"content": reply, "isAI": True, "timestamp": utcnow().isoformat()},
        ][-self.config.context_window_size :]
        try:
            await self.cache.set(
                context_cache_key(room_id), entries, expire=self.config.cache_ttl
            )
            return Result.success(True)
        except Exception as e:
            logger.warning(f"[AIResponder] Failed to update context for {room_id}: {e}")
            return Result.failure(e)

    async def reply(self, context_window: list[dict[str, Any]]) -> str:
        """
        Generate reply text for a context window.

        Raises UpstreamUnavailable on timeout or open circuit; provider errors
        propagate after being counted by the breaker.
        """
        messages = format_messages(context_window)
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(
                    call_with_breaker, self.breaker, self.provider.generate, messages
                ),
                timeout=self.config.timeout,
            )
        except asyncio.TimeoutError as e:
            raise UpstreamUnavailable(
                f"AI provider timed out after {self.config.timeout}s"
            ) from e

    async def respond(
        self,
        room_id: str,
        query: str,
        recent_history: Optional[list[dict[str, Any]]] = None,
    ) -> Result[dict]:
        """
        Build the context window for `query`, call the provider and refresh
        the room's context cache. Never raises; failures come back in Result.
        """
        if not self.config.enabled:
            return Result.failure(UpstreamUnavailable("AI assistant is disabled"))

        try:
            if not await self.rate_limiter.acquire():
                raise UpstreamUnavailable("AI rate limit exceeded")

            cached = await self.get_context(room_id)
            history = cached.value if cached.ok and cached.value else (recent_history or [])
            message = {"content": query, "isAI": False, "timestamp": utcnow().isoformat()}
            window = self.prepare_context_window(history, message)

            text = await self.reply(window)
            await self.update_context(room_id, window, text)
        except Exception as e:
            logger.warning(f"[AIResponder] No reply for room {room_id}: {e}")
            return Result.failure(e)

        return Result.success(
            {
                "content": text,
                "timestamp": utcnow().isoformat(),
                "sender": AI_SENDER_ID,
                "isAI": True,
                "read": [],
            }
        )

    async def suggest(self, room_id: str, draft: str) -> Result[str]:
        """Suggest an improved version of a draft using the room's context."""
        if not self.config.enabled:
            return Result.failure(UpstreamUnavailable("AI assistant is disabled"))
        try:
            if not await self.rate_limiter.acquire():
                raise UpstreamUnavailable("AI rate limit exceeded")
            cached = await self.get_context(room_id)
            prompt = (
                f'Based on the draft message: "{draft}", suggest an improved '
                "or alternative version."
            )
            window = self.prepare_context_window(
                cached.value if cached.ok and cached.value else [],
                {"content": prompt, "isAI": False, "timestamp": utcnow().isoformat()},
            )
            return Result.success(await self.reply(window))
        except Exception as e:
            logger.warning(f"[AIResponder] No suggestion for room {room_id}: {e}")
            return Result.failure(e)
