from __future__ import annotations

from typing import Optional

import redis.asyncio as redis

from core.trading.portfolio_models import Portfolio


class PortfolioCache:
    """
    Redis-backed read cache for portfolio documents, keyed by user id.
    """

    def __init__(self, settings, redis_client=None):
        self.settings = settings
        self.redis_client = redis_client
        self.namespace: str | None = None
        self.ttl_seconds = settings.redis.portfolio_cache_ttl_seconds

    async def initialize(self, namespace: str | None = None):
        self.namespace = namespace
        if not self.redis_client:
            self.redis_client = redis.from_url(self.settings.redis.url)

    def _get_key(self, user_id: str) -> str:
        if self.namespace:
            return f"{self.namespace}:portfolio:{user_id}"
        return f"portfolio:{user_id}"

    async def get_portfolio(self, user_id: str) -> Optional[Portfolio]:
        """Return Portfolio model from cache or None."""
        if not self.redis_client:
            await self.initialize()
        data = await self.redis_client.get(self._get_key(user_id))
        if data:
            return Portfolio.model_validate_json(data)
        return None

    async def save_portfolio(self, portfolio: Portfolio):
        """Persist Portfolio model to cache."""
        if not self.redis_client:
            await self.initialize()
        await self.redis_client.set(
            self._get_key(portfolio.user_id),
            portfolio.model_dump_json(),
            ex=self.ttl_seconds or None,
        )

    async def invalidate(self, user_id: str):
        if not self.redis_client:
            await self.initialize()
        await self.redis_client.delete(self._get_key(user_id))

    async def close(self):
        if self.redis_client:
            await self.redis_client.aclose()
