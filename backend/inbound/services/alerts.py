"""Alert queue: fire-and-forget notifications for the alerting service.

Alerts are pushed as JSON onto a Redis list (`settings.alert_queue_key`);
a separate worker turns them into emails / SMS.  A failed enqueue never
fails the receiving operation: `notify()` logs it and hands back a
warning string for the response.

Alert types:
  receiving_discrepancy           a discrepancy was raised on a shipment
  unidentified_intake_completed   an unidentified shipment finished receiving
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from inbound.config import settings
from inbound.middleware.exceptions import NonFatalSideEffectFailure

logger = logging.getLogger(__name__)

# Global Redis connection pool
_redis_client: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
    """Get or create Redis client connection."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis_client


async def close_redis():
    """Close Redis connection (call on app shutdown)."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


class AlertQueue(Protocol):
    async def enqueue(self, alert_type: str, tenant_id: str, payload: dict) -> None:
        ...


class RedisAlertQueue:
    def __init__(self, client: redis.Redis, key: str | None = None):
        self.client = client
        self.key = key or settings.alert_queue_key

    async def enqueue(self, alert_type: str, tenant_id: str, payload: dict) -> None:
        message = {
            "alert_type": alert_type,
            "tenant_id": tenant_id,
            "payload": payload,
            "queued_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await self.client.lpush(self.key, json.dumps(message, default=str))
        except RedisError as exc:
            raise NonFatalSideEffectFailure(f"Queue {alert_type} alert", str(exc)) from exc


async def get_alert_queue() -> AlertQueue:
    """FastAPI dependency: the Redis-backed alert queue."""
    return RedisAlertQueue(await get_redis())


async def notify(queue: AlertQueue, alert_type: str, tenant_id: str, payload: dict) -> str | None:
    """Enqueue an alert; return a warning message instead of raising."""
    try:
        await queue.enqueue(alert_type, tenant_id, payload)
    except NonFatalSideEffectFailure as exc:
        logger.warning("Alert %s not queued for tenant %s: %s", alert_type, tenant_id, exc.message)
        return exc.message
    except (RedisError, ConnectionError, OSError) as exc:
        logger.warning("Alert %s not queued for tenant %s: %s", alert_type, tenant_id, exc)
        return f"Queue {alert_type} alert failed: {exc}"
    return None
