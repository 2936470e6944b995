"""Redis/RQ queue wiring."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass

import redis
from rq import Queue, Retry

from src.core.settings import get_settings

# Hash of queue name -> JSON dispatch config; HSETNX makes registration create-if-missing.
QUEUE_REGISTRY_KEY = "task_queues:registry"

FIRST_RETRY_INTERVAL_S = 10


@dataclass(frozen=True)
class QueueConfig:
    name: str
    max_dispatches_per_second: int = 5
    max_retry_duration_s: int = 3600


def get_redis_connection() -> redis.Redis:
    """Create a Redis connection using `REDIS_URL` from settings."""
    return redis.from_url(get_settings().REDIS_URL)


def get_queue(name: str, connection: redis.Redis | None = None) -> Queue:
    return Queue(name, connection=connection or get_redis_connection())


def ensure_queue(connection: redis.Redis, config: QueueConfig) -> bool:
    """Register ``config`` unless the queue already exists; True when it was created now."""
    created = connection.hsetnx(QUEUE_REGISTRY_KEY, config.name, json.dumps(asdict(config)))
    return bool(created)


def get_queue_config(connection: redis.Redis, name: str) -> QueueConfig | None:
    raw = connection.hget(QUEUE_REGISTRY_KEY, name)
    if raw is None:
        return None
    return QueueConfig(**json.loads(raw))


def retry_intervals(max_retry_duration_s: int, first_interval_s: int = FIRST_RETRY_INTERVAL_S) -> list[int]:
    """Doubling backoff intervals whose sum stays within ``max_retry_duration_s``."""
    intervals: list[int] = []
    total = 0
    interval = first_interval_s
    while total + interval <= max_retry_duration_s:
        intervals.append(interval)
        total += interval
        interval *= 2
    return intervals


def build_retry(max_retry_duration_s: int) -> Retry | None:
    intervals = retry_intervals(max_retry_duration_s)
    if not intervals:
        return None
    return Retry(max=len(intervals), interval=intervals)
