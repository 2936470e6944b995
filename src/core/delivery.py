"""RQ job that delivers a queued task to its worker endpoint."""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog

from src.core.auth import issue_service_token
from src.core.errors import DeliveryError
from src.core.logging import configure_logging
from src.core.rate_limiter import RateLimiter, dispatch_limiter_config
from src.core.settings import Settings, get_settings

log = structlog.get_logger(__name__)


def deliver_task_job(
    url: str,
    body: dict[str, Any],
    queue_name: str,
    max_dispatches_per_second: int = 5,
    log_level: str = "INFO",
) -> int:
    """RQ worker entrypoint (sync function).

    Raising makes RQ apply the job's retry policy.
    """
    configure_logging(log_level)
    return asyncio.run(
        deliver_task(url, body, queue_name, max_dispatches_per_second=max_dispatches_per_second)
    )


async def deliver_task(
    url: str,
    body: dict[str, Any],
    queue_name: str,
    *,
    max_dispatches_per_second: int = 5,
    settings: Settings | None = None,
    limiter: RateLimiter | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    settings = settings or get_settings()
    task_id = (body.get("data") or {}).get("taskId")

    owned = limiter is None
    limiter = limiter or RateLimiter(
        dispatch_limiter_config(settings.REDIS_URL, queue_name, max_dispatches_per_second)
    )
    try:
        await limiter.acquire("bucket")
    finally:
        if owned:
            await limiter.close()

    token = issue_service_token(
        settings.TASK_SIGNING_SECRET,
        principal=settings.SERVICE_PRINCIPAL,
        audience=settings.WORKER_AUDIENCE,
        ttl_s=settings.SERVICE_TOKEN_TTL_S,
    )
    async with httpx.AsyncClient(transport=transport, timeout=settings.DELIVERY_TIMEOUT_S) as client:
        resp = await client.post(url, json=body, headers={"Authorization": f"Bearer {token}"})

    if not 200 <= resp.status_code < 300:
        log.warning("task_delivery_failed", task_id=task_id, queue=queue_name, status_code=resp.status_code)
        raise DeliveryError(resp.status_code, resp.text[:500])

    log.info("task_delivered", task_id=task_id, queue=queue_name, status_code=resp.status_code)
    return resp.status_code
