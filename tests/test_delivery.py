from __future__ import annotations

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from src.core import rate_limiter as rate_limiter_mod
from src.core.auth import issue_service_token, verify_service_token
from src.core.delivery import deliver_task
from src.core.errors import ConfigurationError, DeliveryError
from src.core.rate_limiter import RateLimiter, RateLimiterConfig, dispatch_limiter_config


class DummyLimiter:
    def __init__(self) -> None:
        self.acquired: list[str] = []

    async def acquire(self, identity: str, *, max_wait_s: float = 60.0) -> None:
        self.acquired.append(identity)

    async def close(self) -> None:
        return None


def test_service_token_round_trip():
    token = issue_service_token("s3cret", principal="dispatcher", audience="workers")
    assert verify_service_token(token, "s3cret", principal="dispatcher", audience="workers") is True
    assert verify_service_token(token, "other", principal="dispatcher", audience="workers") is False
    assert verify_service_token(token, "s3cret", principal="someone-else", audience="workers") is False
    assert verify_service_token(token, "s3cret", principal="dispatcher", audience="elsewhere") is False
    assert verify_service_token("", "s3cret", principal="dispatcher", audience="workers") is False


def test_expired_token_is_rejected():
    issued = datetime.now(timezone.utc) - timedelta(hours=1)
    token = issue_service_token("s3cret", principal="p", audience="a", ttl_s=60, now=issued)
    assert verify_service_token(token, "s3cret", principal="p", audience="a") is False


def test_issuing_without_secret_fails():
    with pytest.raises(ConfigurationError):
        issue_service_token(None, principal="p", audience="a")


@pytest.mark.asyncio
async def test_deliver_posts_signed_request(settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = request.read()
        return httpx.Response(200, json={"outcome": "completed"})

    limiter = DummyLimiter()
    status = await deliver_task(
        "http://worker/workers/runaivalidation",
        {"data": {"taskId": "t1"}},
        "runaivalidation",
        settings=settings,
        limiter=limiter,
        transport=httpx.MockTransport(handler),
    )

    assert status == 200
    assert limiter.acquired == ["bucket"]
    assert seen["url"] == "http://worker/workers/runaivalidation"
    token = seen["auth"].removeprefix("Bearer ")
    assert verify_service_token(
        token,
        settings.TASK_SIGNING_SECRET,
        principal=settings.SERVICE_PRINCIPAL,
        audience=settings.WORKER_AUDIENCE,
    )
    assert b'"taskId":"t1"' in seen["body"].replace(b" ", b"")


@pytest.mark.asyncio
async def test_non_2xx_raises_for_retry(settings):
    transport = httpx.MockTransport(lambda request: httpx.Response(503, json={"detail": "Task store unavailable"}))
    with pytest.raises(DeliveryError) as excinfo:
        await deliver_task(
            "http://worker/workers/runaimigration",
            {"data": {"taskId": "t1"}},
            "runaimigration",
            settings=settings,
            limiter=DummyLimiter(),
            transport=transport,
        )
    assert excinfo.value.status_code == 503


class DummyRedisClient:
    """Replays canned token-bucket replies the way the Lua script returns them."""

    def __init__(self, replies) -> None:
        self.replies = list(replies)
        self.calls = []

    async def eval(self, script, numkeys, *args):
        self.calls.append((numkeys, args))
        return self.replies.pop(0)

    async def aclose(self) -> None:
        return None


@pytest.mark.asyncio
async def test_rate_limiter_parses_script_reply():
    client = DummyRedisClient([[1, b"4.5", b"0"], [0, b"0", b"0.25"]])
    limiter = RateLimiter(RateLimiterConfig(redis_url="redis://x", requests_per_min=60, burst=5), client=client)

    first = await limiter.allow("ip:1.2.3.4")
    second = await limiter.allow("ip:1.2.3.4")

    assert first.allowed is True
    assert first.remaining == 4.5
    assert second.allowed is False
    assert second.retry_after_s == 0.25
    numkeys, args = client.calls[0]
    assert numkeys == 1
    assert args[0] == "rl:ip:1.2.3.4"


@pytest.mark.asyncio
async def test_acquire_waits_for_a_token(monkeypatch):
    slept = []

    async def fake_sleep(seconds):
        slept.append(seconds)

    monkeypatch.setattr(rate_limiter_mod.asyncio, "sleep", fake_sleep)
    client = DummyRedisClient([[0, b"0", b"0.2"], [1, b"0", b"0"]])
    limiter = RateLimiter(dispatch_limiter_config("redis://x", "runaigeneration", 5), client=client)

    await limiter.acquire("bucket")

    assert slept == [0.2]
    assert client.calls[0][1][0] == "dispatch:runaigeneration:bucket"


@pytest.mark.asyncio
async def test_acquire_gives_up_past_max_wait():
    client = DummyRedisClient([[0, b"0", b"120"]])
    limiter = RateLimiter(dispatch_limiter_config("redis://x", "q", 1), client=client)
    with pytest.raises(TimeoutError):
        await limiter.acquire("bucket", max_wait_s=1)
