"""Run a capability against providers one at a time until one succeeds."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

import structlog

from src.core.provider_registry import ProviderHandle

log = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class FallbackOutcome(Generic[T]):
    result: T
    provider: str


def fallback_order(
    handles: Sequence[ProviderHandle],
    *,
    preferred: str | None = None,
    rng: random.Random | None = None,
) -> list[ProviderHandle]:
    """Preferred provider first, the rest in a fresh random order on every call."""
    first = [h for h in handles if preferred and h.name == preferred][:1]
    rest = [h for h in handles if not first or h.name != preferred]
    (rng or random).shuffle(rest)
    return first + rest


async def run_with_fallback(
    capability: type,
    call: Callable[[Any], Awaitable[T]],
    providers: Sequence[ProviderHandle],
    *,
    preferred: str | None = None,
    rng: random.Random | None = None,
) -> FallbackOutcome[T] | None:
    """Call ``call(adapter)`` on each capable provider until one returns.

    Providers are tried sequentially, with no retry of a failing provider.
    Returns ``None`` when no provider supports the capability or every one
    of them failed.
    """
    capable = [h for h in providers if h.supports(capability)]
    if not capable:
        log.warning("fallback_no_capable_provider", capability=capability.__name__)
        return None

    for handle in fallback_order(capable, preferred=preferred, rng=rng):
        try:
            result = await call(handle.adapter)
        # Any provider failure moves on to the next provider.
        except Exception as e:
            log.warning(
                "provider_call_failed",
                provider=handle.name,
                capability=capability.__name__,
                error=str(e),
            )
            continue
        return FallbackOutcome(result=result, provider=handle.name)

    log.error("fallback_exhausted", capability=capability.__name__, tried=[h.name for h in capable])
    return None
