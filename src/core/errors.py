"""Error taxonomy shared by the dispatcher, provider engines and worker pipelines.

Every error carries a ``stage`` so the worker can persist where a task broke,
the same way agent errors report the stage they failed in.
"""

from __future__ import annotations

from typing import Any


class TaskError(RuntimeError):
    """Base error for task orchestration failures."""

    stage: str = "unknown"


class ConfigurationError(TaskError):
    """No credentialed/enabled provider for a purpose, or a missing secret."""

    stage = "config"


class ProviderError(TaskError):
    """A single provider call failed or returned something unusable."""

    stage = "provider"

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ConsensusUnavailableError(TaskError):
    """Every validator provider failed; distinct from a consensus of "invalid"."""

    stage = "validation"

    def __init__(self, message: str, provider_errors: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.provider_errors = provider_errors or {}

    @property
    def result(self) -> dict[str, Any]:
        """Diagnostic result stored on the failed task."""
        issues = [f"[{provider}] {error}" for provider, error in self.provider_errors.items()]
        return {
            "valid": False,
            "issues": issues or ["AI validation could not be completed for the question"],
            "reasoning": "",
            "providerErrors": [{"provider": p, "error": e} for p, e in self.provider_errors.items()],
            "providersChecked": 0,
        }


class PipelineError(TaskError):
    """The pipeline cannot produce any usable output (e.g. zero surviving items)."""

    stage = "pipeline"


class DispatchError(TaskError):
    """The queue rejected a task; the task document has been marked failed."""

    stage = "dispatch"

    def __init__(self, message: str, task_id: str | None = None) -> None:
        super().__init__(message)
        self.task_id = task_id


class DeliveryError(RuntimeError):
    """A worker callback answered non-2xx; the queue's retry policy applies."""

    def __init__(self, status_code: int, body: Any = None) -> None:
        super().__init__(f"Worker responded with HTTP {status_code}")
        self.status_code = status_code
        self.body = body


class TaskConflictError(RuntimeError):
    """Compare-and-set on a task document kept losing to concurrent writers."""


class TaskStopped(Exception):
    """Raised inside a pipeline once it observes its task reached a terminal state."""
