"""
deepcheck.detector.polling – per-attempt state machine and result poller.

Each provider attempt walks ``not_started -> uploading -> polling`` and ends
in ``completed`` or ``failed``; no state is re-entered, and a retry starts a
fresh ``AttemptStateMachine``.  The poller sleeps through an injected
coroutine so tests can simulate elapsed polling without wall-clock delay.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

import httpx

from deepcheck.errors import (
    InvalidStatusTransition,
    PollingExhausted,
    ProviderAnalysisFailed,
    ProviderAuthError,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class AttemptState(str, Enum):
    NOT_STARTED = "not_started"
    UPLOADING = "uploading"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"


_NEXT_STATES: dict[AttemptState, frozenset[AttemptState]] = {
    AttemptState.NOT_STARTED: frozenset({AttemptState.UPLOADING, AttemptState.FAILED}),
    AttemptState.UPLOADING: frozenset({AttemptState.POLLING, AttemptState.FAILED}),
    AttemptState.POLLING: frozenset({AttemptState.COMPLETED, AttemptState.FAILED}),
    AttemptState.COMPLETED: frozenset(),
    AttemptState.FAILED: frozenset(),
}


@dataclass
class AttemptStateMachine:
    number: int
    state: AttemptState = AttemptState.NOT_STARTED
    history: list[AttemptState] = field(default_factory=lambda: [AttemptState.NOT_STARTED])
    error: str | None = None

    def advance(self, target: AttemptState) -> None:
        if target not in _NEXT_STATES[self.state]:
            raise InvalidStatusTransition(
                f"Attempt {self.number}: cannot move from {self.state.value} to {target.value}"
            )
        self.state = target
        self.history.append(target)

    def fail(self, error: BaseException) -> None:
        self.error = str(error) or type(error).__name__
        if self.state not in (AttemptState.COMPLETED, AttemptState.FAILED):
            self.advance(AttemptState.FAILED)

    @property
    def finished(self) -> bool:
        return self.state in (AttemptState.COMPLETED, AttemptState.FAILED)


_PENDING_STATUSES = frozenset({
    "queued", "pending", "uploading", "processing", "analyzing", "in_progress",
})


@dataclass
class PollResult:
    body: Any
    polls: int


def _envelope(body: Any) -> dict[str, Any]:
    if not isinstance(body, dict):
        return {}
    response = body.get("response")
    return response if isinstance(response, dict) else body


def terminal_status(body: Any) -> str | None:
    """Return ``"completed"``, ``"failed"`` or None (still processing)."""
    if not isinstance(body, dict):
        return None
    envelope = _envelope(body)
    status = str(envelope.get("status") or body.get("status") or "").lower()
    if status in ("failed", "error"):
        return "failed"
    if status == "completed" or "ensemble" in envelope or body.get("results") is not None:
        return "completed"
    if status in _PENDING_STATUSES:
        return None
    # A populated verdict without any lifecycle status is treated as final.
    if isinstance(body.get("result"), dict) and body["result"]:
        return "completed"
    return None


class ResultPoller:
    """
    Poll the provider's results endpoint at a fixed interval.

    Non-success responses (other than 401/403) mean "not ready yet".  Running
    out of attempts without a terminal status raises PollingExhausted, even
    when the provider answered with a pending body.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: dict[str, str],
        interval_seconds: float,
        max_attempts: int,
        sleep: Sleep,
    ) -> None:
        self.client = client
        self.url = url
        self.headers = headers
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts
        self.sleep = sleep

    async def poll(self) -> PollResult:
        for attempt in range(1, self.max_attempts + 1):
            logger.debug("Checking results (attempt %d/%d)", attempt, self.max_attempts)
            response = await self.client.get(self.url, headers=self.headers)

            if response.status_code in (401, 403):
                raise ProviderAuthError(
                    f"Results request rejected: HTTP {response.status_code}",
                    response.status_code,
                )

            if response.is_success:
                try:
                    body = response.json()
                except ValueError:
                    logger.warning("Results endpoint returned non-JSON body; retrying poll")
                    body = None
                if body is not None:
                    status = terminal_status(body)
                    if status == "completed":
                        return PollResult(body=body, polls=attempt)
                    if status == "failed":
                        raise ProviderAnalysisFailed(
                            f"Analysis failed: {_failure_message(body)}"
                        )
            else:
                logger.debug("Results not ready (status %d)", response.status_code)

            if attempt < self.max_attempts:
                await self.sleep(self.interval_seconds)

        logger.info("Polling budget exhausted without a terminal status")
        raise PollingExhausted(
            f"Analysis timeout: no results after {self.max_attempts} attempts"
        )


def _failure_message(body: dict[str, Any]) -> str:
    envelope = _envelope(body)
    for source in (envelope, body):
        for key in ("message", "error"):
            if isinstance(source.get(key), str):
                return source[key]
    return "Unknown error"

