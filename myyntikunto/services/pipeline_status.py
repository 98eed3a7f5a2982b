import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

# Finished assessments stay readable this long before the registry drops them
STATUS_TTL_SECONDS = float(os.getenv("STATUS_TTL_SECONDS", "3600"))


class AssessmentState(str, Enum):
    INITIAL = "initial"
    PROCESSING = "processing"
    AWAITING_INPUT = "awaiting_input"
    COMPLETE = "complete"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[AssessmentState, set[AssessmentState]] = {
    AssessmentState.INITIAL: {AssessmentState.PROCESSING, AssessmentState.FAILED},
    AssessmentState.PROCESSING: {
        AssessmentState.AWAITING_INPUT, AssessmentState.COMPLETE, AssessmentState.FAILED,
    },
    AssessmentState.AWAITING_INPUT: {AssessmentState.PROCESSING, AssessmentState.FAILED},
    AssessmentState.COMPLETE: set(),
    AssessmentState.FAILED: set(),
}


class InvalidTransitionError(Exception):
    """Raised when an assessment is moved to a state it cannot reach."""
    def __init__(self, current: AssessmentState, target: AssessmentState):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move assessment from '{current.value}' to '{target.value}'")


@dataclass
class StepEvent:
    step_name: str
    status: str  # "started", "completed", "failed", "skipped"
    timestamp: str
    duration_ms: float | None = None
    error: str | None = None


@dataclass
class PipelineStatus:
    report_id: str
    state: AssessmentState = AssessmentState.INITIAL
    events: list[StepEvent] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    finished_at: float | None = None
    _event: asyncio.Event = field(default_factory=asyncio.Event)
    _event_index: int = 0

    @property
    def complete(self) -> bool:
        return self.state in (AssessmentState.COMPLETE, AssessmentState.FAILED)

    def transition(self, target: AssessmentState) -> None:
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state, target)
        logger.info(f"Assessment {self.report_id}: {self.state.value} -> {target.value}")
        self.state = target
        if self.complete:
            self.finished_at = time.monotonic()
        self._notify()

    def start_processing(self) -> None:
        self.transition(AssessmentState.PROCESSING)

    def await_input(self) -> None:
        self.transition(AssessmentState.AWAITING_INPUT)

    def mark_complete(self) -> None:
        self.transition(AssessmentState.COMPLETE)

    def mark_failed(self, error: str) -> None:
        self.error = error
        self.transition(AssessmentState.FAILED)

    def emit(self, step_name: str, status: str, duration_ms: float | None = None, error: str | None = None):
        self.events.append(StepEvent(
            step_name=step_name,
            status=status,
            timestamp=datetime.now(timezone.utc).isoformat(),
            duration_ms=duration_ms,
            error=error,
        ))
        self._notify()

    def _notify(self) -> None:
        self._event.set()
        self._event = asyncio.Event()

    async def wait_for_event(self, timeout: float = 30.0) -> list[StepEvent]:
        """Wait for new events since last call. Returns new events."""
        if self._event_index < len(self.events):
            new = self.events[self._event_index:]
            self._event_index = len(self.events)
            return new

        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass

        new = self.events[self._event_index:]
        self._event_index = len(self.events)
        return new

    def snapshot(self) -> dict:
        summary = self.context.get("summary")
        return {
            "id": self.report_id,
            "state": self.state.value,
            "error": self.error,
            "questions": [q.model_dump() for q in self.context.get("questions", [])],
            "summary": summary.model_dump() if summary else None,
            "report_id": self.context.get("result_report_id"),
        }


class StatusRegistry:
    """In-memory registry of running pipelines and two-phase assessments.

    Finished entries are evicted once they are older than the TTL.
    """

    def __init__(self, ttl_seconds: float = STATUS_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._statuses: dict[str, PipelineStatus] = {}

    def create(self, report_id: str) -> PipelineStatus:
        self._evict_expired()
        status = PipelineStatus(report_id=report_id)
        self._statuses[report_id] = status
        return status

    def get(self, report_id: str) -> PipelineStatus | None:
        self._evict_expired()
        return self._statuses.get(report_id)

    def cleanup(self, report_id: str) -> None:
        self._statuses.pop(report_id, None)

    def _evict_expired(self) -> None:
        now = time.monotonic()
        expired = [
            report_id for report_id, status in self._statuses.items()
            if status.finished_at is not None and now - status.finished_at >= self.ttl_seconds
        ]
        for report_id in expired:
            del self._statuses[report_id]
        if expired:
            logger.info(f"Evicted {len(expired)} finished assessments from the registry")
