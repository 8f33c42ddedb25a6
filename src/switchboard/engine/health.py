"""Model health tracking and failover candidates.

Every dispatch outcome updates the calling model's record. Failures are
classified by message: credential and missing-model problems will not
heal on their own (FAILED), everything else is assumed transient
(UNHEALTHY) and stays retryable.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field, replace
from enum import Enum

from switchboard.events import EventBus
from switchboard.events import types as events
from switchboard.models.catalog import ModelCatalog

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    FAILED = "failed"


# Order matters (first match wins); unmatched messages are UNHEALTHY
_PATTERNS: list[tuple[re.Pattern, HealthStatus]] = [
    (
        re.compile(
            r"api[ _-]?key|authentication|unauthori[sz]ed|invalid credentials"
            r"|credential|forbidden|permission denied",
            re.IGNORECASE,
        ),
        HealthStatus.FAILED,
    ),
    (
        re.compile(r"model\b.*\bnot found", re.IGNORECASE | re.DOTALL),
        HealthStatus.FAILED,
    ),
    (
        re.compile(
            r"network|connection|connect|timeout|timed out|econnrefused|fetch failed",
            re.IGNORECASE,
        ),
        HealthStatus.UNHEALTHY,
    ),
]


def classify_error(error: BaseException | str) -> HealthStatus:
    """Health status implied by an error. Pure and deterministic."""
    message = error if isinstance(error, str) else str(error)
    for pattern, status in _PATTERNS:
        if pattern.search(message):
            return status
    return HealthStatus.UNHEALTHY


@dataclass(frozen=True)
class HealthRecord:
    model_id: str
    status: HealthStatus = HealthStatus.UNKNOWN
    last_checked: float = 0.0
    last_error: str = ""
    consecutive_failures: int = 0


@dataclass
class ErrorContext:
    """What a caller needs to react to a failed dispatch."""

    model_id: str
    error: BaseException
    health_status: HealthStatus
    is_retryable: bool
    alternative_models: list[str] = field(default_factory=list)
    topic_id: str = ""

    @property
    def message(self) -> str:
        return str(self.error)


class HealthTracker:
    """Per-model health table, written only by the dispatcher."""

    def __init__(self, catalog: ModelCatalog, events_bus: EventBus | None = None):
        self._catalog = catalog
        self._events = events_bus
        self._records: dict[str, HealthRecord] = {}

    def record(self, model_id: str) -> HealthRecord:
        return self._records.get(model_id) or HealthRecord(model_id=model_id)

    def status(self, model_id: str) -> HealthStatus:
        return self.record(model_id).status

    def _store(self, record: HealthRecord) -> HealthRecord:
        previous = self.record(record.model_id).status
        self._records[record.model_id] = record
        if previous is not record.status:
            logger.info(
                "Model %s health %s -> %s", record.model_id, previous.value, record.status.value,
            )
            if self._events is not None:
                self._events.publish(
                    events.MODEL_HEALTH_CHANGED,
                    model_id=record.model_id,
                    previous=previous.value,
                    status=record.status.value,
                )
        return record

    def record_success(self, model_id: str) -> HealthRecord:
        return self._store(HealthRecord(
            model_id=model_id,
            status=HealthStatus.HEALTHY,
            last_checked=time.time(),
        ))

    def record_failure(self, model_id: str, error: BaseException | str) -> HealthRecord:
        previous = self.record(model_id)
        return self._store(replace(
            previous,
            status=classify_error(error),
            last_checked=time.time(),
            last_error=str(error),
            consecutive_failures=previous.consecutive_failures + 1,
        ))

    def alternatives_for(self, model_id: str) -> list[str]:
        """Other available, non-variant models that are healthy or untested."""
        usable = (HealthStatus.HEALTHY, HealthStatus.UNKNOWN)
        return [
            d.id for d in self._catalog.available()
            if d.id != model_id
            and not d.is_variant
            and self.status(d.id) in usable
        ]

    def error_context(
        self, model_id: str, error: BaseException, topic_id: str = "",
    ) -> ErrorContext:
        status = self.status(model_id)
        return ErrorContext(
            model_id=model_id,
            error=error,
            health_status=status,
            is_retryable=status is not HealthStatus.FAILED,
            alternative_models=self.alternatives_for(model_id),
            topic_id=topic_id,
        )

    def snapshot(self) -> dict[str, HealthRecord]:
        """Read-only copy for observers."""
        return dict(self._records)

    def reset(self, model_id: str | None = None) -> None:
        if model_id is None:
            self._records.clear()
        else:
            self._records.pop(model_id, None)
