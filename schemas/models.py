from __future__ import annotations
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from engine.errors import ConfigError


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    HTTP_ERROR = "http_error"            # выставляет только слой отчетов
    TRANSPORT_ERROR = "transport_error"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class CheckRequest:
    targets: tuple[str, ...]
    concurrency: int = 20
    timeout: float = 10.0                # секунды, потолок на одну пробу

    def __post_init__(self):
        # tuple, чтобы список целей нельзя было менять во время запуска
        object.__setattr__(self, "targets", tuple(self.targets))
        if isinstance(self.concurrency, bool) or not isinstance(self.concurrency, int):
            raise ConfigError(f"concurrency must be an integer, got {self.concurrency!r}")
        if self.concurrency < 1:
            raise ConfigError(f"concurrency must be >= 1, got {self.concurrency}")
        if isinstance(self.timeout, bool) or not isinstance(self.timeout, (int, float)) \
                or not math.isfinite(self.timeout) or self.timeout <= 0:
            raise ConfigError(f"timeout must be a finite number > 0, got {self.timeout!r}")


@dataclass(frozen=True)
class ProbeOutcome:
    url: str
    status_code: int | None
    status_reason: str
    elapsed: float                       # секунды
    response_size: int
    timestamp: datetime                  # UTC, момент завершения пробы
    outcome_kind: OutcomeKind
    index: int = -1                      # -1 пока диспетчер не проставил позицию

    def with_index(self, index: int) -> "ProbeOutcome":
        return replace(self, index=index)

    @property
    def elapsed_ms(self) -> int:
        return int(round(self.elapsed * 1000))

    def to_row(self) -> dict[str, Any]:
        """One row of the persisted report."""
        return {
            "url": self.url,
            "status_code": self.status_code,
            "status_reason": self.status_reason,
            "elapsed_ms": self.elapsed_ms,
            "response_size": self.response_size,
            "timestamp": self.timestamp.astimezone(timezone.utc).isoformat(timespec="milliseconds"),
        }


REPORT_FIELDS = ("url", "status_code", "status_reason", "elapsed_ms", "response_size", "timestamp")


@dataclass(frozen=True)
class RunStats:
    total: int
    succeeded: int
    failed: int
    avg_latency: float
    min_latency: float
    max_latency: float
    total_bytes: int

    @property
    def success_rate(self) -> float:
        if self.total == 0:
            return 0.0
        return self.succeeded / self.total * 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_urls": self.total,
            "successful": self.succeeded,
            "failed": self.failed,
            "success_rate": round(self.success_rate, 2),
            "avg_time_ms": int(round(self.avg_latency * 1000)),
            "min_time_ms": int(round(self.min_latency * 1000)),
            "max_time_ms": int(round(self.max_latency * 1000)),
            "total_size_bytes": self.total_bytes,
        }


@dataclass(frozen=True)
class RunResult:
    outcomes: tuple[ProbeOutcome, ...]
    stats: RunStats
    total_targets: int
    started: int
    cancelled: bool
    started_at: datetime
    finished_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def partial(self) -> bool:
        return len(self.outcomes) < self.total_targets

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()
