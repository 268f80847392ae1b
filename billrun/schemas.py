from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class Stage:
    name: str
    operation: Callable[[object], object]
    source: Callable[[], Iterable[object]]


@dataclass(frozen=True)
class TaskRunSummary:
    run_id: int
    trigger_source: str
    status: str
    started_at: datetime
    ended_at: datetime
    failure_count: int
    summary: str
    extended_log_path: str | None
