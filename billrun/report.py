"""Task results report: a summary line per stage plus an extended error log."""

from collections.abc import Callable
from datetime import datetime
import io
import logging
from pathlib import Path
from typing import Protocol

from billrun.db_models import utc_now


logger = logging.getLogger(__name__)


class ReportClosedError(RuntimeError):
    pass


def summary_line(stage_name: str, success_count: int, failure_count: int) -> str:
    if failure_count == 0:
        return f"Success: {stage_name}, {success_count} OK."
    return f"Failure: {stage_name}, {success_count} OK, {failure_count} failed."


class ExtendedLog(Protocol):
    path: Path | None

    def write(self, text: str) -> None: ...

    def close(self) -> None: ...

    @property
    def text(self) -> str: ...


class BufferExtendedLog:
    """Keeps the extended log in memory; the text survives close()."""

    path: Path | None = None

    def __init__(self) -> None:
        self._buffer: io.StringIO | None = None
        self._closed_text: str | None = None

    def write(self, text: str) -> None:
        if self._closed_text is not None:
            raise ReportClosedError("extended log is closed")
        if self._buffer is None:
            self._buffer = io.StringIO()
        self._buffer.write(f"{text}\n\n")

    def close(self) -> None:
        if self._closed_text is not None:
            return
        self._closed_text = self._buffer.getvalue() if self._buffer is not None else ""
        if self._buffer is not None:
            self._buffer.close()
            self._buffer = None

    @property
    def text(self) -> str:
        if self._closed_text is not None:
            return self._closed_text
        return self._buffer.getvalue() if self._buffer is not None else ""


class FileExtendedLog:
    """Writes the extended log to a timestamped file opened on the first write."""

    def __init__(self, log_dir: str | Path, clock: Callable[[], datetime] = utc_now) -> None:
        self.log_dir = Path(log_dir)
        self.clock = clock
        self.path: Path | None = None
        self._handle: io.TextIOWrapper | None = None
        self._closed = False

    def write(self, text: str) -> None:
        if self._closed:
            raise ReportClosedError("extended log is closed")
        if self._handle is None:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self.path, self._handle = self._open_unique(f"billrun_{self.clock():%Y%m%d%H%M%S}")
            logger.info("extended log opened", extra={"path": str(self.path)})
        self._handle.write(f"{text}\n\n")

    def _open_unique(self, stem: str) -> tuple[Path, io.TextIOWrapper]:
        # Runs started within the same second get a numbered suffix instead of sharing a file.
        suffix = 0
        while True:
            name = f"{stem}.log" if suffix == 0 else f"{stem}_{suffix}.log"
            path = self.log_dir / name
            try:
                return path, path.open("x", encoding="utf-8", errors="backslashreplace")
            except FileExistsError:
                suffix += 1

    def close(self) -> None:
        self._closed = True
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    @property
    def text(self) -> str:
        if self.path is None:
            return ""
        if self._handle is not None:
            self._handle.flush()
        return self.path.read_text(encoding="utf-8")


class Report:
    """Results of one pipeline run.

    ``summary`` gets exactly one line per stage. ``extended`` gets one block per
    failure (a failed collection fetch or a failed item). Once ``ended`` is set
    the report refuses further appends. Used as a context manager, the extended
    log is closed on every exit path.
    """

    def __init__(self, extended_log: ExtendedLog | None = None) -> None:
        self.started: datetime | None = None
        self.ended: datetime | None = None
        self._summary: list[str] = []
        self._extended_log: ExtendedLog = extended_log if extended_log is not None else BufferExtendedLog()
        self.failure_count = 0

    def __enter__(self) -> "Report":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._extended_log.close()

    def start(self, when: datetime) -> None:
        if self.started is not None:
            raise ReportClosedError("report already started")
        self.started = when

    def finish(self, when: datetime) -> None:
        self.ended = when
        self._extended_log.close()

    def log_summary(self, text: str) -> None:
        self._ensure_open()
        self._summary.append(text)

    def log_error(self, text: str) -> None:
        self._ensure_open()
        # Lone surrogates from decoded OS or byte data cannot be encoded by the sinks.
        self._extended_log.write(text.encode("utf-8", "backslashreplace").decode("utf-8"))
        self.failure_count += 1

    @property
    def summary_lines(self) -> tuple[str, ...]:
        return tuple(self._summary)

    @property
    def summary(self) -> str:
        return "".join(f"{line}\n" for line in self._summary)

    @property
    def extended(self) -> str:
        return self._extended_log.text

    @property
    def extended_log_path(self) -> Path | None:
        return self._extended_log.path

    @property
    def has_failures(self) -> bool:
        return self.failure_count > 0

    def _ensure_open(self) -> None:
        if self.ended is not None:
            raise ReportClosedError("report already finished")
