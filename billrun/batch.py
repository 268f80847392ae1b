from collections.abc import Callable, Iterable
from dataclasses import dataclass
import logging
import traceback

from billrun.report import Report, summary_line


logger = logging.getLogger(__name__)

Operation = Callable[[object], object]
CollectionSource = Callable[[], Iterable[object]]


class CollectionFetchError(RuntimeError):
    def __init__(self, stage_name: str, cause: Exception) -> None:
        super().__init__(_message(cause))
        self.stage_name = stage_name
        self.__cause__ = cause

    def log_text(self) -> str:
        return f"{self.stage_name}:\nCollection getter failed\n{self}\n\n{_format_traceback(self.__cause__)}"


class ItemOperationError(RuntimeError):
    def __init__(self, stage_name: str, item: object, cause: Exception) -> None:
        super().__init__(_message(cause))
        self.stage_name = stage_name
        self.item = item
        self.item_description = _describe(item)
        self.__cause__ = cause

    def log_text(self) -> str:
        return f"{self.stage_name}:\n{self}\n{self.item_description}\n\n{_format_traceback(self.__cause__)}"


def _describe(item: object) -> str:
    # An expired ORM entity reloads itself in __repr__, which fails once its row is gone.
    try:
        return repr(item)
    except Exception as exc:
        return f"{object.__repr__(item)} (repr failed: {type(exc).__name__})"


def _message(exc: BaseException) -> str:
    try:
        return str(exc)
    except Exception:
        return f"<{type(exc).__name__} with unprintable message>"


def _format_traceback(exc: BaseException | None) -> str:
    if exc is None:
        return ""
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).rstrip()


@dataclass
class BatchOutcome:
    stage_name: str
    success_count: int = 0
    failure_count: int = 0
    collection_failed: bool = False

    def summary_line(self) -> str:
        return summary_line(self.stage_name, self.success_count, self.failure_count)


class BatchRunner:
    """Runs one operation over every item of a collection, logging into a report.

    The operation takes the item alone. A truthy return counts as a success,
    ``None`` or any falsy value means there was nothing to do, and a raised
    exception counts as a failure without stopping the remaining items. Errors
    raised while fetching the collection are captured the same way and turn the
    whole stage into a single failure. The collection is fully materialized
    before the first item runs.
    """

    def __init__(self, report: Report) -> None:
        self.report = report

    def execute(self, stage_name: str, operation: Operation, collection_source: CollectionSource) -> BatchOutcome:
        outcome = BatchOutcome(stage_name=stage_name)

        try:
            collection = list(collection_source())
        except Exception as exc:
            error = CollectionFetchError(stage_name, exc)
            logger.warning("collection getter failed", extra={"stage": stage_name}, exc_info=exc)
            outcome.failure_count = 1
            outcome.collection_failed = True
            self.report.log_error(error.log_text())
            self.report.log_summary(outcome.summary_line())
            return outcome

        for item in collection:
            try:
                if operation(item):
                    outcome.success_count += 1
            except Exception as exc:
                error = ItemOperationError(stage_name, item, exc)
                logger.warning(
                    "stage item failed",
                    extra={"stage": stage_name, "item": error.item_description},
                    exc_info=exc,
                )
                outcome.failure_count += 1
                self.report.log_error(error.log_text())

        self.report.log_summary(outcome.summary_line())
        logger.info(
            "stage finished",
            extra={
                "stage": stage_name,
                "success_count": outcome.success_count,
                "failure_count": outcome.failure_count,
            },
        )
        return outcome
