from collections.abc import Callable, Iterable
from datetime import datetime
import logging

from sqlalchemy.orm import Session, sessionmaker

from billrun.batch import BatchRunner
from billrun.config import Settings
from billrun.db_models import utc_now
from billrun.notifications import Mailer, build_mailer
from billrun.report import BufferExtendedLog, ExtendedLog, FileExtendedLog, Report
from billrun.schemas import Stage
from billrun.sinks import ReportSink
from billrun.stages import build_billing_stages


logger = logging.getLogger(__name__)


class TaskPipeline:
    """Runs every periodic billing stage and hands the report to a sink.

    A stage's failures end up in the report and never stop the stages after
    it. Anything raised outside a stage's fetch or item operation propagates.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker[Session],
        sink: ReportSink,
        *,
        mailer: Mailer | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings
        self.session_factory = session_factory
        self.sink = sink
        self.mailer = mailer if mailer is not None else build_mailer(settings)
        self.clock = clock

    def run(self) -> Report:
        with self.session_factory() as db:
            stages = build_billing_stages(db, self.settings, self.mailer, now=self.clock())
            return self.run_stages(stages)

    def run_stages(self, stages: Iterable[Stage]) -> Report:
        report = Report(self._extended_log())
        with report:
            report.start(self.clock())
            logger.info("task run started", extra={"started": report.started.isoformat()})

            runner = BatchRunner(report)
            for stage in stages:
                runner.execute(stage.name, stage.operation, stage.source)

            report.finish(self.clock())

        logger.info(
            "task run finished",
            extra={"failure_count": report.failure_count, "ended": report.ended.isoformat()},
        )
        self.sink.deliver(report)
        return report

    def _extended_log(self) -> ExtendedLog:
        if self.settings.log_dir:
            return FileExtendedLog(self.settings.log_dir, clock=self.clock)
        return BufferExtendedLog()
