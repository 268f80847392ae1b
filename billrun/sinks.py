"""Destinations for a finished task report."""

import logging
from typing import Protocol

from sqlalchemy.orm import Session, sessionmaker

from billrun.notifications import Mailer
from billrun.report import Report
from billrun.run_store import record_task_run


logger = logging.getLogger(__name__)


class ReportSink(Protocol):
    def deliver(self, report: Report) -> None: ...


def render_report(report: Report) -> str:
    lines = [
        f"Started: {report.started:%Y-%m-%d %H:%M:%S}",
        f"Ended: {report.ended:%Y-%m-%d %H:%M:%S}",
        "",
        "Summary:",
        report.summary,
    ]
    extended = report.extended
    if extended:
        lines.extend(["Extended:", extended])
    elif report.extended_log_path is not None:
        lines.append(f"Extended log: {report.extended_log_path}")
    return "\n".join(lines)


class EmailReportSink:
    def __init__(self, mailer: Mailer, admin_email: str, *, app_name: str = "billrun") -> None:
        self.mailer = mailer
        self.admin_email = admin_email
        self.app_name = app_name

    def deliver(self, report: Report) -> None:
        subject = f"{self.app_name} task results: {report.started:%Y-%m-%d %H:%M}"
        self.mailer.send(self.admin_email, subject, render_report(report))
        logger.info("task report emailed", extra={"to": self.admin_email, "failure_count": report.failure_count})


class DatabaseReportSink:
    def __init__(self, session_factory: sessionmaker[Session], *, trigger_source: str = "manual") -> None:
        self.session_factory = session_factory
        self.trigger_source = trigger_source

    def deliver(self, report: Report) -> None:
        with self.session_factory() as db:
            run = record_task_run(db, report, trigger_source=self.trigger_source)
        logger.info("task report stored", extra={"run_id": run.id, "status": run.status})


class CompositeReportSink:
    def __init__(self, *sinks: ReportSink) -> None:
        self.sinks = sinks

    def deliver(self, report: Report) -> None:
        for sink in self.sinks:
            sink.deliver(report)
