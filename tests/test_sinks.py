from datetime import datetime

import pytest

from billrun.notifications import OutboxMailer
from billrun.report import Report
from billrun.run_store import COMPLETED_WITH_FAILURES, SUCCEEDED, list_recent_runs, record_task_run
from billrun.sinks import CompositeReportSink, DatabaseReportSink, EmailReportSink


def finished_report(*, failed: bool = False, started: datetime = datetime(2026, 3, 2, 9, 0)) -> Report:
    report = Report()
    report.start(started)
    if failed:
        report.log_error("Charging pending invoices:\nboom")
        report.log_summary("Failure: Charging pending invoices, 0 OK, 1 failed.")
    else:
        report.log_summary("Success: Charging pending invoices, 2 OK.")
    report.finish(datetime(2026, 3, 2, 9, 3))
    return report


def test_email_sink_sends_summary_and_extended() -> None:
    outbox = OutboxMailer()
    EmailReportSink(outbox, "admin@example.com", app_name="billrun").deliver(finished_report(failed=True))

    message = outbox.sent[0]
    assert message.to == "admin@example.com"
    assert message.subject == "billrun task results: 2026-03-02 09:00"
    assert "Failure: Charging pending invoices, 0 OK, 1 failed." in message.body
    assert "Extended:\nCharging pending invoices:\nboom" in message.body


def test_email_sink_omits_empty_extended_section() -> None:
    outbox = OutboxMailer()
    EmailReportSink(outbox, "admin@example.com").deliver(finished_report())

    assert "Extended" not in outbox.sent[0].body
    assert "Started: 2026-03-02 09:00:00" in outbox.sent[0].body


def test_database_sink_records_history(session_factory) -> None:
    sink = DatabaseReportSink(session_factory, trigger_source="scheduled")
    sink.deliver(finished_report(started=datetime(2026, 3, 1, 9, 0)))
    sink.deliver(finished_report(failed=True))

    with session_factory() as db:
        runs = list_recent_runs(db, limit=5)

    assert [run.status for run in runs] == [COMPLETED_WITH_FAILURES, SUCCEEDED]
    assert runs[0].trigger_source == "scheduled"
    assert runs[0].failure_count == 1
    assert runs[1].summary == "Success: Charging pending invoices, 2 OK.\n"


def test_unfinished_report_is_not_recorded(session_factory) -> None:
    report = Report()
    report.start(datetime(2026, 3, 2, 9, 0))

    with session_factory() as db:
        with pytest.raises(ValueError):
            record_task_run(db, report, trigger_source="manual")


def test_composite_sink_delivers_to_each_sink_in_order() -> None:
    delivered: list[str] = []

    class Named:
        def __init__(self, name: str) -> None:
            self.name = name

        def deliver(self, report: Report) -> None:
            delivered.append(self.name)

    CompositeReportSink(Named("db"), Named("email")).deliver(finished_report())

    assert delivered == ["db", "email"]
