import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from sqlalchemy.orm import Session, sessionmaker

from billrun.config import Settings
from billrun.notifications import build_mailer
from billrun.pipeline import TaskPipeline
from billrun.sinks import CompositeReportSink, DatabaseReportSink, EmailReportSink


logger = logging.getLogger(__name__)


def build_pipeline(settings: Settings, session_factory: sessionmaker[Session], *, trigger_source: str) -> TaskPipeline:
    mailer = build_mailer(settings)
    sink = CompositeReportSink(
        DatabaseReportSink(session_factory, trigger_source=trigger_source),
        EmailReportSink(mailer, settings.admin_email, app_name=settings.app_name),
    )
    return TaskPipeline(settings, session_factory, sink, mailer=mailer)


def _run_daily_tasks(settings: Settings, session_factory: sessionmaker[Session]) -> None:
    pipeline = build_pipeline(settings, session_factory, trigger_source="scheduled")
    try:
        report = pipeline.run()
    except Exception:
        # Keep the scheduler alive for the next day's run.
        logger.exception("scheduled task run failed")
        return

    if report.has_failures:
        logger.error(
            "scheduled task run completed with failures",
            extra={"failure_count": report.failure_count},
        )
        return
    logger.info("scheduled task run completed", extra={"failure_count": 0})


def start_scheduler(settings: Settings, session_factory: sessionmaker[Session], *, run_now: bool = False) -> None:
    scheduler = BlockingScheduler(timezone="UTC")
    scheduler.add_job(
        _run_daily_tasks,
        "cron",
        args=[settings, session_factory],
        hour=settings.schedule_hour_utc,
        minute=settings.schedule_minute_utc,
        id="daily_billing_tasks",
        replace_existing=True,
    )

    logger.info(
        "scheduler started",
        extra={
            "schedule_hour_utc": settings.schedule_hour_utc,
            "schedule_minute_utc": settings.schedule_minute_utc,
        },
    )

    if run_now:
        _run_daily_tasks(settings, session_factory)

    scheduler.start()
