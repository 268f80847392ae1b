from collections.abc import Callable
from datetime import datetime
from pathlib import Path

import pytest
from sqlalchemy.orm import Session, sessionmaker

from billrun.config import Settings
from billrun.database import build_session_factory
from billrun.notifications import OutboxMailer
from billrun.pipeline import TaskPipeline
from billrun.report import Report


NOW = datetime(2026, 3, 2, 9, 0, 0)


class RecordingSink:
    def __init__(self) -> None:
        self.delivered: list[Report] = []

    def deliver(self, report: Report) -> None:
        assert report.ended is not None
        self.delivered.append(report)


@pytest.fixture()
def clock() -> Callable[[], datetime]:
    return lambda: NOW


@pytest.fixture()
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        app_name="billrun",
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        log_level="INFO",
        log_dir="",
        trial_lead_days=7,
        payable_days=10,
        admin_email="admin@example.com",
        mail_from="billing@example.com",
        smtp_host="",
        smtp_port=25,
        smtp_username="",
        smtp_password="",
        smtp_use_tls=False,
        max_delivery_retries=0,
        retry_backoff_seconds=0,
        schedule_hour_utc=3,
        schedule_minute_utc=0,
    )


@pytest.fixture()
def session_factory(test_settings: Settings) -> sessionmaker[Session]:
    return build_session_factory(test_settings.database_url)


@pytest.fixture()
def outbox() -> OutboxMailer:
    return OutboxMailer()


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def pipeline(test_settings, session_factory, sink, outbox, clock) -> TaskPipeline:
    return TaskPipeline(test_settings, session_factory, sink, mailer=outbox, clock=clock)
