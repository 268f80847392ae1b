from dataclasses import replace
import smtplib

import pytest

from billrun.notifications import SmtpMailer
from billrun.retry import RetryExhaustedError, RetryPolicy


def test_returns_after_transient_failures() -> None:
    attempts: list[int] = []
    slept: list[float] = []

    def flaky() -> str:
        attempts.append(1)
        if len(attempts) < 3:
            raise ConnectionError("try again")
        return "sent"

    policy = RetryPolicy(max_retries=2, backoff_seconds=0.5, sleep=slept.append)

    assert policy.call(flaky) == "sent"
    assert len(attempts) == 3
    assert slept == [0.5, 1.0]


def test_gives_up_when_retries_run_out() -> None:
    policy = RetryPolicy(max_retries=1, backoff_seconds=0, sleep=lambda seconds: None)

    def down() -> None:
        raise ConnectionError("smtp down")

    with pytest.raises(RetryExhaustedError, match="gave up after 2 attempt"):
        policy.call(down)


def test_non_retryable_error_stops_immediately() -> None:
    attempts: list[int] = []

    def rejected() -> None:
        attempts.append(1)
        raise ValueError("recipient refused")

    policy = RetryPolicy(max_retries=5, backoff_seconds=0, sleep=lambda seconds: None)
    with pytest.raises(RetryExhaustedError) as excinfo:
        policy.call(rejected, should_retry=lambda exc: False)

    assert len(attempts) == 1
    assert isinstance(excinfo.value.__cause__, ValueError)


def test_smtp_mailer_retries_dropped_connections(monkeypatch, test_settings) -> None:
    sent: list[str] = []
    connections: list[int] = []

    class FakeSMTP:
        def __init__(self, host: str, port: int, timeout: float) -> None:
            connections.append(port)
            if len(connections) == 1:
                raise smtplib.SMTPServerDisconnected("connection dropped")

        def __enter__(self) -> "FakeSMTP":
            return self

        def __exit__(self, *exc_info) -> None:
            return None

        def send_message(self, message) -> None:
            sent.append(message["To"])

    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    settings = replace(test_settings, smtp_host="mail.example.com", max_delivery_retries=1)

    SmtpMailer(settings).send("ada@example.com", "Receipt", "Thanks")

    assert connections == [25, 25]
    assert sent == ["ada@example.com"]
