import os
from pathlib import Path
import subprocess
import sys

from sqlalchemy import create_engine, text


def _base_env(tmp_path: Path) -> dict[str, str]:
    env = os.environ.copy()
    env["DATABASE_URL"] = f"sqlite:///{tmp_path / 'cli.db'}"
    env["LOG_DIR"] = str(tmp_path / "logs")
    env["SMTP_HOST"] = ""
    env["MAX_DELIVERY_RETRIES"] = "0"
    env["RETRY_BACKOFF_SECONDS"] = "0"
    return env


def _run_cli(tmp_path: Path, *args: str) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "billrun.main", *args],
        cwd=Path(__file__).resolve().parents[1],
        env=_base_env(tmp_path),
        check=False,
        capture_output=True,
        text=True,
    )


def test_cli_run_prints_summary_and_records_history(tmp_path: Path) -> None:
    proc = _run_cli(tmp_path, "run", "--trigger-source", "manual")

    assert proc.returncode == 0
    assert "Success: Generating Invoices, 0 OK." in proc.stdout
    assert "Success: Notifying Trial Will Expire, 0 OK." in proc.stdout
    assert "failures=0" in proc.stdout
    assert not (tmp_path / "logs").exists()

    history = _run_cli(tmp_path, "history", "--limit", "5")

    assert history.returncode == 0
    assert "trigger=manual status=succeeded" in history.stdout


def test_cli_returns_nonzero_when_a_stage_fails(tmp_path: Path) -> None:
    # A legacy customers table without the billing columns breaks every customer query.
    engine = create_engine(f"sqlite:///{tmp_path / 'cli.db'}")
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE customers (id INTEGER PRIMARY KEY, email VARCHAR(255))"))
    engine.dispose()

    proc = _run_cli(tmp_path, "run")

    assert proc.returncode == 1
    assert "Failure: Charging pending invoices, 0 OK, 1 failed." in proc.stdout
    assert "Success: Generating Invoices, 0 OK." in proc.stdout
    assert "failures=5" in proc.stdout
    log_files = list((tmp_path / "logs").glob("billrun_*.log"))
    assert len(log_files) == 1
    assert "Collection getter failed" in log_files[0].read_text(encoding="utf-8")

    history = _run_cli(tmp_path, "history")
    assert "status=completed_with_failures" in history.stdout
    assert "failures=5" in history.stdout
