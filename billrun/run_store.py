from sqlalchemy import select
from sqlalchemy.orm import Session

from billrun.db_models import TaskRun
from billrun.report import Report
from billrun.schemas import TaskRunSummary


SUCCEEDED = "succeeded"
COMPLETED_WITH_FAILURES = "completed_with_failures"


def record_task_run(db: Session, report: Report, *, trigger_source: str) -> TaskRun:
    if report.started is None or report.ended is None:
        raise ValueError("only finished reports can be recorded")

    path = report.extended_log_path
    run = TaskRun(
        trigger_source=trigger_source,
        status=COMPLETED_WITH_FAILURES if report.has_failures else SUCCEEDED,
        started_at=report.started,
        ended_at=report.ended,
        failure_count=report.failure_count,
        summary=report.summary,
        extended=report.extended,
        extended_log_path=str(path) if path is not None else None,
    )
    db.add(run)
    db.commit()
    db.refresh(run)
    return run


def list_recent_runs(db: Session, *, limit: int = 10) -> list[TaskRunSummary]:
    stmt = select(TaskRun).order_by(TaskRun.started_at.desc(), TaskRun.id.desc()).limit(limit)
    return [
        TaskRunSummary(
            run_id=run.id,
            trigger_source=run.trigger_source,
            status=run.status,
            started_at=run.started_at,
            ended_at=run.ended_at,
            failure_count=run.failure_count,
            summary=run.summary,
            extended_log_path=run.extended_log_path,
        )
        for run in db.execute(stmt).scalars()
    ]
