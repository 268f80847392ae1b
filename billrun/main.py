import argparse
import logging

from billrun.config import get_settings
from billrun.database import build_session_factory
from billrun.run_store import list_recent_runs
from billrun.scheduler import build_pipeline, start_scheduler


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the periodic billing tasks")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="run all billing tasks once")
    run_parser.add_argument(
        "--trigger-source",
        default="manual",
        choices=["manual", "scheduled"],
        help="Metadata label for how this run was triggered",
    )

    schedule_parser = subparsers.add_parser("schedule", help="start daily scheduler")
    schedule_parser.add_argument("--run-now", action="store_true", help="also run once immediately")

    history_parser = subparsers.add_parser("history", help="show recent task runs")
    history_parser.add_argument("--limit", type=int, default=10, help="Number of runs to show")

    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    session_factory = build_session_factory(settings.database_url)
    if args.command == "schedule":
        start_scheduler(settings, session_factory, run_now=args.run_now)
        return

    if args.command == "history":
        with session_factory() as db:
            runs = list_recent_runs(db, limit=args.limit)
        for run in runs:
            print(
                "run_id={run_id} trigger={trigger} status={status} started={started} ended={ended} failures={failures}".format(
                    run_id=run.run_id,
                    trigger=run.trigger_source,
                    status=run.status,
                    started=run.started_at.isoformat(),
                    ended=run.ended_at.isoformat(),
                    failures=run.failure_count,
                )
            )
        return

    pipeline = build_pipeline(settings, session_factory, trigger_source=args.trigger_source)
    report = pipeline.run()

    print(report.summary, end="")
    print(
        "started={started} ended={ended} failures={failures} extended_log={path}".format(
            started=report.started.isoformat(),
            ended=report.ended.isoformat(),
            failures=report.failure_count,
            path=report.extended_log_path,
        )
    )
    if report.has_failures:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
