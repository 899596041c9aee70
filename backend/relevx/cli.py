"""CLI entry point for manual research runs and scheduling helpers.

Usage:
    cd backend && python -m relevx.cli run --user U --project P [--force]
    cd backend && python -m relevx.cli activate --user U --project P
    cd backend && python -m relevx.cli next-run --frequency weekly --time 09:00 --tz America/New_York
    cd backend && python -m relevx.cli schedule
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def _summarize(result) -> dict:
    return {
        "success": result.success,
        "project_id": result.project_id,
        "error": result.error,
        "iterations_used": result.iterations_used,
        "queries_executed": result.queries_executed,
        "urls_fetched": result.urls_fetched,
        "urls_successful": result.urls_successful,
        "urls_relevant": result.urls_relevant,
        "results": [
            {"url": r.url, "title": r.title, "score": r.relevancy_score, "query": r.source_query}
            for r in result.relevant_results
        ],
        "report_title": result.report.title if result.report else None,
        "delivery_log_id": result.delivery_log_id,
        "duration_ms": result.duration_ms,
    }


async def run_project(user_id: str, project_id: str, force: bool = False) -> dict:
    """Run research once for a project with providers built from settings."""
    from relevx.db.database import create_db_and_tables
    from relevx.engine.runtime import (
        build_default_providers,
        execute_research_for_project,
        set_default_providers,
    )
    from relevx.models.research import ResearchOptions

    create_db_and_tables()
    defaults = build_default_providers()
    set_default_providers(defaults.llm, defaults.search, defaults.extractor)
    result = await execute_research_for_project(
        user_id, project_id, ResearchOptions(ignore_frequency_check=force)
    )
    return _summarize(result)


async def run_scheduler() -> None:
    """Run the scheduler loop until interrupted."""
    from relevx.db.database import create_db_and_tables
    from relevx.db.database import engine as db_engine
    from relevx.db.store import ResearchStore
    from relevx.engine.runtime import build_default_providers, set_default_providers
    from relevx.scheduler import ResearchScheduler

    create_db_and_tables()
    defaults = build_default_providers()
    set_default_providers(defaults.llm, defaults.search, defaults.extractor)
    scheduler = ResearchScheduler(ResearchStore(db_engine), enabled=True, startup_delay_seconds=0)
    await scheduler.start()
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        scheduler.stop()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Relevx research engine")
    sub = parser.add_subparsers(dest="command", required=True)

    run_p = sub.add_parser("run", help="Run research for one project now")
    run_p.add_argument("--user", "-u", required=True, help="Owning user id")
    run_p.add_argument("--project", "-p", required=True, help="Project id")
    run_p.add_argument("--force", action="store_true", help="Skip the once-per-day frequency check")
    run_p.add_argument("--output", "-o", help="Output JSON file path")

    act_p = sub.add_parser("activate", help="Activate a project and schedule its first run")
    act_p.add_argument("--user", "-u", required=True)
    act_p.add_argument("--project", "-p", required=True)

    next_p = sub.add_parser("next-run", help="Print the next run time for a schedule")
    next_p.add_argument("--frequency", "-f", choices=["daily", "weekly", "monthly"], default="daily")
    next_p.add_argument("--time", "-t", default="09:00", help="Delivery time HH:MM (15-minute steps)")
    next_p.add_argument("--tz", default="UTC", help="IANA timezone")

    sub.add_parser("schedule", help="Run the scheduler loop")

    args = parser.parse_args(argv)

    if args.command == "run":
        logger.info("Running research for project %s (force=%s)", args.project, args.force)
        result = asyncio.run(run_project(args.user, args.project, args.force))
        if args.output:
            with open(args.output, "w") as f:
                json.dump(result, f, indent=2, default=str)
            logger.info("Results written to %s", args.output)
        else:
            print(json.dumps(result, indent=2, default=str))

    elif args.command == "activate":
        from relevx.db.database import create_db_and_tables
        from relevx.db.database import engine as db_engine
        from relevx.db.store import ResearchStore
        from relevx.engine.runtime import activate_project

        create_db_and_tables()
        project = activate_project(ResearchStore(db_engine), args.user, args.project)
        print(json.dumps({"project_id": project.id, "next_run_at": project.next_run_at}, default=str))

    elif args.command == "next-run":
        from relevx.scheduling import (
            calculate_next_run_at,
            format_timestamp_in_timezone,
            validate_delivery_time,
        )

        if not validate_delivery_time(args.time):
            parser.error(f"invalid delivery time {args.time!r}: use HH:MM in 15-minute increments")
        next_run = calculate_next_run_at(args.frequency, args.time, args.tz)
        print(f"{next_run.isoformat()}  ({format_timestamp_in_timezone(next_run, args.tz)})")

    elif args.command == "schedule":
        try:
            asyncio.run(run_scheduler())
        except KeyboardInterrupt:
            logger.info("Scheduler interrupted")


if __name__ == "__main__":
    main()
