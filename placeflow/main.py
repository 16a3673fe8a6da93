"""Command-line entrypoints for the placeflow ingestion service."""
from __future__ import annotations

import argparse
import contextlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import orjson
import structlog
import uvloop
from dotenv import load_dotenv

from placeflow.enrich.seo import SeoEnhancer
from placeflow.errors import ProcessorNotRegistered
from placeflow.fetch.pages import create_http_client
from placeflow.observability.log import configure_logging
from placeflow.observability.metrics import MetricsRegistry
from placeflow.orchestrator.events import EventBus
from placeflow.orchestrator.jobs import JobKind
from placeflow.orchestrator.processors import EnrichmentProcessor, ScrapeProcessor, ValidationProcessor
from placeflow.orchestrator.schedule_loop import ScheduledJob, run_schedule_loop
from placeflow.orchestrator.scheduler import JobScheduler
from placeflow.parse.text import TextParser
from placeflow.pipeline.batch import BatchCoordinator
from placeflow.pipeline.ingest import IngestionPipeline
from placeflow.quality.quarantine import Quarantine
from placeflow.quality.similarity import SimilarityEngine
from placeflow.quality.validate import RecordValidator
from placeflow.settings import DEFAULT_SETTINGS_PATH, Settings, load_settings
from placeflow.storage.database import Database
from placeflow.storage.job_table import JobStore
from placeflow.storage.places import PlaceStore

LOGGER = structlog.get_logger(__name__)


@dataclass
class Runtime:
    """Everything a command needs, wired once."""

    settings: Settings
    database: Database
    jobs: JobStore
    places: PlaceStore
    metrics: MetricsRegistry
    scheduler: JobScheduler
    pipeline: IngestionPipeline
    coordinator: BatchCoordinator


def build_runtime(settings: Settings, *, client: Optional[httpx.AsyncClient] = None) -> Runtime:
    """Composition root. Refuses to build a scheduler with unhandled job kinds."""
    database = Database(settings.app.database)
    jobs = JobStore(database)
    places = PlaceStore(database)
    metrics = MetricsRegistry()
    scheduler = JobScheduler(
        jobs,
        concurrency=settings.scheduler.concurrency,
        interval=settings.scheduler.interval_seconds,
        interval_cap=settings.scheduler.interval_cap,
        job_timeout=settings.scheduler.job_timeout_seconds,
        stale_after=settings.scheduler.stale_after_seconds,
        sweep_interval=settings.scheduler.sweep_interval_seconds,
        events=EventBus(),
        metrics=metrics,
    )
    engine = SimilarityEngine(
        threshold=settings.pipeline.duplicate_threshold,
        country_prefix=settings.app.country_prefix,
    )
    pipeline = IngestionPipeline(TextParser(engine), RecordValidator(), places, SeoEnhancer(), engine)
    coordinator = BatchCoordinator(
        pipeline,
        places,
        scheduler,
        quarantine=Quarantine(settings.app.quarantine_dir),
        metrics=metrics,
    )
    scheduler.register_processor(
        JobKind.SCRAPE,
        ScrapeProcessor(coordinator, jobs, client=client, fetch_timeout=settings.fetch.timeout_seconds),
    )
    scheduler.register_processor(JobKind.ENRICH, EnrichmentProcessor(places))
    scheduler.register_processor(JobKind.VALIDATE, ValidationProcessor(places))
    missing = scheduler.missing_processors()
    if missing:
        database.close()
        raise ProcessorNotRegistered(missing[0].value)
    return Runtime(
        settings=settings,
        database=database,
        jobs=jobs,
        places=places,
        metrics=metrics,
        scheduler=scheduler,
        pipeline=pipeline,
        coordinator=coordinator,
    )


@contextlib.asynccontextmanager
async def open_runtime(settings: Settings) -> AsyncIterator[Runtime]:
    async with create_http_client(
        user_agent=settings.fetch.user_agent,
        timeout=settings.fetch.timeout_seconds,
        max_connections=settings.fetch.max_connections,
    ) as client:
        runtime = build_runtime(settings, client=client)
        try:
            yield runtime
        finally:
            runtime.database.close()


def build_arg_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(prog="placeflow", description="place ingestion and job scheduling")
    parser.add_argument("--settings", default=str(DEFAULT_SETTINGS_PATH), help="Path to settings TOML")
    sub = parser.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="Process a text or JSON file and save the results")
    ingest.add_argument("path", help="AI response text, or a JSON array of place objects")
    ingest.add_argument("--source", default="manual", help="Source label stored with saved places")
    ingest.add_argument("--category", help="Fallback category for records without one")
    ingest.add_argument("--keep-duplicates", action="store_true", help="Save records that match existing places")
    ingest.add_argument("--enrich-all", action="store_true", help="Enrich inline instead of scheduling jobs")

    enqueue = sub.add_parser("enqueue", help="Add a job to the job table")
    enqueue.add_argument("kind", choices=[kind.value for kind in JobKind])
    enqueue.add_argument("--payload", default="{}", help="JSON object passed to the processor")
    enqueue.add_argument("--priority", type=int, default=5, help="Higher runs first")
    enqueue.add_argument("--max-attempts", type=int, help="Attempts before the job is failed")

    worker = sub.add_parser("worker", help="Run pending jobs")
    worker.add_argument("--until-idle", action="store_true", help="Exit once nothing is left to run")

    schedule = sub.add_parser("schedule", help="Run the cron loop alongside a worker")
    schedule.add_argument("--ticks", type=int, help="Number of iterations to execute")
    schedule.add_argument("--interval", type=float, help="Seconds between ticks")

    sub.add_parser("sweep", help="Reset stale processing jobs once")

    status = sub.add_parser("status", help="Summarise the job table")
    status.add_argument("--status", dest="job_status", help="Only list jobs with this status")
    status.add_argument("--limit", type=int, default=20, help="Number of jobs to list")

    return parser


def _read_items(path: Path) -> Any:
    if path.suffix.lower() == ".json":
        payload = orjson.loads(path.read_bytes())
        if isinstance(payload, dict):
            payload = payload.get("items", [payload])
        if not isinstance(payload, list):
            raise SystemExit(f"Expected a JSON array in {path}")
        return payload
    return path.read_text(encoding="utf-8")


async def cmd_ingest(args: argparse.Namespace, settings: Settings) -> Dict[str, Any]:
    path = Path(args.path)
    if not path.exists():
        raise SystemExit(f"Input not found: {path}")
    items = _read_items(path)
    async with open_runtime(settings) as runtime:
        skip = settings.pipeline.skip_duplicates and not args.keep_duplicates
        if isinstance(items, str):
            summary = await runtime.coordinator.process_text(
                items, source=args.source, category=args.category, skip_duplicates=skip
            )
        else:
            summary = await runtime.coordinator.process_and_save(
                items,
                source=args.source,
                category=args.category,
                skip_duplicates=skip,
                enrich_all=args.enrich_all,
                concurrency=settings.pipeline.batch_concurrency,
            )
        return summary.as_dict()


async def cmd_enqueue(args: argparse.Namespace, settings: Settings) -> Dict[str, Any]:
    try:
        payload = json.loads(args.payload)
    except json.JSONDecodeError as exc:
        raise SystemExit(f"Invalid --payload: {exc}")
    if not isinstance(payload, dict):
        raise SystemExit("--payload must be a JSON object")
    async with open_runtime(settings) as runtime:
        job_id = await runtime.scheduler.add_job(
            JobKind(args.kind),
            payload,
            priority=args.priority,
            max_attempts=args.max_attempts or settings.scheduler.max_attempts,
        )
    return {"job_id": job_id}


async def cmd_worker(args: argparse.Namespace, settings: Settings) -> Dict[str, Any]:
    async with open_runtime(settings) as runtime:
        scheduler = runtime.scheduler
        restored = await scheduler.start()
        try:
            if args.until_idle:
                await scheduler.join()
            else:
                await scheduler.wait_forever()
        finally:
            await scheduler.shutdown()
        export = runtime.metrics.export(
            path=settings.app.metrics_dir / "worker.json", run_id="worker"
        )
        return {"restored": restored, "stats": scheduler.get_stats(), "metrics": str(export)}


async def cmd_schedule(args: argparse.Namespace, settings: Settings) -> Dict[str, Any]:
    entries = [ScheduledJob.from_config(entry.model_dump(mode="json")) for entry in settings.schedule.jobs]
    if not entries:
        return {"added": []}
    async with open_runtime(settings) as runtime:
        await runtime.scheduler.start()
        try:
            added = await run_schedule_loop(
                entries,
                runtime.scheduler,
                interval_seconds=args.interval or settings.schedule.interval_seconds,
                ticks=args.ticks,
            )
        finally:
            await runtime.scheduler.shutdown()
    return {"added": added}


async def cmd_sweep(args: argparse.Namespace, settings: Settings) -> Dict[str, Any]:
    async with open_runtime(settings) as runtime:
        reset = await runtime.scheduler.sweep_stale_jobs()
    return {"reset": reset}


async def cmd_status(args: argparse.Namespace, settings: Settings) -> Dict[str, Any]:
    async with open_runtime(settings) as runtime:
        counts = await runtime.jobs.count_by_status()
        rows = await runtime.jobs.list_jobs(status=args.job_status, limit=args.limit)
        places = await runtime.places.count()
    listed: List[Dict[str, Any]] = [
        {
            "id": row["id"],
            "type": row["job_type"],
            "status": row["status"],
            "priority": row["priority"],
            "attempts": f"{row['attempts']}/{row['max_attempts']}",
            "items": f"{row['successful_items']}/{row['total_items']}",
            "error": row["error_message"],
        }
        for row in rows
    ]
    return {"counts": counts, "places": places, "jobs": listed}


COMMANDS = {
    "ingest": cmd_ingest,
    "enqueue": cmd_enqueue,
    "worker": cmd_worker,
    "schedule": cmd_schedule,
    "sweep": cmd_sweep,
    "status": cmd_status,
}


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI."""
    load_dotenv()
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    settings = load_settings(Path(args.settings))
    configure_logging(settings.app.logging_config)

    handler = COMMANDS[args.command]
    try:
        result = uvloop.run(handler(args, settings))
    except KeyboardInterrupt:
        LOGGER.info("cli.interrupted", command=args.command)
        raise SystemExit(130)
    print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    main()
