import argparse
import json
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from .config import resolve_config
from .jobs.errors import JobNotFound, StartupError, StoreError
from .jobs.models import JobStatus
from .jobs.sqlite_store import SQLiteJobStore
from .service import build_transcoder

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s: %(message)s"


def _open_store(config) -> SQLiteJobStore:
    try:
        return SQLiteJobStore(config.storage.database_path)
    except StoreError as e:
        print(f"❌ {e}")
        sys.exit(1)


def run_serve(config) -> None:
    import uvicorn

    from .api import create_app
    from .service import TranscoderService

    try:
        service = TranscoderService(config)
    except StartupError as e:
        logger.error("Startup failed: %s", e)
        sys.exit(1)

    app = create_app(service)
    logger.info("Server starting on %s:%d", config.server.host, config.server.port)
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=logging.getLevelName(logging.getLogger().level).lower(),
        timeout_graceful_shutdown=int(config.workers.shutdown_timeout_s),
    )


def run_check(config) -> None:
    print("Checking dependencies...")
    transcoder = build_transcoder(config)
    if transcoder.is_available():
        print(f"✅ ffmpeg found: {transcoder.get_ffmpeg_exe()}")
    else:
        print("❌ ffmpeg NOT found.")
        sys.exit(1)


def run_jobs_list(config, status=None, limit=20) -> None:
    store = _open_store(config)
    try:
        if status:
            jobs = store.list_by_status([JobStatus(status)])[:limit]
            total = len(jobs)
        else:
            jobs, total = store.list_jobs(limit=limit)
    finally:
        store.close()

    print("\n" + "=" * 78)
    print(f"JOBS ({len(jobs)} of {total})")
    print("=" * 78)
    for job in jobs:
        print(
            f"{job.id}  {JobStatus(job.status).value:<10} {job.progress:>3}%  "
            f"{job.original_name}"
        )
    print("=" * 78)


def run_jobs_show(config, job_id: str) -> None:
    store = _open_store(config)
    try:
        job = store.get(job_id)
    except JobNotFound:
        print(f"Job {job_id} not found")
        sys.exit(1)
    finally:
        store.close()
    print(json.dumps(job.model_dump(mode="json"), indent=2))


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="media-transcoder", description="Queued video transcoding service"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    parser.add_argument("--config", type=Path, help="YAML file used instead of config/local.yaml")
    parser.add_argument("--temp-dir", type=str, help="Override storage.temp_dir")
    subparsers = parser.add_subparsers(dest="command", help="Subcommands")

    # SERVE
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API and transcode workers")
    serve_parser.add_argument("--host", type=str, help="Bind address")
    serve_parser.add_argument("--port", "-p", type=int, help="Listen port")
    serve_parser.add_argument("--workers", "-w", type=int, help="Number of transcode workers")

    # CHECK FFMPEG
    subparsers.add_parser("check", help="Verify dependencies")

    # JOBS subcommands (list, show)
    jobs_parser = subparsers.add_parser("jobs", help="Inspect stored jobs")
    jobs_subparsers = jobs_parser.add_subparsers(dest="jobs_command", help="Jobs commands")

    list_parser = jobs_subparsers.add_parser("list", help="List jobs, newest first")
    list_parser.add_argument(
        "--status", choices=[s.value for s in JobStatus], help="Only jobs in this state"
    )
    list_parser.add_argument("--limit", type=int, default=20, help="Max jobs to print")

    show_parser = jobs_subparsers.add_parser("show", help="Print one job as JSON")
    show_parser.add_argument("job_id", type=str, help="Job id")

    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT)

    if args.command is None:
        parser.print_help()
        return

    # Convert args to dict, filtering None
    cli_dict = {k: v for k, v in vars(args).items() if v is not None}
    try:
        config = resolve_config(cli_dict, config_path=args.config)
    except ValidationError as e:
        print(f"❌ Invalid configuration:\n{e}")
        sys.exit(1)

    if args.command == "serve":
        run_serve(config)

    elif args.command == "check":
        run_check(config)

    elif args.command == "jobs":
        if args.jobs_command == "list":
            run_jobs_list(config, status=args.status, limit=args.limit)
        elif args.jobs_command == "show":
            run_jobs_show(config, args.job_id)
        else:
            jobs_parser.print_help()


if __name__ == "__main__":
    main()
