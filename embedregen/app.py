import argparse
import json
import os
import sys
from typing import List

from . import __version__
from .checkpoint import CheckpointStore, describe
from .config import RegenSettings
from .database import init_database
from .env import load_env
from .errors import AuthorizationError, ValidationError
from .launcher import ENV_JOB_ID, JobIdGenerator, JobLauncher, Operator, params_from_env
from .logger import get_logger
from .schema import MODEL_DIMENSIONS, TABLES, LaunchParams
from .worker import run_job


def _launch_input(args: argparse.Namespace) -> dict:
    data = {
        "table": args.table,
        "model": args.model,
        "start_offset": args.start_offset,
        "only_missing": not args.all_rows,
    }
    if args.dimensions is not None:
        data["dimensions"] = args.dimensions
    return data


def cmd_launch(args: argparse.Namespace) -> None:
    settings = RegenSettings.from_env()
    settings.require_backend()
    launcher = JobLauncher(settings)
    try:
        job_id = launcher.start(_launch_input(args), Operator.from_env())
    except AuthorizationError as e:
        raise SystemExit(f"Launch refused: {e}")
    except ValidationError as e:
        print("Invalid:")
        for err in e.errors:
            print(f" - {err}")
        raise SystemExit(2)
    print(f"Job: {job_id}")
    print("Started in the background. Poll with: embedregen status --job-id " + job_id)


def cmd_resume(args: argparse.Namespace) -> None:
    settings = RegenSettings.from_env()
    settings.require_backend()
    launcher = JobLauncher(settings)
    try:
        job_id = launcher.resume(args.job_id, Operator.from_env())
    except AuthorizationError as e:
        raise SystemExit(f"Resume refused: {e}")
    except ValidationError as e:
        raise SystemExit(str(e))
    print(f"Job: {job_id}")


def cmd_worker(args: argparse.Namespace) -> None:
    """Entry point of the detached worker process."""
    settings = RegenSettings.from_env()
    try:
        params = params_from_env()
    except ValidationError as e:
        raise SystemExit(str(e))
    job_id = os.getenv(ENV_JOB_ID) or JobIdGenerator().next_id(params.table)
    logger = get_logger()
    logger.info(
        "Resuming embedding regeneration",
        job_id=job_id,
        retry_delay_seconds=settings.retry_delay,
        **params.to_dict(),
    )
    final = run_job(job_id, params, settings)
    print(json.dumps(describe(final), ensure_ascii=False))


def cmd_run(args: argparse.Namespace) -> None:
    """Run one or more tables sequentially in the foreground."""
    settings = RegenSettings.from_env()
    settings.require_backend()
    ids = JobIdGenerator()
    tables: List[str] = args.table or list(TABLES)
    for table in tables:
        data = _launch_input(args)
        data["table"] = table
        try:
            params = LaunchParams.from_dict(data)
        except ValidationError as e:
            raise SystemExit(str(e))
        final = run_job(ids.next_id(params.table), params, settings)
        print(f"[{final.status}] {final.job_id} rows={final.total_processed}")


def cmd_status(args: argparse.Namespace) -> None:
    settings = RegenSettings.from_env()
    store = CheckpointStore(settings.database_url)
    if args.job_id:
        checkpoint = store.load(args.job_id)
        if checkpoint is None:
            raise SystemExit(f"Job not found: {args.job_id}")
    else:
        checkpoint = store.latest()
    print(json.dumps(describe(checkpoint), indent=2, ensure_ascii=False))


def cmd_list(args: argparse.Namespace) -> None:
    settings = RegenSettings.from_env()
    store = CheckpointStore(settings.database_url)
    jobs = store.list_jobs(limit=args.limit)
    if not jobs:
        print("No jobs in store.")
        return
    print(f"Found {len(jobs)} jobs:\n")
    for job in jobs:
        print(f"ID: {job.job_id}")
        print(f"  Status: {job.status}")
        print(f"  Table: {job.table_name}")
        print(f"  Model: {job.model} ({job.dimensions})")
        print(f"  Progress: {job.current_offset}/{job.total_count} ({job.percentage}%)")
        if job.error_message:
            print(f"  Last error: {job.error_message}")
        print()


def cmd_init_db(args: argparse.Namespace) -> None:
    settings = RegenSettings.from_env()
    init_database(settings.database_url)
    print(f"Initialized {settings.database_url}")


def _add_job_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--model", default="text-embedding-3-large", help="Embedding model id or alias (small, large, ada-002)")
    parser.add_argument("--dimensions", type=int, help="Vector width; must be valid for the model. Valid: " + "; ".join(
        f"{m}={','.join(str(d) for d in dims)}" for m, dims in MODEL_DIMENSIONS.items()
    ))
    parser.add_argument("--start-offset", type=int, default=0, help="Row offset to start from (default 0)")
    parser.add_argument("--all-rows", action="store_true", help="Re-embed every row instead of only rows missing an embedding")


def main(argv=None):
    load_env()
    parser = argparse.ArgumentParser(prog="embedregen", description="Resumable embedding regeneration")
    parser.add_argument("--version", action="store_true", help="Show version")

    subparsers = parser.add_subparsers(dest="command")
    lch = subparsers.add_parser("launch", help="Start a background regeneration job and print its id")
    lch.add_argument("--table", required=True, help="Table: " + ", ".join(TABLES))
    _add_job_arguments(lch)
    lch.set_defaults(func=cmd_launch)

    rsm = subparsers.add_parser("resume", help="Relaunch a stopped job from its last checkpoint")
    rsm.add_argument("--job-id", required=True, help="Job id to resume")
    rsm.set_defaults(func=cmd_resume)

    wrk = subparsers.add_parser("worker", help="Run a job from EMBEDDING_* environment variables (used by launch)")
    wrk.set_defaults(func=cmd_worker)

    run = subparsers.add_parser("run", help="Run tables sequentially in the foreground")
    run.add_argument("--table", action="append", help="Table to process (repeatable; default: all)")
    _add_job_arguments(run)
    run.set_defaults(func=cmd_run)

    sts = subparsers.add_parser("status", help="Show progress of a job (default: latest)")
    sts.add_argument("--job-id", help="Job id")
    sts.set_defaults(func=cmd_status)

    lst = subparsers.add_parser("list", help="List recent jobs")
    lst.add_argument("--limit", type=int, default=20, help="Number of jobs (default 20)")
    lst.set_defaults(func=cmd_list)

    idb = subparsers.add_parser("init-db", help="Create the checkpoint table")
    idb.set_defaults(func=cmd_init_db)

    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        args.func(args)
        return

    parser.print_help(sys.stdout)


if __name__ == "__main__":
    main()
