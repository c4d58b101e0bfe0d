import argparse
import json
import logging
import sys
from pathlib import Path

import redis

from . import service
from .config import resolve_config
from .logging_config import setup_logging
from .submission import SubmissionError, load_submission


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="transcode-queue", description="Video transcode job queue and worker"
    )
    parser.add_argument("--config", "-c", type=str, help="Config YAML (default: config/default.yaml)")
    parser.add_argument("--queue-name", type=str, help="Override the pending queue key")
    parser.add_argument("--debug", action="store_true", default=None, help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Subcommands")

    # WORKER
    worker_parser = subparsers.add_parser("worker", help="Run a worker until SIGTERM/SIGINT")
    worker_parser.add_argument("--worker-id", type=str, help="Worker identity (default: host_pid)")
    worker_parser.add_argument("--claim-timeout", type=int, help="Blocking claim timeout (s)")
    worker_parser.add_argument("--media-base-path", type=str, help="Output root directory")

    # SUBMIT
    submit_parser = subparsers.add_parser("submit", help="Enqueue jobs from a JSON file")
    submit_parser.add_argument("file", type=str, help='JSON job, list of jobs, or {"videos": [...]}')
    submit_parser.add_argument("--webhook-url", type=str, help="Default webhook endpoint")

    # QUEUE subcommands (status, batch, promote, clear)
    queue_parser = subparsers.add_parser("queue", help="Inspect and manage the queue")
    queue_subparsers = queue_parser.add_subparsers(
        dest="queue_command", required=True, help="Queue commands"
    )

    queue_subparsers.add_parser("status", help="Show queue counters")

    batch_parser = queue_subparsers.add_parser("batch", help="Show batch progress")
    batch_parser.add_argument("batch_id", type=str, help="Batch id returned by submit")

    queue_subparsers.add_parser("promote", help="Move due retries back to pending")

    clear_parser = queue_subparsers.add_parser("clear", help="Delete all queues and counters")
    clear_parser.add_argument("--yes", action="store_true", help="Confirm the destructive reset")

    # HEALTH
    subparsers.add_parser("health", help="Print health report (exit 0/1/2)")

    # CLEANUP
    cleanup_parser = subparsers.add_parser("cleanup", help="Maintenance sweep")
    cleanup_parser.add_argument(
        "--dry-run", action="store_true", help="Show what would be deleted without deleting"
    )
    cleanup_parser.add_argument("--max-age", type=int, default=90, help="Max media age in days")
    cleanup_parser.add_argument("--verbose", action="store_true", help="Show detailed output")

    return parser


def _print_table(title: str, rows) -> None:
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)
    for label, value in rows:
        print(f"{label:<22}{value}")
    print("=" * 60)


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    # Convert args to dict, filtering None
    cli_dict = {k: v for k, v in vars(args).items() if v is not None}
    cfg = resolve_config(
        cli_args=cli_dict,
        config_path=Path(args.config) if args.config else None,
    )

    if args.command == "worker":
        service.run_worker(cfg)
        return 0

    verbose = getattr(args, "verbose", False)
    setup_logging(
        None, level=logging.DEBUG if (cfg.logging.debug or verbose) else logging.WARNING
    )

    try:
        return _dispatch(args, cfg)
    except redis.RedisError as e:
        print(f"❌ Redis error: {e}", file=sys.stderr)
        return 2


def _dispatch(args, cfg) -> int:
    if args.command == "submit":
        try:
            raw_videos = load_submission(Path(args.file))
            batch_id, job_ids = service.submit_jobs(raw_videos, cfg, webhook_url=args.webhook_url)
        except SubmissionError as e:
            print(f"❌ {e}", file=sys.stderr)
            for err in e.errors:
                print(f"   - {err}", file=sys.stderr)
            return 1

        print(json.dumps({"batch_id": batch_id, "job_ids": job_ids, "total": len(job_ids)}, indent=2))
        return 0

    if args.command == "queue":
        if args.queue_command == "status":
            stats = service.get_queue_stats(cfg)
            _print_table("QUEUE STATUS", [
                ("Total:", stats.total),
                ("Pending:", stats.pending),
                ("Processing:", stats.processing),
                ("Completed:", stats.completed),
                ("Failed:", stats.failed),
                ("Queue length:", stats.queue_length),
                ("In processing list:", stats.processing_count),
                ("Delayed:", stats.delayed_count),
                ("Dead letter:", stats.dead_letter_count),
            ])
            return 0

        if args.queue_command == "batch":
            batch = service.get_batch_stats(cfg, args.batch_id)
            if batch is None:
                print(f"❌ Unknown batch: {args.batch_id}", file=sys.stderr)
                return 1
            _print_table(f"BATCH {batch.batch_id}", [
                ("Total:", batch.total),
                ("Completed:", batch.completed),
                ("Failed:", batch.failed),
                ("Remaining:", batch.total - batch.completed - batch.failed),
            ])
            return 0

        if args.queue_command == "promote":
            count = service.promote_delayed(cfg)
            print(f"Promoted {count} delayed jobs")
            return 0

        if args.queue_command == "clear":
            if not args.yes:
                print("Refusing to clear without --yes", file=sys.stderr)
                return 1
            service.clear_queue(cfg)
            print("✅ All queues cleared")
            return 0

    if args.command == "health":
        report = service.run_health_check(cfg)
        print(report.model_dump_json(indent=2))
        return report.exit_code

    if args.command == "cleanup":
        stats = service.run_cleanup(cfg, max_age_days=args.max_age, dry_run=args.dry_run)
        title = "CLEANUP SUMMARY (DRY RUN)" if args.dry_run else "CLEANUP SUMMARY"
        _print_table(title, [
            ("Old directories:", stats.old_directories_removed),
            ("Temp files:", stats.temp_files_removed),
            ("Empty directories:", stats.empty_directories_removed),
            ("Logs rotated:", stats.log_files_rotated),
            ("Completed jobs:", stats.completed_jobs_removed),
            ("Space freed (MB):", f"{stats.space_freed_mb:.2f}"),
        ])
        return 0

    return 1


if __name__ == "__main__":
    sys.exit(main())
