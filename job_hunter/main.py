"""CLI entry point for the job hunter pipeline."""

import argparse
import json
import logging
import signal
import sys
import threading

from job_hunter.config import AppConfig, load_config, validate_config
from job_hunter.errors import DigestError
from job_hunter.models import Settings, SessionLocal, engine
from job_hunter.models.search_run import STATUS_FAILED
from job_hunter.notifications.email_sender import send_email
from job_hunter.notifications.templates import render_test_email
from job_hunter.pipeline import TRIGGER_MANUAL, PipelineRunner
from job_hunter.storage.database import get_stats, init_db
from job_hunter.utils.logging_config import setup_logging

logger = logging.getLogger("job_hunter")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Job Hunter - Automated job search, AI scoring and daily digest",
    )
    parser.add_argument(
        "--config", default="config.yaml",
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "--test-email", action="store_true",
        help="Send a test email and exit",
    )
    parser.add_argument(
        "--stats", action="store_true",
        help="Print database statistics and exit",
    )
    parser.add_argument(
        "--schedule", action="store_true",
        help="Run on the cron schedule from settings until interrupted",
    )
    parser.add_argument(
        "--serve", action="store_true",
        help="Start the HTTP API (requires uvicorn)",
    )
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    return parser.parse_args(argv)


def print_stats(stats: dict):
    """Print database statistics."""
    print("\n=== Job Hunter Statistics ===")
    print(f"Total jobs tracked: {stats['total_jobs_tracked']}")
    print(f"Unseen strong matches: {stats['unseen_strong_matches']}")
    print(f"Total pipeline runs: {stats['total_runs']}")

    if stats.get("by_verdict"):
        print("\nJobs by verdict:")
        for verdict, count in stats["by_verdict"].items():
            print(f"  {verdict}: {count}")

    if stats.get("last_run"):
        run = stats["last_run"]
        print(f"\nLast run: {run['ran_at']} ({run['trigger']})")
        print(f"  Status: {run['status']}")
        print(f"  Fetched: {run['jobs_fetched']}")
        print(f"  Scored: {run['jobs_scored']}")
        print(
            f"  Strong / Weak / No match: {run['jobs_strong_match']} / "
            f"{run['jobs_weak_match']} / {run['jobs_no_match']}"
        )
        print(f"  Duplicates: {run['jobs_duplicate']}")
        if run["error_log"]:
            print("  Errors:\n    " + run["error_log"].replace("\n", "\n    "))
    print()


def send_test_email(config: AppConfig) -> None:
    """Send the test email using DB settings first, config.yaml second."""
    db = SessionLocal()
    try:
        settings = db.get(Settings, 1)
    finally:
        db.close()

    email = config.email
    resend_key = config.api_keys.resend_api_key
    if settings is not None:
        email.recipient_email = settings.email_recipient or email.recipient_email
        email.email_from = settings.email_from or email.email_from
        resend_key = settings.resend_api_key or resend_key

    subject, html = render_test_email()
    send_email(email, subject, html, resend_key)


def run_schedule(runner: PipelineRunner) -> None:
    """Block on the APScheduler job until SIGINT/SIGTERM."""
    from job_hunter.scheduler import start_schedule, stop_schedule

    db = SessionLocal()
    try:
        settings = db.get(Settings, 1)
        expression, timezone = settings.cron_schedule, settings.timezone
    finally:
        db.close()

    start_schedule(runner, expression, timezone)
    stop = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    logger.info("Scheduler running (%s, %s); press Ctrl+C to stop", expression, timezone)
    stop.wait()
    stop_schedule()


def main(argv=None):
    args = parse_args(argv)

    # Load config
    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config.log_dir)

    # Validate config and print warnings
    warnings = validate_config(config)
    for w in warnings:
        logger.warning("Config: %s", w)

    init_db(engine)

    # Handle --stats
    if args.stats:
        db = SessionLocal()
        try:
            print_stats(get_stats(db))
        finally:
            db.close()
        return

    # Handle --test-email
    if args.test_email:
        logger.info("Sending test email...")
        try:
            send_test_email(config)
        except DigestError as e:
            print(f"Failed to send test email: {e}", file=sys.stderr)
            sys.exit(1)
        print("Test email sent successfully!")
        return

    if args.serve:
        import uvicorn

        from job_hunter.web.app import create_app

        uvicorn.run(create_app(PipelineRunner(config)), host=args.host, port=args.port)
        return

    runner = PipelineRunner(config)
    if args.schedule:
        run_schedule(runner)
        return

    # Run the pipeline once
    result = runner.run(trigger=TRIGGER_MANUAL)
    print(json.dumps(result.to_dict(), indent=2))
    if result.status == STATUS_FAILED:
        sys.exit(1)


if __name__ == "__main__":
    main()
