"""
Dossier service entry point.

Wires the store, feed aggregator, summarization pipeline and mail transport
into a scheduler, and exposes the manual triggers on the command line.
"""

import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional

from dossier.config import Settings, load_settings
from dossier.errors import DossierError
from dossier.parsers.rss import RSSParser
from dossier.scheduler import Scheduler
from dossier.services.aggregator import FeedAggregator
from dossier.services.db import PostgresStore
from dossier.services.email_service import EmailService
from dossier.services.llm import build_inference_client
from dossier.services.summarizer import SummarizationPipeline
from dossier.services.tones import ToneRepository


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def build_scheduler(settings: Settings, store: PostgresStore) -> Scheduler:
    """Creates a scheduler with every collaborator injected."""
    pipeline = SummarizationPipeline(
        client=build_inference_client(settings),
        tones=ToneRepository(store),
        standard_model=settings.standard_model,
        unrestricted_model=settings.unrestricted_model,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        timeout=settings.inference_timeout,
    )
    return Scheduler(
        store=store,
        fetcher=FeedAggregator(RSSParser(), store=store),
        summarizer=pipeline,
        mailer=EmailService(settings.smtp),
        poll_interval=settings.poll_interval,
        max_workers=settings.max_workers,
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="dossier", description="Scheduled news dossiers.")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="Run the scheduler until interrupted.")
    sub.add_parser("migrate", help="Create the database schema and default tones.")
    sub.add_parser("check-smtp", help="Verify the SMTP connection and credentials.")
    generate = sub.add_parser("generate", help="Generate and send a dossier now.")
    generate.add_argument("config_id", type=int)
    test = sub.add_parser("test", help="Send a test dossier without recording it.")
    test.add_argument("config_id", type=int)
    return parser.parse_args(argv)


def run_forever(scheduler: Scheduler) -> None:
    """Runs the scheduler until SIGINT or SIGTERM."""
    stop = threading.Event()

    def _handle_signal(signum, _frame):
        logger.info("Received signal %d, shutting down...", signum)
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    scheduler.start()
    stop.wait()
    scheduler.stop()


def main(argv: Optional[List[str]] = None) -> int:
    """Main execution entry point."""
    args = parse_args(argv)

    try:
        settings = load_settings()
    except DossierError as e:
        logger.error("Invalid settings: %s", e)
        return 2

    if args.command == "check-smtp":
        try:
            EmailService(settings.smtp).test_connection()
        except DossierError as e:
            logger.error("%s", e)
            return 1
        print("SMTP connection OK")
        return 0

    store = PostgresStore(settings.database_url, max_size=settings.max_workers + 1)
    try:
        if args.command == "migrate":
            store.migrate()
            return 0

        scheduler = build_scheduler(settings, store)
        if args.command == "run":
            store.migrate()
            run_forever(scheduler)
            return 0

        if args.command == "generate":
            result = scheduler.generate_now(args.config_id)
        else:
            result = scheduler.send_test(args.config_id)
        print(result.message)
        return 0 if result.success else 1
    except DossierError as e:
        logger.error("%s", e)
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
