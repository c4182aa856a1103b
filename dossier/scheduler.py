"""
Dossier scheduler.

A single background thread wakes up once per poll interval, works out which
active configurations are due, and hands each due configuration to a worker
pool where it runs the full fetch -> summarize -> compose -> send sequence.

Due-ness is always evaluated in the configuration's own timezone, re-anchored
on every tick, so a delivery time follows the local wall clock across DST
changes. The most recent delivery record is the only memory the scheduler
has: at most one delivery per period, and a failed run still counts, so the
configuration simply waits for its next natural due time.
"""

import calendar
import datetime
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING, Callable, List, Optional

from dossier.errors import AggregationEmpty, ConfigValidationError, StoreError
from dossier.models import Delivery, DossierConfig, Frequency, RunResult, utcnow
from dossier.services.base import FeedFetcher, Mailer, Summarizer
from dossier.services.email_service import DeliveryComposer

if TYPE_CHECKING:
    from dossier.services.db import PostgresStore

logger = logging.getLogger(__name__)

DAYS_PER_WEEK = 7


def _local(moment: datetime.datetime, config: DossierConfig) -> datetime.datetime:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=datetime.timezone.utc)
    return moment.astimezone(config.zone)


def add_months(day: datetime.date, months: int) -> datetime.date:
    """Adds calendar months, clamping to the last day of the target month."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return datetime.date(year, month, min(day.day, last_day))


def scheduled_time(config: DossierConfig, day: datetime.date) -> datetime.datetime:
    """
    Returns the local delivery instant for ``day``.

    A delivery time that falls in a spring-forward gap (02:30 on the night
    New York skips from 02:00 to 03:00) does not exist on that day; it is
    moved forward by the length of the gap, to 03:30, so the delivery still
    happens once.
    """
    naive = datetime.datetime.combine(day, config.delivery_time.replace(tzinfo=None))
    local = naive.replace(tzinfo=config.zone)
    return local.astimezone(datetime.timezone.utc).astimezone(config.zone)


def matches_delivery_time(config: DossierConfig, now: datetime.datetime) -> bool:
    """Whether the local hour and minute equal today's delivery time."""
    local_now = _local(now, config)
    scheduled = scheduled_time(config, local_now.date())
    return (local_now.hour, local_now.minute) == (scheduled.hour, scheduled.minute)


def is_due(
    config: DossierConfig, now: datetime.datetime, last_delivery: Optional[Delivery]
) -> bool:
    """Decides whether a configuration should be delivered at ``now``."""
    if not matches_delivery_time(config, now):
        return False
    if last_delivery is None:
        return True

    today = _local(now, config).date()
    last_day = _local(last_delivery.delivered_at, config).date()

    if config.frequency is Frequency.DAILY:
        return last_day < today
    if config.frequency is Frequency.WEEKLY:
        return (today - last_day).days >= DAYS_PER_WEEK
    if config.frequency is Frequency.MONTHLY:
        return today >= add_months(last_day, 1)

    logger.warning("Unknown frequency %s for config %d", config.frequency, config.id)
    return False


class Scheduler:
    """Polls configurations and runs due dossiers on a worker pool."""

    def __init__(
        self,
        store: "PostgresStore",
        fetcher: FeedFetcher,
        summarizer: Summarizer,
        mailer: Mailer,
        composer: Optional[DeliveryComposer] = None,
        poll_interval: float = 60.0,
        max_workers: int = 4,
        clock: Callable[[], datetime.datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.fetcher = fetcher
        self.summarizer = summarizer
        self.mailer = mailer
        self.composer = composer or DeliveryComposer()
        self.poll_interval = poll_interval
        self.max_workers = max_workers
        self.clock = clock
        self.monotonic = monotonic

        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    # Lifecycle

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None:
                logger.info("Scheduler is already running")
                return
            logger.info("Starting dossier scheduler (every %ss)...", self.poll_interval)
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._loop, name="dossier-scheduler", daemon=True
            )
            self._thread.start()

    def stop(self) -> None:
        """Stops polling and cancels units that have not started yet."""
        with self._lock:
            thread, self._thread = self._thread, None
            executor, self._executor = self._executor, None
        self._stop_event.set()
        if thread is not None:
            logger.info("Stopping dossier scheduler...")
            thread.join(timeout=5)
        if executor is not None:
            # In-flight units are abandoned; they finish or die with the process
            executor.shutdown(wait=False, cancel_futures=True)

    def _loop(self) -> None:
        """Ticks at a fixed rate; a slow tick shortens the next wait."""
        next_run = self.monotonic() + self.poll_interval
        while not self._stop_event.wait(max(0.0, next_run - self.monotonic())):
            next_run += self.poll_interval
            try:
                self.tick()
            except Exception:  # pylint: disable=broad-exception-caught
                logger.exception("Scheduler tick failed")
            # A tick longer than the interval drops the slots it overran
            skipped = 0
            while next_run <= self.monotonic():
                next_run += self.poll_interval
                skipped += 1
            if skipped:
                logger.warning("Scheduler tick overran; skipped %d poll(s)", skipped)

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix="dossier-unit"
                )
            return self._executor

    # Scheduling

    def tick(self, now: Optional[datetime.datetime] = None) -> List[Future]:
        """Evaluates every active configuration once and dispatches due ones."""
        now = now or self.clock()
        logger.info("Checking for dossiers to process at %s", now.strftime("%H:%M:%S"))

        try:
            configs = self.store.list_active_configs()
        except StoreError as e:
            logger.error("Error getting active dossier configs: %s", e)
            return []
        logger.info("Found %d active configurations", len(configs))

        futures = []
        for config in configs:
            try:
                last_delivery = self.store.last_delivery(config.id)
            except StoreError as e:
                logger.error(
                    "Error checking last delivery for config %d, skipping: %s",
                    config.id,
                    e,
                )
                continue

            if not is_due(config, now, last_delivery):
                logger.debug("Config %d (%s) is not due", config.id, config.title)
                continue

            logger.info("Triggering dossier for config %d (%s)", config.id, config.title)
            futures.append(self._get_executor().submit(self.run_config, config))
        return futures

    # Orchestration

    def _record(
        self, config: DossierConfig, summary: str, articles: list, success: bool
    ) -> Optional[Delivery]:
        delivery = Delivery(
            config_id=config.id,
            delivered_at=self.clock(),
            summary=summary,
            article_count=len(articles),
            success=success,
            article_ids=tuple(a.id for a in articles if a.id is not None),
        )
        try:
            return self.store.record_delivery(delivery)
        except StoreError as e:
            logger.error("Error recording delivery for config %d: %s", config.id, e)
            return None

    def run_config(
        self, config: DossierConfig, persist: bool = True, test: bool = False
    ) -> RunResult:
        """Runs the full pipeline for one configuration. Never raises."""
        logger.info(
            "Generating %sdossier for config %d (%s)",
            "test " if test else "",
            config.id,
            config.title,
        )
        stage = "aggregate"
        articles: list = []
        summary = ""
        try:
            articles = self.fetcher.aggregate(config.feed_urls, config.article_count)
            if not articles:
                raise AggregationEmpty("No articles found from any feed")

            stage = "summarize"
            summary = self.summarizer.summarize(
                articles, config.tone, config.language, config.special_instructions
            )

            stage = "compose"
            message = self.composer.compose(
                config, summary, articles, generated_at=self.clock(), test=test
            )

            stage = "transport"
            self.mailer.send(message)
        except Exception as e:  # pylint: disable=broad-exception-caught
            failed_stage = getattr(e, "stage", None) or stage
            logger.error(
                "Dossier for config %d (%s) failed at stage '%s': %s",
                config.id,
                config.title,
                failed_stage,
                e,
            )
            delivery = self._record(config, summary, articles, False) if persist else None
            return RunResult(
                success=False,
                message=f"Dossier '{config.title}' failed at {failed_stage}: {e}",
                delivery=delivery,
            )

        delivery = self._record(config, summary, articles, True) if persist else None
        logger.info(
            "Successfully sent %sdossier for config %d (%s) to %s",
            "test " if test else "",
            config.id,
            config.title,
            config.email,
        )
        return RunResult(
            success=True,
            message=f"Dossier '{config.title}' sent to {config.email}",
            delivery=delivery,
        )

    def _load_config(self, config_id: int) -> DossierConfig:
        config = self.store.get_config(config_id)
        if config is None:
            raise ConfigValidationError(f"Dossier configuration {config_id} not found")
        return config

    def generate_now(self, config_id: int) -> RunResult:
        """Runs a dossier immediately and records it like a scheduled run."""
        try:
            config = self._load_config(config_id)
        except (ConfigValidationError, StoreError) as e:
            logger.error("Cannot generate dossier %s: %s", config_id, e)
            return RunResult(success=False, message=str(e))
        return self.run_config(config, persist=True)

    def send_test(self, config_id: int) -> RunResult:
        """Runs a dossier immediately without recording a delivery."""
        try:
            config = self._load_config(config_id)
        except (ConfigValidationError, StoreError) as e:
            logger.error("Cannot send test dossier %s: %s", config_id, e)
            return RunResult(success=False, message=str(e))
        return self.run_config(config, persist=False, test=True)
