"""Harvest coordinator: queries the registry and processes eligible books, optionally in a loop."""

import json
import logging
import random
import signal
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from harvester.acquisition.issues import IssueReporter
from harvester.acquisition.models import Book, BookUpdate, HarvestState
from harvester.acquisition.query import combine_filters, get_base_filter
from harvester.acquisition.registry import ParseClient
from harvester.acquisition.storage import BookStorage
from harvester.config import (
    DOWNLOAD_BUCKETS,
    UPLOAD_BUCKETS,
    HarvesterOptions,
    IssueTrackerSettings,
    ParseSettings,
    bucket_tier,
    get_current_version,
)
from harvester.processing.cli_invoker import RendererCli
from harvester.processing.fonts import FontChecker
from harvester.processing.policy import should_process_book
from harvester.processing.runner import BookProcessor


logger = logging.getLogger(__name__)

DELAY_AFTER_EMPTY_RUN_SECS = 300
FAILED_SAMPLE_SIZE = 10


@dataclass
class HarvestStats:
    """Counts for one iteration of the harvest loop."""

    processed: int = 0
    skipped: list[Book] = field(default_factory=list)
    failed: list[Book] = field(default_factory=list)

    @property
    def num_failed(self) -> int:
        return len(self.failed)

    @property
    def num_skipped(self) -> int:
        return len(self.skipped)

    @property
    def num_succeeded(self) -> int:
        return self.processed - self.num_failed

    @property
    def total(self) -> int:
        return self.num_skipped + self.processed

    @property
    def percent_failed(self) -> float:
        if not self.total:
            return 0.0
        percent = self.num_failed / self.total * 100
        # Don't let a non-zero failure rate round down to 0.0
        if 0 < percent < 0.1:
            percent = 0.1
        return percent

    def summary(self) -> str:
        return f"Success={self.num_succeeded}, Failed={self.num_failed}, Skipped={self.num_skipped}, Total={self.total}."


class Harvester:
    """Coordinates a harvest run over the books in the registry."""

    def __init__(
        self,
        options: HarvesterOptions,
        registry: ParseClient,
        processor: BookProcessor,
        font_checker: FontChecker,
        issue_reporter: IssueReporter,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.options = options
        self.registry = registry
        self.processor = processor
        self.font_checker = font_checker
        self.issue_reporter = issue_reporter
        self.version = processor.version
        self.cumulative_failed_book_ids: set[str] = set()
        self._rng = rng or random.Random()
        self._sleep = sleep

    @classmethod
    def create(cls, options: HarvesterOptions) -> "Harvester":
        """Build a harvester and its collaborators from run options."""
        environment = options.registry_environment
        tier = bucket_tier(environment)
        version = get_current_version()

        registry = ParseClient(ParseSettings.from_env(environment))
        storage = BookStorage(DOWNLOAD_BUCKETS[tier], UPLOAD_BUCKETS[tier], show_progress=options.verbose)
        renderer = RendererCli(options.renderer_command)
        font_checker = FontChecker(renderer)
        issue_reporter = IssueReporter(IssueTrackerSettings.from_env())

        processor = BookProcessor(
            registry=registry,
            storage=storage,
            renderer=renderer,
            font_checker=font_checker,
            issue_reporter=issue_reporter,
            identifier=options.identifier,
            version=version,
            download_root=options.get_download_root(),
            environment=environment.value,
            read_only=options.read_only,
        )
        return cls(options, registry, processor, font_checker, issue_reporter)

    def get_query_filter(self) -> dict:
        """Registry filter for this run: the caller's filter merged with the mode's pre-filter."""
        base_filter = get_base_filter(self.options.mode, self.version)
        return combine_filters(self.options.query_where, base_filter)

    def order_books(self, books: Iterable[Book]) -> list[Book]:
        """New books first, then Updated, random order within each group."""
        return sorted(
            books,
            key=lambda book: (
                book.harvest_state != HarvestState.NEW.value,
                book.harvest_state != HarvestState.UPDATED.value,
                self._rng.random(),
            ),
        )

    def should_process_book(self, book: Book) -> tuple[bool, str]:
        return should_process_book(book, self.options.mode, self.version, font_checker=self.font_checker)

    def harvest(self) -> None:
        """Run harvest iterations until done (once, or forever if looping)."""
        where = self.get_query_filter()
        mode = self.options.mode.value
        logger.info(f"Harvest{mode} Start")
        logger.info(f"Combined query filter: {json.dumps(where, ensure_ascii=False)}")

        while True:
            try:
                stats = self.run_iteration(where)

                if self.options.loop:
                    logger.info(f"Harvest{mode} Loop Iteration completed.")
                    if stats.processed == 0:
                        resume_time = datetime.now() + timedelta(seconds=DELAY_AFTER_EMPTY_RUN_SECS)
                        logger.info(f"Waiting till: {resume_time:%H:%M:%S}...")
                        self._sleep(DELAY_AFTER_EMPTY_RUN_SECS)
            except Exception as e:
                logger.exception("Unhandled exception in harvest iteration")
                self.issue_reporter.report_exception(e, "Unhandled exception thrown while running harvest().")

            if not self.options.loop:
                break

        logger.info(f"Harvest{mode} End")

    def run_iteration(self, where: dict) -> HarvestStats:
        """Query, filter and process one batch of books."""
        started = time.monotonic()
        stats = HarvestStats()
        max_books = self.options.count

        books = self.order_books(self.registry.get_books(where))

        for book in books:
            should_process, reason = self.should_process_book(book)
            if not should_process:
                logger.debug(f"{book.object_id} - {reason}")
                stats.skipped.append(book)
                if book.harvest_state == HarvestState.DONE.value:
                    # Something else has marked this book as no longer failed
                    self.cumulative_failed_book_ids.discard(book.object_id)
                continue

            logger.info(f"{book.object_id} - {reason}")
            if self.processor.process_book(book):
                self.cumulative_failed_book_ids.discard(book.object_id)
            else:
                stats.failed.append(book)
            stats.processed += 1

            if max_books > 0 and stats.processed >= max_books:
                break

        self.registry.flush_batchable_operations()
        logger.info(f"Harvest{self.options.mode.value} took {time.monotonic() - started:.1f} seconds.")
        self._log_results(stats)
        return stats

    def _log_results(self, stats: HarvestStats) -> None:
        if self.cumulative_failed_book_ids:
            sample = sorted(self.cumulative_failed_book_ids)[:FAILED_SAMPLE_SIZE]
            logger.info(
                f"Books with outstanding errors from previous iterations (sample of {len(sample)}):\n\t"
                + "\n\t".join(f"ObjectId: {book_id}" for book_id in sample)
            )

        if stats.failed:
            logger.error(
                "Books with errors (this iteration only):\n\t"
                + "\n\t".join(f"ObjectId: {book.object_id}.  URL: {book.base_url}" for book in stats.failed)
            )
            self.cumulative_failed_book_ids.update(book.object_id for book in stats.failed)

        logger.info(stats.summary())
        if stats.num_failed:
            logger.error(f"Failures ({stats.percent_failed:.1f}% failed)")

    def mark_current_book_aborted(self) -> Optional[str]:
        """Flush queued writes and mark the claimed book, if any, as Aborted.

        Returns:
            Id of the book marked Aborted, or None
        """
        try:
            self.registry.flush_batchable_operations()
        except Exception:
            logger.exception("Failed to flush pending registry updates on exit")

        book_id = self.processor.current_book_id
        if not book_id:
            return None

        update = BookUpdate().set_state(HarvestState.ABORTED)
        self.registry.update_object(Book.CLASS_NAME, book_id, update.to_dict())
        self.processor.current_book_id = None
        logger.warning(f"Marked book {book_id} as {HarvestState.ABORTED.value}")
        return book_id

    def install_exit_handlers(self) -> None:
        """Mark any in-progress book Aborted when the process is told to terminate."""

        def handle_signal(signum, frame):
            logger.warning(f"Received signal {signum}, exiting")
            try:
                self.mark_current_book_aborted()
            finally:
                sys.exit(128 + signum)

        for name in ("SIGTERM", "SIGINT", "SIGHUP", "SIGBREAK"):
            signum = getattr(signal, name, None)
            if signum is not None:
                signal.signal(signum, handle_signal)

    def close(self) -> None:
        self.registry.flush_batchable_operations()


def run_harvest(options: HarvesterOptions) -> None:
    """Run a harvest with the given options."""
    logger.info("Command line options:\n" + options.pretty_print())

    harvester = Harvester.create(options)
    harvester.install_exit_handlers()
    try:
        harvester.harvest()
    finally:
        harvester.close()
