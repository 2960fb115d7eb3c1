"""Processing of a single book: claim, download, inspect, render, upload, finalize."""

import logging
import shutil
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from urllib.parse import unquote_plus

from harvester.acquisition.issues import IssueReporter
from harvester.acquisition.log_entries import LogEntry, LogLevel, LogType, missing_font_error
from harvester.acquisition.models import Book, BookUpdate, HarvestState, Version
from harvester.acquisition.registry import ParseClient
from harvester.acquisition.storage import BookStorage, S3UrlComponents, remove_book_title_from_base_url

from .analyzer import write_collection_manifest
from .cli_invoker import RendererCli
from .fonts import FontChecker


logger = logging.getLogger(__name__)

CREATE_ARTIFACTS_TIMEOUT_SECS = 300

BUNDLE_EXTENSION = ".bundle"
EPUB_EXTENSION = ".epub"


class BookProcessor:
    """Drives one book at a time through the harvest pipeline.

    current_book_id holds the id of the book this processor has claimed
    (marked InProgress in the registry) and not yet finalized, or None.
    """

    def __init__(
        self,
        registry: ParseClient,
        storage: BookStorage,
        renderer: RendererCli,
        font_checker: FontChecker,
        issue_reporter: IssueReporter,
        identifier: str,
        version: Version,
        download_root: Path,
        environment: str = "Default",
        read_only: bool = False,
    ):
        self.registry = registry
        self.storage = storage
        self.renderer = renderer
        self.font_checker = font_checker
        self.issue_reporter = issue_reporter
        self.identifier = identifier
        self.version = version
        self.download_root = Path(download_root)
        self.environment = environment
        self.read_only = read_only
        self.current_book_id: Optional[str] = None

    def process_book(self, book: Book) -> bool:
        """Process one book. Never raises; returns True on success."""
        log_entries: list[LogEntry] = []
        try:
            logger.info(f"Processing: {book.base_url}")
            self._claim(book)

            decoded_url = unquote_plus(book.base_url)
            url_without_title = remove_book_title_from_base_url(decoded_url)
            logger.debug(f"Download dir: {self.download_root}")
            book_dir = self.storage.download_book(url_without_title, self.download_root)

            log_entries.extend(self.check_for_missing_font_errors(book_dir, book))
            is_successful = not log_entries

            if is_successful:
                log_entries.extend(self.find_book_warnings(book))

                if self.read_only:
                    return True

                collection_path = write_collection_manifest(book_dir)
                render_ok, render_entries = self.create_artifacts(decoded_url, book_dir, collection_path, book.object_id)
                log_entries.extend(render_entries)
                is_successful = render_ok

            self._finalize(book, log_entries, is_successful)

            if is_successful:
                shutil.rmtree(book_dir, ignore_errors=True)

            logger.info(f"Processing {book.object_id} ended: {'Success' if is_successful else 'Error'}")
            return is_successful

        except Exception as e:
            self._handle_processing_error(book, log_entries, e)
            return False

        finally:
            self.current_book_id = None

    def _claim(self, book: Book) -> None:
        update = (
            BookUpdate()
            .set_state(HarvestState.IN_PROGRESS)
            .set_harvester(self.identifier, self.version)
            .set_started_at(datetime.now(timezone.utc))
        )
        if self.read_only:
            return

        self.current_book_id = book.object_id
        self.registry.update_object(Book.CLASS_NAME, book.object_id, update.to_dict())
        update.apply_to(book)

    def _finalize(self, book: Book, log_entries: list[LogEntry], is_successful: bool) -> None:
        update = BookUpdate().set_log([str(entry) for entry in log_entries])
        update.set_state(HarvestState.DONE if is_successful else HarvestState.FAILED)
        update.apply_to(book)

        if not self.read_only:
            self.registry.queue_update(Book.CLASS_NAME, book.object_id, update.to_dict())
            self.current_book_id = None

    def _handle_processing_error(self, book: Book, log_entries: list[LogEntry], error: Exception) -> None:
        logger.exception(f"Unhandled exception while processing book {book.object_id}")

        log_entries.append(LogEntry(LogLevel.ERROR, LogType.PROCESSING_ERROR, str(error)))
        update = (
            BookUpdate()
            .set_state(HarvestState.FAILED)
            .set_harvester_id(self.identifier)
            .set_log([str(entry) for entry in log_entries])
        )
        update.apply_to(book)

        if book.object_id and not self.read_only:
            try:
                self.registry.update_object(Book.CLASS_NAME, book.object_id, update.to_dict())
            except Exception as write_error:
                # Only the first error is reported
                logger.warning(f"Could not mark book {book.object_id} as failed: {write_error}")

        self.issue_reporter.report_exception(
            error,
            f"Unhandled exception thrown while processing book objectId={book.object_id or 'null'}, baseUrl={book.base_url or 'null'}",
        )

    def check_for_missing_font_errors(self, book_dir: Path, book: Book) -> list[LogEntry]:
        """Return an error entry per missing font, or a probe error if fonts could not be checked."""
        missing_fonts, ok = self.font_checker.get_missing_fonts(book_dir)

        if not ok:
            self.issue_reporter.report_error(
                "Harvester font report error",
                f"Could not determine fonts for book objectId={book.object_id}, baseUrl={book.base_url}",
            )
            return [LogEntry(LogLevel.ERROR, LogType.FONT_PROBE_ERROR, str(book_dir))]

        if missing_fonts:
            logger.warning(f"Missing fonts: {','.join(missing_fonts)}")

        entries = []
        for font_name in missing_fonts:
            entries.append(missing_font_error(font_name))
            if self.font_checker.mark_reported(font_name):
                self.issue_reporter.report_missing_font(font_name, self.identifier, self.environment, book)
            else:
                logger.info(f"Missing font, but no issue created because already known: {font_name}")

        return entries

    def find_book_warnings(self, book: Book) -> list[LogEntry]:
        """Non-fatal problems worth showing alongside the book."""
        warnings = []
        if not book.base_url or not book.base_url.strip():
            warnings.append(LogEntry(LogLevel.WARN, LogType.MISSING_BASE_URL))

        if warnings:
            logger.warning("Warnings: " + ";".join(str(w) for w in warnings))
        return warnings

    def create_artifacts(self, download_url: str, book_dir: Path, collection_path: Path, book_id: str) -> tuple[bool, list[LogEntry]]:
        """Render the book's artifacts and upload them.

        Returns:
            (success, log entries describing any failure)
        """
        components = S3UrlComponents(download_url)
        title = components.book_title or book_dir.name

        with tempfile.TemporaryDirectory(prefix="harvester-unzipped-") as unzipped_dir, \
                tempfile.TemporaryDirectory(prefix="harvester-zipped-") as zipped_dir:
            bundle_path = Path(zipped_dir) / f"{title}{BUNDLE_EXTENSION}"
            epub_path = Path(zipped_dir) / f"{title}{EPUB_EXTENSION}"

            args = [
                "create-artifacts",
                "--item-path", str(book_dir),
                "--collection-path", str(collection_path),
                "--bundle-out", str(bundle_path),
                "--unpacked-out", unzipped_dir,
                "--alt-format-out", str(epub_path),
            ]

            logger.debug("Starting renderer process")
            started = time.monotonic()
            result = self.renderer.run_tool(args, CREATE_ARTIFACTS_TIMEOUT_SECS)
            elapsed = time.monotonic() - started

            error_details = f"Book: {book_id or 'null'}\n"
            if not result.exited_normally:
                message = f"Renderer terminated because it exceeded {CREATE_ARTIFACTS_TIMEOUT_SECS} seconds. Book Title: {title}."
                entry = LogEntry(LogLevel.ERROR, LogType.TIMEOUT_ERROR, message)
            elif result.exit_code != 0:
                message = f"Renderer failed with exit code: {result.exit_code}."
                entry = LogEntry(LogLevel.ERROR, LogType.RENDER_ERROR, message)
            else:
                logger.info(f"Renderer finished successfully in {elapsed:.1f} seconds.")
                self.upload_artifacts(bundle_path, Path(unzipped_dir), epub_path, components.folder)
                return True, []

        error_details += message
        logger.error(error_details)
        error_details += f"\n===StandardOut===\n{result.stdout}\n"
        error_details += f"\n===StandardError===\n{result.stderr}"
        self.issue_reporter.report_error("Harvester renderer error", error_details)
        return False, [entry]

    def upload_artifacts(self, bundle_path: Path, unzipped_dir: Path, epub_path: Path, folder: str) -> None:
        logger.debug("Uploading bundle")
        self.storage.upload_file(bundle_path, folder)

        logger.debug("Uploading digital directory")
        self.storage.upload_directory(unzipped_dir, f"{folder}/digital")

        logger.debug("Uploading epub")
        self.storage.upload_file(epub_path, f"{folder}/epub")
