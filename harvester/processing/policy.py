"""Decides whether a book should be (re)processed by this harvester.

A book that has been InProgress for less than STALE_IN_PROGRESS_AGE is left to
whoever claimed it. Version comparisons let a newer harvester retry what an
older one gave up on, and stop an older harvester from touching results a
newer one produced.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from harvester.acquisition.log_entries import previously_missing_fonts
from harvester.acquisition.models import Book, HarvestMode, HarvestState, Version

from .fonts import FontChecker, FontProbeError


STALE_IN_PROGRESS_AGE = timedelta(days=2)


def _is_stale(book: Book, now: datetime) -> bool:
    # No start time means the claim was never completed
    if book.harvest_started_at is None:
        return True
    return now - book.harvest_started_at >= STALE_IN_PROGRESS_AGE


def should_process_book(
    book: Book,
    mode: HarvestMode,
    current_version: Version,
    font_checker: Optional[FontChecker] = None,
    now: Optional[datetime] = None,
) -> tuple[bool, str]:
    """Decide whether book should be processed.

    Args:
        book: Book as read from the registry
        mode: Harvest mode of the current run
        current_version: Version of this harvester
        font_checker: Used to re-check fonts a failed book was missing.
            Without one, previously missing fonts are not re-checked.
        now: Current time (UTC); defaults to the system clock

    Returns:
        (process, reason)

    Raises:
        ValueError: If mode is not a known harvest mode.
    """
    now = now or datetime.now(timezone.utc)
    state = book.state
    is_stale = False

    if state == HarvestState.IN_PROGRESS:
        if mode == HarvestMode.FORCE_ALL:
            return True, "PROCESS: Mode = HarvestForceAll"
        if not _is_stale(book, now):
            return False, "SKIP: Recently in progress"
        is_stale = True

    if mode in (HarvestMode.ALL, HarvestMode.FORCE_ALL):
        return True, f"PROCESS: Mode = Harvest{mode.value}"

    if mode == HarvestMode.NEW_OR_UPDATED_ONLY:
        if state in (HarvestState.NEW, HarvestState.UPDATED):
            return True, "PROCESS: New or Updated state"
        return False, "SKIP: Not new or updated."

    if mode == HarvestMode.RETRY_FAILURES_ONLY:
        if book.previous_version > current_version:
            return False, "SKIP: Previously processed by newer version."
        return True, "PROCESS: Retrying failure."

    if mode == HarvestMode.DEFAULT:
        return _default_mode_decision(book, state, is_stale, current_version, font_checker)

    raise ValueError(f"Unexpected mode: {mode}")


def _default_mode_decision(
    book: Book,
    state: HarvestState,
    is_stale: bool,
    current_version: Version,
    font_checker: Optional[FontChecker],
) -> tuple[bool, str]:
    previous_version = book.previous_version

    if state == HarvestState.DONE:
        if current_version.major > book.harvester_major_version:
            return True, "PROCESS: Updated major version, so updating output"
        return False, "SKIP: Already processed successfully."

    if state == HarvestState.ABORTED:
        if current_version >= previous_version:
            return True, "PROCESS: Re-starting book that was previously aborted"
        return False, "SKIP: Skipping aborted book that was previously touched by a newer version."

    if state == HarvestState.IN_PROGRESS:
        if not is_stale:
            return False, "SKIP: Recently in progress"
        if current_version > previous_version:
            return True, "PROCESS: Retrying stuck book of older version."
        if current_version == previous_version:
            return True, "PROCESS: Retrying stuck book of current version."
        return False, "SKIP: Skipping stuck book that was previously processed by a newer version."

    if state == HarvestState.FAILED:
        if current_version > previous_version:
            missing_before = previously_missing_fonts(book.harvest_log)
            if missing_before and font_checker is not None:
                try:
                    still_missing = font_checker.find_missing(missing_before)
                except FontProbeError:
                    return False, "SKIP: Could not verify previously missing fonts."
                if still_missing:
                    return False, f"SKIP: Still missing font {still_missing[0]}"
            return True, "PROCESS: Retrying failed book of older version."
        if current_version == previous_version:
            return False, "SKIP: Marked as failed by current version."
        return False, "SKIP: Marked as failed by newer version."

    # New, Updated, Unknown
    return True, "PROCESS: New or Updated state"
