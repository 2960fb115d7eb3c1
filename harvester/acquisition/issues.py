"""Issue-tracker reporting. Reporting never raises; failures are only logged."""

import logging
import traceback
from typing import Optional

import requests

from harvester.config import IssueTrackerSettings

from .models import Book


logger = logging.getLogger(__name__)


class IssueReporter:
    """Files issues in a YouTrack project.

    When no tracker URL is configured, reports are written to the log instead.
    """

    def __init__(self, settings: Optional[IssueTrackerSettings] = None, session: Optional[requests.Session] = None):
        self.settings = settings or IssueTrackerSettings()
        self.session = session or requests.Session()
        if self.settings.token:
            self.session.headers.update({"Authorization": f"Bearer {self.settings.token}"})

    @property
    def enabled(self) -> bool:
        return bool(self.settings.base_url and self.settings.project_id)

    def _create_issue(self, summary: str, description: str) -> Optional[str]:
        if not self.enabled:
            logger.error(f"[issue] {summary}\n{description}")
            return None

        payload = {
            "project": {"id": self.settings.project_id},
            "summary": summary,
            "description": description,
        }
        try:
            response = self.session.post(
                f"{self.settings.base_url}/api/issues",
                params={"fields": "idReadable"},
                json=payload,
                timeout=30,
            )
            response.raise_for_status()
            body = response.json()
            issue_id = body.get("idReadable") if isinstance(body, dict) else None
            logger.info(f"Created issue {issue_id}: {summary}")
            return issue_id
        except Exception:
            # Fire-and-forget: a tracker failure must not affect the caller
            logger.exception(f"Failed to create issue: {summary}")
            return None

    def report_exception(self, error: BaseException, context: str) -> Optional[str]:
        details = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        return self._create_issue(f"[Harvester] Exception: {error}", f"{context}\n\n{details}")

    def report_error(self, title: str, details: str) -> Optional[str]:
        return self._create_issue(title, details)

    def report_missing_font(self, font_name: str, harvester_id: str, environment: str, book: Optional[Book] = None) -> Optional[str]:
        description = f"Font \"{font_name}\" is not installed on harvester {harvester_id} ({environment})."
        if book is not None:
            description += f"\nBook: objectId={book.object_id}, baseUrl={book.base_url}"
        return self._create_issue(f"[Harvester] Missing font {font_name}", description)
