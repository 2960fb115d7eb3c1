"""Client for the remote book registry (a Parse server REST API)."""

import json
import logging
from typing import Optional
from urllib.parse import urlparse

import requests

from harvester.config import ParseSettings

from .models import Book


logger = logging.getLogger(__name__)

PAGE_SIZE = 1000
MAX_BATCH_SIZE = 50


class RegistryError(Exception):
    """Raised when a registry request fails."""

    pass


class ParseClient:
    """Queries and updates book records.

    Updates can be sent immediately with update_object() or queued with
    queue_update(). Queued updates are sent in batches, either when the batch
    is full or when flush_batchable_operations() is called.
    """

    def __init__(self, settings: ParseSettings, session: Optional[requests.Session] = None, timeout: int = 60):
        self.settings = settings
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "X-Parse-Application-Id": settings.app_id,
            "Content-Type": "application/json",
        })
        if settings.api_key:
            self.session.headers["X-Parse-REST-API-Key"] = settings.api_key
        self._pending: list[dict] = []
        self._mount_path = urlparse(settings.server_url).path.rstrip("/")

    def _url(self, path: str) -> str:
        return f"{self.settings.server_url}/{path}"

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = self.session.request(method, self._url(path), timeout=self.timeout, **kwargs)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            raise RegistryError(f"{method} {path} failed: {e}") from e
        except ValueError as e:
            raise RegistryError(f"{method} {path} returned invalid JSON: {e}") from e

    def get_books(self, where: dict) -> list[Book]:
        """Return every book matching the filter, following pagination.

        Args:
            where: Registry filter object

        Returns:
            List of books
        """
        books = []
        skip = 0
        while True:
            params = {
                "where": json.dumps(where),
                "limit": PAGE_SIZE,
                "skip": skip,
                "order": "objectId",
            }
            result = self._request("GET", f"classes/{Book.CLASS_NAME}", params=params)
            page = result.get("results", [])
            books.extend(Book.from_json(item) for item in page)

            if len(page) < PAGE_SIZE:
                break
            skip += PAGE_SIZE

        logger.debug(f"Registry query returned {len(books)} books")
        return books

    def update_object(self, class_name: str, object_id: str, fields: dict) -> None:
        """Write field deltas to a single object immediately."""
        self._request("PUT", f"classes/{class_name}/{object_id}", data=json.dumps(fields))

    def queue_update(self, class_name: str, object_id: str, fields: dict) -> None:
        """Queue a field update to be sent with the next batch."""
        self._pending.append({
            "method": "PUT",
            "path": f"{self._mount_path}/classes/{class_name}/{object_id}",
            "body": fields,
        })
        if len(self._pending) >= MAX_BATCH_SIZE:
            self.flush_batchable_operations()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def flush_batchable_operations(self) -> None:
        """Send all queued updates.

        Failed operations inside an accepted batch are logged, not retried.
        """
        while self._pending:
            batch = self._pending[:MAX_BATCH_SIZE]
            result = self._request("POST", "batch", data=json.dumps({"requests": batch}))
            del self._pending[:len(batch)]

            for operation, outcome in zip(batch, result if isinstance(result, list) else []):
                if isinstance(outcome, dict) and "error" in outcome:
                    logger.error(f"Batched update to {operation['path']} failed: {outcome['error']}")
