"""Object storage for book sources and harvested artifacts."""

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from tqdm import tqdm


logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a download or upload fails."""

    pass


def remove_book_title_from_base_url(base_url: str) -> str:
    """Strip the trailing title segment from a decoded book URL.

    A single trailing slash is ignored. If the URL has no slash, it is
    returned unchanged.

    Example:
        ".../submitter/guid/Book+Title/" -> ".../submitter/guid"
    """
    if not base_url:
        return base_url

    length = len(base_url)
    if base_url.endswith("/"):
        length -= 1

    last_slash_index = base_url.rfind("/", 0, length)
    if last_slash_index < 0:
        return base_url
    return base_url[:last_slash_index]


class S3UrlComponents:
    """Parts of a book URL of the form https://host/<bucket>/<submitter>/<guid>/<title>/."""

    def __init__(self, url: str):
        self.url = url
        parts = [part for part in urlparse(url).path.split("/") if part]
        if len(parts) < 3:
            raise ValueError(f"Not a book URL: {url}")

        self.bucket = parts[0]
        self.submitter = parts[1]
        self.book_guid = parts[2]
        self.book_title = parts[3] if len(parts) > 3 else ""

    @property
    def folder(self) -> str:
        """Destination folder for artifacts: <submitter>/<guid>."""
        return f"{self.submitter}/{self.book_guid}"


class BookStorage:
    """Downloads book sources from one bucket and uploads artifacts to another."""

    def __init__(self, download_bucket: str, upload_bucket: str, client=None, show_progress: bool = False):
        self.download_bucket = download_bucket
        self.upload_bucket = upload_bucket
        self.client = client or boto3.client("s3")
        self.show_progress = show_progress

    def download_book(self, url_without_title: str, download_root: Path) -> Path:
        """Download every file of a book into download_root.

        Args:
            url_without_title: Book URL with the title segment already removed
            download_root: Local directory to download into

        Returns:
            Path to the local book folder
        """
        parts = [part for part in urlparse(url_without_title).path.split("/") if part]
        if len(parts) < 2:
            raise StorageError(f"Cannot determine book location from {url_without_title}")
        prefix = "/".join(parts[1:]) + "/"

        try:
            keys = []
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.download_bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to list {prefix} in {self.download_bucket}: {e}") from e

        files = [key for key in keys if not key.endswith("/")]
        if not files:
            raise StorageError(f"No files found for book at {url_without_title}")

        book_dir: Optional[Path] = None
        for key in tqdm(files, desc="Download", unit="file", disable=not self.show_progress):
            relative = key[len(prefix):]
            local_path = Path(download_root) / relative
            local_path.parent.mkdir(parents=True, exist_ok=True)
            try:
                self.client.download_file(self.download_bucket, key, str(local_path))
            except (BotoCoreError, ClientError) as e:
                raise StorageError(f"Failed to download {key}: {e}") from e

            if book_dir is None:
                book_dir = Path(download_root) / relative.split("/")[0]

        # Files stored directly under the prefix have no title folder
        if book_dir is None or book_dir.is_file():
            book_dir = Path(download_root)

        logger.info(f"Downloaded {len(files)} files to {book_dir}")
        return book_dir

    def upload_file(self, local_path: Path, remote_folder: str) -> str:
        """Upload a single file into remote_folder. Returns the object key."""
        local_path = Path(local_path)
        key = f"{remote_folder.strip('/')}/{local_path.name}"
        try:
            self.client.upload_file(str(local_path), self.upload_bucket, key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to upload {local_path} to {key}: {e}") from e

        logger.debug(f"Uploaded {local_path} to s3://{self.upload_bucket}/{key}")
        return key

    def upload_directory(self, local_dir: Path, remote_folder: str) -> int:
        """Upload a directory tree into remote_folder. Returns the number of files uploaded."""
        local_dir = Path(local_dir)
        files = sorted(path for path in local_dir.rglob("*") if path.is_file())

        for path in tqdm(files, desc="Upload", unit="file", disable=not self.show_progress):
            relative_parent = path.parent.relative_to(local_dir).as_posix()
            folder = remote_folder if relative_parent == "." else f"{remote_folder}/{relative_parent}"
            self.upload_file(path, folder)

        return len(files)
