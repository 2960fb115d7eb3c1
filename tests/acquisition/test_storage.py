"""Tests for book storage and URL helpers."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from harvester.acquisition.storage import (
    BookStorage,
    S3UrlComponents,
    StorageError,
    remove_book_title_from_base_url,
)


def test_remove_title_from_decoded_url():
    url = "https://s3.amazonaws.com/BooksSandbox/user@example.com/8cba3b47-2ceb-47fd-9ac7-3172824849e4/How+Snakes+Came+to+Be/"

    assert remove_book_title_from_base_url(url) == "https://s3.amazonaws.com/BooksSandbox/user@example.com/8cba3b47-2ceb-47fd-9ac7-3172824849e4"


@pytest.mark.parametrize(
    "url,expected",
    [
        (".../submitter/guid/Book+Title/", ".../submitter/guid"),
        (".../submitter/guid/Book+Title", ".../submitter/guid"),
        ("no-slashes", "no-slashes"),
        ("", ""),
    ],
)
def test_remove_title_edge_cases(url, expected):
    assert remove_book_title_from_base_url(url) == expected


def test_url_components():
    components = S3UrlComponents("https://s3.amazonaws.com/bucket/user@example.com/guid-1/My Title/")

    assert components.bucket == "bucket"
    assert components.submitter == "user@example.com"
    assert components.book_guid == "guid-1"
    assert components.book_title == "My Title"
    assert components.folder == "user@example.com/guid-1"


def test_url_components_rejects_short_url():
    with pytest.raises(ValueError):
        S3UrlComponents("https://s3.amazonaws.com/bucket/")


def make_storage(keys):
    client = MagicMock()
    paginator = MagicMock()
    paginator.paginate.return_value = [{"Contents": [{"Key": key} for key in keys]}]
    client.get_paginator.return_value = paginator

    def download_file(bucket, key, path):
        Path(path).write_text(key, encoding="utf-8")

    client.download_file.side_effect = download_file
    return BookStorage("download-bucket", "upload-bucket", client=client)


def test_download_book(tmp_path):
    storage = make_storage([
        "user@example.com/guid/My Title/",
        "user@example.com/guid/My Title/book.htm",
        "user@example.com/guid/My Title/images/cover.png",
    ])

    book_dir = storage.download_book("https://s3.amazonaws.com/download-bucket/user@example.com/guid", tmp_path)

    assert book_dir == tmp_path / "My Title"
    assert (book_dir / "book.htm").exists()
    assert (book_dir / "images" / "cover.png").exists()
    storage.client.get_paginator.return_value.paginate.assert_called_once_with(
        Bucket="download-bucket", Prefix="user@example.com/guid/"
    )


def test_download_book_with_nothing_found(tmp_path):
    storage = make_storage([])

    with pytest.raises(StorageError):
        storage.download_book("https://s3.amazonaws.com/download-bucket/user@example.com/guid", tmp_path)


def test_upload_directory_keeps_relative_paths(tmp_path):
    (tmp_path / "sub").mkdir()
    (tmp_path / "index.htm").write_text("x")
    (tmp_path / "sub" / "a.png").write_text("x")
    storage = BookStorage("download-bucket", "upload-bucket", client=MagicMock())

    count = storage.upload_directory(tmp_path, "user/guid/digital")

    assert count == 2
    keys = sorted(c[0][2] for c in storage.client.upload_file.call_args_list)
    assert keys == ["user/guid/digital/index.htm", "user/guid/digital/sub/a.png"]
    buckets = {c[0][1] for c in storage.client.upload_file.call_args_list}
    assert buckets == {"upload-bucket"}
