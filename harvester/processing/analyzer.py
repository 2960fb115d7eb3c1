"""Pre-render collection manifest for a downloaded book."""

import json
import logging
from pathlib import Path


logger = logging.getLogger(__name__)

COLLECTION_EXTENSION = ".collection.json"


def read_book_meta(book_dir: Path) -> dict:
    """Return the book's meta.json contents, or {} if it has none or it is unreadable."""
    meta_path = book_dir / "meta.json"
    if not meta_path.exists():
        return {}

    try:
        with open(meta_path, "r", encoding="utf-8") as f:
            meta = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Ignoring unreadable {meta_path}: {e}")
        return {}

    return meta if isinstance(meta, dict) else {}


def write_collection_manifest(book_dir: Path) -> Path:
    """Write the collection manifest the renderer needs, next to the book folder.

    Returns:
        Path to the written manifest
    """
    book_dir = Path(book_dir)
    meta = read_book_meta(book_dir)

    languages = meta.get("allTitles")
    if isinstance(languages, dict):
        languages = list(languages.keys())
    else:
        languages = []

    manifest = {
        "collectionName": book_dir.name,
        "bookFolder": book_dir.name,
        "title": meta.get("title", book_dir.name),
        "languages": languages,
    }

    manifest_path = book_dir.parent / f"{book_dir.name}{COLLECTION_EXTENSION}"
    with open(manifest_path, "w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, ensure_ascii=False)

    return manifest_path
