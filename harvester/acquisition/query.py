"""Registry query filters.

The base filter for a mode is only a pre-filter: it may include books the
eligibility policy later skips, but never excludes a book the policy would accept.
"""

import json
from typing import Any, Optional

from .models import Book, HarvestMode, HarvestState, Version


def get_base_filter(mode: HarvestMode, version: Version) -> dict:
    """Return the mode-specific registry filter for a harvester of the given version."""
    major_version_filter = {
        "$or": [
            {Book.HARVESTER_MAJOR_VERSION_FIELD: {"$lte": version.major}},
            {Book.HARVESTER_MAJOR_VERSION_FIELD: {"$exists": False}},
        ]
    }

    if mode in (HarvestMode.ALL, HarvestMode.FORCE_ALL):
        return {}
    if mode == HarvestMode.NEW_OR_UPDATED_ONLY:
        states = [HarvestState.NEW.value, HarvestState.UPDATED.value, HarvestState.UNKNOWN.value]
        return {Book.HARVEST_STATE_FIELD: {"$in": states}}
    if mode == HarvestMode.RETRY_FAILURES_ONLY:
        return {Book.HARVEST_STATE_FIELD: HarvestState.FAILED.value, **major_version_filter}
    if mode == HarvestMode.DEFAULT:
        return major_version_filter

    raise ValueError(f"Unexpected mode: {mode}")


def merge_filters(target: dict, additional: dict) -> dict:
    """Merge additional into a copy of target.

    Nested objects are merged recursively, arrays on both sides are unioned
    (order kept, duplicates dropped), and any other conflict takes the value
    from additional.
    """
    merged = dict(target)
    for key, value in additional.items():
        existing = merged.get(key)
        if isinstance(existing, dict) and isinstance(value, dict):
            merged[key] = merge_filters(existing, value)
        elif isinstance(existing, list) and isinstance(value, list):
            merged[key] = _union(existing, value)
        else:
            merged[key] = value
    return merged


def _union(first: list, second: list) -> list:
    result = list(first)
    for item in second:
        if item not in result:
            result.append(item)
    return result


def parse_user_filter(query_where: Optional[str]) -> dict:
    """Parse a caller-supplied filter. Blank input means no filter.

    Raises:
        ValueError: If the text is not a JSON object.
    """
    if query_where is None or not query_where.strip():
        return {}

    parsed: Any = json.loads(query_where)
    if not isinstance(parsed, dict):
        raise ValueError(f"Query filter must be a JSON object: {query_where}")
    return parsed


def combine_filters(query_where: Optional[str], base_filter: dict) -> dict:
    """Merge the caller's filter with the mode's base filter."""
    user_filter = parse_user_filter(query_where)
    if not user_filter:
        return dict(base_filter)
    return merge_filters(user_filter, base_filter)
