"""
Schema sampling: learn the real field paths (and their casing) of a
collection from a bounded sample of documents.

The sample is built fresh for every generation request and thrown away once
the response is produced: nothing here is cached.

    {"Name": "Jens", "Address": {"City": "Oslo"}, "Tags": [{"Label": "x"}]}
        → ["Name", "Address", "Address.City", "Tags", "Tags.Label"]

Arrays of embedded documents share their parent's path (MongoDB resolves
``Tags.Label`` into array elements natively).  The top-level ``_id`` is
skipped.
"""

from typing import Any, Dict, List

from pymongo.errors import PyMongoError

from logger import logger

DEFAULT_SAMPLE_SIZE = 50


# ---------------------- DOCUMENT WALK ----------------------

def collect_field_paths(
    doc: Dict[str, Any],
    seen: Dict[str, None],
    parent_key: str = "",
    sep: str = ".",
) -> None:
    """Record every field path of *doc* into the ordered set *seen*."""
    for key, value in doc.items():
        if key == "_id" and parent_key == "":
            continue
        full_key = f"{parent_key}{sep}{key}" if parent_key else key
        seen.setdefault(full_key, None)
        if isinstance(value, dict):
            collect_field_paths(value, seen, full_key, sep)
        elif isinstance(value, list):
            for el in value:
                if isinstance(el, dict):
                    collect_field_paths(el, seen, full_key, sep)


# ---------------------- SAMPLING ----------------------

def sample_field_paths(collection, cap: int = DEFAULT_SAMPLE_SIZE) -> List[str]:
    """Return distinct field paths from up to *cap* documents of *collection*.

    Order is first-seen order.  Any failure (missing collection, lost
    connection, …) is logged and yields ``[]`` so generation proceeds
    without schema hints.
    """
    try:
        docs = list(collection.find({}).limit(max(1, cap)))
    except (PyMongoError, OSError) as e:
        logger.warning("[SCHEMA] Sampling failed, continuing without hints: %s", e)
        return []

    seen: Dict[str, None] = {}
    for doc in docs:
        if isinstance(doc, dict):
            collect_field_paths(doc, seen)

    fields = list(seen)
    logger.info("[SCHEMA] Sampled %d docs: %d field paths", len(docs), len(fields))
    return fields


# ---------------------- CASE MAP ----------------------

def build_case_map(fields: List[str]) -> Dict[str, str]:
    """Map ``lower(path)`` → canonical path; the first spelling seen wins."""
    case_map: Dict[str, str] = {}
    for f in fields:
        case_map.setdefault(f.lower(), f)
    return case_map
