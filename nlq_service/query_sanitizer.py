"""
Query sanitizer: the safety net between model output and the database.

Two independent passes:

1. ``check_dangerous``: hard stop.  Any mapping key anywhere in the tree
   that names a deny-listed operator (``$where``, ``$function``, …) rejects
   the whole request with ``DangerousOperator``.  The check is structural
   (keys, compared case-insensitively after trimming), so a harmless string
   value that merely *mentions* ``$where`` is not blocked.

2. ``sanitize``: silent repair.  Pattern-match clauses
   (``{"$regex": ..., "$options": ...}``) whose pattern is missing, not a
   string, or blank are dropped from their parent; a non-string
   ``$options`` is coerced with ``str()``.  The returned
   ``SanitizationReport`` counts what was removed so the caller can detect a
   query that collapsed to nothing.

Both passes leave the input untouched and return new trees.  ``sanitize``
is idempotent: a second pass removes nothing.
"""

from typing import Any, Dict, Iterable, List, Set, Tuple

from errors import DangerousOperator
from logger import logger


class SanitizationReport:
    """Request-scoped counters for one ``sanitize`` call."""

    def __init__(self) -> None:
        self.removed = 0
        self.coerced = 0
        self.removed_paths: List[str] = []

    def __repr__(self) -> str:
        return f"SanitizationReport(removed={self.removed}, coerced={self.coerced})"


# ---------------------- DANGEROUS OPERATORS ----------------------

def check_dangerous(tree: Any, blocked: Iterable[str]) -> None:
    """Raise ``DangerousOperator`` if *tree* uses any operator in *blocked*."""
    blocked_lower = {op.strip().lower() for op in blocked if op.strip()}
    if blocked_lower:
        _scan(tree, blocked_lower, "")


def _scan(node: Any, blocked: Set[str], path: str) -> None:
    if isinstance(node, dict):
        for key, value in node.items():
            if isinstance(key, str) and key.strip().lower() in blocked:
                logger.warning("[SANITIZE] Blocked operator %s at %s", key, path or "<root>")
                raise DangerousOperator(f"Blocked dangerous operator '{key.strip()}'")
            _scan(value, blocked, f"{path}.{key}" if path else str(key))
    elif isinstance(node, list):
        for i, item in enumerate(node):
            _scan(item, blocked, f"{path}[{i}]")


# ---------------------- PATTERN CLAUSES ----------------------

def is_pattern_clause(node: Any) -> bool:
    return isinstance(node, dict) and ("$regex" in node or "$options" in node)


def has_usable_pattern(node: Dict[str, Any]) -> bool:
    pattern = node.get("$regex")
    return isinstance(pattern, str) and bool(pattern.strip())


def sanitize(tree: Any) -> Tuple[Any, SanitizationReport]:
    """Return ``(clean_tree, report)``; never mutates *tree*."""
    report = SanitizationReport()
    cleaned = _clean(tree, report, "")
    if report.removed or report.coerced:
        logger.info(
            "[SANITIZE] removed %d malformed pattern clause(s) %s, coerced %d $options",
            report.removed, report.removed_paths, report.coerced,
        )
    return cleaned, report


def _clean(node: Any, report: SanitizationReport, path: str) -> Any:
    if isinstance(node, dict):
        return _clean_mapping(node, report, path)
    if isinstance(node, list):
        return _clean_sequence(node, report, path)
    return node


def _clean_mapping(node: Dict[str, Any], report: SanitizationReport, path: str) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in node.items():
        child_path = f"{path}.{key}" if path else str(key)

        if is_pattern_clause(value) and not has_usable_pattern(value):
            report.removed += 1
            report.removed_paths.append(child_path)
            continue

        if key == "$options" and "$regex" in node and not isinstance(value, str):
            report.coerced += 1
            out[key] = str(value)
            continue

        before = report.removed
        cleaned = _clean(value, report, child_path)
        emptied = report.removed > before and not cleaned and bool(value)
        # {"$match": {}} is a valid stage; an emptied $or / $not / field doc is not
        if emptied and key != "$match" and isinstance(value, (dict, list)):
            continue
        out[key] = cleaned
    return out


def _clean_sequence(node: List[Any], report: SanitizationReport, path: str) -> List[Any]:
    out: List[Any] = []
    for i, item in enumerate(node):
        item_path = f"{path}[{i}]"
        # {"$in": [{"$regex": ""}]} would decode to a match-everything Regex
        if is_pattern_clause(item) and not has_usable_pattern(item):
            report.removed += 1
            report.removed_paths.append(item_path)
            continue

        before = report.removed
        cleaned = _clean(item, report, item_path)
        if isinstance(item, dict) and item and not cleaned and report.removed > before:
            continue
        out.append(cleaned)
    return out


# ---------------------- COLLAPSE DETECTION ----------------------

def _is_empty_stage(stage: Any) -> bool:
    return stage == {} or stage == {"$match": {}}


def is_collapsed(cleaned: Any, report: SanitizationReport) -> bool:
    """True when removals left no condition at all.

    Such a query would silently match every document, so callers reject it
    instead of executing it.
    """
    if report.removed == 0:
        return False
    if isinstance(cleaned, dict):
        return not cleaned
    if isinstance(cleaned, list):
        return all(_is_empty_stage(stage) for stage in cleaned)
    return False
