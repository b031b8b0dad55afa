"""
Re-case model-produced field names to match the sampled schema.

Language models routinely lower-case field names (``name`` where the data
says ``Name``).  MongoDB field names are case-sensitive, so such a query
would silently match nothing.  The normalizer rewrites every mapping key
whose lower-cased form is a known field path; operator keys (``$and``,
``$gt``, …) are never in the map and pass through untouched.
"""

from typing import Any, Dict

from logger import logger


def normalize_keys(tree: Any, case_map: Dict[str, str]) -> Any:
    """Return a copy of *tree* with field keys re-cased via *case_map*.

    Idempotent: canonical keys map to themselves.  When two keys of one
    mapping differ only by case, the already-canonical key (or the first one
    seen) claims the canonical spelling and the other keeps its own, so
    neither condition is overwritten.
    """
    if not case_map:
        return tree
    if isinstance(tree, dict):
        taken = {k for k in tree if isinstance(k, str) and case_map.get(k.lower()) == k}
        fixed: Dict[str, Any] = {}
        for key, value in tree.items():
            new_key = key
            if isinstance(key, str) and key not in taken:
                canonical = case_map.get(key.lower(), key)
                if canonical in taken:
                    logger.warning("[CASE] %s collides with %s, left as-is", key, canonical)
                else:
                    new_key = canonical
                    taken.add(canonical)
            if new_key != key:
                logger.debug("[CASE] %s → %s", key, new_key)
            fixed[new_key] = normalize_keys(value, case_map)
        return fixed
    if isinstance(tree, list):
        return [normalize_keys(item, case_map) for item in tree]
    return tree
