"""
Opt-in fuzzy matching: turn literal string equality into a case-insensitive
substring match.

    {"name": "O'Brien"}  →  {"name": {"$regex": "O'Brien", "$options": "i"}}

The literal is passed through ``re.escape`` so every regex metacharacter is
matched as itself.  Must run *before* the query sanitizer, so that any
malformed pattern produced here (an empty string literal) is still caught.
"""

import re
from typing import Any, Dict, List

# Aggregation-expression subtrees hold field references ("$city"), not literals
_SKIP_OPERATORS = frozenset({"$expr", "$where", "$jsonSchema", "$text"})
_LOGICAL_OPERATORS = frozenset({"$and", "$or", "$nor"})


def to_pattern(value: str) -> Dict[str, str]:
    return {"$regex": re.escape(value), "$options": "i"}


def fuzzify(tree: Any) -> Any:
    """Rewrite string values of field keys into case-insensitive patterns.

    - field → string:       rewritten
    - field → operator doc: recursed (``$elemMatch`` bodies and the like)
    - field → embedded document literal: unchanged (exact-match semantics)
    - field → array / scalar (non-string): unchanged
    - ``$and`` / ``$or`` / ``$nor`` lists: each branch recursed
    - any other operator:   mapping values recursed, strings left as-is
    """
    if isinstance(tree, list):
        return [fuzzify(item) for item in tree]
    if not isinstance(tree, dict):
        return tree

    out: Dict[str, Any] = {}
    for key, value in tree.items():
        if isinstance(key, str) and key.startswith("$"):
            out[key] = _fuzzify_operator(key, value)
        elif isinstance(value, str):
            out[key] = to_pattern(value)
        elif _is_operator_doc(value):
            out[key] = fuzzify(value)
        else:
            out[key] = value
    return out


def _is_operator_doc(value: Any) -> bool:
    return isinstance(value, dict) and any(
        isinstance(k, str) and k.startswith("$") for k in value
    )


def _fuzzify_operator(key: str, value: Any) -> Any:
    if key in _SKIP_OPERATORS:
        return value
    if key in _LOGICAL_OPERATORS and isinstance(value, list):
        return [fuzzify(branch) for branch in value]
    if isinstance(value, dict):
        return fuzzify(value)
    return value


def fuzzify_pipeline(pipeline: List[Any]) -> List[Any]:
    """Apply ``fuzzify`` to the body of every ``$match`` stage only."""
    out: List[Any] = []
    for stage in pipeline:
        if isinstance(stage, dict) and isinstance(stage.get("$match"), dict):
            stage = {**stage, "$match": fuzzify(stage["$match"])}
        out.append(stage)
    return out
