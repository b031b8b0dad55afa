"""
Recover a JSON object from free-form model text.

Models do not reliably honour "respond with raw JSON only": answers come back
wrapped in markdown fences, prefixed with prose, or both.  Extraction is an
ordered list of independent strategies, each ``text → Optional[dict]``; the
first one that yields a well-formed JSON *object* wins.

    1. direct: the (stripped) text itself starts with ``{``
    2. fenced: content of the first ```` ``` ```` block (``json`` tag optional)
    3. brace_span: substring from the first ``{`` to the last ``}``

When every strategy fails the whole generation request fails with
``InvalidModelOutput``; this layer never retries.
"""

import json
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from errors import InvalidModelOutput
from logger import logger

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL | re.IGNORECASE)


def _loads_object(candidate: str) -> Optional[Dict[str, Any]]:
    try:
        parsed = json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


# ---------------------- STRATEGIES ----------------------

def parse_direct(text: str) -> Optional[Dict[str, Any]]:
    stripped = text.strip()
    if not stripped.startswith("{"):
        return None
    return _loads_object(stripped)


def parse_fenced(text: str) -> Optional[Dict[str, Any]]:
    m = _FENCE_RE.search(text)
    if not m:
        return None
    return _loads_object(m.group(1).strip())


def parse_brace_span(text: str) -> Optional[Dict[str, Any]]:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return _loads_object(text[start:end + 1])


STRATEGIES: List[Tuple[str, Callable[[str], Optional[Dict[str, Any]]]]] = [
    ("direct", parse_direct),
    ("fenced", parse_fenced),
    ("brace_span", parse_brace_span),
]


# ---------------------- ENTRY POINT ----------------------

def extract_json(text: str) -> Dict[str, Any]:
    """Return the first JSON object recoverable from *text*.

    Raises ``InvalidModelOutput`` when no strategy succeeds.
    """
    if not isinstance(text, str) or not text.strip():
        raise InvalidModelOutput("Model returned an empty response")

    for name, strategy in STRATEGIES:
        parsed = strategy(text)
        if parsed is not None:
            logger.debug("[EXTRACT] strategy=%s succeeded", name)
            return parsed

    logger.warning("[EXTRACT] No JSON object in model output: %s", text[:300])
    raise InvalidModelOutput("Model returned no recoverable JSON object")
