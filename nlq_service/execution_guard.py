"""
Execution guard: run a sanitized QuerySpec under hard resource caps.

- ``limit`` is clamped into ``[1, max_limit]``.
- Aggregation pipelines always get a terminal ``{"$limit": n}`` appended,
  whatever they already contain, so a runaway pipeline cannot exceed the cap.
- ``find`` can run with a strength-2 collation (case-insensitive equality
  and sort; regex semantics are unaffected).
- Extended JSON is decoded on the way in and every result document is
  encoded to string-safe JSON on the way out.

Driver errors surface as ``ExecutionFailure``: never swallowed.
"""

from typing import Any, Dict, List

from pymongo.collation import Collation, CollationStrength
from pymongo.errors import PyMongoError

from config import Settings
from errors import ExecutionFailure
from extended_json import decode, encode
from logger import logger
from query_spec import AggregateSpec, FindSpec, QuerySpec, clamp_limit

CASE_INSENSITIVE_COLLATION = Collation(locale="en", strength=CollationStrength.SECONDARY)


class ExecutionGuard:

    def __init__(self, settings: Settings):
        self.max_limit = settings.max_limit
        self.default_limit = settings.default_limit

    def clamp_limit(self, value: Any) -> int:
        return clamp_limit(value, self.max_limit, self.default_limit)

    @staticmethod
    def cap_pipeline(pipeline: List[Dict[str, Any]], limit: int) -> List[Dict[str, Any]]:
        """Return a copy of *pipeline* with ``{"$limit": limit}`` appended."""
        return list(pipeline) + [{"$limit": limit}]

    # ---------------------- EXECUTION ----------------------

    def run(self, collection, spec: QuerySpec, ci: bool = True) -> List[Dict[str, Any]]:
        limit = self.clamp_limit(spec.limit)
        try:
            if isinstance(spec, AggregateSpec):
                docs = self._run_aggregate(collection, spec, limit)
            else:
                docs = self._run_find(collection, spec, limit, ci)
        except (PyMongoError, TypeError, ValueError) as e:
            logger.error("[RUN] Query execution failed: %s", e)
            raise ExecutionFailure(f"Query execution error: {e}")

        logger.info("[RUN] %s returned %d document(s) (limit %d)", spec.kind, len(docs), limit)
        return [encode(doc) for doc in docs]

    def _run_find(self, collection, spec: FindSpec, limit: int, ci: bool) -> List[Dict[str, Any]]:
        kwargs: Dict[str, Any] = {"limit": limit}
        if spec.projection:
            kwargs["projection"] = decode(spec.projection)
        if spec.sort:
            kwargs["sort"] = list(spec.sort.items())
        if ci:
            kwargs["collation"] = CASE_INSENSITIVE_COLLATION

        mongo_filter = decode(spec.filter)
        logger.info("[RUN] find filter=%s options=%s", mongo_filter, sorted(kwargs))
        return list(collection.find(mongo_filter, **kwargs))

    def _run_aggregate(self, collection, spec: AggregateSpec, limit: int) -> List[Dict[str, Any]]:
        pipeline = decode(self.cap_pipeline(spec.pipeline, limit))
        logger.info("[RUN] aggregate %d stage(s)", len(pipeline))
        return list(collection.aggregate(pipeline, allowDiskUse=True))
