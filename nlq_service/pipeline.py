"""
Generate / run orchestration.

Generate:
    schema sample → prompt → text generation → JSON extraction
    → dangerous-operator check → QuerySpec → field re-casing → sanitize

Run:
    QuerySpec → dangerous-operator check → (fuzzy) → sanitize
    → execution guard → encoded documents

Two error policies, kept deliberately separate:

- schema sampling failures are swallowed (generation proceeds without
  field hints);
- everything else raises a ``PipelineError`` and ends the request.  No
  partial output (e.g. a parsed-but-unsanitized query) is ever returned.

All per-request state (field sample, case map, sanitization report) lives
in local variables; a ``QueryPipeline`` instance is safe to share.
"""

from typing import Any, Dict, List, Optional

from pymongo.errors import PyMongoError

from case_normalizer import normalize_keys
from config import Settings
from document_store import DocumentStore
from errors import EmptyAfterSanitization, ExecutionFailure, InvalidInput
from execution_guard import ExecutionGuard
from fuzzy import fuzzify, fuzzify_pipeline
from llm_client import TextGenerationClient
from logger import logger
from prompt_compiler import MODES, PromptCompiler
from query_sanitizer import check_dangerous, is_collapsed, sanitize
from query_spec import (
    AggregateSpec,
    FindSpec,
    QuerySpec,
    from_model_output,
    from_run_request,
    to_response,
)
from response_extractor import extract_json
from schema_sampler import build_case_map, sample_field_paths

EMPTY_QUERY_HINT = (
    "Name a concrete value in the request (e.g. 'users named Jens') "
    "or run an explicit empty query to list documents."
)


class QueryPipeline:

    def __init__(
        self,
        settings: Settings,
        store: DocumentStore,
        llm: TextGenerationClient,
        compiler: Optional[PromptCompiler] = None,
        guard: Optional[ExecutionGuard] = None,
    ):
        self.settings = settings
        self.store = store
        self.llm = llm
        self.compiler = compiler or PromptCompiler(settings)
        self.guard = guard or ExecutionGuard(settings)

    # ---------------------- GENERATE ----------------------

    def generate(
        self,
        natural: str,
        mode: str,
        collection: Optional[str] = None,
        database: Optional[str] = None,
    ) -> Dict[str, Any]:
        natural = (natural or "").strip()
        if not natural:
            raise InvalidInput("'natural' (the instruction) is required")
        if mode not in MODES:
            raise InvalidInput(f"'mode' must be one of {', '.join(MODES)}")
        collection = (collection or "").strip() or None

        # 1. Schema sample (failures degrade to "no hints")
        fields = self._sample_fields(collection, database) if collection else []
        logger.info("[GENERATE] Step 1: %d sampled field(s) for %s", len(fields), collection)

        # 2. Prompt → text generation (UpstreamServiceFailure propagates)
        prompt = self.compiler.build(natural, mode, fields, collection)
        raw = self.llm.generate(prompt)

        # 3. Extract JSON (InvalidModelOutput propagates)
        parsed = extract_json(raw)
        logger.info("[GENERATE] Step 3: extracted keys %s", sorted(parsed))

        # 4. Hard stop on dangerous operators, before any repair
        check_dangerous(parsed, self.settings.blocked_operators)

        # 5. Structure, re-case field names, sanitize
        spec = from_model_output(
            parsed, mode, self.settings.default_limit, self.settings.max_limit,
        )
        spec = self._normalize(spec, build_case_map(fields))
        spec = self._sanitize(spec)

        logger.info("[GENERATE] Step 5: %s", spec)
        return {**to_response(spec), "fields": fields, "raw": raw}

    def _sample_fields(self, collection: str, database: Optional[str]) -> List[str]:
        try:
            handle = self.store.collection(collection, database)
        except (PyMongoError, ValueError) as e:
            logger.warning("[SCHEMA] No collection handle for %s: %s", collection, e)
            return []
        return sample_field_paths(handle, self.settings.schema_sample_size)

    @staticmethod
    def _normalize(spec: QuerySpec, case_map: Dict[str, str]) -> QuerySpec:
        if not case_map:
            return spec
        if isinstance(spec, AggregateSpec):
            return spec.model_copy(update={"pipeline": normalize_keys(spec.pipeline, case_map)})
        return spec.model_copy(update={
            "filter": normalize_keys(spec.filter, case_map),
            "projection": normalize_keys(spec.projection, case_map),
            "sort": normalize_keys(spec.sort, case_map),
        })

    # ---------------------- RUN ----------------------

    def run(
        self,
        collection: Optional[str],
        query: Optional[Dict[str, Any]] = None,
        pipeline: Optional[List[Dict[str, Any]]] = None,
        limit: Any = 100,
        ci: bool = True,
        fuzzy: bool = False,
        database: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        collection = (collection or "").strip()
        if not collection:
            raise InvalidInput("'collection' is required")

        spec = from_run_request(
            query, pipeline, limit, self.settings.default_limit, self.settings.max_limit,
        )
        self._check_dangerous(spec)

        if fuzzy:
            spec = self._fuzzify(spec)
        spec = self._sanitize(spec)

        try:
            handle = self.store.collection(collection, database)
        except (PyMongoError, ValueError) as e:
            raise ExecutionFailure(f"Cannot open collection '{collection}': {e}")
        return self.guard.run(handle, spec, ci=ci)

    def _check_dangerous(self, spec: QuerySpec) -> None:
        blocked = self.settings.blocked_operators
        if isinstance(spec, AggregateSpec):
            check_dangerous(spec.pipeline, blocked)
        else:
            check_dangerous(spec.filter, blocked)
            check_dangerous(spec.projection, blocked)
            check_dangerous(spec.sort, blocked)

    @staticmethod
    def _fuzzify(spec: QuerySpec) -> QuerySpec:
        if isinstance(spec, AggregateSpec):
            return spec.model_copy(update={"pipeline": fuzzify_pipeline(spec.pipeline)})
        return spec.model_copy(update={"filter": fuzzify(spec.filter)})

    # ---------------------- SHARED ----------------------

    @staticmethod
    def _sanitize(spec: QuerySpec) -> QuerySpec:
        """Sanitize the condition tree; reject a query that collapsed to nothing."""
        if isinstance(spec, FindSpec):
            cleaned, report = sanitize(spec.filter)
            spec = spec.model_copy(update={"filter": cleaned})
        else:
            cleaned, report = sanitize(spec.pipeline)
            spec = spec.model_copy(update={"pipeline": cleaned})

        if is_collapsed(cleaned, report):
            raise EmptyAfterSanitization(
                f"All conditions were removed by sanitization ({report.removed} empty "
                f"or malformed pattern match(es) at {', '.join(report.removed_paths)}); "
                "refusing to match every document",
                hint=EMPTY_QUERY_HINT,
            )
        return spec
