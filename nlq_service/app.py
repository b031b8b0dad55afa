"""
FastAPI service: natural-language-to-MongoDB query compiler with a safety
pipeline.

Endpoints:
- ``POST /ai/generate``: instruction → sanitized find query / pipeline
- ``POST /ai/run``     : execute a (client-edited) query under hard caps
- ``GET  /collections``: collection names with estimated counts
- ``GET  /ai/status``  : text-generation backend configuration
- ``GET  /health``

Every pipeline failure is rendered as
``{"ok": false, "error": <kind>, "detail": <message>}`` with the status code
of its kind (see ``errors.py``).
"""

import threading
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from config import load_settings
from document_store import DocumentStore
from errors import InvalidInput, PipelineError
from llm_client import PROVIDER_GEMINI, TextGenerationClient
from logger import logger, setup_logging
from pipeline import QueryPipeline

settings = load_settings()
setup_logging(settings.log_level)

_pipeline: Optional[QueryPipeline] = None
_pipeline_lock = threading.Lock()


def get_pipeline() -> QueryPipeline:
    global _pipeline
    if _pipeline is None:
        with _pipeline_lock:
            if _pipeline is None:
                _pipeline = QueryPipeline(
                    settings,
                    DocumentStore(settings),
                    TextGenerationClient(settings),
                )
    return _pipeline


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if _pipeline is not None:
        _pipeline.store.close()
        logger.info("MongoDB client closed")


app = FastAPI(title="NL Query Compiler for MongoDB", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------- REQUEST MODELS ----------------------


class GenerateRequest(BaseModel):
    natural: str = Field(..., description="Natural-language instruction")
    mode: Literal["find", "aggregate"]
    collection: Optional[str] = Field(
        default=None, description="Target collection (enables schema sampling)",
    )
    database: Optional[str] = None


class RunRequest(BaseModel):
    collection: Optional[str] = None
    query: Optional[Dict[str, Any]] = Field(
        default=None, description="Filter, or {filter, projection, sort}",
    )
    pipeline: Optional[List[Dict[str, Any]]] = None
    limit: Optional[int] = Field(default=100, description="Clamped to [1, 100]")
    ci: bool = Field(default=True, description="Case-insensitive collation for find")
    fuzzy: bool = Field(default=False, description="Literal strings → substring regex")
    database: Optional[str] = None


# ---------------------- ERROR HANDLERS ----------------------


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    logger.error("%s %s failed: %s: %s", request.method, request.url.path, exc.kind, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    detail = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
        for err in exc.errors()
    )
    logger.warning("%s %s invalid input: %s", request.method, request.url.path, detail)
    error = InvalidInput(detail or "Invalid request body")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# ---------------------- ENDPOINTS ----------------------


@app.post("/ai/generate")
def generate(request: GenerateRequest, pipeline: QueryPipeline = Depends(get_pipeline)):
    """Instruction → ``{kind, query? | pipeline?, limit, fields, raw}``."""
    return pipeline.generate(
        request.natural,
        request.mode,
        collection=request.collection,
        database=request.database,
    )


@app.post("/ai/run")
def run(request: RunRequest, pipeline: QueryPipeline = Depends(get_pipeline)):
    """Execute a query or pipeline; returns the result documents."""
    return pipeline.run(
        request.collection,
        query=request.query,
        pipeline=request.pipeline,
        limit=request.limit,
        ci=request.ci,
        fuzzy=request.fuzzy,
        database=request.database,
    )


@app.get("/collections")
def get_collections(
    database: Optional[str] = None,
    pipeline: QueryPipeline = Depends(get_pipeline),
):
    return {"collections": pipeline.store.list_collections(database)}


@app.get("/ai/status")
def llm_status(pipeline: QueryPipeline = Depends(get_pipeline)):
    """Report which text-generation backend is configured."""
    cfg = pipeline.settings
    status: Dict[str, Any] = {
        "provider": cfg.llm_provider,
        "model": pipeline.llm.model_name,
        "timeout_seconds": cfg.llm_timeout_seconds,
        "max_limit": cfg.max_limit,
        "blocked_operators": cfg.blocked_operators,
    }
    if cfg.llm_provider == PROVIDER_GEMINI:
        status["api_key_set"] = bool(cfg.gemini_api_key)
    else:
        status["base_url"] = cfg.ollama_base_url
        status["api"] = cfg.ollama_api
    return status


@app.get("/health")
def health_check():
    return {"status": "ok", "version": "1.0.0"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app:app", host="0.0.0.0", port=8000, log_level=settings.log_level.lower())
