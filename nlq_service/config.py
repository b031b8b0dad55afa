import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

DEFAULT_BLOCKED_OPERATORS = "$where,$function,$accumulator,$out,$merge"


class Settings(BaseModel):
    """Runtime configuration, passed explicitly into every component."""

    # ---- MongoDB ----
    mongo_uri: str = "mongodb://localhost:27017"
    database_name: str = "test"
    server_selection_timeout_ms: int = 5000

    # ---- Text generation ----
    # "ollama" (local HTTP service) or "gemini" (Google GenAI SDK)
    llm_provider: str = "ollama"
    ollama_base_url: str = "http://127.0.0.1:11434"
    ollama_model: str = "llama3.1"
    # "generate" → /api/generate, "chat" → /api/chat
    ollama_api: str = "generate"
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.0-flash"
    llm_timeout_seconds: float = 30.0

    # ---- Query limits ----
    schema_sample_size: int = Field(default=50, ge=1)
    max_limit: int = Field(default=100, ge=1)
    default_limit: int = Field(default=50, ge=1)
    blocked_operators: List[str] = Field(
        default_factory=lambda: DEFAULT_BLOCKED_OPERATORS.split(","),
    )

    log_level: str = "INFO"


def _split_operators(raw: str) -> List[str]:
    return [op.strip() for op in raw.split(",") if op.strip()]


def load_settings() -> Settings:
    """Build ``Settings`` from the environment (``.env`` already loaded)."""
    return Settings(
        mongo_uri=os.getenv("MONGO_URI", "mongodb://localhost:27017"),
        database_name=os.getenv("DATABASE_NAME", "test"),
        server_selection_timeout_ms=int(os.getenv("SERVER_SELECTION_TIMEOUT_MS", "5000")),
        llm_provider=os.getenv("LLM_PROVIDER", "ollama").lower(),
        ollama_base_url=os.getenv("OLLAMA_BASE_URL", "http://127.0.0.1:11434"),
        ollama_model=os.getenv("OLLAMA_MODEL", "llama3.1"),
        ollama_api=os.getenv("OLLAMA_API", "generate").lower(),
        gemini_api_key=os.getenv("GEMINI_API_KEY", "").strip() or None,
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.0-flash"),
        llm_timeout_seconds=float(os.getenv("LLM_TIMEOUT_SECONDS", "30")),
        schema_sample_size=int(os.getenv("SCHEMA_SAMPLE_SIZE", "50")),
        max_limit=int(os.getenv("MAX_LIMIT", "100")),
        default_limit=int(os.getenv("DEFAULT_LIMIT", "50")),
        blocked_operators=_split_operators(
            os.getenv("BLOCKED_OPERATORS", DEFAULT_BLOCKED_OPERATORS)
        ),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
