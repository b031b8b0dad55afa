"""
Error taxonomy for the generate / run pipeline.

Every failure inside the pipeline is raised as a ``PipelineError`` subclass
and converted into a structured JSON response at the HTTP boundary::

    {"ok": false, "error": "<kind>", "detail": "<message>", "hint": "..."}

Nothing is retried automatically.
"""

from typing import Any, Dict, Optional


class PipelineError(Exception):
    """Base class; ``kind`` and ``status_code`` are fixed per subclass."""

    kind = "PipelineError"
    status_code = 500

    def __init__(self, detail: str, hint: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.hint = hint

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"ok": False, "error": self.kind, "detail": self.detail}
        if self.hint:
            body["hint"] = self.hint
        return body


class InvalidInput(PipelineError):
    kind = "InvalidInput"
    status_code = 422


class UpstreamServiceFailure(PipelineError):
    """Text-generation service unreachable, timed out, or returned an error."""

    kind = "UpstreamServiceFailure"
    status_code = 502


class InvalidModelOutput(PipelineError):
    """No usable JSON object could be recovered from the model text."""

    kind = "InvalidModelOutput"
    status_code = 500


class DangerousOperator(PipelineError):
    kind = "DangerousOperator"
    status_code = 400


class EmptyAfterSanitization(PipelineError):
    kind = "EmptyAfterSanitization"
    status_code = 422


class ExecutionFailure(PipelineError):
    kind = "ExecutionFailure"
    status_code = 500
