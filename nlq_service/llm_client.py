"""
Client for the external text-generation service.

The service is treated as an untrusted, unreliable collaborator: one
blocking call per request, bounded by a fixed timeout, no retries.  Any
transport failure, timeout, non-success status or missing text surfaces as
``UpstreamServiceFailure`` and ends the request.

Providers:

- ``ollama``: local HTTP service.  ``/api/generate`` takes
  ``{model, system, prompt}`` and answers ``{"response": "..."}``;
  ``/api/chat`` takes ``{model, messages}`` and answers
  ``{"message": {"content": "..."}}``.
- ``gemini``: Google GenAI SDK with a system instruction.
"""

import time
from typing import Any, Dict, Optional

import requests
from google import genai
from google.genai import types

from config import Settings
from errors import UpstreamServiceFailure
from logger import logger
from prompt_compiler import Prompt

PROVIDER_OLLAMA = "ollama"
PROVIDER_GEMINI = "gemini"


def extract_response_text(body: Any) -> Optional[str]:
    """Pull the generated text out of a ``/api/generate`` or ``/api/chat`` body."""
    if not isinstance(body, dict):
        return None
    text = body.get("response")
    if isinstance(text, str):
        return text
    message = body.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), str):
        return message["content"]
    return None


class TextGenerationClient:
    """Sends a compiled ``Prompt`` and returns the raw response text."""

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.provider = settings.llm_provider
        self.timeout = settings.llm_timeout_seconds
        self.base_url = settings.ollama_base_url.rstrip("/")
        self.ollama_api = settings.ollama_api
        self.ollama_model = settings.ollama_model
        self.gemini_model = settings.gemini_model
        self._gemini_api_key = settings.gemini_api_key
        self._session = session or requests.Session()
        self._genai_client = None

    @property
    def model_name(self) -> str:
        return self.gemini_model if self.provider == PROVIDER_GEMINI else self.ollama_model

    def generate(self, prompt: Prompt) -> str:
        start = time.time()
        if self.provider == PROVIDER_GEMINI:
            text = self._generate_gemini(prompt)
        elif self.provider == PROVIDER_OLLAMA:
            text = self._generate_ollama(prompt)
        else:
            raise UpstreamServiceFailure(f"Unsupported LLM provider: {self.provider}")

        logger.info(
            "[LLM] %s/%s responded in %.2fs (%d chars)",
            self.provider, self.model_name, time.time() - start, len(text),
        )
        logger.debug("[LLM] Raw response: %s", text[:500])
        return text

    # ---------------------- OLLAMA ----------------------

    def _ollama_request(self, prompt: Prompt) -> Dict[str, Any]:
        if self.ollama_api == "chat":
            return {
                "url": f"{self.base_url}/api/chat",
                "json": {
                    "model": self.ollama_model,
                    "messages": [
                        {"role": "system", "content": prompt.system},
                        {"role": "user", "content": prompt.user},
                    ],
                    "stream": False,
                    "format": "json",
                },
            }
        return {
            "url": f"{self.base_url}/api/generate",
            "json": {
                "model": self.ollama_model,
                "system": prompt.system,
                "prompt": prompt.user,
                "stream": False,
                "format": "json",
            },
        }

    def _generate_ollama(self, prompt: Prompt) -> str:
        request = self._ollama_request(prompt)
        try:
            response = self._session.post(
                request["url"], json=request["json"], timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            logger.error("[LLM] Ollama call timed out after %ss", self.timeout)
            raise UpstreamServiceFailure(
                f"Text-generation service timed out after {self.timeout:g}s"
            )
        except requests.exceptions.RequestException as e:
            logger.error("[LLM] Ollama call failed: %s", e)
            raise UpstreamServiceFailure(f"Text-generation service unreachable: {e}")

        if not response.ok:
            logger.error("[LLM] Ollama returned HTTP %d: %s", response.status_code, response.text[:300])
            raise UpstreamServiceFailure(
                f"Text-generation service returned HTTP {response.status_code}"
            )

        try:
            body = response.json()
        except ValueError:
            raise UpstreamServiceFailure("Text-generation service returned a non-JSON body")

        text = extract_response_text(body)
        if text is None:
            raise UpstreamServiceFailure("Text-generation service response carried no text")
        return text

    # ---------------------- GEMINI ----------------------

    def _get_genai_client(self) -> genai.Client:
        if self._genai_client is None:
            if not self._gemini_api_key:
                raise UpstreamServiceFailure("GEMINI_API_KEY is not configured")
            self._genai_client = genai.Client(
                api_key=self._gemini_api_key,
                http_options=types.HttpOptions(timeout=int(self.timeout * 1000)),
            )
        return self._genai_client

    def _generate_gemini(self, prompt: Prompt) -> str:
        client = self._get_genai_client()
        try:
            response = client.models.generate_content(
                model=self.gemini_model,
                contents=prompt.user,
                config=types.GenerateContentConfig(
                    system_instruction=prompt.system,
                    temperature=0.0,
                    max_output_tokens=1024,
                ),
            )
        except Exception as e:
            logger.error("[LLM] Gemini call failed: %s", e)
            raise UpstreamServiceFailure(f"Text-generation service failed: {e}")

        text = response.text
        if not isinstance(text, str):
            raise UpstreamServiceFailure("Text-generation service response carried no text")
        return text
