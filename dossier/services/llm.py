"""
LLM Service Module.

This module provides the inference clients used by the summarization
pipeline. Both expose the same ``generate`` call: a single non-streaming
request carrying the model, prompt, optional system instruction, temperature,
output cap and its own timeout.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict

import requests
from google import genai

from dossier.config import Settings
from dossier.errors import ConfigValidationError, InferenceError
from dossier.services.base import InferenceClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InferenceRequest:
    """One request to the inference endpoint."""

    model: str
    prompt: str
    system: str = ""
    temperature: float = 0.7
    max_tokens: int = 2000
    timeout: float = 300.0


class OllamaClient:
    """Client for an Ollama-compatible ``/api/generate`` endpoint."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")

    def _payload(self, request: InferenceRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": request.model,
            "prompt": request.prompt,
            "stream": False,
            "options": {
                "temperature": request.temperature,
                "num_predict": request.max_tokens,
            },
        }
        if request.system:
            payload["system"] = request.system
        return payload

    def generate(self, request: InferenceRequest) -> str:
        url = f"{self.base_url}/api/generate"
        try:
            resp = requests.post(
                url, json=self._payload(request), timeout=request.timeout
            )
            resp.raise_for_status()
            data = resp.json()
        except requests.RequestException as e:
            raise InferenceError(f"Error calling inference API ({request.model}): {e}") from e
        except ValueError as e:
            raise InferenceError(f"Error decoding inference response: {e}") from e

        text = data.get("response") if isinstance(data, dict) else None
        if not text or not str(text).strip():
            raise InferenceError(f"Model {request.model} returned an empty response")
        return str(text)


class GeminiClient:
    """
    Client for the Google Gemini API.

    Uses the same request contract as the Ollama client so the pipeline does
    not care which backend is configured.
    """

    def __init__(self, api_key: str):
        self.api_key = api_key
        self.client = genai.Client(api_key=api_key)

    def generate(self, request: InferenceRequest) -> str:
        config: Dict[str, Any] = {
            "temperature": request.temperature,
            "max_output_tokens": request.max_tokens,
            "http_options": {"timeout": int(request.timeout * 1000)},
        }
        if request.system:
            config["system_instruction"] = request.system

        try:
            response = self.client.models.generate_content(
                model=request.model,
                contents=request.prompt,
                config=config,
            )
        except Exception as e:  # pylint: disable=broad-exception-caught
            raise InferenceError(f"Gemini API error ({request.model}): {e}") from e

        response_text = response.text if response.text else ""
        if not response_text.strip():
            raise InferenceError(f"Model {request.model} returned an empty response")
        return response_text


def build_inference_client(settings: Settings) -> InferenceClient:
    """Creates the inference client selected by the settings."""
    if settings.inference_backend == "gemini":
        if not settings.gemini_api_key:
            raise ConfigValidationError("GEMINI_KEY not set for the gemini backend.")
        logger.info("Using Gemini inference backend.")
        return GeminiClient(settings.gemini_api_key)
    logger.info("Using Ollama inference backend at %s", settings.ollama_url)
    return OllamaClient(settings.ollama_url)
