"""Gemini client for schema-constrained statement extraction."""

import logging
import os
from typing import Any, Optional, Type

from google import genai
from google.genai import types

from .base import CompletionClient, CompletionResponse


logger = logging.getLogger(__name__)


API_KEY_VARIABLES = ('GEMINI_API_KEY', 'GOOGLE_API_KEY')


def resolve_api_key(api_key: Optional[str] = None) -> str:
    """Return the explicit key or the first one found in the environment

    Raises:
        ValueError: If no key is configured
    """
    if api_key:
        return api_key
    for name in API_KEY_VARIABLES:
        value = os.environ.get(name)
        if value:
            return value
    raise ValueError(f"No model API key configured; set one of {', '.join(API_KEY_VARIABLES)}")


class GeminiCompletionClient(CompletionClient):
    """Sends statement text to Gemini in JSON mode with a response schema"""

    def __init__(self, model_name: str = "gemini-2.5-flash", api_key: Optional[str] = None,
                 timeout: Optional[float] = None, temperature: float = 0.0):
        self._model_name = model_name
        self.temperature = temperature
        http_options = None
        if timeout:
            # the SDK takes milliseconds
            http_options = types.HttpOptions(timeout=int(timeout * 1000))
        self.client = genai.Client(api_key=resolve_api_key(api_key), http_options=http_options)

    @property
    def model_name(self) -> str:
        return self._model_name

    def complete(self, system_instruction: str, prompt: str,
                 response_schema: Type[Any]) -> CompletionResponse:
        logger.debug(f"Requesting structured extraction from {self._model_name} "
                     f"({len(prompt)} prompt characters)")
        response = self.client.models.generate_content(
            model=self._model_name,
            contents=[prompt],
            config={
                "system_instruction": system_instruction,
                "response_mime_type": "application/json",
                "response_schema": response_schema,
                "temperature": self.temperature,
            },
        )
        return CompletionResponse(text=response.text, model=self._model_name)
