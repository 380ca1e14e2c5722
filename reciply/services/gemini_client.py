from __future__ import annotations

import json

from google import genai
from google.genai import types
from google.genai.errors import APIError, ClientError

from reciply.services.errors import AIExtractionError, ProviderNotConfiguredError, RateLimitedError, ServiceError

DEFAULT_MODEL = "gemini-2.5-flash"


class GeminiConfigurationError(ProviderNotConfiguredError):
    pass


class GeminiPromptError(ServiceError):
    pass


class GeminiClient:
    def __init__(
        self,
        api_key: str,
        model_name: str = DEFAULT_MODEL,
        temperature: float = 0.3,
        max_output_tokens: int = 4096,
    ) -> None:
        if not api_key:
            raise GeminiConfigurationError("Missing Google API key.")
        self.model_name = model_name
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self._client = genai.Client(api_key=api_key)

    def _serialize_prompt(self, user_prompt: str | dict[str, str | int | float | list | dict]) -> str:
        if isinstance(user_prompt, str):
            return user_prompt
        try:
            return json.dumps(user_prompt, indent=2, ensure_ascii=False)
        except TypeError:
            return str(user_prompt)

    async def generate_json(
        self,
        user_prompt: str | dict[str, str | int | float | list | dict],
        system_instruction: str,
    ) -> str:
        """
        Ask the model for a JSON document and return the raw text.

        Raises:
            RateLimitedError: quota or rate limit hit (HTTP 429 / RESOURCE_EXHAUSTED)
            AIExtractionError: any other API failure or an empty response
        """
        if not system_instruction:
            raise GeminiPromptError("System instruction cannot be empty.")

        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            response_mime_type="application/json",
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
        )

        try:
            response = await self._client.aio.models.generate_content(
                model=self.model_name,
                contents=self._serialize_prompt(user_prompt),
                config=config,
            )
        except ClientError as err:
            status_code = getattr(err, "code", None) or getattr(err, "status_code", None)
            message = str(err)
            if status_code == 429 or "RESOURCE_EXHAUSTED" in message:
                raise RateLimitedError("Gemini API limit reached. Try again in a few moments.") from err
            raise AIExtractionError(f"Gemini request rejected: {message}") from err
        except APIError as err:
            raise AIExtractionError(f"Gemini request failed: {err}") from err

        text = response.text
        if not text:
            raise AIExtractionError("Model response did not include text content.")
        return text
