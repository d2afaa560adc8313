"""Text generation through the Gemini API."""

import time
from typing import Optional

from google import genai
from google.genai import errors, types

from backend.config import GEMINI_API_KEY, GEMINI_MODEL, AI_TEMPERATURE, AI_MAX_OUTPUT_TOKENS
from backend.exceptions import AIServiceError, AICredentialsError, UpstreamRateLimitError
from backend.logger import logger


def classify_api_error(exc: errors.APIError) -> AIServiceError:
    """
    Map a google-genai API error onto the application's AI error types.

    429 / RESOURCE_EXHAUSTED is an upstream quota problem; 401, 403 or a
    message about the API key means the key is missing or rejected.
    """
    code = getattr(exc, "code", None)
    status = (getattr(exc, "status", None) or "").upper()
    message = getattr(exc, "message", None) or str(exc)

    if code == 429 or status == "RESOURCE_EXHAUSTED":
        return UpstreamRateLimitError(f"AI provider rate limit reached: {message}")
    if code in (401, 403) or status in ("UNAUTHENTICATED", "PERMISSION_DENIED") or "api key" in message.lower():
        return AICredentialsError(f"AI provider rejected the API key: {message}")
    return AIServiceError(f"AI provider error ({code}): {message}")


class GeminiTextGenerator:
    """Generate text from a prompt with an optional system instruction. No retries."""

    def __init__(
        self,
        api_key: str = GEMINI_API_KEY,
        model: str = GEMINI_MODEL,
        temperature: float = AI_TEMPERATURE,
        max_output_tokens: int = AI_MAX_OUTPUT_TOKENS,
        client: Optional[genai.Client] = None,
    ):
        self.model = model
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        if client is None and api_key:
            client = genai.Client(api_key=api_key)
        self.client = client

    def is_configured(self) -> bool:
        return self.client is not None

    async def generate(self, prompt: str, system_instruction: Optional[str] = None) -> str:
        """
        Send one prompt and return the response text.

        Raises:
            AICredentialsError: No API key configured, or the key was rejected
            UpstreamRateLimitError: The provider returned a quota error
            AIServiceError: Any other failure
        """
        if not self.is_configured():
            raise AICredentialsError("AI API key is not configured. Set GEMINI_API_KEY in your .env file.")

        start_time = time.time()
        try:
            resp = await self.client.aio.models.generate_content(
                model=self.model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    system_instruction=system_instruction,
                    temperature=self.temperature,
                    max_output_tokens=self.max_output_tokens,
                ),
            )
        except errors.APIError as e:
            logger.error(f"LLM error: {e}", exc_info=True)
            raise classify_api_error(e) from e
        except Exception as e:
            logger.error(f"LLM error: {e}", exc_info=True)
            raise AIServiceError(f"AI request failed: {e}") from e

        elapsed = time.time() - start_time
        logger.info(f"LLM call to {self.model} took {elapsed:.3f} seconds")
        return resp.text or ""
