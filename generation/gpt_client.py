"""
Shared chat-model client for paper generation and grading.

Any OpenAI-compatible chat completions endpoint works (OpenAI, Groq, ...):
set LLM_BASE_URL and LLM_MODEL. JSON response mode is requested on every
call and the seed is forwarded when given.

Used by:
  - paper_generator.py  (temperature 0.2)
  - grading/grader.py   (temperature 0.1)
"""

import logging
from typing import Optional

import openai
from openai import AsyncOpenAI

from services.errors import ModelOutputError, ModelServiceError

log = logging.getLogger(__name__)


class ChatModelClient:
    DEFAULT_MODEL = "gpt-4o-mini"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        timeout: float = 60.0,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.model = model
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        # Lazy so the app can start without a key; the first call fails instead
        if self._client is None:
            if not self.api_key:
                raise ModelServiceError(
                    "LLM_API_KEY is not set. Add it to your .env file.", retryable=False
                )
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    async def complete_json(
        self,
        system: str,
        prompt: str,
        temperature: float,
        max_tokens: int,
        seed: Optional[int] = None,
    ) -> str:
        """
        Call chat completions in JSON mode and return the assistant message text.

        Args:
            system:      System prompt
            prompt:      User-turn message
            temperature: Sampling temperature (lower = more deterministic)
            max_tokens:  Max response tokens
            seed:        Forwarded for reproducible sampling where supported

        Raises:
            ModelServiceError: timeout, connection, rate-limit or server error
            ModelOutputError: empty response
        """
        client = self._get_client()
        kwargs = {}
        if seed is not None:
            kwargs["seed"] = seed
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
                response_format={"type": "json_object"},
                **kwargs,
            )
        except openai.APITimeoutError as e:
            log.warning("Model call timed out after %ss", self.timeout)
            raise ModelServiceError(f"Model call timed out: {e}") from e
        except (openai.APIConnectionError, openai.RateLimitError) as e:
            log.warning("Model call failed: %s", e)
            raise ModelServiceError(f"Model call failed: {e}") from e
        except openai.APIStatusError as e:
            log.warning("Model returned HTTP %s: %s", e.status_code, e)
            raise ModelServiceError(
                f"Model returned HTTP {e.status_code}", retryable=e.status_code >= 500
            ) from e

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise ModelOutputError("Model returned an empty response", code="empty_model_output")
        return content

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
