"""Language model access for agent, router and evaluator blocks."""

import asyncio
import json
import logging
import os
from typing import Any, Protocol

import anthropic
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Default retry configuration
MAX_RETRIES = 3
RETRY_DELAY = 1.0  # seconds
RETRY_MULTIPLIER = 2.0


class ModelResponse(BaseModel):
    """Text completion returned by a model provider."""

    content: str
    model: str
    tokens: dict[str, int] = Field(default_factory=dict)


class ModelProvider(Protocol):
    """Anything that can complete a prompt for a block."""

    async def complete(
        self,
        model: str,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> ModelResponse: ...


def parse_json_text(text: str) -> Any:
    """Parse JSON from model output, tolerating markdown code fences.

    Raises:
        ValueError: If the text is not valid JSON
    """
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    if text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    text = text.strip()

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse JSON response: {text[:500]}...")
        raise ValueError(f"Invalid JSON in response: {e}") from e


class AnthropicModelProvider:
    """ModelProvider backed by the Anthropic API with retry on transient errors."""

    def __init__(self, api_key: str | None = None):
        """Initialize the provider.

        Args:
            api_key: Anthropic API key. If not provided, uses ANTHROPIC_API_KEY env var.
        """
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise ValueError(
                "Anthropic API key required. Set ANTHROPIC_API_KEY environment variable "
                "or pass api_key parameter."
            )
        self._client = anthropic.Anthropic(api_key=self.api_key)

    async def complete(
        self,
        model: str,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> ModelResponse:
        messages = [{"role": "user", "content": prompt}]
        response = await self._call_with_retry(
            model=model,
            messages=messages,
            system=system_prompt,
            max_tokens=max_tokens,
            temperature=temperature,
        )

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        usage = getattr(response, "usage", None)
        tokens: dict[str, int] = {}
        if usage is not None:
            tokens = {
                "prompt": usage.input_tokens,
                "completion": usage.output_tokens,
                "total": usage.input_tokens + usage.output_tokens,
            }
        return ModelResponse(content=text, model=response.model, tokens=tokens)

    async def _call_with_retry(
        self,
        model: str,
        messages: list[dict[str, str]],
        system: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> anthropic.types.Message:
        """Call the API with exponential backoff on rate limits and 5xx errors.

        Raises:
            anthropic.APIError: If all retries fail
        """
        last_error: Exception | None = None
        delay = RETRY_DELAY

        for attempt in range(MAX_RETRIES):
            try:
                kwargs: dict[str, Any] = {
                    "model": model,
                    "max_tokens": max_tokens,
                    "messages": messages,
                    "temperature": temperature,
                }
                if system:
                    kwargs["system"] = system

                # Run sync client in thread pool
                loop = asyncio.get_running_loop()
                return await loop.run_in_executor(
                    None, lambda: self._client.messages.create(**kwargs)
                )

            except anthropic.RateLimitError as e:
                last_error = e
                logger.warning(
                    f"Rate limited (attempt {attempt + 1}/{MAX_RETRIES}), "
                    f"retrying in {delay}s..."
                )
                await asyncio.sleep(delay)
                delay *= RETRY_MULTIPLIER

            except anthropic.APIStatusError as e:
                if e.status_code >= 500:
                    last_error = e
                    logger.warning(
                        f"Server error {e.status_code} (attempt {attempt + 1}/{MAX_RETRIES}), "
                        f"retrying in {delay}s..."
                    )
                    await asyncio.sleep(delay)
                    delay *= RETRY_MULTIPLIER
                else:
                    raise

        raise last_error or RuntimeError("Unexpected retry failure")
