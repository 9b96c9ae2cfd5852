"""Language model providers used by model-backed blocks."""

from studio.llm.client import (
    AnthropicModelProvider,
    ModelProvider,
    ModelResponse,
    parse_json_text,
)

__all__ = ["AnthropicModelProvider", "ModelProvider", "ModelResponse", "parse_json_text"]
