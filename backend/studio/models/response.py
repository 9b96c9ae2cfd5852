"""Tagged representation of workflow output shown to chat clients."""

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

EMPTY_OUTPUT_MESSAGE = "No output returned from workflow"


class TextContent(BaseModel):
    kind: Literal["text"] = "text"
    value: str

    def as_output(self) -> str:
        return self.value


class JsonContent(BaseModel):
    kind: Literal["json"] = "json"
    value: Any

    def as_output(self) -> str:
        return json.dumps(self.value)


class EmptyContent(BaseModel):
    kind: Literal["empty"] = "empty"

    def as_output(self) -> str:
        return EMPTY_OUTPUT_MESSAGE


ResponseContent = Annotated[
    Union[TextContent, JsonContent, EmptyContent], Field(discriminator="kind")
]

response_content_adapter: TypeAdapter[ResponseContent] = TypeAdapter(ResponseContent)


def resolve_content(raw: Any) -> TextContent | JsonContent | EmptyContent:
    """Classify raw workflow output once, at the boundary.

    A mapping with a non-empty ``text`` entry is text, any other mapping or list
    is JSON, scalars are text, and missing or empty values are empty.
    """
    if raw is None or raw == "" or raw == {} or raw == []:
        return EmptyContent()
    if isinstance(raw, dict):
        text = raw.get("text")
        if text:
            return TextContent(value=str(text))
        return JsonContent(value=raw)
    if isinstance(raw, (list, tuple)):
        return JsonContent(value=list(raw))
    return TextContent(value=str(raw))
