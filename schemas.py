# schemas.py
import json
import re
from dataclasses import dataclass
from typing import Any, List

from pydantic import BaseModel, Field


# ----------------------------------------------------------------------
# http request / response bodies
# ----------------------------------------------------------------------


class ChatMessage(BaseModel):
    role: str
    content: str | None = ""


class ChatRequest(BaseModel):
    # field names follow what the frontend already sends
    messages: List[ChatMessage] = Field(min_length=1)
    conversationHistory: List[ChatMessage] = []
    connectionEndpoint: str | None = None
    connectionCredential: str | None = None


class ChatResponse(BaseModel):
    response: str


class ErrorResponse(BaseModel):
    error: str
    response: str


# ----------------------------------------------------------------------
# tool invocation + result envelope
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class ToolInvocation:
    """
    one structured call requested by the model.

    raw_arguments is kept verbatim so the assistant turn can be echoed back
    to the model exactly as it was produced. arguments is None when the raw
    text is not a json object.
    """

    id: str
    name: str
    raw_arguments: str
    arguments: dict | None

    @classmethod
    def from_tool_call(cls, tool_call) -> "ToolInvocation":
        raw = tool_call.function.arguments or "{}"
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        return cls(
            id=tool_call.id,
            name=tool_call.function.name,
            raw_arguments=raw,
            arguments=parsed if isinstance(parsed, dict) else None,
        )

    def to_message(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.raw_arguments},
        }


_ENVELOPE_FIELDS = ("data", "error", "message", "requires_setup", "setup_sql")


class ToolResult(BaseModel):
    """the envelope every tool execution is reduced to before the model sees it"""

    success: bool
    data: Any = None
    error: str | None = None
    message: str | None = None
    requires_setup: bool | None = None
    setup_sql: str | None = None

    @classmethod
    def ok(cls, data: Any = None, message: str | None = None) -> "ToolResult":
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, error: str, data: Any = None) -> "ToolResult":
        return cls(success=False, error=error, data=data)

    def to_text(self) -> str:
        # unset fields are left out; row values (None included) go through untouched
        payload: dict[str, Any] = {"success": self.success}
        for key in _ENVELOPE_FIELDS:
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        return json.dumps(payload, ensure_ascii=False, default=str)

    @classmethod
    def from_text(cls, text: str) -> "ToolResult":
        return cls.model_validate(extract_json_object(text))


def extract_json_object(text: str) -> dict:
    """
    return the first json object embedded in text.

    tolerates leading prose and markdown code fences around the object,
    which is how models tend to quote tool output back.
    """
    decoder = json.JSONDecoder()
    for match in re.finditer(r"\{", text or ""):
        try:
            obj, _ = decoder.raw_decode(text, match.start())
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            return obj
    raise ValueError("no json object found in text")
