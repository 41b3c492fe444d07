from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

VALID_ROLES = ("system", "user", "assistant")


@dataclass(frozen=True)
class Message:
    role: str
    content: str


@dataclass(frozen=True)
class CompletionRequest:
    model: str
    messages: tuple[Message, ...]
    functions: tuple[dict[str, Any], ...] | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    endpoint: str = "chat.completions"

    @classmethod
    def from_prompt(
        cls,
        model: str,
        prompt: str,
        *,
        system: str | None = None,
        **kwargs: Any,
    ) -> "CompletionRequest":
        messages: list[Message] = []
        if system:
            messages.append(Message(role="system", content=system))
        messages.append(Message(role="user", content=prompt))
        return cls(model=model, messages=tuple(messages), **kwargs)


@dataclass(frozen=True)
class FunctionCall:
    name: str
    arguments: str


@dataclass(frozen=True)
class CompletionResult:
    text: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    finish_reason: str | None = None
    function_call: FunctionCall | None = None
    retries: int = 0
    latency_seconds: float = 0.0


@dataclass(frozen=True)
class RawResponse:
    """Provider HTTP response before parsing or error mapping."""

    status_code: int
    payload: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    text: str = ""

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    def retry_after_seconds(self) -> int | None:
        value = self.headers.get("retry-after")
        if value and value.isdigit():
            return int(value)
        return None
