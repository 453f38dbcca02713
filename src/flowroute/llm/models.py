"""Request and response types exchanged with LLM services."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class LLMRole(str, Enum):
    """Message author role."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True, slots=True)
class LLMMessage:
    """One chat message."""

    role: LLMRole
    content: str


@dataclass(frozen=True, slots=True)
class LLMRequestOptions:
    """Optional sampling parameters forwarded to services that support them."""

    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    stop_sequences: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class LLMRequest:
    """Service-agnostic chat request."""

    messages: tuple[LLMMessage, ...]
    temperature: float = 0.7
    max_tokens: int = 256
    model: str | None = None
    stream: bool = False
    options: LLMRequestOptions | None = None

    @classmethod
    def from_prompt(cls, prompt: str, **kwargs: Any) -> LLMRequest:
        """Single user-message request."""

        return cls(messages=(LLMMessage(role=LLMRole.USER, content=prompt),), **kwargs)

    @property
    def text(self) -> str:
        """All message contents joined with single spaces."""

        return " ".join(message.content for message in self.messages)


@dataclass(frozen=True, slots=True)
class LLMTokenUsage:
    """Token accounting reported by a service."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(slots=True)
class LLMResponse:
    """Service response with the vendor that produced it."""

    text: str
    vendor: str
    model: str | None = None
    token_usage: LLMTokenUsage | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class FailureClass(str, Enum):
    """Normalized classes of dispatch failures."""

    TIMEOUT = "timeout"
    BACKEND_TRANSIENT = "backend_transient"
    BACKEND_NON_RETRYABLE = "backend_non_retryable"
    BILLING_OR_QUOTA = "billing_or_quota"
    ACCESS_OR_AUTH = "access_or_auth"
    MODEL_NOT_AVAILABLE = "model_not_available"
    INVALID_CONFIGURATION = "invalid_configuration"
