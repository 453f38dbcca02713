"""Service contract for LLM backends."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol, runtime_checkable

from flowroute.llm.models import LLMRequest, LLMResponse

PartialResponseHandler = Callable[[str], None]


class ServiceError(RuntimeError):
    """Backend failure with retryability hint."""

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class MissingAPIKeyError(ServiceError):
    """Service requires an API key but none is configured."""


class InvalidServiceURLError(ServiceError):
    """Service base URL cannot be turned into an endpoint."""


class ServiceResponseError(ServiceError):
    """Backend answered with a non-success HTTP status."""

    def __init__(self, status_code: int, message: str = "") -> None:
        super().__init__(
            message or f"Service returned HTTP {status_code}",
            transient=status_code == 429 or status_code >= 500,  # noqa: PLR2004
        )
        self.status_code = status_code


class ServiceDecodingError(ServiceError):
    """Backend payload could not be decoded."""


@runtime_checkable
class LLMService(Protocol):
    """Capability set implemented by backend adapters."""

    name: str
    vendor: str
    max_token_limit: int
    requires_api_key: bool
    api_key: str | None

    async def send_request(self, request: LLMRequest) -> LLMResponse:
        """Send a non-streaming request."""

    async def send_streaming_request(
        self,
        request: LLMRequest,
        on_partial_response: PartialResponseHandler | None = None,
    ) -> LLMResponse:
        """Send a streaming request, reporting each partial chunk."""


def has_usable_credentials(service: LLMService) -> bool:
    """True if the service needs no API key or has a non-empty one."""

    return not service.requires_api_key or bool(service.api_key)
