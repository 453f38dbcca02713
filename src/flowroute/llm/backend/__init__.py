"""Backend adapters and the service contract they implement."""

from flowroute.llm.backend.base import (
    InvalidServiceURLError,
    LLMService,
    MissingAPIKeyError,
    PartialResponseHandler,
    ServiceDecodingError,
    ServiceError,
    ServiceResponseError,
    has_usable_credentials,
)
from flowroute.llm.backend.echo import EchoService
from flowroute.llm.backend.ollama import OllamaService

__all__ = [
    "EchoService",
    "InvalidServiceURLError",
    "LLMService",
    "MissingAPIKeyError",
    "OllamaService",
    "PartialResponseHandler",
    "ServiceDecodingError",
    "ServiceError",
    "ServiceResponseError",
    "has_usable_credentials",
]
