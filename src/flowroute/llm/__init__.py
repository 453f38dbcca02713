"""Service registry, routing and fallback dispatch for LLM backends."""

from flowroute.llm.conflicts import (
    ConflictLogger,
    ConsoleConflictLogger,
    CsvConflictLogger,
    DomainConflict,
)
from flowroute.llm.domain import (
    ConfidentDomainRouter,
    DomainPrediction,
    DomainRouter,
    DualDomainRouter,
    LLMDomainRouter,
)
from flowroute.llm.manager import DispatchResult, LLMManager
from flowroute.llm.models import (
    FailureClass,
    LLMMessage,
    LLMRequest,
    LLMResponse,
    LLMRole,
    LLMTokenUsage,
)
from flowroute.llm.routing import Routing, RoutingKind
from flowroute.llm.tokens import TrimmingStrategy

__all__ = [
    "ConfidentDomainRouter",
    "ConflictLogger",
    "ConsoleConflictLogger",
    "CsvConflictLogger",
    "DispatchResult",
    "DomainConflict",
    "DomainPrediction",
    "DomainRouter",
    "DualDomainRouter",
    "FailureClass",
    "LLMDomainRouter",
    "LLMManager",
    "LLMMessage",
    "LLMRequest",
    "LLMResponse",
    "LLMRole",
    "LLMTokenUsage",
    "Routing",
    "RoutingKind",
    "TrimmingStrategy",
]
