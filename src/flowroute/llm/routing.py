"""Routing tags and deterministic service selection."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum

from flowroute.llm.backend.base import LLMService, has_usable_credentials
from flowroute.llm.models import LLMRequest
from flowroute.llm.tokens import estimate_tokens


class RoutingKind(str, Enum):
    """Selection criterion."""

    TOKEN_LIMIT = "token_limit"
    DOMAIN = "domain"


@dataclass(frozen=True, slots=True)
class Routing:
    """Routing strategy for a request, or a routing tag on a registered service."""

    kind: RoutingKind
    domains: frozenset[str] = frozenset()

    @classmethod
    def token_limit(cls) -> Routing:
        return cls(RoutingKind.TOKEN_LIMIT)

    @classmethod
    def domain(cls, domains: Iterable[str]) -> Routing:
        return cls(
            RoutingKind.DOMAIN,
            frozenset(value.strip().lower() for value in domains if value.strip()),
        )

    def __str__(self) -> str:
        if self.kind is RoutingKind.DOMAIN:
            return f"domain({','.join(sorted(self.domains))})"
        return self.kind.value


class SelectionReason(str, Enum):
    """Why a service was selected."""

    ACTIVE = "active"
    ELIGIBLE = "eligible"
    FALLBACK = "fallback"


@dataclass(frozen=True, slots=True)
class RegistryEntry:
    """Registered service with its routing tags."""

    service: LLMService
    routings: tuple[Routing, ...] = ()

    @property
    def domain_tags(self) -> frozenset[str]:
        tags: set[str] = set()
        for routing in self.routings:
            if routing.kind is RoutingKind.DOMAIN:
                tags.update(routing.domains)
        return frozenset(tags)


@dataclass(frozen=True, slots=True)
class RegistrySnapshot:
    """Immutable view of the registry used for one selection."""

    entries: Mapping[str, RegistryEntry] = field(default_factory=dict)
    active_name: str | None = None
    fallback: LLMService | None = None

    def max_token_limit(self, default: int) -> int:
        """Largest limit among registered services; the fallback is not counted."""

        if not self.entries:
            return default
        return max(entry.service.max_token_limit for entry in self.entries.values())


@dataclass(frozen=True, slots=True)
class Selection:
    """Selected service and the rule that picked it."""

    name: str
    service: LLMService
    reason: SelectionReason

    @property
    def is_fallback(self) -> bool:
        return self.reason is SelectionReason.FALLBACK


def meets(entry: RegistryEntry, routing: Routing, request_tokens: int) -> bool:
    """Eligibility of one registered service for a routing strategy."""

    if not has_usable_credentials(entry.service):
        return False
    if routing.kind is RoutingKind.TOKEN_LIMIT:
        return entry.service.max_token_limit >= request_tokens
    return routing.domains <= entry.domain_tags


def select_service(
    snapshot: RegistrySnapshot,
    routing: Routing,
    request: LLMRequest,
) -> Selection | None:
    """Pick the active service, else the first eligible by name, else the fallback."""

    request_tokens = estimate_tokens(request.text)

    active = snapshot.entries.get(snapshot.active_name) if snapshot.active_name else None
    if active is not None and meets(active, routing, request_tokens):
        return Selection(
            name=snapshot.active_name,
            service=active.service,
            reason=SelectionReason.ACTIVE,
        )

    for name in sorted(snapshot.entries):
        entry = snapshot.entries[name]
        if meets(entry, routing, request_tokens):
            return Selection(name=name, service=entry.service, reason=SelectionReason.ELIGIBLE)

    if snapshot.fallback is not None:
        return Selection(
            name=snapshot.fallback.name,
            service=snapshot.fallback,
            reason=SelectionReason.FALLBACK,
        )
    return None
