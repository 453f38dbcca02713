"""Domain routers: predict which topical domain a request belongs to."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from typing import Protocol, runtime_checkable

from flowroute.llm.backend.base import LLMService
from flowroute.llm.conflicts import ConflictLogger, ConsoleConflictLogger, DomainConflict
from flowroute.llm.models import LLMMessage, LLMRequest, LLMRole
from flowroute.workflow.models import utc_now

logger = logging.getLogger(__name__)

GENERAL_DOMAIN = "general"
DEFAULT_DOMAIN_INSTRUCTIONS = (
    "Classify the user's request into exactly one of these domains: {domains}. "
    "Answer with the domain name only."
)

DomainResolver = Callable[[str | None, str | None], str | None]


@runtime_checkable
class DomainRouter(Protocol):
    """Maps a request to a domain label, or ``None`` when it cannot tell."""

    name: str
    supported_domains: frozenset[str]

    async def determine_domain(self, request: LLMRequest) -> str | None:
        """Predict the domain of ``request``."""


@runtime_checkable
class ConfidentDomainRouter(DomainRouter, Protocol):
    """Domain router that also reports how sure it is."""

    async def determine_domain_with_confidence(
        self,
        request: LLMRequest,
    ) -> tuple[str, float] | None:
        """Predict the domain of ``request`` with a confidence in ``[0, 1]``."""


@dataclass(frozen=True, slots=True)
class DomainPrediction:
    """Domain label with the predicting router's confidence."""

    domain: str | None
    confidence: float = 1.0


async def predict(router: DomainRouter, request: LLMRequest) -> DomainPrediction:
    """Ask a router for a prediction; routers without confidence report 1.0."""

    with_confidence = getattr(router, "determine_domain_with_confidence", None)
    if with_confidence is not None:
        result = await with_confidence(request)
        if result is None:
            return DomainPrediction(domain=None, confidence=0.0)
        domain, confidence = result
        return DomainPrediction(domain=domain, confidence=confidence)
    return DomainPrediction(domain=await router.determine_domain(request))


def normalize_domains(domains: Iterable[str]) -> frozenset[str]:
    return frozenset(domain.strip().lower() for domain in domains if domain.strip())


class LLMDomainRouter:
    """Asks an LLM service to name the domain of a request."""

    def __init__(
        self,
        name: str,
        service: LLMService,
        supported_domains: Iterable[str],
        *,
        instructions: str | None = None,
    ) -> None:
        self.name = name
        self.service = service
        self.supported_domains = normalize_domains(supported_domains)
        self.instructions = instructions or DEFAULT_DOMAIN_INSTRUCTIONS

    async def determine_domain(self, request: LLMRequest) -> str | None:
        system = LLMMessage(
            role=LLMRole.SYSTEM,
            content=self.instructions.format(domains=", ".join(sorted(self.supported_domains))),
        )
        classification = replace(request, messages=(system, *request.messages), stream=False)
        response = await self.service.send_request(classification)
        domain = response.text.strip().lower()
        if domain in self.supported_domains:
            return domain
        logger.debug(
            "Router %s got unsupported domain %r, using %s.",
            self.name,
            domain,
            GENERAL_DOMAIN,
        )
        return GENERAL_DOMAIN


class DualDomainRouter:
    """Arbitrates between two domain routers.

    Checks run in a fixed order: agreement, then the fallback-confidence
    threshold, then the confidence-delta threshold, then the resolver.
    Every disagreement is reported to the conflict logger before arbitration.
    """

    def __init__(  # noqa: PLR0913
        self,
        name: str,
        primary: DomainRouter,
        secondary: DomainRouter,
        supported_domains: Iterable[str],
        *,
        resolve_conflict: DomainResolver,
        confidence_threshold: float | None = None,
        fallback_domain: str | None = None,
        fallback_confidence_threshold: float | None = None,
        conflict_logger: ConflictLogger | None = None,
    ) -> None:
        self.name = name
        self.primary = primary
        self.secondary = secondary
        self.supported_domains = normalize_domains(supported_domains)
        self.resolve_conflict = resolve_conflict
        self.confidence_threshold = confidence_threshold
        self.fallback_domain = fallback_domain
        self.fallback_confidence_threshold = fallback_confidence_threshold
        self.conflict_logger = conflict_logger or ConsoleConflictLogger()

    async def determine_domain(self, request: LLMRequest) -> str | None:
        first = await predict(self.primary, request)
        second = await predict(self.secondary, request)
        if first.domain == second.domain:
            return first.domain

        self.conflict_logger.log_conflict(
            DomainConflict(
                timestamp=utc_now(),
                prompt=request.text,
                primary=first.domain,
                primary_confidence=first.confidence,
                secondary=second.domain,
                secondary_confidence=second.confidence,
            ),
        )

        if self.fallback_confidence_threshold is not None and (
            first.confidence < self.fallback_confidence_threshold
            and second.confidence < self.fallback_confidence_threshold
        ):
            logger.info(
                "Router %s: both predictions below %s, using fallback domain %s.",
                self.name,
                self.fallback_confidence_threshold,
                self.fallback_domain,
            )
            return self.fallback_domain

        if self.confidence_threshold is not None and (
            abs(first.confidence - second.confidence) >= self.confidence_threshold
        ):
            # Equal confidences only reach here with a zero threshold; secondary wins.
            return first.domain if first.confidence > second.confidence else second.domain

        resolved = self.resolve_conflict(first.domain, second.domain)
        if resolved is None:
            return None
        normalized = resolved.strip().lower()
        if normalized in self.supported_domains:
            return normalized
        logger.warning(
            "Router %s: resolver returned unsupported domain %r.",
            self.name,
            resolved,
        )
        return None
