"""Service registry, request budgeting, routing and fallback dispatch."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from flowroute.llm.backend.base import LLMService, PartialResponseHandler
from flowroute.llm.failure_classifier import (
    ServiceFailureClassification,
    classify_service_failure,
)
from flowroute.llm.models import LLMRequest, LLMResponse
from flowroute.llm.routing import (
    RegistryEntry,
    RegistrySnapshot,
    Routing,
    Selection,
    SelectionReason,
    select_service,
)
from flowroute.llm.tokens import TrimmingStrategy, optimize_request

if TYPE_CHECKING:
    from flowroute.config import Settings
    from flowroute.llm.domain import DomainRouter

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_LIMIT = 4096
DEFAULT_BUFFER_FRACTION = 0.05
_MAX_SELECTION_ROUNDS = 2


@dataclass(slots=True)
class DispatchResult:
    """Outcome of one routed request.

    ``reason`` is one of ``ok``, ``no_service``, ``service_failed``,
    ``fallback_failed`` or ``registry_changed``.
    """

    response: LLMResponse | None
    service_name: str | None = None
    fallback_used: bool = False
    failure: ServiceFailureClassification | None = None
    reason: str = "ok"

    @property
    def ok(self) -> bool:
        return self.response is not None


class LLMManager:
    """Process-wide registry of LLM services with routing and a single fallback slot.

    Registry mutations are serialized by a lock. Each request selects a service
    from an immutable snapshot and re-validates the choice against the live
    registry before dispatching; the dispatch itself runs outside the lock.
    """

    def __init__(
        self,
        *,
        default_token_limit: int = DEFAULT_TOKEN_LIMIT,
        buffer_fraction: float = DEFAULT_BUFFER_FRACTION,
        trimming_strategy: TrimmingStrategy = TrimmingStrategy.END,
        domain_router: DomainRouter | None = None,
    ) -> None:
        self.default_token_limit = default_token_limit
        self.buffer_fraction = buffer_fraction
        self.trimming_strategy = trimming_strategy
        self.domain_router = domain_router
        self._lock = threading.RLock()
        self._entries: dict[str, RegistryEntry] = {}
        self._active_name: str | None = None
        self._fallback: LLMService | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        domain_router: DomainRouter | None = None,
    ) -> LLMManager:
        """Build a manager from validated routing settings."""

        return cls(
            default_token_limit=settings.routing.default_token_limit,
            buffer_fraction=settings.routing.buffer_fraction,
            trimming_strategy=TrimmingStrategy(settings.routing.trimming_strategy),
            domain_router=domain_router,
        )

    # Registry

    @property
    def services(self) -> dict[str, LLMService]:
        with self._lock:
            return {name: entry.service for name, entry in self._entries.items()}

    @property
    def active_service_name(self) -> str | None:
        with self._lock:
            return self._active_name

    @property
    def fallback_service(self) -> LLMService | None:
        with self._lock:
            return self._fallback

    @property
    def fallback_service_name(self) -> str | None:
        fallback = self.fallback_service
        return fallback.name if fallback is not None else None

    def register_service(
        self,
        service: LLMService,
        routings: Iterable[Routing] = (),
        *,
        name: str | None = None,
    ) -> None:
        """Register (or replace) a service; the first one registered becomes active."""

        service_name = name or service.name
        with self._lock:
            replaced = service_name in self._entries
            self._entries[service_name] = RegistryEntry(service=service, routings=tuple(routings))
            if self._active_name is None:
                self._active_name = service_name
                logger.info("Active service set to: %s", service_name)
        logger.info("%s service: %s", "Replaced" if replaced else "Registered", service_name)

    def register_fallback_service(self, service: LLMService) -> None:
        with self._lock:
            self._fallback = service
        logger.info("Fallback service set to: %s", service.name)

    def unregister_fallback_service(self) -> None:
        with self._lock:
            self._fallback = None
        logger.info("Fallback service removed.")

    def unregister_service(self, name: str) -> bool:
        """Remove a service; if it was active, promote the smallest remaining name."""

        with self._lock:
            if self._entries.pop(name, None) is None:
                logger.warning("Attempted to unregister unknown service: %s", name)
                return False
            if self._active_name == name:
                self._active_name = min(self._entries) if self._entries else None
                logger.info("Active service switched to: %s", self._active_name)
        logger.info("Unregistered service: %s", name)
        return True

    def set_active_service(self, name: str) -> None:
        with self._lock:
            if name not in self._entries:
                raise KeyError(f"Unknown service: {name!r}")
            self._active_name = name
        logger.info("Active service switched to: %s", name)

    def snapshot(self) -> RegistrySnapshot:
        with self._lock:
            return RegistrySnapshot(
                entries=dict(self._entries),
                active_name=self._active_name,
                fallback=self._fallback,
            )

    # Budgeting and selection

    def optimize_request(
        self,
        request: LLMRequest,
        *,
        strategy: TrimmingStrategy | None = None,
        buffer_fraction: float | None = None,
        snapshot: RegistrySnapshot | None = None,
    ) -> LLMRequest:
        """Trim the request to the largest token limit among registered services."""

        snapshot = snapshot or self.snapshot()
        return optimize_request(
            request,
            token_limit=snapshot.max_token_limit(self.default_token_limit),
            strategy=strategy or self.trimming_strategy,
            buffer_fraction=self.buffer_fraction if buffer_fraction is None else buffer_fraction,
        )

    def select_service(self, routing: Routing, optimized_request: LLMRequest) -> Selection | None:
        return select_service(self.snapshot(), routing, optimized_request)

    async def resolve_routing(self, request: LLMRequest) -> Routing:
        """Ask the domain router for a domain; token-limit routing if none is found."""

        if self.domain_router is None:
            return Routing.token_limit()
        try:
            domain = await self.domain_router.determine_domain(request)
        except Exception as error:  # noqa: BLE001
            logger.warning(
                "Domain router %s failed, using token-limit routing: %s",
                self.domain_router.name,
                error,
            )
            return Routing.token_limit()
        if not domain:
            return Routing.token_limit()
        logger.info("Domain router %s resolved domain: %s", self.domain_router.name, domain)
        return Routing.domain([domain])

    # Dispatch

    async def send_request(
        self,
        request: LLMRequest,
        *,
        routing: Routing | None = None,
        trimming_strategy: TrimmingStrategy | None = None,
        buffer_fraction: float | None = None,
    ) -> LLMResponse | None:
        """Route and send a request; ``None`` if no service could answer."""

        result = await self.dispatch(
            request,
            routing=routing,
            trimming_strategy=trimming_strategy,
            buffer_fraction=buffer_fraction,
        )
        return result.response

    async def send_streaming_request(
        self,
        request: LLMRequest,
        on_partial_response: PartialResponseHandler | None = None,
        *,
        routing: Routing | None = None,
        trimming_strategy: TrimmingStrategy | None = None,
        buffer_fraction: float | None = None,
    ) -> LLMResponse | None:
        """Like :meth:`send_request`, reporting partial chunks as they arrive.

        If the selected service fails mid-stream and the fallback takes over,
        ``on_partial_response`` keeps receiving the fallback's chunks after any
        chunks the failed service already produced. Callers that need a clean
        stream should use :meth:`dispatch` and check ``fallback_used``.
        """

        result = await self.dispatch(
            request,
            routing=routing,
            trimming_strategy=trimming_strategy,
            buffer_fraction=buffer_fraction,
            streaming=True,
            on_partial_response=on_partial_response,
        )
        return result.response

    async def send_request_to_service(
        self,
        service: LLMService,
        request: LLMRequest,
    ) -> LLMResponse | None:
        """Send to a specific service, retrying once on the fallback if it fails."""

        reason = (
            SelectionReason.FALLBACK
            if service is self.fallback_service
            else SelectionReason.ELIGIBLE
        )
        result = await self._send_with_fallback(
            Selection(name=service.name, service=service, reason=reason),
            request,
        )
        return result.response

    async def dispatch(  # noqa: PLR0913
        self,
        request: LLMRequest,
        *,
        routing: Routing | None = None,
        trimming_strategy: TrimmingStrategy | None = None,
        buffer_fraction: float | None = None,
        streaming: bool = False,
        on_partial_response: PartialResponseHandler | None = None,
    ) -> DispatchResult:
        """Optimize, select and send a request, reporting how it went."""

        selection: Selection | None = None
        optimized = request
        resolved = routing
        for _ in range(_MAX_SELECTION_ROUNDS):
            snapshot = self.snapshot()
            optimized = self.optimize_request(
                request,
                strategy=trimming_strategy,
                buffer_fraction=buffer_fraction,
                snapshot=snapshot,
            )
            resolved = routing or await self.resolve_routing(optimized)
            selection = select_service(snapshot, resolved, optimized)
            if selection is None:
                logger.error("No service available for routing %s.", resolved)
                return DispatchResult(response=None, reason="no_service")
            if self._is_current(selection):
                break
            logger.warning(
                "Service %s changed in the registry during selection; selecting again.",
                selection.name,
            )
        else:
            return DispatchResult(response=None, reason="registry_changed")

        logger.info(
            "Routing request to service %s (%s, routing=%s).",
            selection.name,
            selection.reason.value,
            resolved,
        )
        return await self._send_with_fallback(
            selection,
            optimized,
            streaming=streaming,
            on_partial_response=on_partial_response,
        )

    def _is_current(self, selection: Selection) -> bool:
        with self._lock:
            if selection.is_fallback:
                return self._fallback is selection.service
            entry = self._entries.get(selection.name)
            return entry is not None and entry.service is selection.service

    async def _send_with_fallback(
        self,
        selection: Selection,
        request: LLMRequest,
        *,
        streaming: bool = False,
        on_partial_response: PartialResponseHandler | None = None,
    ) -> DispatchResult:
        try:
            response = await _call(selection.service, request, streaming, on_partial_response)
        except Exception as error:  # noqa: BLE001
            failure = classify_service_failure(error)
            logger.warning(
                "Service %s failed (%s): %s",
                selection.name,
                failure.failure_class.value,
                error,
            )
        else:
            logger.debug("Service %s succeeded.", selection.name)
            return DispatchResult(
                response=response,
                service_name=selection.name,
                fallback_used=selection.is_fallback,
            )

        fallback = self.fallback_service
        if selection.is_fallback or fallback is None or fallback is selection.service:
            return DispatchResult(
                response=None,
                service_name=selection.name,
                fallback_used=selection.is_fallback,
                failure=failure,
                reason="fallback_failed" if selection.is_fallback else "service_failed",
            )

        logger.warning("Attempting fallback service: %s", fallback.name)
        try:
            response = await _call(fallback, request, streaming, on_partial_response)
        except Exception as error:  # noqa: BLE001
            failure = classify_service_failure(error)
            logger.error(
                "Fallback service %s failed (%s): %s",
                fallback.name,
                failure.failure_class.value,
                error,
            )
            return DispatchResult(
                response=None,
                service_name=fallback.name,
                fallback_used=True,
                failure=failure,
                reason="fallback_failed",
            )
        return DispatchResult(response=response, service_name=fallback.name, fallback_used=True)


async def _call(
    service: LLMService,
    request: LLMRequest,
    streaming: bool,
    on_partial_response: PartialResponseHandler | None,
) -> LLMResponse:
    if streaming:
        return await service.send_streaming_request(request, on_partial_response)
    return await service.send_request(request)

