from __future__ import annotations

import allure
import pytest

from flowroute.config import RoutingSettings, Settings
from flowroute.llm.backend.base import ServiceResponseError
from flowroute.llm.manager import LLMManager
from flowroute.llm.models import FailureClass, LLMRequest
from flowroute.llm.routing import Routing
from flowroute.llm.tokens import TrimmingStrategy, estimate_tokens

pytestmark = [
    allure.epic("LLM Routing"),
    allure.feature("Service Registry and Dispatch"),
]


class StaticDomainRouter:
    def __init__(self, domain: str | None, *, error: Exception | None = None) -> None:
        self.name = "static"
        self.supported_domains = frozenset({domain}) if domain else frozenset()
        self.domain = domain
        self.error = error
        self.on_call = None

    async def determine_domain(self, request):
        if self.on_call is not None:
            self.on_call()
        if self.error is not None:
            raise self.error
        return self.domain


def test_first_registered_service_becomes_active(make_service) -> None:
    manager = LLMManager()
    manager.register_service(make_service("b"))
    manager.register_service(make_service("a"))

    assert manager.active_service_name == "b"
    assert sorted(manager.services) == ["a", "b"]


def test_register_same_name_replaces_service(make_service) -> None:
    manager = LLMManager()
    first = make_service("a")
    second = make_service("a")
    manager.register_service(first)
    manager.register_service(second)

    assert manager.services == {"a": second}


def test_unregister_active_promotes_smallest_remaining_name(make_service) -> None:
    manager = LLMManager()
    for name in ("m", "z", "b"):
        manager.register_service(make_service(name))

    assert manager.unregister_service("m")
    assert manager.active_service_name == "b"
    assert manager.unregister_service("b")
    assert manager.active_service_name == "z"
    assert manager.unregister_service("z")
    assert manager.active_service_name is None


def test_unregister_unknown_service_returns_false(make_service) -> None:
    manager = LLMManager()
    manager.register_service(make_service("a"))

    assert not manager.unregister_service("missing")
    assert manager.active_service_name == "a"


def test_set_active_service_validates_name(make_service) -> None:
    manager = LLMManager()
    manager.register_service(make_service("a"))
    manager.register_service(make_service("b"))

    manager.set_active_service("b")
    assert manager.active_service_name == "b"

    with pytest.raises(KeyError):
        manager.set_active_service("missing")
    assert manager.active_service_name == "b"


def test_fallback_slot(make_service) -> None:
    manager = LLMManager()
    fallback = make_service("backup")

    manager.register_fallback_service(fallback)
    assert manager.fallback_service is fallback
    assert manager.fallback_service_name == "backup"
    assert "backup" not in manager.services

    manager.unregister_fallback_service()
    assert manager.fallback_service_name is None


def test_from_settings_uses_routing_settings() -> None:
    settings = Settings(
        routing=RoutingSettings(
            default_token_limit=1000,
            buffer_fraction=0.2,
            trimming_strategy="middle",
        ),
    )

    manager = LLMManager.from_settings(settings)

    assert manager.default_token_limit == 1000
    assert manager.buffer_fraction == 0.2
    assert manager.trimming_strategy is TrimmingStrategy.MIDDLE


def test_optimize_request_uses_largest_registered_limit(make_service) -> None:
    manager = LLMManager(default_token_limit=10, buffer_fraction=0.1)
    manager.register_service(make_service("small", max_token_limit=50))
    manager.register_service(make_service("large", max_token_limit=100))
    manager.register_fallback_service(make_service("huge", max_token_limit=10_000))

    optimized = manager.optimize_request(LLMRequest.from_prompt("x" * 600))

    assert estimate_tokens(optimized.text) <= 90


def test_optimize_request_without_services_uses_default_limit() -> None:
    manager = LLMManager(default_token_limit=20, buffer_fraction=0.0)

    optimized = manager.optimize_request(LLMRequest.from_prompt("x" * 600))

    assert estimate_tokens(optimized.text) <= 20


def test_select_prefers_active_service(make_service) -> None:
    manager = LLMManager()
    manager.register_service(make_service("zeta"))
    manager.register_service(make_service("alpha"))

    selection = manager.select_service(Routing.token_limit(), LLMRequest.from_prompt("hi"))

    assert selection is not None
    assert selection.name == "zeta"
    assert selection.reason.value == "active"


def test_select_falls_back_to_first_eligible_by_name(make_service) -> None:
    manager = LLMManager()
    manager.register_service(make_service("active", max_token_limit=1))
    manager.register_service(make_service("zeta", max_token_limit=100))
    manager.register_service(make_service("beta", max_token_limit=100))

    selection = manager.select_service(
        Routing.token_limit(),
        LLMRequest.from_prompt("x" * 200),
    )

    assert selection is not None
    assert selection.name == "beta"
    assert selection.reason.value == "eligible"


def test_select_skips_services_without_api_key(make_service) -> None:
    manager = LLMManager()
    manager.register_service(make_service("keyless", requires_api_key=True))
    manager.register_service(make_service("keyed", requires_api_key=True, api_key="k"))

    selection = manager.select_service(Routing.token_limit(), LLMRequest.from_prompt("hi"))

    assert selection is not None
    assert selection.name == "keyed"


def test_select_matches_domains_case_insensitively(make_service) -> None:
    manager = LLMManager()
    manager.register_service(make_service("general"))
    manager.register_service(make_service("sports"), [Routing.domain(["Sports", "news"])])

    selection = manager.select_service(Routing.domain(["SPORTS"]), LLMRequest.from_prompt("hi"))

    assert selection is not None
    assert selection.name == "sports"


def test_select_uses_fallback_then_none(make_service) -> None:
    manager = LLMManager()
    manager.register_service(make_service("tiny", max_token_limit=1))
    request = LLMRequest.from_prompt("x" * 200)

    assert manager.select_service(Routing.token_limit(), request) is None

    manager.register_fallback_service(make_service("backup", max_token_limit=1))
    selection = manager.select_service(Routing.token_limit(), request)
    assert selection is not None
    assert selection.is_fallback


@pytest.mark.asyncio
async def test_send_request_returns_active_response(make_service) -> None:
    manager = LLMManager()
    service = make_service("a", reply="hello")
    manager.register_service(service)

    response = await manager.send_request(LLMRequest.from_prompt("hi"))

    assert response is not None
    assert response.text == "hello"
    assert len(service.requests) == 1


@pytest.mark.asyncio
async def test_send_request_sends_optimized_request(make_service) -> None:
    manager = LLMManager(buffer_fraction=0.1)
    service = make_service("a", max_token_limit=100)
    manager.register_service(service)

    await manager.send_request(LLMRequest.from_prompt("x" * 600))

    assert estimate_tokens(service.requests[0].text) <= 90


@pytest.mark.asyncio
async def test_failed_service_is_retried_once_on_fallback(make_service) -> None:
    manager = LLMManager()
    primary = make_service("primary", error=ServiceResponseError(503))
    backup = make_service("backup", reply="from backup")
    manager.register_service(primary)
    manager.register_fallback_service(backup)

    result = await manager.dispatch(LLMRequest.from_prompt("hi"))

    assert result.ok
    assert result.response.text == "from backup"
    assert result.service_name == "backup"
    assert result.fallback_used
    assert len(primary.requests) == 1
    assert len(backup.requests) == 1


@pytest.mark.asyncio
async def test_fallback_failure_yields_none(make_service) -> None:
    manager = LLMManager()
    manager.register_service(make_service("primary", error=RuntimeError("rate limit hit")))
    backup = make_service("backup", error=ServiceResponseError(401))
    manager.register_fallback_service(backup)

    result = await manager.dispatch(LLMRequest.from_prompt("hi"))

    assert result.response is None
    assert result.reason == "fallback_failed"
    assert result.failure is not None
    assert result.failure.failure_class is FailureClass.ACCESS_OR_AUTH
    assert len(backup.requests) == 1
    assert await manager.send_request(LLMRequest.from_prompt("hi")) is None


@pytest.mark.asyncio
async def test_service_failure_without_fallback(make_service) -> None:
    manager = LLMManager()
    manager.register_service(make_service("primary", error=RuntimeError("quota exceeded")))

    result = await manager.dispatch(LLMRequest.from_prompt("hi"))

    assert result.reason == "service_failed"
    assert result.failure.failure_class is FailureClass.BILLING_OR_QUOTA


@pytest.mark.asyncio
async def test_selected_fallback_is_not_retried_twice(make_service) -> None:
    manager = LLMManager()
    backup = make_service("backup", error=RuntimeError("down"))
    manager.register_fallback_service(backup)

    result = await manager.dispatch(LLMRequest.from_prompt("hi"))

    assert result.reason == "fallback_failed"
    assert len(backup.requests) == 1


@pytest.mark.asyncio
async def test_no_service_reason() -> None:
    result = await LLMManager().dispatch(LLMRequest.from_prompt("hi"))

    assert result.response is None
    assert result.reason == "no_service"


@pytest.mark.asyncio
async def test_send_request_to_service_uses_fallback(make_service) -> None:
    manager = LLMManager()
    direct = make_service("direct", error=RuntimeError("nope"))
    manager.register_fallback_service(make_service("backup", reply="saved"))

    response = await manager.send_request_to_service(direct, LLMRequest.from_prompt("hi"))

    assert response is not None
    assert response.text == "saved"


@pytest.mark.asyncio
async def test_streaming_reports_partials(make_service) -> None:
    manager = LLMManager()
    manager.register_service(make_service("a", reply="one two three"))
    partials: list[str] = []

    response = await manager.send_streaming_request(
        LLMRequest.from_prompt("hi"),
        partials.append,
    )

    assert response is not None
    assert partials == ["one", "two", "three"]


@pytest.mark.asyncio
async def test_domain_router_selects_domain_service(make_service) -> None:
    manager = LLMManager(domain_router=StaticDomainRouter("sports"))
    general = make_service("general")
    sports = make_service("sports")
    manager.register_service(general)
    manager.register_service(sports, [Routing.domain(["sports"])])

    result = await manager.dispatch(LLMRequest.from_prompt("who won?"))

    assert result.service_name == "sports"
    assert general.requests == []


@pytest.mark.asyncio
async def test_domain_router_failure_uses_token_limit_routing(make_service) -> None:
    manager = LLMManager(domain_router=StaticDomainRouter(None, error=RuntimeError("x")))
    manager.register_service(make_service("general"))

    result = await manager.dispatch(LLMRequest.from_prompt("hi"))

    assert result.service_name == "general"


@pytest.mark.asyncio
async def test_registry_change_during_selection_reselects(make_service) -> None:
    router = StaticDomainRouter(None)
    manager = LLMManager(domain_router=router)
    stale = make_service("a")
    fresh = make_service("b")
    manager.register_service(stale)
    manager.register_service(fresh)

    def drop_active() -> None:
        router.on_call = None
        manager.unregister_service("a")

    router.on_call = drop_active

    result = await manager.dispatch(LLMRequest.from_prompt("hi"))

    assert result.service_name == "b"
    assert stale.requests == []


@pytest.mark.asyncio
async def test_registry_churn_gives_up_after_second_round(make_service) -> None:
    router = StaticDomainRouter(None)
    manager = LLMManager(domain_router=router)
    manager.register_service(make_service("a"))
    counter = iter(range(100))

    def replace_service() -> None:
        manager.register_service(make_service("a", reply=f"v{next(counter)}"))

    router.on_call = replace_service

    result = await manager.dispatch(LLMRequest.from_prompt("hi"))

    assert result.response is None
    assert result.reason == "registry_changed"


class StreamBreaksMidway:
    def __init__(self, name: str) -> None:
        self.name = name
        self.max_token_limit = 4096
        self.requires_api_key = False
        self.api_key = None

    async def send_request(self, request):
        raise RuntimeError("connection reset")

    async def send_streaming_request(self, request, on_partial_response=None):
        if on_partial_response is not None:
            on_partial_response("partial")
        raise RuntimeError("connection reset")


@pytest.mark.asyncio
async def test_streaming_fallback_continues_same_callback(make_service) -> None:
    manager = LLMManager()
    manager.register_service(StreamBreaksMidway("primary"))
    manager.register_fallback_service(make_service("backup", reply="from backup"))
    partials: list[str] = []

    result = await manager.dispatch(
        LLMRequest.from_prompt("hi"),
        streaming=True,
        on_partial_response=partials.append,
    )

    assert result.ok
    assert result.fallback_used
    assert result.service_name == "backup"
    assert partials == ["partial", "from", "backup"]
