"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from flowroute.llm.models import LLMRequest, LLMResponse


class FakeService:
    """Scripted LLM service recording every request it receives."""

    def __init__(  # noqa: PLR0913
        self,
        name: str,
        *,
        max_token_limit: int = 4096,
        requires_api_key: bool = False,
        api_key: str | None = None,
        reply: str | None = None,
        error: Exception | None = None,
    ) -> None:
        self.name = name
        self.vendor = f"{name}-vendor"
        self.max_token_limit = max_token_limit
        self.requires_api_key = requires_api_key
        self.api_key = api_key
        self.reply = reply if reply is not None else f"reply from {name}"
        self.error = error
        self.requests: list[LLMRequest] = []
        self.before_send: Callable[[], None] | None = None

    async def send_request(self, request: LLMRequest) -> LLMResponse:
        self.requests.append(request)
        if self.before_send is not None:
            self.before_send()
        if self.error is not None:
            raise self.error
        return LLMResponse(text=self.reply, vendor=self.vendor, model=self.name)

    async def send_streaming_request(self, request, on_partial_response=None) -> LLMResponse:
        response = await self.send_request(request)
        if on_partial_response is not None:
            for word in response.text.split():
                on_partial_response(word)
        return response


@pytest.fixture()
def make_service() -> Callable[..., FakeService]:
    return FakeService


@pytest.fixture(autouse=True)
def _clean_flowroute_env(monkeypatch) -> None:
    for name in (
        "FLOWROUTE_DEFAULT_TOKEN_LIMIT",
        "FLOWROUTE_BUFFER_FRACTION",
        "FLOWROUTE_TRIMMING_STRATEGY",
        "FLOWROUTE_CONFLICT_LOG_PATH",
        "FLOWROUTE_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
