"""Local deterministic service for demos and integration tests."""

from __future__ import annotations

from flowroute.llm.backend.base import PartialResponseHandler
from flowroute.llm.models import LLMRequest, LLMResponse, LLMRole, LLMTokenUsage
from flowroute.llm.tokens import estimate_tokens


class EchoService:
    """Answers with the request's last user message, optionally prefixed."""

    def __init__(
        self,
        name: str = "echo",
        *,
        vendor: str = "Echo",
        max_token_limit: int = 4096,
        prefix: str = "",
    ) -> None:
        self.name = name
        self.vendor = vendor
        self.max_token_limit = max_token_limit
        self.requires_api_key = False
        self.api_key: str | None = None
        self.prefix = prefix

    async def send_request(self, request: LLMRequest) -> LLMResponse:
        return self._respond(request)

    async def send_streaming_request(
        self,
        request: LLMRequest,
        on_partial_response: PartialResponseHandler | None = None,
    ) -> LLMResponse:
        response = self._respond(request)
        if on_partial_response is not None:
            for chunk in response.text.split(" "):
                on_partial_response(chunk)
        return response

    def _respond(self, request: LLMRequest) -> LLMResponse:
        user_messages = [m.content for m in request.messages if m.role is LLMRole.USER]
        text = f"{self.prefix}{user_messages[-1] if user_messages else ''}"
        return LLMResponse(
            text=text,
            vendor=self.vendor,
            model=request.model or self.name,
            token_usage=LLMTokenUsage(
                prompt_tokens=estimate_tokens(request.text),
                completion_tokens=estimate_tokens(text),
            ),
        )
