"""Ollama adapter over its ``/api/generate`` HTTP endpoint."""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import urlparse

import httpx

from flowroute.llm.backend.base import (
    InvalidServiceURLError,
    MissingAPIKeyError,
    PartialResponseHandler,
    ServiceDecodingError,
    ServiceResponseError,
)
from flowroute.llm.models import LLMRequest, LLMResponse, LLMTokenUsage

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:11434"
DEFAULT_MODEL = "llama3.2"
DEFAULT_TIMEOUT_SECONDS = 120.0
GENERATE_PATH = "/api/generate"


def build_endpoint(base_url: str) -> str:
    """Validate ``base_url`` and return the generate endpoint."""

    parsed = urlparse(base_url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise InvalidServiceURLError(f"Invalid service URL: {base_url!r}")
    return base_url.rstrip("/") + GENERATE_PATH


class OllamaService:
    """Talks to a local or remote Ollama server."""

    def __init__(  # noqa: PLR0913
        self,
        name: str = "Ollama",
        *,
        vendor: str = "Ollama",
        base_url: str = DEFAULT_BASE_URL,
        max_token_limit: int = 4096,
        default_model: str = DEFAULT_MODEL,
        api_key: str | None = None,
        requires_api_key: bool = False,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.name = name
        self.vendor = vendor
        self.base_url = base_url
        self.max_token_limit = max_token_limit
        self.default_model = default_model
        self.api_key = api_key
        self.requires_api_key = requires_api_key
        self._timeout = httpx.Timeout(timeout_seconds, connect=10.0)
        self._client = client

    async def send_request(self, request: LLMRequest) -> LLMResponse:
        endpoint, headers = self._prepare()
        payload = self._payload(request, stream=False)
        async with self._session() as client:
            response = await client.post(endpoint, json=payload, headers=headers)
            if not response.is_success:
                raise ServiceResponseError(response.status_code, _error_message(response))
            try:
                body = response.json()
            except ValueError as error:
                raise ServiceDecodingError(f"Invalid JSON from {self.name}: {error}") from error
        if not isinstance(body, dict) or "response" not in body:
            raise ServiceDecodingError(f"Unexpected payload from {self.name}: missing 'response'")
        return self._to_response(str(body["response"]), body, payload["model"])

    async def send_streaming_request(
        self,
        request: LLMRequest,
        on_partial_response: PartialResponseHandler | None = None,
    ) -> LLMResponse:
        endpoint, headers = self._prepare()
        payload = self._payload(request, stream=True)
        parts: list[str] = []
        last: dict[str, Any] = {}
        async with self._session() as client:
            async with client.stream("POST", endpoint, json=payload, headers=headers) as response:
                if not response.is_success:
                    await response.aread()
                    raise ServiceResponseError(response.status_code, _error_message(response))
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        chunk = json.loads(line)
                    except json.JSONDecodeError as error:
                        raise ServiceDecodingError(
                            f"Invalid stream chunk from {self.name}: {error}",
                        ) from error
                    text = str(chunk.get("response", ""))
                    if text:
                        parts.append(text)
                        if on_partial_response is not None:
                            on_partial_response(text)
                    last = chunk
                    if chunk.get("done"):
                        break
        return self._to_response("".join(parts), last, payload["model"])

    def _prepare(self) -> tuple[str, dict[str, str]]:
        endpoint = build_endpoint(self.base_url)
        if self.requires_api_key and not self.api_key:
            raise MissingAPIKeyError(f"Service {self.name} requires an API key.")
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return endpoint, headers

    def _payload(self, request: LLMRequest, *, stream: bool) -> dict[str, Any]:
        options: dict[str, Any] = {
            "temperature": request.temperature,
            "num_predict": request.max_tokens,
        }
        if request.options is not None:
            if request.options.top_p is not None:
                options["top_p"] = request.options.top_p
            if request.options.frequency_penalty is not None:
                options["frequency_penalty"] = request.options.frequency_penalty
            if request.options.presence_penalty is not None:
                options["presence_penalty"] = request.options.presence_penalty
            if request.options.stop_sequences:
                options["stop"] = list(request.options.stop_sequences)
        prompt = "\n".join(
            f"{message.role.value.capitalize()}: {message.content}" for message in request.messages
        )
        return {
            "model": request.model or self.default_model,
            "prompt": prompt,
            "stream": stream,
            "options": options,
        }

    def _session(self) -> _ClientSession:
        return _ClientSession(self._client, self._timeout)

    def _to_response(self, text: str, body: dict[str, Any], model: str) -> LLMResponse:
        usage = None
        if "prompt_eval_count" in body or "eval_count" in body:
            usage = LLMTokenUsage(
                prompt_tokens=int(body.get("prompt_eval_count") or 0),
                completion_tokens=int(body.get("eval_count") or 0),
            )
        logger.debug("Ollama %s returned %d chars.", self.name, len(text))
        return LLMResponse(
            text=text,
            vendor=self.vendor,
            model=str(body.get("model") or model),
            token_usage=usage,
        )


class _ClientSession:
    """Uses the injected client as-is, or opens and closes a private one."""

    def __init__(self, client: httpx.AsyncClient | None, timeout: httpx.Timeout) -> None:
        self._shared = client
        self._timeout = timeout
        self._owned: httpx.AsyncClient | None = None

    async def __aenter__(self) -> httpx.AsyncClient:
        if self._shared is not None:
            return self._shared
        self._owned = httpx.AsyncClient(timeout=self._timeout)
        return self._owned

    async def __aexit__(self, *_: object) -> None:
        if self._owned is not None:
            await self._owned.aclose()
            self._owned = None


def _error_message(response: httpx.Response) -> str:
    try:
        detail = response.json().get("error")
    except (ValueError, AttributeError):
        detail = None
    text = detail or response.text.strip()
    return f"HTTP {response.status_code}: {text}" if text else f"HTTP {response.status_code}"
