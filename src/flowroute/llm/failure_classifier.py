"""Deterministic classification of service dispatch failures."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import httpx

from flowroute.llm.backend.base import (
    InvalidServiceURLError,
    MissingAPIKeyError,
    ServiceError,
    ServiceResponseError,
)
from flowroute.llm.models import FailureClass

SERVICE_FAILURE_CLASSIFIER_VERSION = 1

_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "resource_exhausted",
    "insufficient",
    "billing",
    "payment",
    "credits",
    "usage limit",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "permission denied",
    "invalid api key",
    "authentication",
)
_MODEL_NOT_AVAILABLE_PATTERNS: tuple[str, ...] = (
    "model not found",
    "unknown model",
    "unsupported model",
    "invalid model",
    "model is not available",
)
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "try again later",
    "temporarily unavailable",
    "connection reset",
    "network error",
)

_STATUS_CLASSES: dict[int, FailureClass] = {
    401: FailureClass.ACCESS_OR_AUTH,
    402: FailureClass.BILLING_OR_QUOTA,
    403: FailureClass.ACCESS_OR_AUTH,
    404: FailureClass.MODEL_NOT_AVAILABLE,
    408: FailureClass.TIMEOUT,
    429: FailureClass.BACKEND_TRANSIENT,
}


@dataclass(frozen=True, slots=True)
class ServiceFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    matched_pattern: str | None = None

    @property
    def transient(self) -> bool:
        return self.failure_class in {FailureClass.BACKEND_TRANSIENT, FailureClass.TIMEOUT}


def classify_service_failure(error: BaseException) -> ServiceFailureClassification:
    """Classify a dispatch exception; typed errors win over message patterns."""

    if isinstance(error, MissingAPIKeyError):
        return ServiceFailureClassification(
            FailureClass.ACCESS_OR_AUTH, "missing_api_key", "missing_api_key"
        )
    if isinstance(error, InvalidServiceURLError):
        return ServiceFailureClassification(
            FailureClass.INVALID_CONFIGURATION, "invalid_service_url", "invalid_service_url"
        )
    if isinstance(error, (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
        return ServiceFailureClassification(FailureClass.TIMEOUT, "timeout", "timeout")
    if isinstance(error, ServiceResponseError):
        status_class = _STATUS_CLASSES.get(error.status_code)
        if status_class is None and error.status_code >= 500:  # noqa: PLR2004
            status_class = FailureClass.BACKEND_TRANSIENT
        if status_class is not None:
            return ServiceFailureClassification(
                status_class,
                f"http_{error.status_code}",
                "http_status",
            )

    haystack = str(error).lower()
    for failure_class, rule, patterns in (
        (FailureClass.BILLING_OR_QUOTA, "billing_or_quota", _BILLING_OR_QUOTA_PATTERNS),
        (FailureClass.ACCESS_OR_AUTH, "access_or_auth", _ACCESS_OR_AUTH_PATTERNS),
        (FailureClass.MODEL_NOT_AVAILABLE, "model_not_available", _MODEL_NOT_AVAILABLE_PATTERNS),
        (FailureClass.BACKEND_TRANSIENT, "transient_message", _TRANSIENT_PATTERNS),
    ):
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return ServiceFailureClassification(failure_class, rule, rule, pattern)

    if isinstance(error, (httpx.TransportError, ConnectionError)) or (
        isinstance(error, ServiceError) and error.transient
    ):
        return ServiceFailureClassification(
            FailureClass.BACKEND_TRANSIENT, "backend_transient", "transient_error_type"
        )

    return ServiceFailureClassification(
        FailureClass.BACKEND_NON_RETRYABLE,
        "backend_non_retryable",
        "fallback_non_retryable",
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
