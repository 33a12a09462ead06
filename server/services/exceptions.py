"""Upstream service exception hierarchy."""

from typing import Optional

from models.usage import QuotaDecision


class ServiceError(Exception):
    """Base exception for upstream-facing services."""


class MissingApiKeyError(ServiceError):
    """Required upstream credential is not configured."""

    def __init__(self, service: str, setting: str):
        self.service = service
        self.setting = setting
        super().__init__(f"{service} API key not configured. Set {setting} in your environment")


class QuotaExceededError(ServiceError):
    """Daily call budget is exhausted."""

    def __init__(self, decision: QuotaDecision):
        self.decision = decision
        super().__init__(decision.message or "Daily API limit reached")


class LLMUnavailableError(ServiceError):
    """Chat completion backend is not reachable or rejects our credentials."""


class UpstreamError(ServiceError):
    """Upstream call failed or returned an unusable payload."""

    def __init__(self, service: str, message: str, status_code: Optional[int] = None):
        self.service = service
        self.status_code = status_code
        prefix = f"{service} error ({status_code})" if status_code else f"{service} error"
        super().__init__(f"{prefix}: {message}")
