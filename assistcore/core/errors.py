from __future__ import annotations


class AssistError(Exception):
    """Base error for assistcore."""


class ProviderConfigError(AssistError):
    """Missing or invalid provider configuration."""


class FeatureDisabledError(AssistError):
    """The account's plan does not include the requested capability."""

    def __init__(self, feature_key: str) -> None:
        super().__init__(f"Feature not enabled for account plan: {feature_key}")
        self.feature_key = feature_key


class QuotaExceededError(AssistError):
    """Daily AI call limit reached for the account."""

    def __init__(self, *, limit: int, used: int) -> None:
        super().__init__("Daily AI call quota exceeded")
        self.limit = limit
        self.used = used


class UpstreamServiceError(AssistError):
    """Retryable failure of an external dependency."""


class EmbeddingUnavailableError(UpstreamServiceError):
    """Embedding service failed or returned an unusable vector."""


class ReasoningServiceUnavailableError(UpstreamServiceError):
    """Reasoning/completion service failed."""


class MalformedUpstreamResponseError(AssistError):
    """Reasoning service returned structured text that could not be parsed."""
