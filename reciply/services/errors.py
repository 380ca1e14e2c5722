from __future__ import annotations


class ServiceError(Exception):
    pass


class InvalidURLError(ServiceError):
    pass


class UnsupportedPlatformError(ServiceError):
    pass


class ProviderNotConfiguredError(ServiceError):
    pass


class PrivateOrUnavailableError(ServiceError):
    pass


class RateLimitedError(ServiceError):
    pass


class FetchFailedError(ServiceError):
    pass


class TranscriptUnavailableError(FetchFailedError):
    pass


class NetworkTimeoutError(ServiceError):
    def __init__(self, url: str, timeout_seconds: float):
        super().__init__(f"Network timeout after {timeout_seconds}s: {url}")
        self.url = url
        self.timeout_seconds = timeout_seconds


class AIExtractionError(ServiceError):
    pass


class AIResponseParseError(AIExtractionError):
    pass


class NotARecipeError(AIExtractionError):
    def __init__(self, message: str = "Content does not contain a recipe", confidence: float | None = None):
        super().__init__(message)
        self.confidence = confidence
