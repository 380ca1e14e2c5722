from __future__ import annotations

import pytest

from reciply.services.errors import (
    AIExtractionError,
    AIResponseParseError,
    FetchFailedError,
    InvalidURLError,
    NetworkTimeoutError,
    NotARecipeError,
    PrivateOrUnavailableError,
    ProviderNotConfiguredError,
    RateLimitedError,
    ServiceError,
    TranscriptUnavailableError,
    UnsupportedPlatformError,
)
from reciply.services.gemini_client import GeminiConfigurationError


class TestServiceError:
    def test_base_exception(self) -> None:
        error = ServiceError("Base service error")
        assert str(error) == "Base service error"
        assert isinstance(error, Exception)


class TestTranscriptUnavailableError:
    def test_is_fetch_failure(self) -> None:
        error = TranscriptUnavailableError("Captions disabled")
        assert isinstance(error, FetchFailedError)
        assert "Captions disabled" in str(error)


class TestNetworkTimeoutError:
    def test_includes_url_and_timeout(self) -> None:
        error = NetworkTimeoutError("https://api.supadata.ai/v1/transcript", 30)
        assert "30" in str(error)
        assert error.url == "https://api.supadata.ai/v1/transcript"
        assert error.timeout_seconds == 30


class TestNotARecipeError:
    def test_default_message(self) -> None:
        error = NotARecipeError()
        assert str(error) == "Content does not contain a recipe"
        assert error.confidence is None

    def test_carries_confidence(self) -> None:
        error = NotARecipeError("low confidence", confidence=0.1)
        assert error.confidence == 0.1
        assert isinstance(error, AIExtractionError)


class TestGeminiConfigurationError:
    def test_is_provider_not_configured(self) -> None:
        assert isinstance(GeminiConfigurationError("missing key"), ProviderNotConfiguredError)


class TestExceptionHierarchy:
    @pytest.mark.parametrize(
        "error",
        [
            InvalidURLError("x"),
            UnsupportedPlatformError("x"),
            PrivateOrUnavailableError("x"),
            RateLimitedError("x"),
            FetchFailedError("x"),
            TranscriptUnavailableError("x"),
            NetworkTimeoutError("url", 10),
            AIExtractionError("x"),
            AIResponseParseError("x"),
            NotARecipeError(),
            ProviderNotConfiguredError("x"),
        ],
    )
    def test_all_inherit_from_service_error(self, error: Exception) -> None:
        assert isinstance(error, ServiceError)
