"""
Tests for settings validation and error serialization.
"""
import pytest
from pydantic import ValidationError

from payment_orchestrator.config import Settings
from payment_orchestrator.core.errors import (
    PaymentError,
    PaymentErrorCode,
    ProviderError,
    ProviderErrorCode,
)


class TestSettings:
    """Test suite for Settings."""

    @pytest.mark.unit
    def test_defaults(self) -> None:
        settings = Settings(_env_file=None)

        assert settings.routing_weights == {
            "success_rate": 0.40,
            "availability": 0.25,
            "latency": 0.15,
            "cost": 0.10,
            "priority": 0.10,
        }
        assert settings.max_provider_attempts == 3
        assert settings.fx_default_spread == 0.005
        assert not settings.is_production

    @pytest.mark.unit
    def test_environment_overrides(self, monkeypatch) -> None:
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("APP_ENV", "Production")

        settings = Settings(_env_file=None)

        assert settings.log_level == "DEBUG"
        assert settings.is_production

    @pytest.mark.unit
    def test_weights_must_sum_to_one(self) -> None:
        with pytest.raises(ValidationError, match="must sum to 1.0"):
            Settings(_env_file=None, routing_weight_cost=0.5)

    @pytest.mark.unit
    @pytest.mark.parametrize("field,value", [("log_level", "LOUD"), ("max_provider_attempts", 0)])
    def test_invalid_values(self, field, value) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: value})


class TestErrors:
    """Test suite for error serialization."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "code,retryable",
        [
            (ProviderErrorCode.NETWORK_ERROR, True),
            (ProviderErrorCode.TIMEOUT, True),
            (ProviderErrorCode.RATE_LIMITED, True),
            (ProviderErrorCode.PROVIDER_UNAVAILABLE, True),
            (ProviderErrorCode.CARD_DECLINED, False),
            (ProviderErrorCode.INSUFFICIENT_FUNDS, False),
        ],
    )
    def test_provider_error_retryable_by_code(self, code, retryable) -> None:
        assert ProviderError("failed", code).retryable is retryable

    @pytest.mark.unit
    def test_to_dict(self) -> None:
        error = ProviderError("declined", ProviderErrorCode.CARD_DECLINED, provider_code="stripe")

        assert error.to_dict() == {
            "kind": "provider",
            "code": "CARD_DECLINED",
            "message": "declined",
            "provider_code": "stripe",
            "retryable": False,
        }

    @pytest.mark.unit
    def test_details_skip_missing_values(self) -> None:
        error = PaymentError("not found", PaymentErrorCode.NOT_FOUND)

        assert error.details == {}
        assert str(error) == "not found"
