"""
Unit tests for the structlog processors.
"""
import pytest

from payment_service.config import Settings
from payment_service.monitoring.logging import (
    REDACTED,
    app_context,
    default_correlation_id,
    redact_secrets,
)


class TestProcessors:
    """Test suite for the logging processor chain."""

    @pytest.mark.unit
    def test_app_context(self, test_settings: Settings) -> None:
        event = app_context(test_settings)(None, "info", {"event": "payment_processed"})
        assert event["app_name"] == test_settings.app_name
        assert event["app_env"] == test_settings.app_env

    @pytest.mark.unit
    def test_correlation_id_defaults_to_null(self) -> None:
        assert default_correlation_id(None, "info", {"event": "startup"})["correlation_id"] is None

    @pytest.mark.unit
    def test_bound_correlation_id_is_kept(self) -> None:
        event = default_correlation_id(None, "info", {"correlation_id": "corr-1"})
        assert event["correlation_id"] == "corr-1"

    @pytest.mark.unit
    def test_secrets_are_masked_in_nested_metadata(self) -> None:
        event = redact_secrets(
            None,
            "info",
            {
                "event": "payment_processed",
                "access_token": "A21AA",
                "metadata": {"stripe_client_secret": "pi_123_secret", "order": "ORD-1"},
                "provider_token_id": None,
            },
        )

        assert event["access_token"] == REDACTED
        assert event["metadata"] == {"stripe_client_secret": REDACTED, "order": "ORD-1"}
        assert event["provider_token_id"] is None
        assert event["event"] == "payment_processed"
