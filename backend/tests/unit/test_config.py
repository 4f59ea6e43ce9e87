"""
Unit tests for configuration constants and policy parsing.
"""

import pytest
import os

from core.config import (
    DATABASE_URL,
    API_BASE_URL,
    REFUND_POLICY_TIERS,
    MAX_CUSTOMER_RESCHEDULES,
    NO_SHOW_GRACE_MINUTES,
    PENDING_PAYMENT_TTL_MINUTES,
    _get_bool,
    parse_refund_tiers,
)


class TestConfigConstants:
    """Test cases for configuration constants."""

    def test_default_values(self):
        """Test default configuration values."""
        assert API_BASE_URL == "http://localhost:8000"
        assert REFUND_POLICY_TIERS == [(24.0, 100), (4.0, 50), (0.0, 0)]
        assert MAX_CUSTOMER_RESCHEDULES == 2
        assert NO_SHOW_GRACE_MINUTES == 30
        assert PENDING_PAYMENT_TTL_MINUTES == 15
        # DATABASE_URL may be overridden in test environment
        assert DATABASE_URL is not None and DATABASE_URL.startswith(("postgresql://", "sqlite://"))


class TestParseRefundTiers:

    def test_parses_and_sorts_descending(self):
        assert parse_refund_tiers("0:0, 24:100 ,4:50") == [(24.0, 100), (4.0, 50), (0.0, 0)]

    def test_fractional_hours(self):
        assert parse_refund_tiers("1.5:25") == [(1.5, 25)]

    def test_ignores_empty_chunks(self):
        assert parse_refund_tiers("48:100,,") == [(48.0, 100)]

    @pytest.mark.parametrize("raw", ["24", "24:full", "a:b:c"])
    def test_malformed_pair(self, raw):
        with pytest.raises(ValueError, match="expected 'hours:percentage'"):
            parse_refund_tiers(raw)

    @pytest.mark.parametrize("raw", ["24:101", "24:-1"])
    def test_percentage_out_of_range(self, raw):
        with pytest.raises(ValueError, match="between 0 and 100"):
            parse_refund_tiers(raw)

    def test_empty(self):
        with pytest.raises(ValueError, match="At least one"):
            parse_refund_tiers(" , ")

    def test_non_monotonic(self):
        with pytest.raises(ValueError, match="monotonic"):
            parse_refund_tiers("24:50,4:100")


class TestGetBool:

    @pytest.mark.parametrize("value", ["true", "TRUE", "1", "yes", " on "])
    def test_truthy(self, value):
        os.environ["TEST_FLAG"] = value
        try:
            assert _get_bool("TEST_FLAG", "false") is True
        finally:
            del os.environ["TEST_FLAG"]

    @pytest.mark.parametrize("value", ["false", "0", "no", ""])
    def test_falsy(self, value):
        os.environ["TEST_FLAG"] = value
        try:
            assert _get_bool("TEST_FLAG", "true") is False
        finally:
            del os.environ["TEST_FLAG"]

    def test_default_when_unset(self):
        os.environ.pop("TEST_FLAG", None)
        assert _get_bool("TEST_FLAG", "true") is True
        assert _get_bool("TEST_FLAG", "false") is False
