"""
Tests for Facebook Ads utility functions.
"""

import pytest

from ..exceptions import FacebookValidationError
from ..utils import (
    contains_facebook_macros,
    find_url_in_text,
    format_budget,
    humanize_tool_name,
    is_placeholder_id,
    parse_tracking_url,
    validate_ad_account_id,
)


class TestValidateAdAccountId:
    """Tests for validate_ad_account_id."""

    def test_valid_with_prefix(self):
        """Test ID already has act_ prefix."""
        assert validate_ad_account_id("act_123456789") == "act_123456789"

    def test_valid_without_prefix(self):
        """Test ID without act_ prefix gets it added."""
        assert validate_ad_account_id("123456789") == "act_123456789"

    def test_empty_string_raises(self):
        """Test empty string raises error."""
        with pytest.raises(FacebookValidationError) as exc_info:
            validate_ad_account_id("")
        assert "ad_account_id" in str(exc_info.value)

    def test_whitespace_raises(self):
        """Test whitespace-only ID raises error."""
        with pytest.raises(FacebookValidationError):
            validate_ad_account_id("   ")


class TestFormatting:
    """Tests for money formatting."""

    def test_format_budget_whole_dollars(self):
        assert format_budget(1500) == "$15/day"

    def test_format_budget_cents(self):
        assert format_budget(1550) == "$15.50/day"

    def test_format_budget_missing(self):
        assert format_budget(None) == "an assigned"
        assert format_budget(0) == "an assigned"


class TestTrackingUrls:
    """Tests for URL helpers."""

    def test_split_query(self):
        """Test query string is split off the destination."""
        assert parse_tracking_url("https://shop.com/p?utm_source=fb&utm_medium=cpc") == ("https://shop.com/p", "utm_source=fb&utm_medium=cpc")

    def test_no_query(self):
        assert parse_tracking_url(" https://shop.com ") == ("https://shop.com", "")

    def test_empty(self):
        assert parse_tracking_url(None) == ("", "")

    def test_macros(self):
        assert contains_facebook_macros("https://a.com?c={{campaign.name}}")
        assert not contains_facebook_macros("https://a.com?c=x")

    def test_find_url_strips_punctuation(self):
        """Test sentence punctuation is not part of the URL."""
        assert find_url_in_text("Send traffic to https://shop.com/sale.") == "https://shop.com/sale"
        assert find_url_in_text("no links here") is None


class TestPlaceholderIds:
    """Tests for is_placeholder_id."""

    @pytest.mark.parametrize("value", [None, "", "ACTUAL_CAMPAIGN_ID", "__campaign_id__", "ADSET_ID_FROM_STEP_2", "abc"])
    def test_placeholders(self, value):
        assert is_placeholder_id(value)

    def test_real_id(self):
        assert not is_placeholder_id("120210000000001")
        assert not is_placeholder_id(120210000000001)


def test_humanize_tool_name():
    assert humanize_tool_name("update_campaign") == "Update Campaign"
