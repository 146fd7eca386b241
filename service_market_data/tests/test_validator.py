"""
Unit tests for payload validation and sanitisation.
"""

import pytest

from service_market_data.app.models import AssetDomain
from service_market_data.app.validation import (
    sanitize_text,
    validate_crypto_data,
    validate_metal_history,
    validate_metals_data,
    validate_payload,
    validate_user_input,
)

from conftest import coin


class TestMetalsValidation:
    """Test cases for single-metal records."""

    def test_gold_within_band_is_valid(self):
        result = validate_metals_data({"price": 2050, "timestamp": 1720000000}, "gold")

        assert result.is_valid
        assert result.sanitized_data["price"] == 2050
        assert result.sanitized_data["unit"] == "oz"
        assert result.sanitized_data["metal"] == "gold"
        assert result.sanitized_data["last_updated"].startswith("2024-07-03")

    def test_gold_outside_band_is_rejected(self):
        result = validate_metals_data({"price": 50000}, AssetDomain.GOLD)

        assert not result.is_valid
        assert result.sanitized_data is None
        assert "outside expected range" in result.errors[0]
        assert result.customer_message

    @pytest.mark.parametrize("payload", [
        {"price": "abc"},
        {"price": "nan"},
        {"price": -5},
        {},
        [2050],
        None,
    ])
    def test_malformed_records_never_raise(self, payload):
        result = validate_metals_data(payload, "silver")

        assert not result.is_valid
        assert result.errors

    @pytest.mark.parametrize("metal,price", [
        ("silver", 31.5),
        ("platinum", 980),
        ("palladium", 1020),
    ])
    def test_other_metal_bands(self, metal, price):
        assert validate_metals_data({"price": price}, metal).is_valid

    def test_unknown_metal(self):
        result = validate_metals_data({"price": 10}, "copper")

        assert not result.is_valid


class TestCryptoValidation:
    """Test cases for coin batches."""

    def test_only_well_formed_records_survive(self):
        payload = [
            coin("bitcoin", 67000),
            {"id": "broken", "name": "Broken", "current_price": "abc"},
            "junk",
            coin("ghost", 0),
            {"id": "", "name": "Nameless", "current_price": 1},
        ]

        result = validate_crypto_data(payload)

        assert result.is_valid
        assert [asset["id"] for asset in result.sanitized_data] == ["bitcoin"]
        assert result.sanitized_data[0]["symbol"] == "BIT"
        assert len(result.errors) == 4

    def test_empty_result_is_invalid(self):
        result = validate_crypto_data([{"id": "x", "name": "X", "current_price": None}])

        assert not result.is_valid
        assert "No valid cryptocurrency data found" in result.errors

    def test_non_sequence_is_invalid(self):
        result = validate_crypto_data({"bitcoin": {"usd": 67000}})

        assert not result.is_valid
        assert result.customer_message

    def test_free_text_is_sanitised(self):
        payload = [coin("bitcoin", 67000, name="<script>alert(1)</script>Bitcoin",
                        image="javascript:alert(1)")]

        asset = validate_crypto_data(payload).sanitized_data[0]

        assert "<" not in asset["name"]
        assert ">" not in asset["name"]
        assert asset["name"].endswith("Bitcoin")
        assert asset["icon"] is None

    def test_lenient_optional_numbers(self):
        payload = [coin("bitcoin", 67000, market_cap="n/a", price_change_percentage_24h=None)]

        asset = validate_crypto_data(payload).sanitized_data[0]

        assert asset["market_cap"] == 0.0
        assert asset["price_change_24h"] == 0.0


class TestHistoryValidation:

    def test_filters_and_caps_points(self):
        points = [{"date": "2024-07-01", "price": 2300 + i, "volume": 5} for i in range(1200)]
        points.insert(0, {"date": "2024-06-30", "price": 0})
        points.insert(1, "junk")

        result = validate_metal_history(points, "gold")

        assert result.is_valid
        assert len(result.sanitized_data) == 1000
        assert result.sanitized_data[0]["price"] == 2300

    def test_non_list_is_invalid(self):
        assert not validate_metal_history({"price": 1}, "gold").is_valid


class TestPayloadDispatch:

    def test_dispatches_on_domain_tag(self):
        assert validate_payload([coin("bitcoin", 1)], "crypto").is_valid
        assert validate_payload({"price": 2050}, "gold").is_valid

    def test_unknown_domain(self):
        result = validate_payload({"price": 1}, "beanie-babies")

        assert not result.is_valid


class TestUserInput:

    @pytest.mark.parametrize("value,valid", [
        ("12.5", True),
        (-1, False),
        ("abc", False),
        (2_000_000_000, False),
    ])
    def test_amount(self, value, valid):
        assert validate_user_input(value, "amount").is_valid is valid

    def test_hourly_wage(self):
        assert validate_user_input(25.129, "hourly_wage").sanitized_data == 25.13
        assert not validate_user_input(0, "hourly_wage").is_valid

    def test_search(self):
        assert validate_user_input("  bit<coin>  ", "search").sanitized_data == "bitcoin"
        assert not validate_user_input("   ", "search").is_valid
        assert not validate_user_input("x" * 101, "search").is_valid

    def test_unknown_kind(self):
        assert not validate_user_input(1, "shoe-size").is_valid


def test_sanitize_text_truncates():
    assert sanitize_text("a" * 20, 5) == "aaaaa"
    assert sanitize_text(None, 5) == ""
