"""
Unit tests for ride cost accrual and the pricing display helpers.
"""
import pytest
from decimal import Decimal

from scootride.config import Settings
from scootride.services.pricing import (
    billed_minutes,
    calculate_ride_cost,
    format_cost,
    format_duration,
    get_pricing_info,
)


class TestBilledMinutes:
    def test_zero_seconds_bills_nothing(self):
        assert billed_minutes(0) == 0

    def test_started_minute_is_billed(self):
        assert billed_minutes(1) == 1
        assert billed_minutes(60) == 1
        assert billed_minutes(61) == 2

    def test_negative_duration_rejected(self):
        with pytest.raises(ValueError):
            billed_minutes(-1)


class TestCalculateRideCost:
    def test_unlock_fee_only(self):
        assert calculate_ride_cost(0, 10.0, 2.5) == Decimal("10.00")

    def test_sixty_five_seconds(self):
        # 10 + ceil(65/60) * 2.5 = 10 + 2 * 2.5 = 15
        assert calculate_ride_cost(65, 10.0, 2.5) == Decimal("15.00")

    def test_half_hour(self):
        # 10 + 30 * 2.5 = 85
        assert calculate_ride_cost(1800, 10.0, 2.5) == Decimal("85.00")

    def test_float_rates_do_not_drift(self):
        # 3 * 0.1 is 0.30000000000000004 in binary floats
        assert calculate_ride_cost(180, 0.0, 0.1) == Decimal("0.30")

    def test_never_below_unlock_fee(self):
        for seconds in (0, 1, 59, 3600):
            assert calculate_ride_cost(seconds, 10.0, 2.5) >= Decimal("10.00")

    def test_negative_fee_rejected(self):
        with pytest.raises(ValueError):
            calculate_ride_cost(60, -1.0, 2.5)


class TestFormatting:
    def test_format_cost(self):
        assert format_cost(15) == "15.00 kr"
        assert format_cost(Decimal("12.5"), "SEK") == "12.50 SEK"

    def test_format_duration_under_an_hour(self):
        assert format_duration(0) == "00:00"
        assert format_duration(65) == "01:05"

    def test_format_duration_over_an_hour(self):
        assert format_duration(3723) == "1:02:03"

    def test_pricing_info_from_settings(self):
        info = get_pricing_info(Settings(unlock_fee=12.0, per_minute_rate=3.0, currency="SEK"), city="Malmö")
        assert info.city == "Malmö"
        assert info.base_fare == 12.0
        assert info.per_minute == 3.0
        assert info.currency == "SEK"
        assert "Malmö" in info.note
