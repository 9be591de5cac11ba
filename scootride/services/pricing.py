"""
Ride cost accrual and pricing display helpers.
"""
import math
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from scootride.config import Settings, get_settings
from scootride.schemas.schemas import PricingInfo


def billed_minutes(duration_seconds: int) -> int:
    """Every started minute is billed: 0s → 0, 1s → 1, 60s → 1, 61s → 2."""
    if duration_seconds < 0:
        raise ValueError("duration_seconds must be non-negative")
    return math.ceil(duration_seconds / 60)


def calculate_ride_cost(
    duration_seconds: int,
    unlock_fee: float,
    per_minute_rate: float,
) -> Decimal:
    """
    unlock_fee + ceil(duration / 60) * per_minute_rate, as a 2-dp Decimal.
    Never below the unlock fee.
    """
    if unlock_fee < 0 or per_minute_rate < 0:
        raise ValueError("fees must be non-negative")
    to_dec = lambda v: Decimal(str(v))
    total = to_dec(unlock_fee) + billed_minutes(duration_seconds) * to_dec(per_minute_rate)
    return total.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def get_pricing_info(settings: Settings | None = None, city: str | None = None) -> PricingInfo:
    settings = settings or get_settings()
    city = city or settings.default_city
    return PricingInfo(
        city=city,
        currency=settings.currency,
        base_fare=settings.unlock_fee,
        per_minute=settings.per_minute_rate,
        note=f"Prices may vary between zones. Current city: {city}.",
        updated_at=datetime.now(timezone.utc),
    )


def format_cost(amount: float | Decimal, currency: str = "kr") -> str:
    return f"{float(amount):.2f} {currency}"


def format_duration(duration_seconds: int) -> str:
    """mm:ss below an hour, h:mm:ss above."""
    hours, rest = divmod(max(int(duration_seconds), 0), 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes:02d}:{seconds:02d}"
