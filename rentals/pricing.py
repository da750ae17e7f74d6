# rentals/pricing.py
"""Rental price arithmetic, shared by checkout and the reservation endpoint."""
import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

CENT = Decimal("0.01")
DAY_SECONDS = 24 * 60 * 60


def to_money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def rental_days(pickup: Optional[datetime], return_at: Optional[datetime]) -> int:
    """Whole days billed between pickup and return; partial days count."""
    if pickup is None or return_at is None:
        return 0
    return max(0, math.ceil((return_at - pickup).total_seconds() / DAY_SECONDS))


@dataclass(frozen=True)
class PriceQuote:
    days: int
    daily_rate: Decimal
    base: Decimal
    delivery_fee: Decimal
    discount: Decimal
    equipment: Decimal
    total: Decimal

    def as_payload(self):
        return {
            "daily_rate": float(self.daily_rate),
            "total_amount": float(self.base),
            "delivery_fee": float(self.delivery_fee),
            "discount_amount": float(self.discount),
            "equipment_cost": float(self.equipment),
            "final_amount": float(self.total),
        }


def quote(days: int, daily_rate, distance_km=0, fee_per_km=0, delivery: bool = False,
          discount=0, equipment=0) -> PriceQuote:
    rate = to_money(daily_rate)
    base = to_money(rate * days) if days > 0 else to_money(0)
    delivery_fee = to_money(0)
    if delivery and distance_km and distance_km > 0:
        delivery_fee = to_money(Decimal(str(distance_km)) * Decimal(str(fee_per_km or 0)))
    discount = to_money(discount)
    equipment = to_money(equipment)
    return PriceQuote(
        days=days,
        daily_rate=rate,
        base=base,
        delivery_fee=delivery_fee,
        discount=discount,
        equipment=equipment,
        total=base + delivery_fee + equipment - discount,
    )
