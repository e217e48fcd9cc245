"""Shipping fee by destination city, with a free-shipping incentive."""
from dataclasses import dataclass
from decimal import Decimal
import unicodedata

HCM_MARKERS = ("hồ chí minh", "ho chi minh", "hcm")
HANOI_MARKERS = ("hà nội", "ha noi")

HCM_FEE = Decimal("50000")
HANOI_FEE = Decimal("100000")
PROVINCE_FEE = Decimal("120000")

FREE_SHIPPING_THRESHOLD = Decimal("1000000")
MAX_SHIPPING_DISCOUNT = Decimal("100000")


@dataclass(frozen=True)
class ShippingQuote:
    base_fee: Decimal
    discount: Decimal
    final_fee: Decimal


def base_fee_for(city: str) -> Decimal:
    text = unicodedata.normalize("NFC", city or "").lower()
    if any(marker in text for marker in HCM_MARKERS):
        return HCM_FEE
    if any(marker in text for marker in HANOI_MARKERS):
        return HANOI_FEE
    return PROVINCE_FEE


def calculate_shipping_fee(subtotal: Decimal, city: str) -> ShippingQuote:
    base = base_fee_for(city)
    discount = min(base, MAX_SHIPPING_DISCOUNT) if Decimal(subtotal) >= FREE_SHIPPING_THRESHOLD else Decimal(0)
    return ShippingQuote(base_fee=base, discount=discount, final_fee=base - discount)
