"""
GST calculations for Indian tax compliance.

Prices are GST inclusive, so tax is extracted in reverse:
base = total / (1 + rate/100), gst = total - base, both rounded half-up to
paise. Intrastate sales split GST equally into CGST and SGST; interstate
sales carry the full amount as IGST.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from .models import TaxBreakdown

TWO_PLACES = Decimal("0.01")

SELLER_STATE = "Manipur"
SELLER_STATE_CODE = "14"

# Default GST rates by product category
DEFAULT_GST_RATES: dict[str, int] = {
    "3d-print": 18,  # printing services
    "mug": 12,       # ceramic tableware
    "tshirt": 5,     # apparel under 1000/piece
    "app": 18,       # digital services
}

DEFAULT_HSN_CODES: dict[str, str] = {
    "3d-print": "9989",
    "mug": "6912",
    "tshirt": "6109",
    "app": "9984",
}

STATE_CODES: dict[str, str] = {
    "Andaman and Nicobar Islands": "35",
    "Andhra Pradesh": "37",
    "Arunachal Pradesh": "12",
    "Assam": "18",
    "Bihar": "10",
    "Chandigarh": "04",
    "Chhattisgarh": "22",
    "Dadra and Nagar Haveli and Daman and Diu": "26",
    "Delhi": "07",
    "Goa": "30",
    "Gujarat": "24",
    "Haryana": "06",
    "Himachal Pradesh": "02",
    "Jammu and Kashmir": "01",
    "Jharkhand": "20",
    "Karnataka": "29",
    "Kerala": "32",
    "Ladakh": "38",
    "Lakshadweep": "31",
    "Madhya Pradesh": "23",
    "Maharashtra": "27",
    "Manipur": "14",
    "Meghalaya": "17",
    "Mizoram": "15",
    "Nagaland": "13",
    "Odisha": "21",
    "Puducherry": "34",
    "Punjab": "03",
    "Rajasthan": "08",
    "Sikkim": "11",
    "Tamil Nadu": "33",
    "Telangana": "36",
    "Tripura": "16",
    "Uttar Pradesh": "09",
    "Uttarakhand": "05",
    "West Bengal": "19",
}


def round_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def state_code(state_name: str) -> str:
    return STATE_CODES.get(state_name, "")


def state_name(code: str) -> str:
    for name, state_code_ in STATE_CODES.items():
        if state_code_ == code:
            return name
    return ""


def is_interstate(buyer_state: str, seller_state: str = SELLER_STATE) -> bool:
    return buyer_state != seller_state


def default_gst_rate(category: Optional[str]) -> int:
    return DEFAULT_GST_RATES.get(category or "", 18)


def default_hsn_code(category: Optional[str]) -> str:
    return DEFAULT_HSN_CODES.get(category or "", "")


def calculate_gst_from_inclusive(inclusive_price: Decimal, gst_rate: int) -> tuple[Decimal, Decimal]:
    """Return (base_price, gst_amount) extracted from a GST inclusive price."""
    inclusive_price = Decimal(inclusive_price)
    if gst_rate == 0 or inclusive_price == 0:
        return round_money(inclusive_price), round_money(Decimal("0"))

    base_price = inclusive_price / (1 + Decimal(gst_rate) / 100)
    gst_amount = inclusive_price - base_price
    return round_money(base_price), round_money(gst_amount)


def split_gst(gst_amount: Decimal, interstate: bool) -> tuple[Decimal, Decimal, Decimal]:
    """Return (cgst, sgst, igst)."""
    zero = round_money(Decimal("0"))
    if interstate:
        return zero, zero, round_money(gst_amount)
    half = round_money(Decimal(gst_amount) / 2)
    return half, half, zero


def calculate_item_tax(unit_price: Decimal, quantity: int, gst_rate: int, interstate: bool) -> TaxBreakdown:
    total = Decimal(unit_price) * quantity
    base_price, gst_amount = calculate_gst_from_inclusive(total, gst_rate)
    cgst, sgst, igst = split_gst(gst_amount, interstate)
    return TaxBreakdown(
        base_price=base_price,
        gst_amount=gst_amount,
        cgst=cgst,
        sgst=sgst,
        igst=igst,
        total_amount=round_money(total),
        is_interstate=interstate,
    )


def quote(amount: Decimal, gst_rate: int, buyer_state: str, seller_state: str = SELLER_STATE) -> TaxBreakdown:
    return calculate_item_tax(amount, 1, gst_rate, is_interstate(buyer_state, seller_state))


_ONES = ["", "One", "Two", "Three", "Four", "Five", "Six", "Seven", "Eight", "Nine"]
_TEENS = ["Ten", "Eleven", "Twelve", "Thirteen", "Fourteen", "Fifteen", "Sixteen",
          "Seventeen", "Eighteen", "Nineteen"]
_TENS = ["", "", "Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy", "Eighty", "Ninety"]


def _hundreds(n: int) -> str:
    if n < 10:
        return _ONES[n]
    if n < 20:
        return _TEENS[n - 10]
    if n < 100:
        return _TENS[n // 10] + (" " + _ONES[n % 10] if n % 10 else "")
    return _ONES[n // 100] + " Hundred" + (" " + _hundreds(n % 100) if n % 100 else "")


def _thousands(n: int) -> str:
    if n < 1000:
        return _hundreds(n)
    if n < 100000:
        rest = n % 1000
        return _hundreds(n // 1000) + " Thousand" + (" " + _hundreds(rest) if rest else "")
    rest = n % 100000
    return _thousands(n // 100000) + " Lakh" + (" " + _thousands(rest) if rest else "")


def amount_to_words(amount: Decimal) -> str:
    """Spell out an invoice total, e.g. 'One Thousand Two Hundred Rupees and Fifty Paise Only'."""
    amount = round_money(amount)
    rupees = int(amount)
    paise = int((amount - rupees) * 100)

    if rupees == 0 and paise == 0:
        return "Zero Rupees Only"

    words = ""
    if rupees > 0:
        words = _thousands(rupees) + " Rupees"
    if paise > 0:
        words += (" and " if words else "") + _hundreds(paise) + " Paise"
    return words + " Only"
