"""
Validators — Rule-based checks for card payments and contact details.
"""
import re
from datetime import date
from typing import Optional


def validate_card_number(number: Optional[str]) -> bool:
    """Validate a card number: 13-19 digits passing the Luhn checksum."""
    if not number:
        return False
    digits = re.sub(r"[\s-]", "", number)
    if not re.match(r"^\d{13,19}$", digits):
        return False

    total = 0
    for i, ch in enumerate(reversed(digits)):
        d = int(ch)
        if i % 2 == 1:
            d *= 2
            if d > 9:
                d -= 9
        total += d
    return total % 10 == 0


def validate_expiry(month: str, year: str, today: Optional[date] = None) -> bool:
    """Card is valid through the last day of its expiry month. Accepts YY or YYYY."""
    if not (month.isdigit() and year.isdigit()):
        return False
    m = int(month)
    if not 1 <= m <= 12:
        return False
    y = int(year)
    if y < 100:
        y += 2000
    today = today or date.today()
    return (y, m) >= (today.year, today.month)


def card_brand(number: str) -> str:
    """Best-effort brand from the issuer prefix."""
    digits = re.sub(r"[\s-]", "", number or "")
    if digits.startswith("4"):
        return "visa"
    if re.match(r"^(5[1-5]|2[2-7])", digits):
        return "mastercard"
    if re.match(r"^3[47]", digits):
        return "amex"
    if digits.startswith("6"):
        return "discover"
    return "unknown"
