"""
French phone number normalization.

Centres send numbers in every local format; the voice agent needs E.164.
"""

import re

_SEPARATORS = re.compile(r"[\s\-.()]")
_FRENCH_E164 = re.compile(r"^\+33[1-9]\d{8}$")
_NINE_DIGITS = re.compile(r"^\d{9}$")


def normalize_french_phone_number(phone_number: str | None) -> str | None:
    """Convert a French number to ``+33`` form.

    Unrecognized formats are returned unchanged.

    >>> normalize_french_phone_number("01 23 45 67 89")
    '+33123456789'
    """
    if not phone_number or not isinstance(phone_number, str):
        return phone_number

    clean = _SEPARATORS.sub("", phone_number)

    if clean.startswith("+33"):
        return clean
    if clean.startswith("0033"):
        return "+33" + clean[4:]
    if clean.startswith("33") and len(clean) >= 11:
        return "+" + clean
    if clean.startswith("0") and len(clean) == 10:
        return "+33" + clean[1:]
    if _NINE_DIGITS.match(clean):
        return "+33" + clean

    return phone_number


def is_valid_french_phone_number(phone_number: str | None) -> bool:
    if not phone_number or not isinstance(phone_number, str):
        return False
    normalized = normalize_french_phone_number(phone_number)
    return bool(normalized and _FRENCH_E164.match(normalized))
