import re

MIN_PHONE_DIGITS = 10

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: str | None) -> str:
    """
    Canonical conversation key for a phone number.

    Brazilian mobiles reported without the extra mobile digit
    (556296915034) get it inserted after the area code (5562996915034), so both
    forms land in the same conversation. Anything else passes through as digits.
    """
    digits = _NON_DIGITS.sub("", raw or "")
    if len(digits) == 12 and digits.startswith("55"):
        return digits[:4] + "9" + digits[4:]
    if len(digits) == 11 and digits.startswith("55"):
        # Doubles the country code; kept for parity with already stored keys.
        return "55" + digits
    return digits


def is_valid_recipient(canonical_phone: str) -> bool:
    return len(canonical_phone) >= MIN_PHONE_DIGITS
