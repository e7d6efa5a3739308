"""Phone number normalization for WhatsApp addressing and reply lookups."""

import re

WHATSAPP_PREFIX = "whatsapp:"

# Country codes whose local numbers guests commonly type without prefix
LOCAL_COUNTRY_CODES = ("31", "32")


def normalize_phone(raw: str) -> str:
    """Reduce a phone number to ``+digits`` or bare digits.

    Strips a ``whatsapp:`` prefix and any formatting, and turns a leading
    ``00`` international prefix into ``+``.

    Args:
        raw: Phone number as typed or as received from Twilio

    Returns:
        Normalized number, or an empty string if no digits remain
    """
    stripped = raw.strip()
    if stripped.lower().startswith(WHATSAPP_PREFIX):
        stripped = stripped[len(WHATSAPP_PREFIX):]
    stripped = re.sub(r"[^\d+]", "", stripped)
    if stripped.startswith("00"):
        stripped = "+" + stripped[2:]

    if not stripped:
        return ""
    if stripped.startswith("+"):
        return "+" + re.sub(r"\D", "", stripped[1:])
    return re.sub(r"\D", "", stripped)


def to_whatsapp_address(raw: str) -> str:
    """Format a phone number as a Twilio WhatsApp address."""
    return f"{WHATSAPP_PREFIX}{normalize_phone(raw)}"


def phone_lookup_keys(raw: str) -> list[str]:
    """All equivalent keys a phone number may be stored under.

    Covers the international form, bare digits, the local form without a
    trunk ``0`` and the national number without a Dutch/Belgian country code.
    """
    normalized = normalize_phone(raw)
    if not normalized:
        return []

    keys = [normalized]
    digits = re.sub(r"\D", "", normalized)
    if digits:
        keys.append(digits)
        if digits.startswith("0") and len(digits) > 1:
            keys.append(digits[1:])
        if digits.startswith(LOCAL_COUNTRY_CODES) and len(digits) > 2:
            keys.append(digits[2:])

    return list(dict.fromkeys(keys))
