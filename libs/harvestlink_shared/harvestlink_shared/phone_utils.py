import re


def normalize_phone_e164(phone: str | None, default_country_code: str = "") -> str:
    """Normalize a phone number to a basic E.164 form.

    Local numbers with a leading zero are only rewritten when a default country
    code is given; otherwise the digits are returned unchanged.
    """
    if not phone:
        return ""
    raw = re.sub(r"[^\d+]", "", phone)
    if raw.startswith("+"):
        return "+" + raw[1:].replace("+", "")
    if raw.startswith("00"):
        return "+" + raw[2:]
    if raw.startswith("0") and len(raw) >= 9 and default_country_code.startswith("+"):
        return default_country_code + raw[1:]
    return raw


def mask_phone(phone: str | None, visible_digits: int = 2) -> str:
    if not phone:
        return ""
    normalized = normalize_phone_e164(phone)
    if len(normalized) <= visible_digits:
        return normalized
    return "*" * (len(normalized) - visible_digits) + normalized[-visible_digits:]
