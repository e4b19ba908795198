"""
Utility Functions

Phone number helpers shared by the webhook boundary and the config readers.
"""

import re
from typing import Optional


def normalize_phone_number(phone: Optional[str]) -> str:
    """
    Normalize a phone number to E.164 format.

    SIP URIs and short extension numbers are returned unchanged.

    Examples:
        "(555) 123-4567" -> "+15551234567"
        "1 555 123 4567" -> "+15551234567"
        "sip:101@pbx.example.com" -> "sip:101@pbx.example.com"
        "101" -> "101"

    Args:
        phone: Phone number in any format

    Returns:
        Normalized phone number
    """
    if not phone:
        return ""

    phone = phone.strip()
    if phone.lower().startswith("sip:") or "@" in phone:
        return phone

    if phone.startswith("+"):
        return "+" + re.sub(r"[^\d]", "", phone[1:])

    digits = re.sub(r"[^\d]", "", phone)

    # Internal extensions
    if len(digits) < 7:
        return digits

    # If no country code, assume US (+1)
    if len(digits) == 10:
        return "+1" + digits
    return "+" + digits


def mask_phone_number(phone: Optional[str]) -> str:
    """Mask all but the last four digits for logging"""
    if not phone:
        return ""
    if len(phone) <= 4:
        return "*" * len(phone)
    return "*" * (len(phone) - 4) + phone[-4:]
