"""Normalization of buyer data for the P2C gateway.

The gateway accepts a closed set of bank codes, local mobile numbers and
national IDs with a single letter prefix. Anything else is rejected here,
before a control number is spent.
"""

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from reservations.domain.errors import ValidationError

BANKS = {
    "0102": "Banco de Venezuela",
    "0104": "Banco Venezolano de Crédito",
    "0105": "Banco Mercantil",
    "0108": "Banco Provincial",
    "0114": "Bancaribe",
    "0115": "Banco Exterior",
    "0116": "Banco Occidental de Descuento",
    "0128": "Banco Caroní",
    "0134": "Banesco",
    "0137": "Banco Sofitasa",
    "0138": "Banco Plaza",
    "0151": "BFC Banco Fondo Común",
    "0156": "100% Banco",
    "0157": "DelSur",
    "0163": "Banco del Tesoro",
    "0166": "Banco Agrícola de Venezuela",
    "0168": "Bancrecer",
    "0169": "Mi Banco",
    "0171": "Banco Activo",
    "0172": "Bancamiga",
    "0173": "Banco Internacional de Desarrollo",
    "0174": "Banplus",
    "0175": "Banco Bicentenario",
    "0177": "Banco de la Fuerza Armada Nacional Bolivariana",
    "0191": "Banco Nacional de Crédito",
}

MOBILE_PREFIXES = ("0412", "0414", "0416", "0424", "0426")

_MOBILE_RE = re.compile(r"^(%s)\d{7}$" % "|".join(MOBILE_PREFIXES))
_PREFIXED_ID_RE = re.compile(r"^[VEJG]\d{7,9}$", re.IGNORECASE)
_DIGITS_ID_RE = re.compile(r"^\d{7,9}$")


def normalize_phone(phone: str) -> str:
    """Return the number as ``04XXXXXXXXX``.

    Separators are dropped, the international ``58`` prefix is replaced by
    the trunk ``0``, and a missing leading ``0`` is added.
    """
    if not phone:
        raise ValidationError("Phone number is required", field="phone")
    digits = re.sub(r"\D", "", phone)
    if digits.startswith("58") and len(digits) == 12:
        digits = digits[2:]
    if not digits.startswith("0"):
        digits = "0" + digits
    if not _MOBILE_RE.match(digits):
        raise ValidationError(
            f"Invalid mobile number: {phone}. Expected 04XXXXXXXXX with prefix {', '.join(MOBILE_PREFIXES)}",
            field="phone",
        )
    return digits


def validate_bank_code(code: str) -> str:
    code = (code or "").strip()
    if code not in BANKS:
        raise ValidationError(f"Unsupported bank code: {code}", field="bank_code")
    return code


def bank_name(code: str) -> str:
    return BANKS.get(code, "Unknown bank")


def normalize_national_id(value: str) -> str:
    """Return the ID as one letter prefix plus 7-9 digits. Bare digits get ``V``."""
    raw = str(value or "").strip()
    if not raw:
        raise ValidationError("National ID is required", field="national_id")
    if _PREFIXED_ID_RE.match(raw):
        return raw.upper()
    if _DIGITS_ID_RE.match(raw):
        return f"V{raw}"
    digits = re.sub(r"\D", "", raw)
    if 7 <= len(digits) <= 9:
        return f"V{digits}"
    raise ValidationError(f"Invalid national ID: {raw}. Expected V12345678", field="national_id")


def format_amount(amount) -> str:
    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise ValidationError(f"Invalid amount: {amount}", field="amount") from exc
    if not value.is_finite() or value <= 0:
        raise ValidationError(f"Amount must be greater than 0, got {amount}", field="amount")
    return str(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def mask_national_id(value: str) -> str:
    if len(value) <= 4:
        return "*" * len(value)
    return value[:1] + "*" * (len(value) - 4) + value[-3:]
