from __future__ import annotations

import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from .errors import ValidationError


UTORID_RE = re.compile(r"^[A-Za-z0-9]{7,8}$")
UOFT_EMAIL_RE = re.compile(r"^[^\s@]+@(mail\.)?utoronto\.ca$")
BIRTHDAY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Largest dollar amount a single purchase may record
MAX_SPENT = Decimal("999999.99")

MAX_PAGE_LIMIT = 100

# Integer columns are 32-bit signed
MAX_INT = 2**31 - 1

# Promotion rate ceiling; rate * MAX_SPENT stays inside MAX_INT
MAX_RATE = Decimal("1000")


def is_valid_utorid(utorid: Any) -> bool:
    return isinstance(utorid, str) and bool(UTORID_RE.match(utorid))


def is_valid_uoft_email(email: Any) -> bool:
    return isinstance(email, str) and bool(UOFT_EMAIL_RE.match(email))


def is_valid_name(name: Any) -> bool:
    return isinstance(name, str) and 1 <= len(name) <= 50


def require_utorid(value: Any, field: str = "utorid") -> str:
    if not is_valid_utorid(value):
        raise ValidationError(f"{field} must be 7-8 alphanumeric characters")
    return value


def parse_birthday(value: Any) -> date:
    """Parse a YYYY-MM-DD birthday, rejecting impossible dates like 2001-02-30."""
    if not isinstance(value, str) or not BIRTHDAY_RE.match(value):
        raise ValidationError("birthday must be formatted YYYY-MM-DD")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError("birthday must be a real calendar date")


def require_int(
    value: Any,
    field: str,
    *,
    positive: bool = False,
    nonzero: bool = False,
    maximum: int = MAX_INT,
) -> int:
    """
    Strict integer coercion.

    Accepts real ints and plain digit strings. Rejects bools, floats,
    decimals in strings and scientific notation. Values whose magnitude
    exceeds maximum are rejected before they reach an integer column.
    """
    if value is None:
        raise ValidationError(f"{field} is required")

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")

    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if positive and result <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    if nonzero and result == 0:
        raise ValidationError(f"{field} must be a non-zero integer")
    if abs(result) > maximum:
        raise ValidationError(f"{field} must not exceed {maximum}")
    return result


def require_positive_decimal(
    value: Any,
    field: str,
    *,
    places: int | None = None,
    maximum: Decimal | None = None,
) -> Decimal:
    """Coerce a JSON number to a finite, strictly positive Decimal."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a positive number")
    if not isinstance(value, (int, float, str, Decimal)):
        raise ValidationError(f"{field} must be a positive number")
    try:
        # str() keeps 20.1 as Decimal("20.1") instead of its binary expansion
        result = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{field} must be a positive number")
    if not result.is_finite() or result <= 0:
        raise ValidationError(f"{field} must be a positive number")
    if places is not None and result.as_tuple().exponent < -places:
        raise ValidationError(f"{field} must have at most {places} decimal places")
    if maximum is not None and result > maximum:
        raise ValidationError(f"{field} must not exceed {maximum}")
    return result


def require_spent(value: Any) -> Decimal:
    return require_positive_decimal(value, "spent", places=2, maximum=MAX_SPENT)


def require_bool(value: Any, field: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{field} must be a boolean")
    return value


def optional_remark(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError("remark must be a string")
    return value


def parse_bool_arg(value: str | None, field: str) -> bool | None:
    """Query-string booleans: 'true' / 'false' (case-insensitive) or absent."""
    if value is None:
        return None
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise ValidationError(f"{field} must be true or false")


def parse_pagination(args) -> tuple[int, int]:
    """Returns (page, limit) from request args, defaulting to page 1 of 10."""
    page = require_int(args.get("page", "1"), "page", positive=True)
    limit = require_int(args.get("limit", "10"), "limit", positive=True)
    if limit > MAX_PAGE_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_LIMIT}")
    return page, limit


def parse_order_by(value: str | None, allowed: tuple[str, ...], default: str) -> str:
    order_by = value or default
    if order_by not in allowed:
        raise ValidationError(f"orderBy must be one of: {', '.join(allowed)}")
    return order_by
