from __future__ import annotations

import math

from shopdesk.domain.errors import FxUnavailableError, ValidationError


def validate_rate(value: object) -> float:
    if value is None:
        raise FxUnavailableError("No exchange rate available.")
    try:
        rate = float(value)
    except (TypeError, ValueError) as exc:
        raise FxUnavailableError(f"Exchange rate is not a number. Received: {value!r}") from exc
    if not math.isfinite(rate) or rate <= 0:
        raise FxUnavailableError(f"FX rate must be > 0. Received: {rate}")
    return rate


def validate_price(value: object) -> float:
    try:
        price = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Unit price is not a number. Received: {value!r}") from exc
    if not math.isfinite(price) or price < 0:
        raise ValidationError("Unit price must be a finite number >= 0.")
    return price


def validate_amount(value: object, label: str = "Amount") -> float:
    """Money moved in or out of the till: finite and strictly positive."""
    try:
        amount = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{label} is not a number. Received: {value!r}") from exc
    if not math.isfinite(amount) or amount <= 0:
        raise ValidationError(f"{label} must be > 0.")
    return amount


def to_quoted(base_amount: float, rate: object) -> float:
    return float(base_amount) * validate_rate(rate)


def to_base(quoted_amount: float, rate: object) -> float:
    return float(quoted_amount) / validate_rate(rate)


def format_amount(value: float | str | None, currency: str = "USD") -> str:
    """
    Display format used on receipts:
      USD -> "1 234.50 $"
      CDF -> "2 800 FC"  (no decimals)
    """
    currency = currency.upper()
    try:
        num = float(value) if value is not None else 0.0
    except ValueError:
        num = 0.0

    if currency == "CDF":
        return f"{num:,.0f}".replace(",", " ") + " FC"
    return f"{num:,.2f}".replace(",", " ") + " $"
