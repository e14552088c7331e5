from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from material_tracker.errors import LedgerValidationError

ZERO = Decimal('0')


def to_decimal(value, *, field: str, default: Decimal | None = ZERO) -> Decimal | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, float):
        parsed = Decimal(str(value))
    else:
        try:
            parsed = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise LedgerValidationError(f'Invalid {field}') from exc
    if not parsed.is_finite():
        raise LedgerValidationError(f'Invalid {field}')
    return parsed


def non_negative(value, *, field: str, default: Decimal | None = ZERO) -> Decimal | None:
    parsed = to_decimal(value, field=field, default=default)
    if parsed is not None and parsed < 0:
        raise LedgerValidationError(f'{field} cannot be negative')
    return parsed


def clamp_zero(value: Decimal) -> Decimal:
    return value if value > 0 else ZERO


def round_half_up(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_HALF_UP))


def or_zero(value: Decimal | None) -> Decimal:
    return value if value is not None else ZERO
