"""
Input Validation — form text → numbers, and stop/target side checks.

Form validators collect every problem as a FieldError list instead of
stopping at the first one, so a caller can mark all bad fields at once.
"""
import math
from dataclasses import dataclass, asdict
from typing import Optional

from config import (
    MIN_LEVERAGE, MAX_LEVERAGE,
    MAX_PRICE, MAX_POSITION_SIZE, MAX_ADJUSTMENT_SIZE,
)
from engine.models import LONG


@dataclass(frozen=True)
class FieldError:
    field:   str
    message: str

    def to_dict(self) -> dict:
        return asdict(self)


class ValidationFailed(Exception):
    """Raised when an edit or adjustment is rejected."""

    def __init__(self, errors: list[FieldError]):
        self.errors = list(errors)
        super().__init__('; '.join(f'{e.field}: {e.message}' for e in self.errors))


def parse_number(text) -> Optional[float]:
    """User text → float. None for blank, non-numeric or non-finite input."""
    if text is None:
        return None
    if isinstance(text, (int, float)):
        value = float(text)
    else:
        text = str(text).strip().replace(',', '')
        if not text:
            return None
        try:
            value = float(text)
        except ValueError:
            return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def _is_blank(text) -> bool:
    return text is None or (isinstance(text, str) and not text.strip())


def validate_position_input(
    entry_price: str,
    position_size: str,
    leverage: str,
    stop_loss: Optional[str] = None,
    take_profit: Optional[str] = None,
) -> list[FieldError]:
    errors: list[FieldError] = []

    entry = parse_number(entry_price)
    if entry is None:
        errors.append(FieldError('entryPrice', 'Entry price is required'))
    elif entry <= 0:
        errors.append(FieldError('entryPrice', 'Entry price must be positive'))
    elif entry > MAX_PRICE:
        errors.append(FieldError('entryPrice', 'Entry price seems too high (max $1M)'))

    size = parse_number(position_size)
    if size is None:
        errors.append(FieldError('positionSize', 'Position size is required'))
    elif size <= 0:
        errors.append(FieldError('positionSize', 'Position size must be positive'))
    elif size > MAX_POSITION_SIZE:
        errors.append(FieldError('positionSize', 'Position size too large (max $1M)'))

    lev = parse_number(leverage)
    if lev is None:
        errors.append(FieldError('leverage', 'Leverage is required'))
    elif lev < MIN_LEVERAGE:
        errors.append(FieldError('leverage', f'Leverage must be at least {MIN_LEVERAGE:g}x'))
    elif lev > MAX_LEVERAGE:
        errors.append(FieldError('leverage', f'Leverage cannot exceed {MAX_LEVERAGE:g}x'))

    errors += _validate_optional_level('stopLoss', 'Stop loss', stop_loss)
    errors += _validate_optional_level('takeProfit', 'Take profit', take_profit)
    return errors


def _validate_optional_level(field: str, label: str, text) -> list[FieldError]:
    if _is_blank(text):
        return []
    value = parse_number(text)
    if value is None:
        return [FieldError(field, f'{label} must be a valid number')]
    if value <= 0:
        return [FieldError(field, f'{label} must be positive')]
    return []


def validate_adjustment_input(new_entry_price: str, adjustment_size: str) -> list[FieldError]:
    errors: list[FieldError] = []

    price = parse_number(new_entry_price)
    if price is None:
        errors.append(FieldError('newEntryPrice', 'New entry price is required'))
    elif price <= 0:
        errors.append(FieldError('newEntryPrice', 'New entry price must be positive'))
    elif price > MAX_PRICE:
        errors.append(FieldError('newEntryPrice', 'New entry price seems too high'))

    size = parse_number(adjustment_size)
    if size is None:
        errors.append(FieldError('adjustmentSize', 'Adjustment size is required'))
    elif size <= 0:
        errors.append(FieldError('adjustmentSize', 'Adjustment size must be positive'))
    elif size > MAX_ADJUSTMENT_SIZE:
        errors.append(FieldError('adjustmentSize', 'Adjustment size too large'))

    return errors


def get_error_message(errors: list[FieldError], field: str) -> Optional[str]:
    for error in errors:
        if error.field == field:
            return error.message
    return None


def validate_levels(
    direction: str,
    reference_price: float,
    stop_loss: Optional[float],
    take_profit: Optional[float],
) -> list[FieldError]:
    """
    Stop loss must sit on the loss side of `reference_price` and take
    profit on the profit side. Unset levels always pass; a level that is
    set must be positive.
    """
    errors: list[FieldError] = []
    if stop_loss is not None and stop_loss <= 0:
        errors.append(FieldError('stopLoss', 'Stop loss must be positive'))
        stop_loss = None
    if take_profit is not None and take_profit <= 0:
        errors.append(FieldError('takeProfit', 'Take profit must be positive'))
        take_profit = None
    if reference_price <= 0:
        return errors

    if direction == LONG:
        if stop_loss and stop_loss >= reference_price:
            errors.append(FieldError('stopLoss', 'Stop loss must be below entry price for a long'))
        if take_profit and take_profit <= reference_price:
            errors.append(FieldError('takeProfit', 'Take profit must be above entry price for a long'))
    else:
        if stop_loss and stop_loss <= reference_price:
            errors.append(FieldError('stopLoss', 'Stop loss must be above entry price for a short'))
        if take_profit and take_profit >= reference_price:
            errors.append(FieldError('takeProfit', 'Take profit must be below entry price for a short'))

    return errors
