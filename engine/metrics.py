"""
Primitive Metric Functions — stateless formulas over scalars.

Sizes are USD margin; every exposure figure is margin × leverage (notional).
Degenerate denominators (zero entry price, zero blended size) return 0
instead of raising: these values are displayed, never branched on.
"""
from typing import Optional

from engine.models import LONG, SUBTRACT


def direction_multiplier(direction: str) -> int:
    """+1 for long, -1 for short."""
    return 1 if direction == LONG else -1


def notional(margin_size: float, leverage: float) -> float:
    return margin_size * leverage


def blend_average_price(
    original_size: float,
    original_price: float,
    delta_size: float,
    delta_price: float,
    kind: str,
) -> float:
    """
    Two-entry average price after one adjustment.

    Opening deltas give the size-weighted average. A closing delta keeps the
    original price while volume remains, or returns the closing price once
    the position is fully closed. Multi-entry chains go through
    engine.chain.aggregate instead, which applies FIFO.
    """
    if kind == SUBTRACT:
        if original_size - delta_size <= 0:
            return delta_price
        return original_price

    total_size = original_size + delta_size
    if total_size == 0:
        return 0.0
    return (original_size * original_price + delta_size * delta_price) / total_size


def risk_amount(
    entry_price: float,
    stop_loss: Optional[float],
    margin_size: float,
    leverage: float,
    direction: str,
) -> float:
    """USD lost if the stop is hit. Reported as a magnitude for both directions."""
    if not stop_loss or entry_price <= 0:
        return 0.0
    risk_pct = abs(entry_price - stop_loss) / entry_price
    return notional(margin_size, leverage) * risk_pct


def reward_amount(
    entry_price: float,
    target_price: Optional[float],
    margin_size: float,
    leverage: float,
    direction: str,
) -> float:
    """
    USD gained if the target is hit.

    A target on the wrong side of entry (below for long, above for short)
    earns nothing rather than a negative reward.
    """
    if not target_price or target_price == entry_price or entry_price <= 0:
        return 0.0

    if direction == LONG:
        valid = target_price > entry_price
    else:
        valid = target_price < entry_price
    if not valid:
        return 0.0

    reward_pct = abs(target_price - entry_price) / entry_price
    return notional(margin_size, leverage) * reward_pct


def risk_reward_ratio(risk: float, reward: float) -> float:
    if risk == 0 or reward == 0:
        return 0.0
    return reward / risk


def calculate_pnl(
    entry_price: float,
    current_price: float,
    margin_size: float,
    leverage: float,
    direction: str,
) -> tuple[float, float]:
    """
    Unrealized P&L on margin.

    Returns:
        (pnl_usd, pnl_pct) — both leverage-scaled, i.e. return on margin.
    """
    if entry_price <= 0:
        return 0.0, 0.0
    move = (current_price - entry_price) / entry_price
    mult = direction_multiplier(direction)
    pnl_pct = move * 100 * mult * leverage
    pnl_usd = margin_size * move * mult * leverage
    return pnl_usd, pnl_pct


def liquidation_price(entry_price: float, leverage: float, direction: str) -> float:
    """
    Linear liquidation model: entry × (1 ∓ 1/leverage).
    No maintenance margin or funding. 1x has no liquidation and returns 0.
    """
    if leverage <= 1:
        return 0.0
    mult = 1 / leverage
    if direction == LONG:
        return entry_price * (1 - mult)
    return entry_price * (1 + mult)
