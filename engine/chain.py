"""
Chain Aggregator — reduces an ordered entry chain to its open exposure.

FIFO CLOSING:
  Closing volume is matched against the oldest opening lots first. The
  average entry price and leverage of what remains are weighted over the
  unconsumed part of each lot only, so a partial reduce shifts the average
  toward the newer entries.

  [initial 1000 @100, add 1000 @110, subtract 1000]
      → the @100 lot is consumed, remaining average is 110.

OVER-CLOSING:
  Remaining size is floored at zero. Rejecting an over-close is a policy of
  the projection evaluator, not of the reducer.
"""
from typing import Sequence

from engine.models import Entry, ChainState
from engine.metrics import direction_multiplier


def aggregate(entries: Sequence[Entry], direction: str) -> ChainState:
    """Reduce `entries` (chronological order) to a ChainState."""
    open_size = 0.0
    closed_size = 0.0

    for entry in entries:
        if entry.is_closing:
            closed_size += entry.size
        else:
            open_size += entry.size

    remaining_size = max(open_size - closed_size, 0.0)

    # FIFO allocation over opening lots
    closed_remaining = closed_size
    remaining_weighted_price = 0.0
    remaining_leveraged_capital = 0.0

    for entry in entries:
        if entry.is_closing:
            continue
        if closed_remaining <= 0:
            live = entry.size
        elif closed_remaining < entry.size:
            live = entry.size - closed_remaining
            closed_remaining = 0.0
        else:
            closed_remaining -= entry.size
            continue
        remaining_weighted_price += live * entry.entry_price
        remaining_leveraged_capital += live * entry.leverage

    if remaining_size > 0:
        average_entry_price = remaining_weighted_price / remaining_size
        average_leverage = abs(remaining_leveraged_capital / remaining_size)
    else:
        average_entry_price = 0.0
        average_leverage = 1.0

    return ChainState(
        open_size=open_size,
        closed_size=closed_size,
        remaining_size=remaining_size,
        average_entry_price=average_entry_price,
        average_leverage=average_leverage,
        realized_pnl=total_realized_pnl(entries, direction),
    )


def pre_close_average(entries: Sequence[Entry], index: int) -> float:
    """Size-weighted average price of every opening entry before `index`."""
    size = 0.0
    weighted = 0.0
    for entry in entries[:index]:
        if entry.is_opening:
            size += entry.size
            weighted += entry.size * entry.entry_price
    return weighted / size if size > 0 else 0.0


def realized_pnl_for(entries: Sequence[Entry], index: int, direction: str) -> tuple[float, float]:
    """
    Realized P&L locked in by the subtract entry at `index`.

    Measured against the pre-close average (all opening entries before it),
    scaled by the closing entry's own leverage.

    Returns:
        (pnl_usd, pnl_pct); (0, 0) for opening entries or an empty history.
    """
    entry = entries[index]
    if not entry.is_closing:
        return 0.0, 0.0

    average = pre_close_average(entries, index)
    if average <= 0:
        return 0.0, 0.0

    move = (entry.entry_price - average) / average
    mult = direction_multiplier(direction)
    pnl_pct = move * 100 * mult * entry.leverage
    pnl_usd = entry.size * move * mult * entry.leverage
    return pnl_usd, pnl_pct


def total_realized_pnl(entries: Sequence[Entry], direction: str) -> float:
    return sum(
        realized_pnl_for(entries, i, direction)[0]
        for i, entry in enumerate(entries)
        if entry.is_closing
    )
