"""
Projection / Adjustment Evaluator — previews and validated edits of a chain.

project()  — metrics the chain WOULD have with one more entry (no mutation)
commit()   — the same checks, then the entry is appended
evaluate() — metrics of the chain as it stands

Preview and commit share one code path, so a projected average price and
size always equal what the committed chain aggregates to.

Stop loss / take profit resolution: the most recent entry carrying an
override wins, otherwise the position default applies. A proposed entry is
the most recent entry of the projected chain, so its overrides take effect.
"""
from typing import Optional, Sequence

from loguru import logger

import config
from engine.models import (
    Entry, Position, ChainState, CalculatedMetrics,
    INITIAL, ADD, SUBTRACT,
)
from engine.chain import aggregate, realized_pnl_for
from engine.metrics import (
    risk_amount, reward_amount, risk_reward_ratio,
    calculate_pnl, liquidation_price,
)
from engine.validation import FieldError, ValidationFailed, validate_levels

# Float slack when comparing a reduce against the open size
_SIZE_EPSILON = 1e-9


# ── Building adjustments ─────────────────────────────────────────────
def build_adjustment(
    position: Position,
    kind: str,
    entry_price: float,
    size: float,
    leverage: Optional[float] = None,
    stop_loss: Optional[float] = None,
    take_profit: Optional[float] = None,
) -> Entry:
    """
    Turn adjustment inputs into an Entry.

    An add needs an explicit leverage. A reduce closes existing exposure and
    always takes the chain's current average leverage; any leverage passed
    for it is ignored.
    """
    if kind not in (ADD, SUBTRACT):
        raise ValueError(f'Adjustments are add or subtract, got {kind!r}')

    errors: list[FieldError] = []
    if entry_price is None or entry_price <= 0:
        errors.append(FieldError('newEntryPrice', 'New entry price must be positive'))
    if size is None or size <= 0:
        errors.append(FieldError('adjustmentSize', 'Adjustment size must be positive'))

    if kind == SUBTRACT:
        leverage = aggregate(position.entries, position.direction).average_leverage
    elif leverage is None:
        errors.append(FieldError('leverage', 'Leverage is required when adding to a position'))
    elif not config.MIN_LEVERAGE <= leverage <= config.MAX_LEVERAGE:
        errors.append(FieldError(
            'leverage',
            f'Leverage must be between {config.MIN_LEVERAGE:g}x and {config.MAX_LEVERAGE:g}x',
        ))

    if errors:
        raise ValidationFailed(errors)

    return Entry(
        entry_price=entry_price,
        size=size,
        leverage=leverage,
        kind=kind,
        stop_loss=stop_loss,
        take_profit=take_profit,
    )


# ── Metrics ──────────────────────────────────────────────────────────
def chain_levels(position: Position, entries: Sequence[Entry]) -> tuple[Optional[float], Optional[float]]:
    """Effective (stop_loss, take_profit) for a chain."""
    stop_loss = position.stop_loss
    take_profit = position.take_profit
    for entry in reversed(entries):
        if entry.stop_loss is not None:
            stop_loss = entry.stop_loss
            break
    for entry in reversed(entries):
        if entry.take_profit is not None:
            take_profit = entry.take_profit
            break
    return stop_loss, take_profit


def _metrics(
    state: ChainState,
    direction: str,
    stop_loss: Optional[float],
    take_profit: Optional[float],
    current_price: Optional[float],
) -> CalculatedMetrics:
    avg = state.average_entry_price
    size = state.remaining_size
    lev = state.average_leverage

    risk = risk_amount(avg, stop_loss, size, lev, direction)
    reward = reward_amount(avg, take_profit, size, lev, direction)

    pnl = pnl_pct = None
    if current_price:
        pnl, pnl_pct = calculate_pnl(avg, current_price, size, lev, direction)

    liq = liquidation_price(avg, lev, direction)

    return CalculatedMetrics(
        average_entry_price=avg,
        total_size=size,
        average_leverage=lev,
        risk_amount=risk,
        reward_amount=reward,
        risk_reward_ratio=risk_reward_ratio(risk, reward),
        liquidation_price=liq if liq > 0 else None,
        pnl=pnl,
        pnl_percentage=pnl_pct,
        realized_pnl=state.realized_pnl,
    )


def evaluate(position: Position, current_price: Optional[float] = None) -> CalculatedMetrics:
    """Metrics of the committed chain. Never validates; display only."""
    state = aggregate(position.entries, position.direction)
    stop_loss, take_profit = chain_levels(position, position.entries)
    return _metrics(state, position.direction, stop_loss, take_profit, current_price)


def _check_chain(position: Position, entries: Sequence[Entry]) -> ChainState:
    """Validate a candidate chain; return its state when acceptable."""
    state = aggregate(entries, position.direction)
    errors: list[FieldError] = []

    if config.REJECT_OVER_CLOSE:
        # Each reduce must be covered by lots opened before it
        open_before = 0.0
        for step, entry in enumerate(entries):
            if entry.is_opening:
                open_before += entry.size
                continue
            if entry.size > open_before + _SIZE_EPSILON:
                errors.append(FieldError(
                    'adjustmentSize',
                    f'Reduce at step {step} (${entry.size:,.2f}) exceeds the open size '
                    f'at that point (${max(open_before, 0.0):,.2f})',
                ))
                break
            open_before -= entry.size

    if state.remaining_size > 0:
        stop_loss, take_profit = chain_levels(position, entries)
        errors += validate_levels(position.direction, state.average_entry_price, stop_loss, take_profit)

    if errors:
        logger.debug(f'[ENGINE] {position.symbol} chain rejected: {[e.message for e in errors]}')
        raise ValidationFailed(errors)
    return state


def project(
    position: Position,
    proposed: Entry,
    current_price: Optional[float] = None,
) -> CalculatedMetrics:
    """
    Metrics after appending `proposed`, without touching `position`.

    Raises:
        ValidationFailed: stop/target on the wrong side of the projected
            average, or a reduce larger than the open size.
    """
    if proposed.kind == INITIAL:
        raise ValueError('Only add or subtract entries can be projected')

    entries = position.entries + (proposed,)
    state = _check_chain(position, entries)
    stop_loss, take_profit = chain_levels(position, entries)
    return _metrics(state, position.direction, stop_loss, take_profit, current_price)


def commit(position: Position, proposed: Entry) -> Position:
    """Validate exactly like project() and append the entry."""
    project(position, proposed)
    return position.append(proposed)


def edit_entry(position: Position, index: int, **changes) -> Position:
    """Edit numeric fields of one entry; the edited chain must stay valid."""
    errors = [
        FieldError(name, f'{name} must be positive')
        for name in ('entry_price', 'size')
        if name in changes and (changes[name] is None or changes[name] <= 0)
    ]
    if 'leverage' in changes and not (
        changes['leverage'] is not None
        and config.MIN_LEVERAGE <= changes['leverage'] <= config.MAX_LEVERAGE
    ):
        errors.append(FieldError('leverage', f'Leverage must be between '
                                             f'{config.MIN_LEVERAGE:g}x and {config.MAX_LEVERAGE:g}x'))
    if errors:
        raise ValidationFailed(errors)

    edited = position.replace_entry(index, **changes)
    _check_chain(edited, edited.entries)
    return edited


def remove_entry(position: Position, index: int) -> Position:
    """Drop a non-initial entry; later reduces must still be covered."""
    trimmed = position.remove_entry(index)
    _check_chain(trimmed, trimmed.entries)
    return trimmed


def update_levels(
    position: Position,
    stop_loss: Optional[float] = None,
    take_profit: Optional[float] = None,
) -> Position:
    """Replace the position-level stop loss / take profit defaults."""
    updated = position.with_levels(stop_loss=stop_loss, take_profit=take_profit)
    _check_chain(updated, updated.entries)
    return updated


# ── Per-step table ───────────────────────────────────────────────────
def step_metrics(position: Position, current_price: Optional[float] = None) -> list[dict]:
    """
    Metrics after each entry of the chain, oldest first.
    Each row also carries the realized P&L locked in by that step.
    """
    rows = []
    entries = position.entries
    for i, entry in enumerate(entries):
        prefix = entries[:i + 1]
        state = aggregate(prefix, position.direction)
        stop_loss, take_profit = chain_levels(position, prefix)
        m = _metrics(state, position.direction, stop_loss, take_profit, current_price)
        step_pnl, step_pnl_pct = realized_pnl_for(entries, i, position.direction)
        rows.append({
            'step':                i,
            'kind':                entry.kind,
            'timestamp':           entry.timestamp,
            'entry_price':         entry.entry_price,
            'size':                entry.size,
            'leverage':            entry.leverage,
            'stop_loss':           stop_loss,
            'take_profit':         take_profit,
            'remaining_size':      m.total_size,
            'average_entry_price': m.average_entry_price,
            'average_leverage':    m.average_leverage,
            'risk_amount':         m.risk_amount,
            'reward_amount':       m.reward_amount,
            'risk_reward_ratio':   m.risk_reward_ratio,
            'liquidation_price':   m.liquidation_price,
            'pnl':                 m.pnl,
            'pnl_percentage':      m.pnl_percentage,
            'step_realized_pnl':   step_pnl,
            'step_realized_pnl_pct': step_pnl_pct,
            'realized_pnl':        m.realized_pnl,
        })
    return rows
