"""
Chain Report — per-step table of a position's entry chain.

One row per entry: what the position looked like right after that entry
(average price, size, risk/reward, liquidation, P&L at the given price)
plus the realized P&L the entry locked in.
"""
from pathlib import Path
from typing import Optional

import pandas as pd
from loguru import logger

from config import EXPORT_DIR
from engine.models import Position
from engine.projection import step_metrics

REPORT_COLUMNS = [
    'step', 'time', 'kind', 'entry_price', 'size', 'leverage',
    'remaining_size', 'average_entry_price', 'average_leverage',
    'stop_loss', 'take_profit',
    'risk_amount', 'reward_amount', 'risk_reward_ratio', 'liquidation_price',
    'pnl', 'pnl_percentage',
    'step_realized_pnl', 'step_realized_pnl_pct', 'realized_pnl',
]


def chain_frame(position: Position, current_price: Optional[float] = None) -> pd.DataFrame:
    df = pd.DataFrame(step_metrics(position, current_price))
    df['time'] = pd.to_datetime(df['timestamp'], unit='s', utc=True)
    return df[REPORT_COLUMNS].set_index('step')


def summarize(position: Position, current_price: Optional[float] = None) -> dict:
    """Headline numbers of the chain (last step + totals)."""
    df = chain_frame(position, current_price)
    last = df.iloc[-1]
    return {
        'symbol':          position.symbol,
        'direction':       position.direction,
        'entries':         len(df),
        'adds':            int((df['kind'] == 'add').sum()),
        'reduces':         int((df['kind'] == 'subtract').sum()),
        'remaining_size':  float(last['remaining_size']),
        'average_entry':   float(last['average_entry_price']),
        'realized_pnl':    round(float(df['step_realized_pnl'].sum()), 2),
        'max_notional':    round(float((df['remaining_size'] * df['average_leverage']).max()), 2),
    }


def export_chain(
    position: Position,
    path: Optional[str] = None,
    current_price: Optional[float] = None,
) -> Path:
    """Write the chain table as CSV. Defaults to EXPORT_DIR/<symbol>_<id>.csv."""
    out = Path(path) if path else Path(EXPORT_DIR) / f'{position.symbol}_{position.id}.csv'
    out.parent.mkdir(parents=True, exist_ok=True)
    chain_frame(position, current_price).to_csv(out)
    logger.info(f'[REPORT] Exported {len(position.entries)} steps of {position.symbol} to {out}')
    return out
