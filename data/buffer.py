"""
Price Buffer — latest market price per symbol.

Written by the price feed, read by the dashboard and the engine callers.
Only the newest value per symbol is kept; a missing symbol simply has no
price (P&L is then omitted), it is never an error.
"""
import time
from dataclasses import dataclass, field
from typing import Optional

from config import PRICE_STALE_SECONDS


@dataclass
class LivePrice:
    """Latest quote for one symbol."""
    symbol:    str
    price:     float
    change24h: float = 0.0
    updated:   float = field(default_factory=time.time)

    def is_stale(self, max_age: float = PRICE_STALE_SECONDS) -> bool:
        """True if the price hasn't updated in >max_age seconds."""
        return (time.time() - self.updated) > max_age

    def to_dict(self) -> dict:
        return {
            'symbol':    self.symbol,
            'price':     self.price,
            'change24h': self.change24h,
            'updated':   self.updated,
            'stale':     self.is_stale(),
        }


class PriceBuffer:
    """
    Central price store for all tracked symbols.
    Plain dict writes; single-key assignment is atomic under the GIL, so the
    uvicorn thread can read while the feed loop writes.
    """

    def __init__(self):
        self.prices: dict[str, LivePrice] = {}

    def update(self, symbol: str, price: float, change24h: float = 0.0):
        if price is None or price <= 0:
            return
        symbol = symbol.upper()
        self.prices[symbol] = LivePrice(symbol=symbol, price=float(price), change24h=float(change24h or 0.0))

    def get(self, symbol: str) -> Optional[LivePrice]:
        return self.prices.get(symbol.upper())

    def get_price(self, symbol: str) -> Optional[float]:
        live = self.get(symbol)
        return live.price if live else None

    def is_stale(self, symbol: str) -> bool:
        live = self.get(symbol)
        return live is None or live.is_stale()

    def snapshot(self, symbols: Optional[list[str]] = None) -> dict:
        """Return {symbol: price dict} for logging/dashboard."""
        wanted = [s.upper() for s in symbols] if symbols else list(self.prices)
        return {s: self.prices[s].to_dict() for s in wanted if s in self.prices}

    def clear(self):
        self.prices.clear()


# Global singleton
buffer = PriceBuffer()
