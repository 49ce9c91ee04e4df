"""
CoinGecko Price Feed — polls spot prices for the tracked symbols.

Polls `simple/price` every POLL_INTERVAL seconds and populates the price
buffer. Upstream quotes are cached for PRICE_CACHE_SECONDS per symbol;
when the API fails (rate limits are common) the last cached response is
served instead, and only a failure with nothing cached marks the feed
disconnected.

CoinGecko docs: https://docs.coingecko.com/reference/simple-price
"""
import asyncio
import time
from typing import Optional

import aiohttp
import requests
from loguru import logger

from config import (
    PRICE_API_URL, POLL_INTERVAL, PRICE_CACHE_SECONDS,
    REQUEST_TIMEOUT, TRACKED_SYMBOLS, SYMBOL_TO_COINGECKO_ID,
)
from data.buffer import buffer, LivePrice, PriceBuffer


class PriceFetchError(Exception):
    """Upstream price API failed and no cached prices were available."""


# ── Symbol mapping ────────────────────────────────────────────────────
def to_coingecko_id(symbol: str) -> str:
    return SYMBOL_TO_COINGECKO_ID.get(symbol.upper(), symbol.lower())


def supported_symbols() -> list[str]:
    return list(SYMBOL_TO_COINGECKO_ID)


def _query_params(symbols: list[str], include_7d: bool = False) -> dict:
    params = {
        'ids':                 ','.join(to_coingecko_id(s) for s in symbols),
        'vs_currencies':       'usd',
        'include_market_cap':  'true',
        'include_24hr_vol':    'true',
        'include_24hr_change': 'true',
    }
    if include_7d:
        params['include_7d_change'] = 'true'
    return params


def parse_prices(data: dict, symbols: list[str]) -> dict[str, dict]:
    """
    CoinGecko payload → { 'BTC': {price, change24h, marketCap, volume24h}, ... }
    Symbols missing from the payload are left out.
    """
    result = {}
    for symbol in symbols:
        quote = data.get(to_coingecko_id(symbol))
        if not quote or quote.get('usd') is None:
            continue
        result[symbol.upper()] = {
            'price':     float(quote['usd']),
            'change24h': quote.get('usd_24h_change') or 0.0,
            'change7d':  quote.get('usd_7d_change') or 0.0,
            'marketCap': quote.get('usd_market_cap') or 0.0,
            'volume24h': quote.get('usd_24h_vol') or 0.0,
        }
    return result


# ── Response cache ────────────────────────────────────────────────────
# symbol → (fetched_at, parsed quote); bounded by the symbols ever polled
_cache: dict[str, tuple[float, dict]] = {}


def clear_cache():
    _cache.clear()


async def fetch_prices(session: aiohttp.ClientSession, symbols: list[str]) -> dict[str, dict]:
    """
    Fetch prices for `symbols`, honouring the per-symbol response cache.
    Only symbols without a fresh cached quote are requested upstream.

    Raises:
        PriceFetchError: the API failed and nothing is cached for these symbols.
    """
    wanted = [s.upper() for s in symbols]
    if not wanted:
        return {}

    now = time.time()
    fresh = {
        s: _cache[s][1] for s in wanted
        if s in _cache and now - _cache[s][0] < PRICE_CACHE_SECONDS
    }
    missing = [s for s in wanted if s not in fresh]
    if not missing:
        return fresh

    url = f'{PRICE_API_URL}/simple/price'
    try:
        async with session.get(
            url,
            params=_query_params(missing),
            headers={'Accept': 'application/json'},
            timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT),
        ) as resp:
            if resp.status != 200:
                raise PriceFetchError(f'API error: {resp.status} {resp.reason}')
            data = await resp.json()
    except (PriceFetchError, aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.error(f'[FEED] CoinGecko request failed: {e}')
        stale = {s: _cache[s][1] for s in missing if s in _cache}
        if stale or fresh:
            logger.info('[FEED] API failed, returning cached prices')
            return {**fresh, **stale}
        raise PriceFetchError(str(e) or type(e).__name__) from e

    result = parse_prices(data, missing)
    fetched_at = time.time()
    for symbol, quote in result.items():
        _cache[symbol] = (fetched_at, quote)
    return {**fresh, **result}


def get_price(symbol: str) -> Optional[LivePrice]:
    """One-shot synchronous lookup (scripts, CLI). None on any failure."""
    try:
        resp = requests.get(
            f'{PRICE_API_URL}/simple/price',
            params=_query_params([symbol], include_7d=True),
            headers={'Accept': 'application/json'},
            timeout=REQUEST_TIMEOUT,
        )
        resp.raise_for_status()
        quote = parse_prices(resp.json(), [symbol]).get(symbol.upper())
    except (requests.RequestException, ValueError) as e:
        logger.error(f'[FEED] Error fetching price for {symbol}: {e}')
        return None

    if not quote:
        return None
    return LivePrice(symbol=symbol.upper(), price=quote['price'], change24h=quote['change24h'])


# ══════════════════════════════════════════════════════════════════════
# Poller
# ══════════════════════════════════════════════════════════════════════
class PriceFeed:
    """
    Periodic poller feeding the price buffer.
    Exposes connection status plus retry() for the dashboard.
    """

    def __init__(
        self,
        symbols: Optional[list[str]] = None,
        interval: float = POLL_INTERVAL,
        price_buffer: PriceBuffer = buffer,
    ):
        self.tracked: set[str] = {s.upper() for s in (symbols if symbols is not None else TRACKED_SYMBOLS)}
        self.interval = interval
        self.buffer = price_buffer
        self.connected = True
        self.last_error: Optional[str] = None
        self.last_update = 0.0
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._wake: Optional[asyncio.Event] = None

    def track(self, symbol: str) -> bool:
        """
        Start polling `symbol`. Only symbols with a known CoinGecko id are
        polled, so client input can't grow the shared request.
        """
        symbol = (symbol or '').strip().upper()
        if symbol not in SYMBOL_TO_COINGECKO_ID:
            logger.debug(f'[FEED] Not tracking unsupported symbol {symbol!r}')
            return False
        if symbol not in self.tracked:
            self.tracked.add(symbol)
            logger.info(f'[FEED] Tracking {symbol}')
        return True

    async def poll_once(self, session: aiohttp.ClientSession) -> dict[str, dict]:
        symbols = sorted(self.tracked)
        if not symbols:
            return {}
        try:
            prices = await fetch_prices(session, symbols)
        except PriceFetchError as e:
            if self.connected:
                logger.warning(f'[FEED] Disconnected: {e}')
            self.connected = False
            self.last_error = 'Failed to fetch prices'
            return {}

        for symbol, quote in prices.items():
            self.buffer.update(symbol, quote['price'], quote['change24h'])

        if not self.connected:
            logger.info('[FEED] Reconnected')
        self.connected = True
        self.last_error = None
        self.last_update = time.time()
        return prices

    def retry(self):
        """Poll immediately instead of waiting for the next interval. Thread-safe."""
        if self._loop and self._wake:
            self._loop.call_soon_threadsafe(self._wake.set)

    async def run(self):
        self._loop = asyncio.get_running_loop()
        self._wake = asyncio.Event()
        logger.info(f'[FEED] Polling {sorted(self.tracked)} every {self.interval}s')

        async with aiohttp.ClientSession() as session:
            while True:
                await self.poll_once(session)
                try:
                    await asyncio.wait_for(self._wake.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass
                self._wake.clear()

    def status(self) -> dict:
        return {
            'connected':   self.connected,
            'error':       self.last_error,
            'symbols':     sorted(self.tracked),
            'last_update': self.last_update,
            'interval':    self.interval,
        }


# Global singleton
feed = PriceFeed()


# ── Entry point ────────────────────────────────────────────────────────
async def start_feed():
    await feed.run()
