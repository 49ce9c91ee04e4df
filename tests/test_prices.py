import asyncio
import time

import pytest
import requests

from data import feed as feed_module
from data.buffer import PriceBuffer, LivePrice
from data.feed import PriceFeed, PriceFetchError, fetch_prices, get_price, parse_prices, to_coingecko_id

PAYLOAD = {
    'bitcoin':  {'usd': 101000.0, 'usd_24h_change': 1.25, 'usd_market_cap': 2e12, 'usd_24h_vol': 3e10},
    'ethereum': {'usd': 3500.5, 'usd_24h_change': -0.5},
}


class FakeResponse:
    def __init__(self, status=200, payload=None):
        self.status = status
        self.reason = 'OK' if status == 200 else 'Too Many Requests'
        self._payload = payload or {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def json(self):
        return self._payload


class FakeSession:
    def __init__(self, status=200, payload=PAYLOAD):
        self.status = status
        self.payload = payload
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        return FakeResponse(self.status, self.payload)


# ── Buffer ────────────────────────────────────────────────────────────
def test_buffer_update_and_lookup():
    buf = PriceBuffer()
    buf.update('btc', 101000, 1.25)
    assert buf.get_price('BTC') == 101000
    assert buf.get('btc').change24h == 1.25
    assert buf.get_price('ETH') is None
    assert buf.is_stale('ETH')


def test_buffer_ignores_non_positive_prices():
    buf = PriceBuffer()
    buf.update('BTC', 0)
    buf.update('BTC', None)
    assert buf.get('BTC') is None


def test_buffer_snapshot_filters_symbols():
    buf = PriceBuffer()
    buf.update('BTC', 1)
    buf.update('ETH', 2)
    assert set(buf.snapshot()) == {'BTC', 'ETH'}
    assert set(buf.snapshot(['eth', 'SOL'])) == {'ETH'}


def test_live_price_staleness():
    assert LivePrice('BTC', 1.0, updated=time.time() - 120).is_stale(max_age=30)
    assert not LivePrice('BTC', 1.0).is_stale(max_age=30)


# ── Parsing ───────────────────────────────────────────────────────────
def test_symbol_mapping():
    assert to_coingecko_id('btc') == 'bitcoin'
    assert to_coingecko_id('AVAX') == 'avalanche-2'
    assert to_coingecko_id('PEPE') == 'pepe'


def test_parse_prices_skips_missing_symbols():
    parsed = parse_prices(PAYLOAD, ['BTC', 'eth', 'SOL'])
    assert set(parsed) == {'BTC', 'ETH'}
    assert parsed['BTC']['price'] == 101000.0
    assert parsed['ETH']['marketCap'] == 0.0


# ── Async fetch + cache ───────────────────────────────────────────────
def test_fetch_prices_caches_responses():
    session = FakeSession()
    first = asyncio.run(fetch_prices(session, ['BTC', 'ETH']))
    second = asyncio.run(fetch_prices(session, ['ETH', 'BTC']))
    assert first == second
    assert len(session.calls) == 1
    assert session.calls[0][1]['params']['ids'] == 'bitcoin,ethereum'


def test_fetch_prices_only_requests_uncached_symbols():
    session = FakeSession()
    asyncio.run(fetch_prices(session, ['BTC']))
    result = asyncio.run(fetch_prices(session, ['BTC', 'ETH']))
    assert set(result) == {'BTC', 'ETH'}
    assert session.calls[1][1]['params']['ids'] == 'ethereum'
    assert set(feed_module._cache) == {'BTC', 'ETH'}


def test_fetch_prices_falls_back_to_cache(monkeypatch):
    asyncio.run(fetch_prices(FakeSession(), ['BTC']))
    monkeypatch.setattr(feed_module, 'PRICE_CACHE_SECONDS', -1)
    result = asyncio.run(fetch_prices(FakeSession(status=429), ['BTC']))
    assert result['BTC']['price'] == 101000.0


def test_fetch_prices_without_cache_raises():
    with pytest.raises(PriceFetchError):
        asyncio.run(fetch_prices(FakeSession(status=500), ['BTC']))


def test_fetch_prices_no_symbols():
    session = FakeSession()
    assert asyncio.run(fetch_prices(session, [])) == {}
    assert session.calls == []


# ── Poller ────────────────────────────────────────────────────────────
def test_poll_once_updates_buffer_and_status():
    buf = PriceBuffer()
    poller = PriceFeed(symbols=['BTC', 'ETH'], price_buffer=buf)
    asyncio.run(poller.poll_once(FakeSession()))
    assert buf.get_price('BTC') == 101000.0
    assert poller.status()['connected'] is True
    assert poller.status()['error'] is None


def test_poll_failure_marks_disconnected_then_recovers():
    buf = PriceBuffer()
    poller = PriceFeed(symbols=['BTC'], price_buffer=buf)
    asyncio.run(poller.poll_once(FakeSession(status=503)))
    assert poller.connected is False
    assert poller.last_error == 'Failed to fetch prices'
    assert buf.get_price('BTC') is None

    asyncio.run(poller.poll_once(FakeSession()))
    assert poller.connected is True
    assert buf.get_price('BTC') == 101000.0


def test_track_adds_symbols():
    poller = PriceFeed(symbols=[])
    assert poller.track('sol') is True
    assert poller.status()['symbols'] == ['SOL']


@pytest.mark.parametrize('symbol', ['', '   ', 'NOTACOIN', 'A1', None])
def test_track_ignores_unsupported_symbols(symbol):
    poller = PriceFeed(symbols=['BTC'])
    assert poller.track(symbol) is False
    assert poller.status()['symbols'] == ['BTC']


def test_retry_before_run_is_noop():
    PriceFeed(symbols=['BTC']).retry()


# ── Sync lookup ───────────────────────────────────────────────────────
class _SyncResponse:
    def __init__(self, payload):
        self._payload = payload

    def raise_for_status(self):
        pass

    def json(self):
        return self._payload


def test_get_price(monkeypatch):
    monkeypatch.setattr(requests, 'get', lambda *a, **kw: _SyncResponse(PAYLOAD))
    live = get_price('btc')
    assert live.symbol == 'BTC'
    assert live.price == 101000.0


def test_get_price_failure_returns_none(monkeypatch):
    def boom(*a, **kw):
        raise requests.ConnectionError('offline')

    monkeypatch.setattr(requests, 'get', boom)
    assert get_price('BTC') is None


def test_get_price_unknown_symbol(monkeypatch):
    monkeypatch.setattr(requests, 'get', lambda *a, **kw: _SyncResponse({}))
    assert get_price('NOPE') is None
