import pytest

from data import feed as feed_module
from data.buffer import buffer
from engine.models import Position
from storage.position_store import PositionStore


@pytest.fixture(autouse=True)
def _clean_prices():
    buffer.clear()
    feed_module.clear_cache()
    yield
    buffer.clear()
    feed_module.clear_cache()


@pytest.fixture
def short_btc():
    """Short 1500 @ 102500, 7x, SL 104500, TP 90415."""
    return Position.open('BTC', 'short', 102500, 1500, 7, stop_loss=104500, take_profit=90415)


@pytest.fixture
def store(tmp_path):
    return PositionStore(str(tmp_path / 'positions.json'))
