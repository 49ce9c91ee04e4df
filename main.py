"""
Perpulator — Main Event Loop

Architecture:
  - asyncio tasks: (1) CoinGecko price feed, (2) periodic status log
  - FastAPI dashboard served by uvicorn in a background thread
  - Feed writes the price buffer; the API reads it on every request

The calculation engine is pure and is called directly by the API handlers;
nothing here owns position state beyond the JSON store.
"""
import asyncio
import signal
import threading

from loguru import logger

from config import (
    DASHBOARD_HOST, DASHBOARD_PORT, LOG_LEVEL, LOG_PATH,
    STATUS_INTERVAL, STORAGE_PATH,
)
from data.buffer import buffer
from data.feed import feed, start_feed
from storage.position_store import store

logger.remove()
logger.add(
    LOG_PATH,
    level=LOG_LEVEL,
    rotation='50 MB',
    retention='7 days',
    format='{time:HH:mm:ss.SSS} | {level:<7} | {message}',
)
logger.add(
    lambda msg: print(msg, end=''),
    level='INFO',
    format='{time:HH:mm:ss} | {level:<7} | {message}',
)


# ── Status ────────────────────────────────────────────────────────────
async def log_status():
    """Periodic one-line summary of feed health and tracked prices."""
    while True:
        await asyncio.sleep(STATUS_INTERVAL)
        status = feed.status()
        prices = ' | '.join(
            f"{sym} ${p['price']:,.2f} ({p['change24h']:+.2f}%)"
            for sym, p in buffer.snapshot().items()
        )
        logger.info(
            f"[STATUS] Feed {'UP' if status['connected'] else 'DOWN'} | "
            f"{prices or 'no prices yet'}"
        )


def _track_saved_symbols():
    """Start polling every symbol that has a saved position."""
    positions = store.load_all()
    active = store.load_active()
    if active:
        positions.append(active)
    for position in positions:
        feed.track(position.symbol)
    logger.info(f'[MAIN] {len(positions)} stored position(s) in {STORAGE_PATH}')


# ── Graceful Shutdown ─────────────────────────────────────────────────
def _handle_shutdown(loop: asyncio.AbstractEventLoop):
    logger.warning('[MAIN] Shutdown signal received — stopping...')
    for task in asyncio.all_tasks(loop):
        task.cancel()


# ── Dashboard ─────────────────────────────────────────────────────────
def _start_dashboard_server(host: str, port: int):
    """Start the FastAPI server in a background thread."""
    import uvicorn
    from dashboard.server import app
    uvicorn.run(app, host=host, port=port, log_level='warning')


async def main():
    logger.info('Starting Perpulator')
    _track_saved_symbols()

    logger.info(f'🖥  Dashboard starting at http://localhost:{DASHBOARD_PORT}')
    threading.Thread(
        target=_start_dashboard_server,
        args=(DASHBOARD_HOST, DASHBOARD_PORT),
        daemon=True,
    ).start()

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT,  lambda: _handle_shutdown(loop))
    loop.add_signal_handler(signal.SIGTERM, lambda: _handle_shutdown(loop))

    try:
        await asyncio.gather(
            start_feed(),
            log_status(),
        )
    except asyncio.CancelledError:
        logger.info('[MAIN] Stopped')


if __name__ == '__main__':
    asyncio.run(main())
