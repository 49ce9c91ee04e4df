"""
Perpulator — Central Configuration
All limits, polling cadence, storage paths and env vars for the position calculator.
"""
import os
from dotenv import load_dotenv

load_dotenv()

# ── Market Data ──────────────────────────────────────────────────────
PRICE_API_URL       = os.getenv('PRICE_API_URL', 'https://api.coingecko.com/api/v3')
POLL_INTERVAL       = float(os.getenv('POLL_INTERVAL', '3.0'))          # seconds between price polls
PRICE_CACHE_SECONDS = float(os.getenv('PRICE_CACHE_SECONDS', '30'))     # upstream response cache
PRICE_STALE_SECONDS = float(os.getenv('PRICE_STALE_SECONDS', '30'))
REQUEST_TIMEOUT     = float(os.getenv('REQUEST_TIMEOUT', '10'))
TRACKED_SYMBOLS     = [s for s in os.getenv('TRACKED_SYMBOLS', 'BTC,ETH').split(',') if s]

# Symbol → CoinGecko id. Unknown symbols fall back to the lowercased symbol.
SYMBOL_TO_COINGECKO_ID = {
    'BTC':   'bitcoin',
    'ETH':   'ethereum',
    'BNB':   'binancecoin',
    'XRP':   'ripple',
    'ADA':   'cardano',
    'SOL':   'solana',
    'DOGE':  'dogecoin',
    'AVAX':  'avalanche-2',
    'MATIC': 'matic-network',
    'LINK':  'chainlink',
    'UNI':   'uniswap',
    'XLM':   'stellar',
    'ATOM':  'cosmos',
    'APE':   'apecoin',
    'SHIB':  'shiba-inu',
    'FTM':   'fantom',
    'NEAR':  'near',
    'SAND':  'the-sandbox',
    'MANA':  'decentraland',
    'GALA':  'gala',
}

# ── Input Limits ─────────────────────────────────────────────────────
MIN_LEVERAGE        = float(os.getenv('MIN_LEVERAGE', '1'))
MAX_LEVERAGE        = float(os.getenv('MAX_LEVERAGE', '50'))
MAX_PRICE           = float(os.getenv('MAX_PRICE', '1000000'))            # $1M
MAX_POSITION_SIZE   = float(os.getenv('MAX_POSITION_SIZE', '1000000'))    # $1M margin
MAX_ADJUSTMENT_SIZE = float(os.getenv('MAX_ADJUSTMENT_SIZE', '10000000'))

# ── Chain Policy ─────────────────────────────────────────────────────
# Aggregation always clamps remaining size at zero; this controls whether a
# proposed reduce larger than the open size is rejected before it is appended.
REJECT_OVER_CLOSE = os.getenv('REJECT_OVER_CLOSE', 'true').lower() == 'true'

# ── Storage ──────────────────────────────────────────────────────────
STORAGE_PATH = os.getenv('STORAGE_PATH', 'data/positions.json')
EXPORT_DIR   = os.getenv('EXPORT_DIR', 'data/exports')

# ── Dashboard ────────────────────────────────────────────────────────
DASHBOARD_HOST = os.getenv('DASHBOARD_HOST', '0.0.0.0')
DASHBOARD_PORT = int(os.getenv('DASHBOARD_PORT', '8081'))

# ── System ──────────────────────────────────────────────────────────
LOG_LEVEL       = os.getenv('LOG_LEVEL', 'INFO')
LOG_PATH        = os.getenv('LOG_PATH', 'logs/perpulator.log')
STATUS_INTERVAL = float(os.getenv('STATUS_INTERVAL', '60'))
