#!/usr/bin/env python3
from typing import Dict, Union

# --- ANSI Color Codes ---
C_GREEN = '\033[92m'
C_RED = '\033[91m'
C_YELLOW = '\033[93m'
C_BLUE = '\033[94m'
C_RESET = '\033[0m'

# --- API Configuration ---
COINGECKO_API_BASE_URL = 'https://api.coingecko.com/api/v3'
DEFAULT_ETH_RPC_URL = 'https://cloudflare-eth.com'
DEFAULT_SOL_RPC_URL = 'https://api.mainnet-beta.solana.com'
DEFAULT_BTC_API_BASE_URL = 'https://blockstream.info/api'
DEFAULT_TONCENTER_BASE_URL = 'https://toncenter.com/api/v2'

# --- Environment Variable Names ---
TELEGRAM_BOT_TOKEN_ENV_VAR = 'TELEGRAM_BOT_TOKEN'
COINGECKO_API_KEY_ENV_VAR = 'COINGECKO_API_KEY'
APP_URL_ENV_VAR = 'APP_URL'
DB_PATH_ENV_VAR = 'DB_PATH'
OPPORTUNITIES_PATH_ENV_VAR = 'OPPORTUNITIES_PATH'
ENABLE_JOBS_ENV_VAR = 'ENABLE_JOBS'
ETH_RPC_URL_ENV_VAR = 'ETH_RPC_URL'
SOL_RPC_URL_ENV_VAR = 'SOL_RPC_URL'
BTC_API_BASE_URL_ENV_VAR = 'BTC_API_BASE_URL'
TONCENTER_BASE_URL_ENV_VAR = 'TONCENTER_BASE_URL'
TONCENTER_API_KEY_ENV_VAR = 'TONCENTER_API_KEY'
TRACKED_ASSETS_ENV_VAR = 'TRACKED_ASSETS'
LOG_LEVEL_ENV_VAR = 'LOG_LEVEL'

# --- Chain Configuration ---
# decimals is the scaling exponent between the smallest unit and the native asset.
CHAIN_CONFIG: Dict[str, Dict[str, Union[str, int]]] = {
    'evm': {
        'name': 'Ethereum',
        'nativeSymbol': 'ETH',
        'decimals': 18,
        'smallestUnit': 'wei',
    },
    'btc': {
        'name': 'Bitcoin',
        'nativeSymbol': 'BTC',
        'decimals': 8,
        'smallestUnit': 'satoshi',
    },
    'sol': {
        'name': 'Solana',
        'nativeSymbol': 'SOL',
        'decimals': 9,
        'smallestUnit': 'lamport',
    },
    'ton': {
        'name': 'TON',
        'nativeSymbol': 'TON',
        'decimals': 9,
        'smallestUnit': 'nanoton',
    },
}

SUPPORTED_CHAINS = tuple(CHAIN_CONFIG.keys())

# --- Price Tracking ---
# Asset symbol -> CoinGecko coin id. Overridable with TRACKED_ASSETS / --track-asset.
DEFAULT_TRACKED_ASSETS: Dict[str, str] = {
    'ETH': 'ethereum',
    'BTC': 'bitcoin',
    'SOL': 'solana',
    'TON': 'the-open-network',
}

PRICE_CACHE_KEY = 'prices_usd'
DEFAULT_PRICE_CACHE_TTL = 60

# --- Alert Configuration ---
ALERT_TYPES = ('price', 'apy')
ALERT_CONDITIONS = ('above', 'below')
ALERT_FREQUENCIES = ('instant', 'daily', 'weekly')
DEFAULT_ALERT_INTERVAL = 120
DEFAULT_COOLDOWN_MINUTES = 60

# --- Network Defaults ---
DEFAULT_HTTP_TIMEOUT = 10.0
DEFAULT_HTTP_RETRIES = 3
DEFAULT_RETRY_BACKOFF = 1.5
DEFAULT_NOTIFY_TIMEOUT = 15.0

# --- Storage Defaults ---
DEFAULT_DB_PATH = 'data/radar.db'
DEFAULT_OPPORTUNITIES_PATH = 'data/opportunities.json'
