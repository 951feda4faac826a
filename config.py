#!/usr/bin/env python3
import os
import argparse
import logging
from typing import NamedTuple, Optional, Sequence
import constants

class AppConfig(NamedTuple):
    """Typed configuration object."""
    telegram_bot_token: str | None
    app_url: str | None
    db_path: str
    opportunities_path: str
    alert_interval: int
    default_cooldown_minutes: int
    jobs_enabled: bool
    price_cache_ttl: float
    http_timeout: float
    http_retries: int
    notify_timeout: float
    eth_rpc_url: str
    sol_rpc_url: str
    btc_api_base_url: str
    toncenter_base_url: str
    toncenter_api_key: str | None
    coingecko_api_key: str | None
    tracked_assets: dict[str, str]
    portfolio: list[tuple[str, str]]
    log_level: str


def parse_tracked_assets(entries: Sequence[str]) -> dict[str, str]:
    """
    Parses ``SYMBOL=coingecko-id`` pairs into a symbol -> price id table.

    Raises:
        ValueError: if an entry is not of the form SYMBOL=id.
    """
    table: dict[str, str] = {}
    for entry in entries:
        for item in entry.split(','):
            item = item.strip()
            if not item:
                continue
            symbol, sep, coin_id = item.partition('=')
            if not sep or not symbol.strip() or not coin_id.strip():
                raise ValueError(f"Invalid tracked asset '{item}', expected SYMBOL=coingecko-id")
            table[symbol.strip().upper()] = coin_id.strip()
    return table


def parse_portfolio_request(value: str) -> tuple[str, str]:
    """Splits ``chain:address`` on the first colon; TON raw addresses keep theirs."""
    chain, sep, address = value.partition(':')
    if not sep or not chain.strip() or not address.strip():
        raise ValueError(f"Invalid portfolio request '{value}', expected chain:address")
    return chain.strip().lower(), address.strip()


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def load_config(argv: Optional[Sequence[str]] = None) -> AppConfig:
    """
    Parses command-line arguments and loads environment variables to create a configuration object.
    """
    parser = argparse.ArgumentParser(
        description="Track wallet balances across EVM, Bitcoin, Solana and TON and deliver threshold alerts over Telegram.",
        epilog="Example: ./main.py --portfolio evm:0xabc... --portfolio btc:bc1q..."
    )
    parser.add_argument('--db-path', type=str, default=os.environ.get(constants.DB_PATH_ENV_VAR) or constants.DEFAULT_DB_PATH, help=f'SQLite database path (default: {constants.DEFAULT_DB_PATH}).')
    parser.add_argument('--opportunities', type=str, default=os.environ.get(constants.OPPORTUNITIES_PATH_ENV_VAR) or constants.DEFAULT_OPPORTUNITIES_PATH, help=f'Opportunity catalog JSON file (default: {constants.DEFAULT_OPPORTUNITIES_PATH}).')
    parser.add_argument('--alert-interval', type=int, default=constants.DEFAULT_ALERT_INTERVAL, help=f'Seconds between alert evaluation ticks (default: {constants.DEFAULT_ALERT_INTERVAL}).')
    parser.add_argument('--default-cooldown', type=int, default=constants.DEFAULT_COOLDOWN_MINUTES, help=f'Cooldown in minutes for alerts created from the bot (default: {constants.DEFAULT_COOLDOWN_MINUTES}).')
    parser.add_argument('--disable-jobs', action='store_true', help='Do not start the background alert scheduler.')
    parser.add_argument('--price-ttl', type=float, default=constants.DEFAULT_PRICE_CACHE_TTL, help=f'Seconds a fetched price snapshot stays valid (default: {constants.DEFAULT_PRICE_CACHE_TTL}).')
    parser.add_argument('--http-timeout', type=float, default=constants.DEFAULT_HTTP_TIMEOUT, help=f'Timeout in seconds for each upstream request (default: {constants.DEFAULT_HTTP_TIMEOUT}).')
    parser.add_argument('--http-retries', type=int, default=constants.DEFAULT_HTTP_RETRIES, help=f'Attempts per upstream request (default: {constants.DEFAULT_HTTP_RETRIES}).')
    parser.add_argument('--notify-timeout', type=float, default=constants.DEFAULT_NOTIFY_TIMEOUT, help=f'Timeout in seconds for sending a Telegram alert (default: {constants.DEFAULT_NOTIFY_TIMEOUT}).')
    parser.add_argument('--track-asset', action='append', default=[], metavar='SYMBOL=ID', help='Track a price for SYMBOL using a CoinGecko coin id. Repeatable.')
    parser.add_argument('--portfolio', action='append', default=[], metavar='CHAIN:ADDRESS', help='Print the valuation of an address and exit. Repeatable.')
    parser.add_argument('--log-level', type=str, default=os.environ.get(constants.LOG_LEVEL_ENV_VAR) or 'INFO', help='Logging level (default: INFO).')

    args = parser.parse_args(argv)

    if args.alert_interval <= 0:
        parser.error('--alert-interval must be positive.')
    if args.default_cooldown < 0:
        parser.error('--default-cooldown cannot be negative.')
    if args.price_ttl <= 0:
        parser.error('--price-ttl must be positive.')
    if args.http_retries < 1:
        parser.error('--http-retries must be at least 1.')

    log_level = args.log_level.upper()
    if not isinstance(logging.getLevelName(log_level), int):
        parser.error(f"Unknown log level '{args.log_level}'.")

    try:
        if args.track_asset:
            tracked_assets = parse_tracked_assets(args.track_asset)
        elif os.environ.get(constants.TRACKED_ASSETS_ENV_VAR):
            tracked_assets = parse_tracked_assets([os.environ[constants.TRACKED_ASSETS_ENV_VAR]])
        else:
            tracked_assets = dict(constants.DEFAULT_TRACKED_ASSETS)
        portfolio = [parse_portfolio_request(value) for value in args.portfolio]
    except ValueError as exc:
        parser.error(str(exc))

    for chain, _ in portfolio:
        if chain not in constants.SUPPORTED_CHAINS:
            parser.error(f"Unsupported chain '{chain}'. Choose from: {', '.join(constants.SUPPORTED_CHAINS)}")

    # Load from environment
    telegram_bot_token = os.environ.get(constants.TELEGRAM_BOT_TOKEN_ENV_VAR)
    jobs_enabled = _env_flag(constants.ENABLE_JOBS_ENV_VAR, True) and not args.disable_jobs

    if not portfolio and not telegram_bot_token:
        print(f"{constants.C_RED}{constants.TELEGRAM_BOT_TOKEN_ENV_VAR} environment variable not set. Create a bot with @BotFather or use --portfolio for one-shot mode.{constants.C_RESET}")
        exit(1)

    return AppConfig(
        telegram_bot_token=telegram_bot_token,
        app_url=os.environ.get(constants.APP_URL_ENV_VAR) or None,
        db_path=args.db_path,
        opportunities_path=args.opportunities,
        alert_interval=args.alert_interval,
        default_cooldown_minutes=args.default_cooldown,
        jobs_enabled=jobs_enabled,
        price_cache_ttl=args.price_ttl,
        http_timeout=args.http_timeout,
        http_retries=args.http_retries,
        notify_timeout=args.notify_timeout,
        eth_rpc_url=os.environ.get(constants.ETH_RPC_URL_ENV_VAR) or constants.DEFAULT_ETH_RPC_URL,
        sol_rpc_url=os.environ.get(constants.SOL_RPC_URL_ENV_VAR) or constants.DEFAULT_SOL_RPC_URL,
        btc_api_base_url=os.environ.get(constants.BTC_API_BASE_URL_ENV_VAR) or constants.DEFAULT_BTC_API_BASE_URL,
        toncenter_base_url=os.environ.get(constants.TONCENTER_BASE_URL_ENV_VAR) or constants.DEFAULT_TONCENTER_BASE_URL,
        toncenter_api_key=os.environ.get(constants.TONCENTER_API_KEY_ENV_VAR) or None,
        coingecko_api_key=os.environ.get(constants.COINGECKO_API_KEY_ENV_VAR) or None,
        tracked_assets=tracked_assets,
        portfolio=portfolio,
        log_level=log_level,
    )
