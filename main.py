#!/usr/bin/env python3
import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Dict

import aiohttp
from telegram import BotCommand
from telegram.ext import Application, CommandHandler
from telegram.error import TimedOut, TelegramError

import constants
from alert_scheduler import AlertScheduler
from analysis.alert_rules import format_number
from analysis.models import PortfolioSummary
from bot.handlers import (
    addalert_command,
    alerts_command,
    delalert_command,
    disablealert_command,
    enablealert_command,
    help_command,
    portfolio_command,
    start_command,
    status_command,
    wallet_command,
)
from config import AppConfig, load_config
from errors import ProviderError
from portfolio import PortfolioAggregator
from services.balance_adapters import build_balance_adapters
from services.bitcoin_client import BitcoinClient
from services.coingecko_client import CoinGeckoClient
from services.evm_client import EvmClient
from services.opportunity_catalog import OpportunityCatalog
from services.price_cache import PriceService, TTLCache
from services.solana_client import SolanaClient
from services.telegram_notifier import TelegramNotifier
from services.toncenter_client import TonCenterClient
from storage import SQLiteRepository

USER_AGENT = 'WalletRadarBot/1.0'


def build_services(session: aiohttp.ClientSession, config: AppConfig) -> Dict[str, Any]:
    """Creates the price service, chain clients and aggregator that share ``session``."""
    http_options = {'retries': config.http_retries, 'timeout': config.http_timeout}
    coingecko_client = CoinGeckoClient(session, config.coingecko_api_key, **http_options)
    price_service = PriceService(
        coingecko_client,
        TTLCache(),
        tracked_assets=config.tracked_assets,
        ttl_seconds=config.price_cache_ttl,
    )
    adapters = build_balance_adapters(
        evm_client=EvmClient(session, config.eth_rpc_url, **http_options),
        bitcoin_client=BitcoinClient(session, config.btc_api_base_url, **http_options),
        solana_client=SolanaClient(session, config.sol_rpc_url, **http_options),
        ton_client=TonCenterClient(
            session,
            config.toncenter_base_url,
            config.toncenter_api_key,
            **http_options,
        ),
    )
    return {
        'coingecko_client': coingecko_client,
        'price_service': price_service,
        'adapters': adapters,
        'aggregator': PortfolioAggregator(price_service, adapters),
    }


async def post_init_hook(application: Application) -> None:
    """A hook that runs after the bot is initialized to set up shared clients and tasks."""
    # Create and store a single, shared aiohttp session
    session = aiohttp.ClientSession(headers={'User-Agent': USER_AGENT})
    application.bot_data['http_session'] = session

    config: AppConfig = application.bot_data['config']
    application.bot_data.update(build_services(session, config))
    application.bot_data['catalog'] = OpportunityCatalog(config.opportunities_path)
    application.bot_data['notifier'] = TelegramNotifier(
        application.bot,
        app_url=config.app_url,
        timeout=config.notify_timeout,
    )

    commands = [
        BotCommand("portfolio", "Value your wallet"),
        BotCommand("wallet", "Save your active wallet"),
        BotCommand("alerts", "List your alerts"),
        BotCommand("addalert", "Create a price or APY alert"),
        BotCommand("status", "Check bot status"),
        BotCommand("help", "Show help message"),
    ]
    try:
        await application.bot.set_my_commands(commands)
    except (TimedOut, TelegramError) as exc:
        print(
            f"{constants.C_YELLOW}Warning: unable to set Telegram bot commands ({exc})."
            f" Continuing startup without updating commands.{constants.C_RESET}"
        )

    scheduler = AlertScheduler(
        application.bot_data['repository'],
        application.bot_data['price_service'],
        application.bot_data['catalog'],
        application.bot_data['notifier'],
        interval_seconds=config.alert_interval,
    )
    application.bot_data['scheduler'] = scheduler

    if config.jobs_enabled:
        scheduler_task = asyncio.create_task(scheduler.start())
        application.bot_data['scheduler_task'] = scheduler_task
        print(f"{constants.C_GREEN}Alert scheduler running every {config.alert_interval} seconds.{constants.C_RESET}")
    else:
        print(f"{constants.C_YELLOW}Background jobs disabled; alerts will not be evaluated.{constants.C_RESET}")


async def post_shutdown_hook(application: Application) -> None:
    """A hook that runs on application shutdown to clean up resources."""
    scheduler_task = application.bot_data.get('scheduler_task')
    if scheduler_task and not scheduler_task.done():
        scheduler_task.cancel()
        try:
            await scheduler_task
        except asyncio.CancelledError:
            pass
    session = application.bot_data.get('http_session')
    if session:
        await session.close()
    repository = application.bot_data.get('repository')
    if repository:
        await repository.close()


async def run_portfolio_cli(config: AppConfig) -> PortfolioSummary:
    """Values every ``--portfolio`` request once against a single price snapshot."""
    async with aiohttp.ClientSession(headers={'User-Agent': USER_AGENT}) as session:
        aggregator: PortfolioAggregator = build_services(session, config)['aggregator']
        return await aggregator.build_portfolios(config.portfolio)


def main() -> None:
    """The main synchronous entry point for the application."""
    config = load_config()
    logging.basicConfig(
        level=config.log_level,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    if config.portfolio:
        try:
            summary = asyncio.run(run_portfolio_cli(config))
        except ProviderError as exc:
            print(f"{constants.C_RED}Could not load prices: {exc}{constants.C_RESET}")
            exit(1)
        _print_portfolio_summary(summary)
        if summary.failures:
            exit(1)
        return

    repository = SQLiteRepository(config.db_path)

    application = (
        Application.builder()
        .token(config.telegram_bot_token)
        .post_init(post_init_hook)
        .post_shutdown(post_shutdown_hook)
        .build()
    )

    # Store config and other shared data
    application.bot_data['config'] = config
    application.bot_data['start_time'] = time.time()
    application.bot_data['repository'] = repository

    # Register command handlers
    application.add_handler(CommandHandler("start", start_command))
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CommandHandler("status", status_command))
    application.add_handler(CommandHandler("wallet", wallet_command))
    application.add_handler(CommandHandler("portfolio", portfolio_command))
    application.add_handler(CommandHandler("alerts", alerts_command))
    application.add_handler(CommandHandler("addalert", addalert_command))
    application.add_handler(CommandHandler("enablealert", enablealert_command))
    application.add_handler(CommandHandler("disablealert", disablealert_command))
    application.add_handler(CommandHandler("delalert", delalert_command))

    application.run_polling()


def _print_portfolio_summary(summary: PortfolioSummary) -> None:
    updated_at: datetime = summary.updated_at
    heading = f"Portfolio valuation at {updated_at.strftime('%Y-%m-%d %H:%M:%S')} UTC"
    print(heading)
    print("=" * len(heading))

    headers = ["Chain", "Address", "Balance", "Value (USD)"]

    def _format_row(portfolio) -> list[str]:
        asset = portfolio.assets[0] if portfolio.assets else None
        balance = f"{format_number(asset.amount)} {asset.symbol}" if asset else "-"
        value = f"{portfolio.total_fiat:,.2f}" if portfolio.total_fiat is not None else "n/a"
        return [portfolio.chain, portfolio.address_masked, balance, value]

    rows = [_format_row(portfolio) for portfolio in summary.portfolios]
    widths = [len(h) for h in headers]
    for row in rows:
        for idx, cell in enumerate(row):
            widths[idx] = max(widths[idx], len(cell))

    def _format_line(row: list[str]) -> str:
        return "  ".join(cell.ljust(widths[idx]) for idx, cell in enumerate(row))

    if rows:
        print(_format_line(headers))
        print("  ".join('-' * w for w in widths))
        for row in rows:
            print(_format_line(row))
    else:
        print("No portfolios could be valued.")

    for failure in summary.failures:
        print(f"{constants.C_RED}{failure.chain} {failure.address_masked}: {failure.error}{constants.C_RESET}")

    print(f"{constants.C_GREEN}Total: ${summary.total_fiat:,.2f}{constants.C_RESET}")


if __name__ == "__main__":
    main()
