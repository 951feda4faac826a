# bot/handlers.py
import html
import logging
import time
from typing import List, Optional

from telegram import Update
from telegram.ext import ContextTypes

from analysis.alert_rules import format_number
from analysis.models import Alert, Portfolio
from constants import ALERT_CONDITIONS, CHAIN_CONFIG, DEFAULT_COOLDOWN_MINUTES, SUPPORTED_CHAINS
from errors import ProviderError, ValidationError
from portfolio import PortfolioAggregator, mask_address
from services.balance_adapters import get_adapter
from storage import SQLiteRepository

logger = logging.getLogger(__name__)

ADDALERT_USAGE = (
    "Usage:\n"
    "<code>/addalert price ASSET above|below THRESHOLD</code>\n"
    "<code>/addalert apy ASSET above|below THRESHOLD CHAIN</code>"
)


def _user_id(update: Update) -> str:
    return str(update.effective_user.id)


def _parse_alert_id(args: List[str]) -> Optional[int]:
    if len(args) != 1:
        return None
    try:
        return int(args[0])
    except ValueError:
        return None


def format_portfolio(portfolio: Portfolio) -> str:
    chain_name = CHAIN_CONFIG.get(portfolio.chain, {}).get('name', portfolio.chain)
    lines = [f"<b>💼 {html.escape(str(chain_name))}</b> <code>{html.escape(portfolio.address_masked)}</code>"]
    for asset in portfolio.assets:
        value = f"${asset.fiat:,.2f}" if asset.fiat is not None else "price unavailable"
        lines.append(f"{format_number(asset.amount)} {asset.symbol} ({value})")
    if portfolio.total_fiat is not None:
        lines.append(f"Total: <b>${portfolio.total_fiat:,.2f}</b>")
    lines.append(f"Updated: <code>{portfolio.updated_at.strftime('%Y-%m-%d %H:%M:%S')} UTC</code>")
    return "\n".join(lines)


def format_alert(alert: Alert) -> str:
    state = "✅" if alert.enabled else "⏸️"
    unit = "%" if alert.type == 'apy' else ""
    scope = f" ({alert.chain})" if alert.type == 'apy' else ""
    last = alert.last_triggered_at.strftime('%Y-%m-%d %H:%M') if alert.last_triggered_at else "never"
    return (
        f"{state} <b>#{alert.id}</b> {alert.type} {html.escape(alert.asset)}{scope} "
        f"{alert.condition} {format_number(alert.threshold)}{unit} "
        f"(cooldown {alert.cooldown_minutes}m, last {last})"
    )

# --- Command Handlers ---

async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Registers the user and makes this chat the target for their alerts."""
    repository: SQLiteRepository = context.application.bot_data['repository']
    user = update.effective_user
    await repository.upsert_user(_user_id(update), user.language_code or "en")
    await repository.set_chat_id(_user_id(update), str(update.effective_chat.id))
    await help_command(update, context)


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Displays a help message with all available commands."""
    help_text = f"""
    <b>Welcome to the Wallet Radar Bot!</b>

    Track native balances on {', '.join(SUPPORTED_CHAINS)} and get price or APY alerts.

    <b><u>Available Commands:</u></b>
    /wallet CHAIN ADDRESS - Save your active wallet
    /portfolio [CHAIN ADDRESS] - Value a wallet
    /alerts - List your alerts
    /addalert - Create a price or APY alert
    /enablealert ID - Resume an alert
    /disablealert ID - Pause an alert
    /delalert ID - Delete an alert
    /status - Get bot status and last alert check
    /help - Show this help message
    """
    await update.message.reply_html(help_text)


async def status_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Checks and reports the bot's operational status and scheduler state."""
    config = context.application.bot_data.get('config')
    scheduler = context.application.bot_data.get('scheduler')
    scheduler_task = context.application.bot_data.get('scheduler_task')
    start_time = context.application.bot_data.get('start_time', 0)

    uptime_seconds = time.time() - start_time
    uptime_str = time.strftime('%H:%M:%S', time.gmtime(uptime_seconds))

    if config and config.jobs_enabled:
        if scheduler_task and not scheduler_task.done():
            scheduler_status = "✅ Running"
        elif scheduler_task and scheduler_task.done():
            if not scheduler_task.cancelled() and scheduler_task.exception():
                scheduler_status = "❌ Stopped with error"
            else:
                scheduler_status = "⏹️ Stopped"
        else:
            scheduler_status = "⚠️ Enabled but not running"
    else:
        scheduler_status = "🚫 Disabled"

    status_text = (
        f"<b>🤖 Bot Status</b>\n"
        f"Uptime: <code>{uptime_str}</code>\n\n"
        f"<b>🔔 Alert Scheduler</b>\n"
        f"Status: {scheduler_status}\n"
    )

    report = scheduler.last_report if scheduler else None
    if report:
        status_text += f"Last Check: <code>{report.started_at.strftime('%Y-%m-%d %H:%M:%S')} UTC</code>\n"
        status_text += (
            f"Alerts: <code>{report.considered} checked, {report.delivered} sent, "
            f"{report.failed} failed</code>\n"
        )
        if report.price_error:
            status_text += f"Price Error: <pre>{html.escape(report.price_error)}</pre>\n"
        if report.catalog_error:
            status_text += f"Catalog Error: <pre>{html.escape(report.catalog_error)}</pre>\n"

    await update.message.reply_html(status_text)


async def wallet_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Saves /wallet CHAIN ADDRESS as the user's active wallet."""
    if len(context.args) != 2:
        await update.message.reply_html(f"Usage: <code>/wallet {'|'.join(SUPPORTED_CHAINS)} ADDRESS</code>")
        return

    aggregator: PortfolioAggregator = context.application.bot_data['aggregator']
    repository: SQLiteRepository = context.application.bot_data['repository']
    chain, address = context.args
    try:
        adapter = get_adapter(aggregator.adapters, chain)
        address = adapter.validate_address(address)
    except ValidationError as exc:
        await update.message.reply_text(str(exc))
        return

    await repository.save_active_wallet(_user_id(update), adapter.chain, address)
    await update.message.reply_html(
        f"Saved active {adapter.symbol} wallet <code>{html.escape(mask_address(address))}</code>."
    )


async def portfolio_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Values /portfolio CHAIN ADDRESS, or the active wallet when no arguments are given."""
    aggregator: PortfolioAggregator = context.application.bot_data['aggregator']
    repository: SQLiteRepository = context.application.bot_data['repository']

    if len(context.args) == 2:
        chain, address = context.args
    elif not context.args:
        wallet = await repository.get_active_wallet(_user_id(update))
        if wallet is None:
            await update.message.reply_html(
                "No active wallet. Save one with <code>/wallet CHAIN ADDRESS</code>."
            )
            return
        chain, address = wallet.chain, wallet.address
    else:
        await update.message.reply_html("Usage: <code>/portfolio [CHAIN ADDRESS]</code>")
        return

    try:
        portfolio = await aggregator.build_portfolio(chain, address)
    except ValidationError as exc:
        await update.message.reply_text(str(exc))
        return
    except ProviderError as exc:
        logger.warning("Portfolio lookup for %s failed: %s", chain, exc)
        await update.message.reply_text(f"Could not fetch the balance right now ({exc}). Please try again later.")
        return

    await update.message.reply_html(format_portfolio(portfolio))


async def alerts_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Lists the user's alerts."""
    repository: SQLiteRepository = context.application.bot_data['repository']
    alerts = await repository.list_alerts(_user_id(update))
    if not alerts:
        await update.message.reply_html("You have no alerts yet.\n\n" + ADDALERT_USAGE)
        return
    lines = ["<b>🔔 Your Alerts</b>"] + [format_alert(alert) for alert in alerts]
    await update.message.reply_html("\n".join(lines))


async def addalert_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Creates a price or APY alert from /addalert arguments."""
    args = context.args or []
    if len(args) < 4:
        await update.message.reply_html(ADDALERT_USAGE)
        return

    alert_type = args[0].lower()
    if alert_type == 'price' and len(args) == 4:
        _, asset, condition, threshold = args
        chain = None
    elif alert_type == 'apy' and len(args) == 5:
        _, asset, condition, threshold, chain = args
    else:
        await update.message.reply_html(ADDALERT_USAGE)
        return

    if condition.lower() not in ALERT_CONDITIONS:
        await update.message.reply_html(ADDALERT_USAGE)
        return

    asset = asset.upper()
    if chain is None:
        # Price alerts are tied to the chain that has the asset as its native coin.
        chain = next(
            (name for name, info in CHAIN_CONFIG.items() if info['nativeSymbol'] == asset),
            'evm',
        )
        price_service = context.application.bot_data.get('price_service')
        if price_service is not None and asset not in price_service.tracked_symbols:
            await update.message.reply_text(
                f"No price source is configured for {asset}. "
                f"Tracked assets: {', '.join(sorted(price_service.tracked_symbols))}"
            )
            return

    config = context.application.bot_data.get('config')
    cooldown = config.default_cooldown_minutes if config else DEFAULT_COOLDOWN_MINUTES
    repository: SQLiteRepository = context.application.bot_data['repository']
    try:
        alert_id = await repository.create_alert(
            owner=_user_id(update),
            alert_type=alert_type,
            chain=chain,
            asset=asset,
            condition=condition,
            threshold=threshold,
            cooldown_minutes=cooldown,
        )
    except ValidationError as exc:
        await update.message.reply_text(str(exc))
        return

    await update.message.reply_html(f"Created alert <b>#{alert_id}</b>.")


async def _toggle_alert(update: Update, context: ContextTypes.DEFAULT_TYPE, enabled: bool):
    command = "enablealert" if enabled else "disablealert"
    alert_id = _parse_alert_id(context.args or [])
    if alert_id is None:
        await update.message.reply_html(f"Usage: <code>/{command} ID</code>")
        return
    repository: SQLiteRepository = context.application.bot_data['repository']
    if not await repository.set_alert_enabled(_user_id(update), alert_id, enabled):
        await update.message.reply_text(f"Alert #{alert_id} not found.")
        return
    state = "enabled" if enabled else "disabled"
    await update.message.reply_text(f"Alert #{alert_id} {state}.")


async def enablealert_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await _toggle_alert(update, context, True)


async def disablealert_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await _toggle_alert(update, context, False)


async def delalert_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Deletes one of the user's alerts."""
    alert_id = _parse_alert_id(context.args or [])
    if alert_id is None:
        await update.message.reply_html("Usage: <code>/delalert ID</code>")
        return
    repository: SQLiteRepository = context.application.bot_data['repository']
    if not await repository.delete_alert(_user_id(update), alert_id):
        await update.message.reply_text(f"Alert #{alert_id} not found.")
        return
    await update.message.reply_text(f"Alert #{alert_id} deleted.")
