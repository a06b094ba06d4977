import asyncio
import logging
import re
from typing import List, Optional

from solders.pubkey import Pubkey
from telegram import Update
from telegram.ext import Application, CommandHandler, CallbackContext
from telegram.error import RetryAfter
from telegram.helpers import escape_markdown

from database import Database
from models import TradeRecord
from notifier import TradeNotifier, retry_seconds
from rpc_client import RpcClient
from time_utils import format_time_ago
from watcher import WalletWatcher

logger = logging.getLogger(__name__)


def validate_solana_address(address: str) -> bool:
    try:
        Pubkey.from_string(address)
        return True
    except ValueError:
        return False


def parse_wallet_input(text: str) -> List[str]:
    """Split comma, semicolon, whitespace or newline separated addresses, keeping first occurrences"""
    seen = []
    for item in re.split(r"[\n,;\s]+", text):
        item = item.strip()
        if item and item not in seen:
            seen.append(item)
    return seen


class SwapWatchBot:
    def __init__(self, token: str, db: Database, rpc: RpcClient,
                 admin_user_name: str = "", max_wallets_per_request: int = 25):
        self.application = Application.builder().token(token).build()
        self.db = db
        self.rpc = rpc
        self.watcher: Optional[WalletWatcher] = None
        self.notifier = TradeNotifier(self.application.bot)
        self.admin_user_name = admin_user_name.lstrip("@").lower()
        self.max_wallets_per_request = max_wallets_per_request
        self._register_handlers()
        self.updater = None
        logger.info("SwapWatchBot initialized")

    @classmethod
    async def create(cls, token: str, db: Database, rpc: RpcClient, **kwargs):
        instance = cls(token, db, rpc, **kwargs)
        await instance.setup()
        return instance

    async def setup(self):
        await self.application.initialize()
        self.updater = self.application.updater
        logger.info("SwapWatchBot setup completed")

    async def start(self):
        if not self.application.running:
            await self.application.start()
            if self.updater:
                await self.updater.start_polling()
            logger.info("SwapWatchBot started in polling mode")

    def _register_handlers(self):
        handlers = [
            CommandHandler(["start", "menu", "help"], self.menu_command),
            CommandHandler("addwallet", self.add_wallet_command),
            CommandHandler("addwallets", self.add_wallets_command),
            CommandHandler("removewallet", self.remove_wallet_command),
            CommandHandler("listwallets", self.list_wallets_command),
            CommandHandler("walletstatus", self.wallet_status_command),
            CommandHandler("subscribe", self.subscribe_command),
            CommandHandler("unsubscribe", self.unsubscribe_command),
            CommandHandler("status", self.status_command),
        ]
        for handler in handlers:
            self.application.add_handler(handler)

    async def notify_subscribers(self, record: TradeRecord):
        """Trade sink for the wallet watcher"""
        wallet = await self.db.get_wallet(record.targeted_wallet)
        await self.db.record_wallet_activity(record.targeted_wallet)
        recipients = await self.db.list_subscribers()
        await self.notifier.notify(recipients, record, alias=wallet.alias if wallet else None)

    def _is_admin(self, update: Update) -> bool:
        if not self.admin_user_name:
            return True
        user = update.effective_user
        return bool(user and user.username and user.username.lower() == self.admin_user_name)

    async def _safe_reply(self, update: Update, message: str, attempt=1):
        """Send message with retry logic"""
        try:
            await update.message.reply_text(
                message,
                parse_mode='MarkdownV2',
                disable_web_page_preview=True
            )
        except RetryAfter as e:
            if attempt > 3:
                raise
            wait_time = retry_seconds(e.retry_after) + 2
            logger.warning(f"Rate limited. Waiting {wait_time}s (attempt {attempt}/3)")
            await asyncio.sleep(wait_time)
            return await self._safe_reply(update, message, attempt + 1)
        except Exception as e:
            logger.error(f"Message error: {str(e)}")
            await update.message.reply_text(self._escape(message))

    def _escape(self, text) -> str:
        return escape_markdown(str(text), version=2)

    async def menu_command(self, update: Update, context: CallbackContext):
        menu_text = (
            "🔄 *Swap Watch Bot* 🔄\n\n"
            f"/addwallet <address\\> \\[alias\\] \\- *{self._escape('Track a wallet')}*\n"
            f"/addwallets <address,address,…\\> \\- *{self._escape('Track several wallets')}*\n"
            f"/removewallet <alias\\|address\\> \\- *{self._escape('Stop tracking')}*\n"
            f"/listwallets \\- *{self._escape('Show tracked wallets')}*\n"
            f"/walletstatus <alias\\|address\\> \\- *{self._escape('Check status')}*\n"
            f"/subscribe \\- *{self._escape('Receive trade alerts')}*\n"
            f"/unsubscribe \\- *{self._escape('Stop trade alerts')}*\n"
            f"/status \\- *{self._escape('Bot status')}*"
        )
        await self._safe_reply(update, menu_text)

    async def add_wallet_command(self, update: Update, context: CallbackContext):
        try:
            if not self._is_admin(update):
                await self._safe_reply(update, "⛔ Only the bot admin can change tracked wallets")
                return

            args = context.args
            if not args:
                await self._safe_reply(update, "`Usage: /addwallet <address> [alias]`")
                return

            address = args[0].strip()
            alias = args[1].strip().lower() if len(args) > 1 else None
            if not validate_solana_address(address):
                await self._safe_reply(update, "❌ Invalid Solana address\\!")
                return

            user = update.effective_user
            await self.db.save_wallet(address, alias, added_by=user.username if user else None)
            if self.watcher:
                await self.watcher.track([address])

            response = (
                "✅ *Wallet added:*\n"
                f"Address: `{self._escape(address)}`"
            )
            if alias:
                response += f"\nAlias: *{self._escape(alias)}*"
            await self._safe_reply(update, response)
            logger.info(f"Added new wallet: {alias} ({address})")
        except ValueError as e:
            await self._safe_reply(update, f"❌ {self._escape(str(e))}")
        except Exception as e:
            logger.error(f"Error in add_wallet_command: {str(e)}")
            await self._safe_reply(update, "⚠️ Error adding wallet")

    async def add_wallets_command(self, update: Update, context: CallbackContext):
        try:
            if not self._is_admin(update):
                await self._safe_reply(update, "⛔ Only the bot admin can change tracked wallets")
                return

            addresses = parse_wallet_input(" ".join(context.args or []))
            if not addresses:
                await self._safe_reply(update, "`Usage: /addwallets <address,address,...>`")
                return
            if len(addresses) > self.max_wallets_per_request:
                await self._safe_reply(
                    update,
                    self._escape(f"You can add a maximum of {self.max_wallets_per_request} wallets at once.")
                )
                return

            user = update.effective_user
            added, skipped = [], []
            for address in addresses:
                if not validate_solana_address(address):
                    skipped.append(address)
                    continue
                try:
                    await self.db.save_wallet(address, added_by=user.username if user else None)
                    added.append(address)
                except ValueError:
                    skipped.append(address)

            if self.watcher and added:
                await self.watcher.track(added)

            if not added:
                response = "ℹ️ No new wallets were added"
            else:
                response = "✅ *Added wallets:*\n" + "\n".join(f"• `{self._escape(a)}`" for a in added)
            if skipped:
                response += "\n\n⚠️ *Skipped \\(invalid or duplicate\\):*\n" + "\n".join(
                    f"• `{self._escape(s)}`" for s in skipped
                )
            await self._safe_reply(update, response)
            logger.info(f"Bulk added {len(added)} wallet(s), skipped {len(skipped)}")
        except Exception as e:
            logger.error(f"Error in add_wallets_command: {str(e)}")
            await self._safe_reply(update, "⚠️ Error adding wallets")

    async def remove_wallet_command(self, update: Update, context: CallbackContext):
        try:
            if not self._is_admin(update):
                await self._safe_reply(update, "⛔ Only the bot admin can change tracked wallets")
                return

            if not context.args:
                await self._safe_reply(update, "`Usage: /removewallet <alias|address>`")
                return

            wallet = await self.db.get_wallet(context.args[0].strip())
            if not wallet:
                await self._safe_reply(update, "ℹ️ Wallet not found")
                return

            await self.db.remove_wallet(wallet.address)
            if self.watcher:
                await self.watcher.untrack(wallet.address)
            await self._safe_reply(update, f"✅ Removed wallet: *{self._escape(wallet.alias or wallet.address)}*")
            logger.info(f"Removed wallet: {wallet.alias} ({wallet.address})")
        except Exception as e:
            logger.error(f"Error in remove_wallet_command: {str(e)}")
            await self._safe_reply(update, "⚠️ Error removing wallet")

    async def list_wallets_command(self, update: Update, context: CallbackContext):
        try:
            wallets = await self.db.load_all_wallets()
            if wallets:
                lines = []
                for w in wallets:
                    state = "🟢" if self.watcher and self.watcher.is_tracking(w.address) else "⚪"
                    name = f"*{self._escape(w.alias)}* " if w.alias else ""
                    lines.append(f"{state} {name}\\(`{w.address}`\\)")
                response = "📋 *Tracked Wallets:*\n" + "\n".join(lines)
            else:
                response = "No wallets being tracked"
            await self._safe_reply(update, response)
        except Exception as e:
            logger.error(f"Error in list_wallets_command: {str(e)}")
            await self._safe_reply(update, "⚠️ Error listing wallets")

    async def wallet_status_command(self, update: Update, context: CallbackContext):
        try:
            if not context.args:
                await self._safe_reply(update, "`Usage: /walletstatus <alias|address>`")
                return

            wallet = await self.db.get_wallet(context.args[0].strip())
            if not wallet:
                await self._safe_reply(update, "ℹ️ Wallet not found")
                return

            try:
                balance = f"{await self.rpc.get_balance(wallet.address):.4f} SOL"
            except Exception as e:
                logger.error(f"Balance lookup failed for {wallet.address}: {str(e)}")
                balance = "unavailable"

            tracking = self.watcher is not None and self.watcher.is_tracking(wallet.address)
            response = (
                f"📊 *Wallet Status: {self._escape(wallet.alias or wallet.address[:8])}*\n"
                f"Address: `{self._escape(wallet.address)}`\n"
                f"Watching: {'✅' if tracking else '❌'}\n"
                f"Balance: `{self._escape(balance)}`\n"
                f"Last Trade: `{self._escape(format_time_ago(wallet.last_activity_at))}`\n"
                f"Trades Detected: `{self._escape(wallet.trade_count)}`"
            )
            await self._safe_reply(update, response)
        except Exception as e:
            logger.error(f"Error in wallet_status_command: {str(e)}")
            await self._safe_reply(update, "⚠️ Error showing wallet status")

    async def subscribe_command(self, update: Update, context: CallbackContext):
        try:
            chat_id = str(update.effective_chat.id)
            user = update.effective_user
            if await self.db.add_subscriber(chat_id, user.username if user else None):
                await self._safe_reply(update, "✅ Subscribed to trade alerts\\!")
                logger.info(f"New subscriber: {chat_id}")
            else:
                await self._safe_reply(update, "ℹ️ Already subscribed")
        except Exception as e:
            logger.error(f"Error in subscribe_command: {str(e)}")
            await self._safe_reply(update, "⚠️ Error subscribing")

    async def unsubscribe_command(self, update: Update, context: CallbackContext):
        try:
            chat_id = str(update.effective_chat.id)
            if await self.db.remove_subscriber(chat_id):
                await self._safe_reply(update, "✅ Unsubscribed from trade alerts")
                logger.info(f"Subscriber left: {chat_id}")
            else:
                await self._safe_reply(update, "ℹ️ Not subscribed")
        except Exception as e:
            logger.error(f"Error in unsubscribe_command: {str(e)}")
            await self._safe_reply(update, "⚠️ Error unsubscribing")

    async def status_command(self, update: Update, context: CallbackContext):
        try:
            chat_id = str(update.effective_chat.id)
            subscribers = await self.db.list_subscribers()
            stats = self.watcher.stats() if self.watcher else {"tracked_wallets": 0, "queued_events": 0}
            response = (
                "🤖 *Bot Status*\n"
                f"Tracked wallets: `{stats['tracked_wallets']}`\n"
                f"Queued events: `{stats['queued_events']}`\n"
                f"Subscribers: `{len(subscribers)}`\n"
                f"You are subscribed: {'✅' if chat_id in subscribers else '❌'}"
            )
            await self._safe_reply(update, response)
        except Exception as e:
            logger.error(f"Error in status_command: {str(e)}")
            await self._safe_reply(update, "⚠️ Error fetching status")

    async def stop(self):
        try:
            if self.updater and self.updater.running:
                await self.updater.stop()
            if self.application.running:
                await self.application.stop()
            await self.application.shutdown()
            logger.info("SwapWatchBot stopped successfully")
        except Exception as e:
            logger.error(f"Error during shutdown: {str(e)}")
