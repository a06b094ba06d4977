import asyncio
import logging
from decimal import Decimal
from typing import Dict, Iterable, Optional

from telegram import Bot
from telegram.error import RetryAfter, TelegramError
from telegram.helpers import escape_markdown

from models import Side, TradeRecord
from time_utils import format_time_ago

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


def _escape(text) -> str:
    return escape_markdown(str(text), version=2)


def format_amount(amount: Decimal) -> str:
    """Trim trailing zeros but never fall back to exponent notation"""
    text = f"{amount:f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def format_trade_message(record: TradeRecord, alias: Optional[str] = None) -> str:
    sold, bought = record.leg_a, record.leg_b
    wallet = alias or f"{record.targeted_wallet[:6]}...{record.targeted_wallet[-4:]}"
    # The contract of interest is whichever side is not the quote asset
    ca = bought.token.identifier if record.side == Side.BUY else sold.token.identifier
    side_icon = "🟢" if record.side == Side.BUY else "🔴"

    lines = [
        f"{side_icon} *New {_escape(record.side.value)} in {_escape(wallet)}*",
        f"⬆️ Sold: `{_escape(format_amount(sold.amount))} {_escape(sold.token.display_symbol)}`",
        f"⬇️ Bought: `{_escape(format_amount(bought.amount))} {_escape(bought.token.display_symbol)}`",
    ]
    if record.price is not None:
        lines.append(
            f"💱 Price: `{_escape(format_amount(Decimal(f'{record.price:.9f}')))} "
            f"{_escape(sold.token.display_symbol)}`"
        )
    lines += [
        f"🏦 DEX: `{_escape(record.platform or 'Unknown DEX')}`",
        f"⏱ {_escape(format_time_ago(record.timestamp))}",
        f"🔗 [Transaction]({_escape(record.tx_url)})",
        f"📜 *CA:* `{_escape(ca)}`",
    ]
    return "\n".join(lines)


class TradeNotifier:
    """Delivers trade records to Telegram chats"""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def notify(self, recipients: Iterable[str], record: TradeRecord,
                     alias: Optional[str] = None) -> Dict[str, bool]:
        """Send one message per recipient; returns delivery success per chat id"""
        recipients = list(recipients)
        if not recipients:
            logger.debug(f"No subscribers for trade {record.transaction_signature}")
            return {}

        text = format_trade_message(record, alias)
        results = await asyncio.gather(*(self._safe_send_message(chat_id, text) for chat_id in recipients))
        delivered = dict(zip(recipients, results))

        failed = [chat_id for chat_id, ok in delivered.items() if not ok]
        if failed:
            logger.warning(f"Trade {record.transaction_signature} not delivered to {len(failed)} chat(s): {failed}")
        return delivered

    async def _safe_send_message(self, chat_id: str, text: str, attempt: int = 1) -> bool:
        """Send message with retry logic"""
        try:
            await self.bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode='MarkdownV2',
                disable_web_page_preview=True
            )
            return True
        except RetryAfter as e:
            if attempt >= MAX_ATTEMPTS:
                logger.error(f"Rate limited sending to {chat_id}, giving up after {attempt} attempts")
                return False
            wait_time = retry_seconds(e.retry_after) + 1
            logger.warning(f"Rate limited. Waiting {wait_time}s (attempt {attempt}/{MAX_ATTEMPTS})")
            await asyncio.sleep(wait_time)
            return await self._safe_send_message(chat_id, text, attempt + 1)
        except TelegramError as e:
            logger.error(f"Message error for {chat_id}: {str(e)}")
            return False


def retry_seconds(retry_after) -> float:
    # python-telegram-bot reports either int seconds or a timedelta
    if hasattr(retry_after, "total_seconds"):
        return retry_after.total_seconds()
    return float(retry_after)
