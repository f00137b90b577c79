"""
Telegram plumbing shared by every handler: the per-application storage and
owner lookups, and send/edit wrappers that never raise on API hiccups.

All text goes out as HTML, so anything read from storage (card sides, tags,
deck names) must pass through html.escape() before it is embedded:

    await safe_edit_text(query, f"Deck: <b>{html.escape(deck.name)}</b>")
"""

import logging
from typing import Any, Awaitable

from telegram import CallbackQuery, InlineKeyboardMarkup, Message, Update
from telegram.error import BadRequest, Forbidden, TimedOut, NetworkError
from telegram.ext import ContextTypes

from database.database import Storage

logger = logging.getLogger(__name__)

Target = Message | tuple[int, Any]


def get_storage(context: ContextTypes.DEFAULT_TYPE) -> Storage:
    return context.application.bot_data['storage']


def is_owner(update: Update, context: ContextTypes.DEFAULT_TYPE) -> bool:
    """No OWNER_ID configured means the bot is open to whoever finds it."""
    owner_id = context.application.bot_data.get('owner_id')
    if owner_id is None:
        return True
    return update.effective_user is not None and update.effective_user.id == owner_id


async def _deliver(call: Awaitable, what: str) -> bool:
    try:
        await call
        return True
    except Forbidden:
        logger.warning(f"{what}: bot was blocked by user")
    except (TimedOut, NetworkError) as e:
        logger.warning(f"{what}: network error: {e}")
    except BadRequest as e:
        logger.warning(f"{what}: bad request: {e}")
    return False


async def safe_send_text(
    target: Target,
    text: str,
    reply_markup: InlineKeyboardMarkup | None = None,
    parse_mode: str = 'HTML',
) -> bool:
    """Reply to a Message, or send to a (chat_id, bot) pair."""
    if isinstance(target, tuple):
        chat_id, bot = target
        call = bot.send_message(chat_id=chat_id, text=text, reply_markup=reply_markup, parse_mode=parse_mode)
    else:
        call = target.reply_text(text, reply_markup=reply_markup, parse_mode=parse_mode)
    return await _deliver(call, 'send_text')


async def safe_edit_text(
    query: CallbackQuery,
    text: str,
    reply_markup: InlineKeyboardMarkup | None = None,
    parse_mode: str = 'HTML',
) -> bool:
    """Edit the message behind a button press; post a new one if it can't be edited."""
    try:
        await query.edit_message_text(text, reply_markup=reply_markup, parse_mode=parse_mode)
        return True
    except BadRequest as e:
        if "message is not modified" in str(e).lower():
            return True
        logger.info(f"edit_text failed ({e}), replying instead")
    except (TimedOut, NetworkError) as e:
        logger.warning(f"edit_text: network error: {e}")
        return False

    if query.message is None:
        return False
    return await safe_send_text(query.message, text, reply_markup, parse_mode)


async def safe_send_document(message: Message, data: bytes, filename: str, caption: str | None = None) -> bool:
    call = message.reply_document(document=data, filename=filename, caption=caption)
    return await _deliver(call, f'send_document {filename}')
