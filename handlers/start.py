import html
import logging
from datetime import datetime

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.ext import ApplicationHandlerStop, ContextTypes, ConversationHandler

from database.database import Storage
from utils.constants import StudyMode
from utils.selector import select_queue
from utils.srs import is_due
from utils.telegram_helpers import get_storage, is_owner, safe_edit_text, safe_send_text


async def build_main_menu(storage: Storage) -> tuple[str, InlineKeyboardMarkup]:
    """
    Returns (message_text, markup) for the main menu.
    Text includes a one-line summary when there are cards.
    """
    cards = await storage.get_all_cards()
    now = datetime.now()
    total = len(cards)
    due = sum(1 for c in cards if is_due(c, now))
    batch = len(select_queue(cards, StudyMode.DUE_REVIEW, now))

    if total == 0:
        text = "\U0001f4da <b>Flashcards</b>\n\n<i>No cards yet — add your first one!</i>"
    elif due == 0:
        text = f"✅ <b>All caught up!</b>\n\n<i>{total} cards in your collection</i>"
    elif due == 1:
        text = f"\U0001f9e0 <b>1 card due</b>\n\n<i>{total} cards total</i>"
    else:
        text = f"\U0001f9e0 <b>{due} cards due</b>\n\n<i>{total} cards total</i>"

    study_label = f'\U0001f9e0 Study · {batch}' if batch > 0 else '\U0001f9e0 Study'
    markup = InlineKeyboardMarkup([
        [
            InlineKeyboardButton('\U0001f4dd New Card', callback_data='add_card'),
            InlineKeyboardButton(study_label, callback_data='study'),
        ],
        [
            InlineKeyboardButton('\U0001f4da My Decks', callback_data='my_decks'),
            InlineKeyboardButton('\U0001f4ca Stats', callback_data='stats'),
        ],
        [InlineKeyboardButton('❓ How it works', callback_data='help')],
    ])

    return text, markup


async def reject_stranger(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Runs before every other handler. This is a single-user bot."""
    if is_owner(update, context):
        return

    user = update.effective_user
    logging.warning(f"Rejected update from user {user.id if user else None}")
    if update.callback_query:
        await update.callback_query.answer("This bot is private.", show_alert=True)
    elif update.message:
        await safe_send_text(update.message, "\U0001f512 This bot is private.")
    raise ApplicationHandlerStop


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    logging.info("Started /start")

    name = update.effective_user.first_name
    storage = get_storage(context)
    decks = await storage.get_all_decks()

    if decks:
        _, markup = await build_main_menu(storage)
        await safe_send_text(
            update.message,
            f"Hey {html.escape(name)} \U0001f44b",
            reply_markup=markup,
        )
    else:
        await safe_send_text(
            update.message,
            f"Hey {html.escape(name)}, welcome \U0001f9e0\n\n"
            "Make decks of flashcards, study them here and "
            "I'll bring every card back right before you forget it.",
            reply_markup=InlineKeyboardMarkup([
                [InlineKeyboardButton("Let's go", callback_data='add_card')],
            ])
        )


_CONV_KEYS = (
    # add-card flow
    'cur_card', 'cur_deck_id',
    # study flow
    'study_session', 'study_deck_names',
    # manage flow
    'editing_card_id', 'edit_card_parsed', 'manage_deck_id', 'manage_deck_page',
    # backup flow
    'pending_restore',
)


def clear_conversation_data(context: ContextTypes.DEFAULT_TYPE) -> None:
    for key in _CONV_KEYS:
        context.user_data.pop(key, None)


async def _reset_and_send_menu(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Clear all in-progress conversation state and send a fresh main menu."""
    clear_conversation_data(context)
    text, markup = await build_main_menu(get_storage(context))
    await safe_send_text(update.message, text, reply_markup=markup)


async def force_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """ConversationHandler fallback: abort current flow and show main menu."""
    await _reset_and_send_menu(update, context)
    return ConversationHandler.END


async def main_menu(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Callback handler for the 'Menu' button (outside conversation)."""
    query = update.callback_query
    await query.answer()

    text, markup = await build_main_menu(get_storage(context))
    await safe_edit_text(query, text, reply_markup=markup)
