import html
import logging

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.ext import ContextTypes

import handlers.flow_handlers as hand_flow
from utils.constants import AddCardState, DECK_NAME_MAX
from utils.errors import ValidationError
from utils.models import Deck
from utils.telegram_helpers import get_storage, safe_edit_text, safe_send_text


async def create_deck(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    deck_name = (update.message.text or '').strip()

    if not deck_name:
        await safe_send_text(update.message, "⚠️ Deck name can't be empty. Try again:")
        return AddCardState.CREATING_DECK

    if len(deck_name) > DECK_NAME_MAX:
        await safe_send_text(update.message, f"⚠️ Too long — {DECK_NAME_MAX} characters max. Try again:")
        return AddCardState.CREATING_DECK

    storage = get_storage(context)
    existing = await storage.get_all_decks()
    if any(d.name.casefold() == deck_name.casefold() for d in existing):
        await safe_send_text(
            update.message,
            f"⚠️ \"{html.escape(deck_name)}\" already exists. Pick a different name:"
        )
        return AddCardState.CREATING_DECK

    try:
        deck = await storage.save_deck(Deck(name=deck_name))
    except ValidationError as e:
        logging.warning(f"Deck rejected: {e}")
        await safe_send_text(update.message, "⚠️ That name doesn't work. Try another:")
        return AddCardState.CREATING_DECK

    logging.info(f"Created deck {deck.id}")
    context.user_data['cur_deck_id'] = deck.id

    # Content may already be waiting (sent before the deck existed) → preview it.
    if context.user_data.get('cur_card'):
        await hand_flow.preview(update.message, context)
        return AddCardState.CONFIRMATION_PREVIEW

    await safe_send_text(
        update.message,
        f"✅ Deck \"{html.escape(deck.name)}\" created!\n\n"
        f"\U0001f4dd Now send me the first card:\n"
        f"<code>front | back</code>",
        reply_markup=InlineKeyboardMarkup([[
            InlineKeyboardButton("\U0001f3e0 Menu", callback_data='main_menu')
        ]]),
    )
    return AddCardState.AWAITING_CONTENT


async def selected_deck(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()

    deck_id = query.data.split('_', 2)[2]  # pick_deck_<id>
    context.user_data['cur_deck_id'] = deck_id

    if context.user_data.get('cur_card'):
        await hand_flow.preview(query, context)
        return AddCardState.CONFIRMATION_PREVIEW

    deck = await get_storage(context).get_deck(deck_id)
    await safe_edit_text(
        query,
        f"\U0001f4dd Send me the card\n\n<i>\U0001f4c1 {html.escape(deck.name if deck else '—')}</i>"
    )
    return AddCardState.AWAITING_CONTENT


async def create_new_deck(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()

    await safe_edit_text(query, "✏️ Name for the new deck:")
    return AddCardState.CREATING_DECK
