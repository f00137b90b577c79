import html
import logging

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.ext import ContextTypes, ConversationHandler

import handlers.flow_handlers as hand_flow
from utils.constants import AddCardState
from utils.errors import ValidationError
from utils.models import Card
from utils.telegram_helpers import get_storage, safe_edit_text

CONTENT_HINT = (
    "<i>Use <code>front | back</code> or two lines.\n"
    "Tags go after a second bar: <code>front | back | verbs, b1</code></i>"
)


async def add_card_entry(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """'New Card' from the menu (add_card) or from a deck page (add_card_<deck_id>)."""
    query = update.callback_query
    await query.answer()

    parts = query.data.split('_', 2)
    deck_id = parts[2] if len(parts) == 3 else context.user_data.get('default_deck_id')

    deck = await get_storage(context).get_deck(deck_id) if deck_id else None

    if deck is None:
        if deck_id:
            logging.info(f"Remembered deck {deck_id} is gone")
            context.user_data.pop('default_deck_id', None)
        return await hand_flow.show_deck_selection(query, context)

    context.user_data['cur_deck_id'] = deck.id
    await safe_edit_text(
        query,
        f"\U0001f4dd Send me the card\n\n"
        f"{CONTENT_HINT}\n\n"
        f"<i>\U0001f4c1 {html.escape(deck.name)}</i>",
        reply_markup=InlineKeyboardMarkup([[
            InlineKeyboardButton("Change deck", callback_data='change_deck')
        ]])
    )
    return AddCardState.AWAITING_CONTENT


async def save_card(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()

    cur_card = context.user_data.get('cur_card')
    deck_id = context.user_data.get('cur_deck_id')

    if not cur_card or not deck_id:
        await safe_edit_text(
            query,
            "⚠️ Session expired — please start over.",
            reply_markup=InlineKeyboardMarkup([[InlineKeyboardButton('Menu', callback_data='main_menu')]])
        )
        return ConversationHandler.END

    try:
        card = Card(deck_id=deck_id, front=cur_card['front'], back=cur_card['back'], tags=cur_card['tags'])
    except ValueError as e:
        # pydantic's ValidationError is a ValueError
        logging.warning(f"Card rejected: {e}")
        await safe_edit_text(query, "⚠️ That card is missing a side. Send it again:")
        return AddCardState.AWAITING_CONTENT

    try:
        await get_storage(context).save_card(card)
    except ValidationError as e:
        logging.warning(f"Card rejected by storage: {e}")
        await safe_edit_text(query, "⚠️ That card can't be saved. Send it again:")
        return AddCardState.AWAITING_CONTENT

    logging.info(f"Saved card {card.id} to deck {deck_id}")

    # Remember the deck for the next card
    context.user_data['default_deck_id'] = deck_id
    context.user_data.pop('cur_card', None)

    await safe_edit_text(
        query,
        "✔️ Saved! Send me another one",
        reply_markup=InlineKeyboardMarkup([
            [InlineKeyboardButton("Menu", callback_data='main_menu')]
        ])
    )

    return AddCardState.AWAITING_CONTENT


async def change_deck(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()

    return await hand_flow.show_deck_selection(query, context)


async def edit_card(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()

    await safe_edit_text(query, f"✏️ Send the new content\n\n{CONTENT_HINT}")

    return AddCardState.AWAITING_CONTENT
