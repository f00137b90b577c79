import html
import logging

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup, CallbackQuery, Message
from telegram.ext import ContextTypes, ConversationHandler

import utils.utils as utils
from handlers.start import build_main_menu
from utils.constants import AddCardState, CARD_SIDE_MAX
from utils.telegram_helpers import get_storage, safe_edit_text, safe_send_text

PREVIEW_BUTTONS = [
    [InlineKeyboardButton("✅ Save", callback_data='save_card')],
    [
        InlineKeyboardButton("✏️ Edit", callback_data='edit_card'),
        InlineKeyboardButton("\U0001f4c1 Deck", callback_data='change_deck'),
    ],
    [InlineKeyboardButton("✖ Cancel", callback_data='cancel')],
]


async def get_content(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    logging.info("Got content")

    parsed = utils.parse_text(update.message.text or '')

    if not parsed['front']:
        await safe_send_text(update.message, "⚠️ Card can't be empty. Send some text:")
        return AddCardState.AWAITING_CONTENT

    if len(parsed['front']) > CARD_SIDE_MAX or len(parsed['back']) > CARD_SIDE_MAX:
        await safe_send_text(
            update.message,
            f"⚠️ Too long — each side can be up to {CARD_SIDE_MAX} characters. Try again:"
        )
        return AddCardState.AWAITING_CONTENT

    if not parsed['back']:
        front_hint = html.escape(parsed['front'][:20])
        await safe_send_text(
            update.message,
            f"⚠️ Cards need two sides.\n\n"
            f"Use <code>|</code> to separate front from back:\n"
            f"<code>{front_hint} | meaning here</code>\n\n"
            f"Or send two lines:\n"
            f"<code>{front_hint}\nmeaning here</code>"
        )
        return AddCardState.AWAITING_CONTENT

    context.user_data['cur_card'] = parsed

    if context.user_data.get('cur_deck_id'):
        await preview(update.message, context)
        return AddCardState.CONFIRMATION_PREVIEW

    return await show_deck_selection(update.message, context)


async def show_deck_selection(target: Message | CallbackQuery, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Deck picker. With no decks yet, go straight to naming the first one."""
    decks = await get_storage(context).get_all_decks()

    if not decks:
        text = "No decks yet \U0001f4ad\nType a name for your first one:"
        if isinstance(target, CallbackQuery):
            await safe_edit_text(target, text)
        else:
            await safe_send_text(target, text)
        return AddCardState.CREATING_DECK

    buttons = utils.get_buttons([{'id': d.id, 'name': d.name} for d in decks], 'pick_deck')
    buttons.append([InlineKeyboardButton("➕ New deck", callback_data='new_deck')])
    buttons.append([InlineKeyboardButton("Cancel", callback_data='cancel')])
    markup = InlineKeyboardMarkup(buttons)

    if isinstance(target, CallbackQuery):
        await safe_edit_text(target, "\U0001f4c1 Which deck?", reply_markup=markup)
    else:
        await safe_send_text(target, "\U0001f4c1 Which deck?", reply_markup=markup)
    return AddCardState.AWAITING_DECK


async def preview(target: Message | CallbackQuery, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Works with both Message and CallbackQuery."""
    cur_card = context.user_data.get('cur_card', {})
    front = cur_card.get('front', '[empty]')
    back = cur_card.get('back', '')
    tags = cur_card.get('tags', [])

    deck_id = context.user_data.get('cur_deck_id')
    deck = await get_storage(context).get_deck(deck_id) if deck_id else None
    deck_name = deck.name if deck else "—"

    tags_line = f"\n<b>Tags:</b> {html.escape(', '.join(tags))}" if tags else ""
    preview_text = (
        f"<b>\U0001f4cb Preview</b>\n\n"
        f"<b>Front:</b> {html.escape(front)}\n"
        f"<b>Back:</b> {html.escape(back)}"
        f"{tags_line}\n\n"
        f"<i>\U0001f4c1 {html.escape(deck_name)}</i>"
    )
    markup = InlineKeyboardMarkup(PREVIEW_BUTTONS)

    if isinstance(target, CallbackQuery):
        await safe_edit_text(target, preview_text, reply_markup=markup)
    else:
        await safe_send_text(target, preview_text, reply_markup=markup)


async def back_to_content(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()

    await safe_edit_text(query, "✏️ Send me the card again")
    return AddCardState.AWAITING_CONTENT


def _clear_add_card_data(context: ContextTypes.DEFAULT_TYPE) -> None:
    context.user_data.pop('cur_card', None)
    context.user_data.pop('cur_deck_id', None)


async def menu_exit(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()

    _clear_add_card_data(context)

    text, markup = await build_main_menu(get_storage(context))
    await safe_edit_text(query, text, reply_markup=markup)
    return ConversationHandler.END


async def cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    _clear_add_card_data(context)

    text, markup = await build_main_menu(get_storage(context))

    if update.callback_query:
        await update.callback_query.answer()
        await safe_edit_text(update.callback_query, text, reply_markup=markup)
    else:
        await safe_send_text(update.message, text, reply_markup=markup)

    return ConversationHandler.END
