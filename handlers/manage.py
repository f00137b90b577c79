import html
import logging
from datetime import datetime

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup, CallbackQuery
from telegram.ext import (
    ContextTypes, ConversationHandler,
    MessageHandler, CommandHandler, CallbackQueryHandler, filters,
)

from handlers.decks_menu import show_decks_page
from handlers.start import force_start, build_main_menu
from utils.constants import ManageState, CARD_SIDE_MAX
from utils.errors import ValidationError
from utils.models import Card
from utils.srs import MASTERY_LEVEL
from utils.telegram_helpers import get_storage, safe_edit_text, safe_send_text
from utils.utils import parse_text, truncate

CARDS_PER_PAGE = 5
FRONT_MAX = 30

ID = r'[0-9a-f-]+'


def _level_badge(card: Card) -> str:
    if card.level >= MASTERY_LEVEL:
        return '⭐'
    if card.level > 0:
        return f'L{card.level}'
    return '\U0001f195' if card.is_new else 'L0'


async def _show_deck_detail(
    query: CallbackQuery,
    context: ContextTypes.DEFAULT_TYPE,
    deck_id: str,
    page: int = 0,
) -> None:
    storage = get_storage(context)
    deck = await storage.get_deck(deck_id)
    if deck is None:
        await safe_edit_text(
            query,
            "Deck not found.",
            reply_markup=InlineKeyboardMarkup([
                [InlineKeyboardButton('My Decks', callback_data='my_decks')]
            ]),
        )
        return

    cards = await storage.get_cards_for_deck(deck_id)
    total = len(cards)
    total_pages = max(1, (total + CARDS_PER_PAGE - 1) // CARDS_PER_PAGE)
    page = max(0, min(page, total_pages - 1))

    context.user_data['manage_deck_id'] = deck_id
    context.user_data['manage_deck_page'] = page

    start = page * CARDS_PER_PAGE
    page_cards = cards[start:start + CARDS_PER_PAGE]

    header = (
        f"<b>\U0001f4da {html.escape(deck.name)}</b>\n"
        f"{deck.total_cards} cards · ⭐ {deck.mastered_cards} mastered · "
        f"\U0001f4d6 {deck.learning_cards} learning"
    )
    if total_pages > 1:
        header += f"  ({page + 1}/{total_pages})"
    if not cards:
        header += "\n\n<i>No cards yet</i>"

    buttons: list[list[InlineKeyboardButton]] = [
        [InlineKeyboardButton(
            f"{_level_badge(c)}  {truncate(c.front, FRONT_MAX)}",
            callback_data=f'card_info_{c.id}',
        )]
        for c in page_cards
    ]

    if total_pages > 1:
        nav: list[InlineKeyboardButton] = []
        if page > 0:
            nav.append(InlineKeyboardButton('←', callback_data=f'deck_page_{page - 1}'))
        if page < total_pages - 1:
            nav.append(InlineKeyboardButton('→', callback_data=f'deck_page_{page + 1}'))
        buttons.append(nav)

    if total > 0:
        buttons.append([InlineKeyboardButton('▶ Study', callback_data=f'study_deck_{deck_id}')])
    buttons.append([
        InlineKeyboardButton('➕ Add card', callback_data=f'add_card_{deck_id}'),
        InlineKeyboardButton('\U0001f5d1️ Delete deck', callback_data=f'deck_delete_{deck_id}'),
    ])
    buttons.append([InlineKeyboardButton('My Decks', callback_data='my_decks')])

    await safe_edit_text(query, header, reply_markup=InlineKeyboardMarkup(buttons))


def _card_info_text(card: Card) -> str:
    next_review = card.next_review_date.strftime('%b %d, %H:%M') if card.next_review_date else 'now (new)'
    last = card.last_reviewed.strftime('%b %d, %H:%M') if card.last_reviewed else 'never'
    tags = f"\n\U0001f3f7 {html.escape(', '.join(card.tags))}" if card.tags else ""
    return (
        f"<b>{html.escape(card.front)}</b>\n\n"
        f"\U0001f4a1 {html.escape(card.back)}{tags}\n\n"
        f"Level {card.level} · ✅ {card.correct_count} · ❌ {card.incorrect_count}\n"
        f"Last reviewed: {last}\n"
        f"Next review: {next_review}"
    )


# ── Standalone callbacks ──────────────────────────────────────

async def deck_open(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    deck_id = query.data.split('_', 2)[2]
    await _show_deck_detail(query, context, deck_id)


async def deck_cards_page(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    page = int(query.data.split('_')[2])  # deck_page_N
    deck_id = context.user_data.get('manage_deck_id')
    if not deck_id:
        await show_decks_page(query, context, page=0)
        return
    await _show_deck_detail(query, context, deck_id, page)


async def card_info(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    card_id = query.data.split('_', 2)[2]

    card = await get_storage(context).get_card(card_id)
    if card is None:
        await safe_edit_text(query, "Card not found.", reply_markup=InlineKeyboardMarkup([
            [InlineKeyboardButton('My Decks', callback_data='my_decks')]
        ]))
        return

    await safe_edit_text(
        query,
        _card_info_text(card),
        reply_markup=InlineKeyboardMarkup([
            [
                InlineKeyboardButton('✏️ Edit', callback_data=f'card_edit_{card.id}'),
                InlineKeyboardButton('\U0001f5d1️ Delete', callback_data=f'card_delete_{card.id}'),
            ],
            [InlineKeyboardButton('← Back', callback_data=f'deck_open_{card.deck_id}')],
        ]),
    )


async def card_delete_confirm(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    card_id = query.data.split('_', 2)[2]

    card = await get_storage(context).get_card(card_id)
    if card is None:
        await safe_edit_text(query, "Card not found.")
        return

    await safe_edit_text(
        query,
        f"\U0001f5d1️ Delete <b>{html.escape(truncate(card.front, FRONT_MAX))}</b>? This cannot be undone.",
        reply_markup=InlineKeyboardMarkup([
            [
                InlineKeyboardButton('Yes, delete', callback_data=f'card_delete_yes_{card.id}'),
                InlineKeyboardButton('Cancel', callback_data=f'card_info_{card.id}'),
            ]
        ]),
    )


async def card_delete_yes(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    card_id = query.data.split('_', 3)[3]

    storage = get_storage(context)
    card = await storage.get_card(card_id)
    await storage.delete_card(card_id)

    deck_id = card.deck_id if card else context.user_data.get('manage_deck_id')
    if not deck_id:
        await show_decks_page(query, context, page=0)
        return
    page = context.user_data.get('manage_deck_page', 0)
    await _show_deck_detail(query, context, deck_id, page)


async def deck_delete_confirm(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    deck_id = query.data.split('_', 2)[2]

    deck = await get_storage(context).get_deck(deck_id)
    deck_name = deck.name if deck else 'this deck'
    await safe_edit_text(
        query,
        f"\U0001f5d1️ Delete deck <b>{html.escape(deck_name)}</b> and all its cards?\n<i>This cannot be undone.</i>",
        reply_markup=InlineKeyboardMarkup([
            [
                InlineKeyboardButton('Yes, delete', callback_data=f'deck_delete_yes_{deck_id}'),
                InlineKeyboardButton('Cancel', callback_data=f'deck_open_{deck_id}'),
            ]
        ]),
    )


async def deck_delete_yes(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    deck_id = query.data.split('_', 3)[3]

    await get_storage(context).delete_deck(deck_id)
    context.user_data.pop('manage_deck_id', None)
    context.user_data.pop('manage_deck_page', None)
    if context.user_data.get('default_deck_id') == deck_id:
        context.user_data.pop('default_deck_id', None)

    # straight back to My Decks
    await show_decks_page(query, context, page=0)


# ── Edit card conversation ────────────────────────────────────

async def start_edit_card(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()
    card_id = query.data.split('_', 2)[2]

    card = await get_storage(context).get_card(card_id)
    if card is None:
        await safe_edit_text(query, "Card not found.")
        return ConversationHandler.END

    context.user_data['editing_card_id'] = card.id

    copyable = f"{card.front} | {card.back}"
    if card.tags:
        copyable += f" | {', '.join(card.tags)}"

    await safe_edit_text(
        query,
        f"✏️ <b>Edit card</b>\n\n"
        f"<code>{html.escape(copyable)}</code>\n\n"
        f"<i>Tap the text above to copy, edit and send.\n"
        f"Progress (level, counts) is kept.\n/cancel to abort</i>",
    )
    return ManageState.EDIT_CARD_CONTENT


async def receive_edit_content(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    parsed = parse_text(update.message.text or '')

    if not parsed['front'] or not parsed['back']:
        await safe_send_text(update.message, "⚠️ A card needs both sides: <code>front | back</code>. Try again:")
        return ManageState.EDIT_CARD_CONTENT

    if len(parsed['front']) > CARD_SIDE_MAX or len(parsed['back']) > CARD_SIDE_MAX:
        await safe_send_text(update.message, f"⚠️ Each side can be up to {CARD_SIDE_MAX} characters. Try again:")
        return ManageState.EDIT_CARD_CONTENT

    context.user_data['edit_card_parsed'] = parsed

    tags = f"\nTags: {html.escape(', '.join(parsed['tags']))}" if parsed['tags'] else ""
    await safe_send_text(
        update.message,
        f"<b>\U0001f4cb Preview</b>\n\n"
        f"Front: {html.escape(parsed['front'])}\n"
        f"Back: {html.escape(parsed['back'])}{tags}",
        reply_markup=InlineKeyboardMarkup([[
            InlineKeyboardButton('✔ Save', callback_data='save_edit'),
            InlineKeyboardButton('✖ Cancel', callback_data='cancel_edit'),
        ]]),
    )
    return ManageState.EDIT_CARD_PREVIEW


async def save_edit_card(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()

    card_id = context.user_data.pop('editing_card_id', None)
    parsed = context.user_data.pop('edit_card_parsed', {})
    storage = get_storage(context)

    card = await storage.get_card(card_id) if card_id else None
    if card is None or not parsed:
        await safe_edit_text(query, "⚠️ Session expired — please start over.", reply_markup=InlineKeyboardMarkup([
            [InlineKeyboardButton('My Decks', callback_data='my_decks')]
        ]))
        return ConversationHandler.END

    # content only: level and review history are the scheduler's business
    edited = card.model_copy(update={
        'front': parsed['front'],
        'back': parsed['back'],
        'tags': parsed['tags'],
        'updated_at': datetime.now(),
    })
    try:
        await storage.save_card(edited)
    except ValidationError as e:
        logging.warning(f"Edited card rejected: {e}")
        await safe_edit_text(query, "⚠️ That edit can't be saved.")
        return ConversationHandler.END

    await _show_deck_detail(query, context, card.deck_id, context.user_data.get('manage_deck_page', 0))
    return ConversationHandler.END


async def cancel_edit_card(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()

    card_id = context.user_data.pop('editing_card_id', None)
    context.user_data.pop('edit_card_parsed', None)

    card = await get_storage(context).get_card(card_id) if card_id else None
    if card is None:
        await show_decks_page(query, context, page=0)
    else:
        await _show_deck_detail(query, context, card.deck_id, context.user_data.get('manage_deck_page', 0))
    return ConversationHandler.END


async def cancel_manage(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    context.user_data.pop('editing_card_id', None)
    context.user_data.pop('edit_card_parsed', None)

    text, markup = await build_main_menu(get_storage(context))

    if update.callback_query:
        await update.callback_query.answer()
        await safe_edit_text(update.callback_query, text, reply_markup=markup)
    else:
        await safe_send_text(update.message, text, reply_markup=markup)

    return ConversationHandler.END


# ── ConversationHandlers ──────────────────────────────────────

edit_card_handler = ConversationHandler(
    entry_points=[CallbackQueryHandler(start_edit_card, pattern=rf'^card_edit_{ID}$')],
    per_message=False,
    states={
        ManageState.EDIT_CARD_CONTENT: [
            MessageHandler(filters.TEXT & ~filters.COMMAND, receive_edit_content),
        ],
        ManageState.EDIT_CARD_PREVIEW: [
            CallbackQueryHandler(save_edit_card, pattern='^save_edit$'),
            CallbackQueryHandler(cancel_edit_card, pattern='^cancel_edit$'),
        ],
    },
    fallbacks=[CommandHandler('cancel', cancel_manage), CommandHandler('start', force_start)],
)
