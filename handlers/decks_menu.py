from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup, CallbackQuery, Message
from telegram.ext import ContextTypes

from utils.models import Deck
from utils.telegram_helpers import get_storage, safe_edit_text, safe_send_text

DECKS_PER_PAGE = 5

NO_DECKS_TEXT = (
    "\U0001f4da No decks yet\n\n"
    "Create your first card and a deck will appear here."
)
NO_DECKS_MARKUP = InlineKeyboardMarkup([
    [InlineKeyboardButton("\U0001f4dd New Card", callback_data='add_card')],
    [InlineKeyboardButton("\U0001f3e0 Menu", callback_data='main_menu')],
])


async def decks_page(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """'My Decks' (first page) or a page arrow (decks_page_N)."""
    query = update.callback_query
    await query.answer()

    page = int(query.data.rsplit('_', 1)[1]) if query.data.startswith('decks_page_') else 0
    await show_decks_page(query, context, page)


async def decks_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/decks: a fresh My Decks message."""
    await show_decks_page(update.message, context, page=0)


async def show_decks_page(target: Message | CallbackQuery, context: ContextTypes.DEFAULT_TYPE, page: int) -> None:
    decks = await get_storage(context).get_all_decks()

    if decks:
        text, markup = build_decks_markup(decks, page)
    else:
        text, markup = NO_DECKS_TEXT, NO_DECKS_MARKUP

    if isinstance(target, CallbackQuery):
        await safe_edit_text(target, text, reply_markup=markup)
    else:
        await safe_send_text(target, text, reply_markup=markup)


def deck_label(deck: Deck) -> str:
    parts = [f"\U0001f4da {deck.name}", f"{deck.total_cards} cards"]
    if deck.mastered_cards:
        parts.append(f"⭐ {deck.mastered_cards}")
    if deck.learning_cards:
        parts.append(f"\U0001f4d6 {deck.learning_cards}")
    return " · ".join(parts)


def build_decks_markup(decks: list[Deck], page: int) -> tuple[str, InlineKeyboardMarkup]:
    pages = max(1, -(-len(decks) // DECKS_PER_PAGE))
    page = max(0, min(page, pages - 1))
    shown = decks[page * DECKS_PER_PAGE:(page + 1) * DECKS_PER_PAGE]

    total_cards = sum(d.total_cards for d in decks)
    header = f"\U0001f4da My Decks ({page + 1}/{pages})" if pages > 1 else "\U0001f4da My Decks"
    header += f"\n{len(decks)} decks · {total_cards} cards\n\n<i>⭐ mastered · \U0001f4d6 learning</i>"

    rows = [[InlineKeyboardButton(deck_label(d), callback_data=f"deck_open_{d.id}")] for d in shown]

    arrows = []
    if page > 0:
        arrows.append(InlineKeyboardButton("←", callback_data=f'decks_page_{page - 1}'))
    if page < pages - 1:
        arrows.append(InlineKeyboardButton("→", callback_data=f'decks_page_{page + 1}'))
    if arrows:
        rows.append(arrows)

    rows.append([InlineKeyboardButton("\U0001f3e0 Menu", callback_data='main_menu')])
    return header, InlineKeyboardMarkup(rows)
