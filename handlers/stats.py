import html

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.ext import ContextTypes

from database.database import Storage
from utils.stats import StatsView, aggregate_stats
from utils.telegram_helpers import get_storage, safe_edit_text, safe_send_text
from utils.utils import format_duration

STATS_MARKUP = InlineKeyboardMarkup([
    [InlineKeyboardButton('\U0001f5d1️ Reset history', callback_data='stats_reset')],
    [InlineKeyboardButton('\U0001f3e0 Menu', callback_data='main_menu')],
])


def _recent_lines(view: StatsView) -> str:
    if not view.recent_sessions:
        return "No finished sessions yet"

    lines = []
    for session in view.recent_sessions:
        total = len(session.cards_reviewed)
        lines.append(
            f"  {session.start_time.strftime('%b %d, %H:%M')}  ·  "
            f"{session.correct_count}/{total} correct"
        )
    return '\n'.join(lines)


def _deck_lines(view: StatsView) -> str:
    if not view.decks:
        return "No decks yet"

    lines = []
    for deck in view.decks:
        line = f"  {html.escape(deck.name)}  ·  ⭐ {deck.mastered_cards}/{deck.total_cards}"
        if deck.reviews:
            line += f"  ·  {deck.accuracy:.0f}%"
        lines.append(line)
    return '\n'.join(lines)


def build_stats_text(view: StatsView) -> str:
    text = (
        f"\U0001f4ca Stats\n\n"
        f"\U0001f4da Total: {view.total_cards}\n"
        f"⭐ Mastered: {view.mastered_cards}\n"
        f"\U0001f4d6 Learning: {view.learning_cards}\n\n"
        f"\U0001f3af Accuracy: {view.total_accuracy:.0f}%\n"
        f"⏱ Study time: {format_duration(view.total_study_time)}\n"
        f"\U0001f525 Streak: {view.streak.current} (best {view.streak.best}, "
        f"{view.streak.total_days} days total)\n\n"
        f"\U0001f4c1 Decks\n"
        f"{_deck_lines(view)}\n\n"
        f"\U0001f552 Recent sessions\n"
        f"{_recent_lines(view)}"
    )
    skipped = view.skipped_cards + view.skipped_sessions + view.skipped_decks
    if skipped:
        text += f"\n\n<i>⚠️ {skipped} unreadable record{'s' if skipped != 1 else ''} skipped</i>"
    return text


async def _load_view(storage: Storage) -> StatsView:
    return aggregate_stats(
        await storage.get_all_cards(),
        await storage.get_all_sessions(),
        await storage.get_all_decks(),
    )


async def stats_entry(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()

    view = await _load_view(get_storage(context))
    await safe_edit_text(query, build_stats_text(view), reply_markup=STATS_MARKUP)


async def stats_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/stats slash command: send a fresh stats message."""
    view = await _load_view(get_storage(context))
    await safe_send_text(update.message, build_stats_text(view), reply_markup=STATS_MARKUP)


async def stats_reset(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()

    await safe_edit_text(
        query,
        "\U0001f5d1️ Delete all study history?\n"
        "<i>Cards and their levels stay as they are. This cannot be undone.</i>",
        reply_markup=InlineKeyboardMarkup([[
            InlineKeyboardButton('Yes, reset', callback_data='stats_reset_yes'),
            InlineKeyboardButton('Cancel', callback_data='stats'),
        ]]),
    )


async def stats_reset_yes(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()

    storage = get_storage(context)
    await storage.clear_all_sessions()

    view = await _load_view(storage)
    await safe_edit_text(query, build_stats_text(view), reply_markup=STATS_MARKUP)
