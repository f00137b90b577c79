from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.ext import ContextTypes

from utils.telegram_helpers import safe_edit_text, safe_send_text


HELP_TEXT = (
    "<b>❓ How it works</b>\n\n"
    "1. Add a card: <code>front | back</code>, tags after a second bar\n"
    "2. Cards live in decks, open one from My Decks\n"
    "3. Hit Study and answer Correct or Incorrect\n"
    "4. Correct moves a card up a level, Incorrect moves it down\n\n"
    "Each level waits longer before the card comes back: "
    "now, 1d, 3d, 1w, 2w, 1mo, 3mo, 6mo. "
    "Level 5 and up counts as mastered ⭐\n\n"
    "/study · /decks · /stats · /export · /cancel"
)

_MARKUP = InlineKeyboardMarkup([
    [InlineKeyboardButton("Menu", callback_data='main_menu')]
])


async def help_entry(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    await safe_edit_text(query, HELP_TEXT, reply_markup=_MARKUP)


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await safe_send_text(update.message, HELP_TEXT, reply_markup=_MARKUP)
