import html
import logging
from datetime import datetime

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup, CallbackQuery
from telegram.ext import ContextTypes, ConversationHandler

from handlers.start import build_main_menu
from utils.constants import SessionState, StudyMode, StudyState, STUDY_MODE_LABELS
from utils.errors import CardGoneError, EmptyQueueError, SessionBusyError, StorageError
from utils.models import StudyResult
from utils.selector import select_queue
from utils.session import StudySessionMachine
from utils.srs import next_interval_label
from utils.stats import SessionStats, session_stats
from utils.telegram_helpers import get_storage, safe_edit_text, safe_send_text
from utils.utils import format_duration

MENU_MARKUP = InlineKeyboardMarkup([
    [InlineKeyboardButton("\U0001f3e0 Menu", callback_data='main_menu')]
])

RETRY_MARKUP = InlineKeyboardMarkup([
    [InlineKeyboardButton("\U0001f501 Retry", callback_data='study_retry')],
    [InlineKeyboardButton("⏹ Stop", callback_data='study_stop')],
])

UNSAVED_MARKUP = InlineKeyboardMarkup([
    [InlineKeyboardButton("\U0001f501 Retry", callback_data='study_retry')],
    [InlineKeyboardButton("\U0001f5d1 Discard unsaved", callback_data='study_discard')],
])


# ── Entry points ──────────────────────────────────────────────

async def study_entry(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """'Study' from the main menu: due cards across every deck."""
    query = update.callback_query
    await query.answer()

    cards = await get_storage(context).get_all_cards()
    queue = select_queue(cards, StudyMode.DUE_REVIEW)

    return await _begin(query, context, queue, deck_id=None)


async def study_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/study slash command: sends a message with a Study button."""
    cards = await get_storage(context).get_all_cards()
    count = len(select_queue(cards, StudyMode.DUE_REVIEW))

    if count == 0:
        await safe_send_text(update.message, "✨ Nothing due — you're all caught up!", reply_markup=MENU_MARKUP)
        return

    await safe_send_text(
        update.message,
        f"\U0001f9e0 {count} card{'s' if count != 1 else ''} ready",
        reply_markup=InlineKeyboardMarkup([
            [InlineKeyboardButton('▶ Study', callback_data='study')]
        ]),
    )


async def study_deck_entry(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """'Study' on a deck page: pick how to go through it."""
    query = update.callback_query
    await query.answer()

    deck_id = query.data.split('_', 2)[2]  # study_deck_<id>
    storage = get_storage(context)
    deck = await storage.get_deck(deck_id)
    if deck is None:
        await safe_edit_text(query, "Deck not found.", reply_markup=MENU_MARKUP)
        return ConversationHandler.END

    cards = await storage.get_cards_for_deck(deck_id)
    now = datetime.now()

    buttons: list[list[InlineKeyboardButton]] = []
    for mode in StudyMode:
        count = len(select_queue(cards, mode, now))
        buttons.append([InlineKeyboardButton(
            f"{STUDY_MODE_LABELS[mode]} · {count}",
            callback_data=f'study_mode_{mode.value}_{deck_id}',
        )])
    buttons.append([InlineKeyboardButton("← Back", callback_data=f'deck_open_{deck_id}')])

    await safe_edit_text(
        query,
        f"\U0001f4da <b>{html.escape(deck.name)}</b>\n\nHow do you want to study?",
        reply_markup=InlineKeyboardMarkup(buttons),
    )
    return StudyState.MODE_PICKER


async def study_mode_selected(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()

    _, _, mode_value, deck_id = query.data.split('_', 3)  # study_mode_<mode>_<id>
    mode = StudyMode(mode_value)

    cards = await get_storage(context).get_cards_for_deck(deck_id)
    queue = select_queue(cards, mode)

    return await _begin(query, context, queue, deck_id=deck_id)


# ── In-session callbacks ──────────────────────────────────────

async def show_answer(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """User taps 'Show answer': reveal the back and the answer buttons."""
    query = update.callback_query
    await query.answer()

    machine = _active_machine(context)
    if machine is None:
        return await _expired(query, context)

    card = machine.current_card
    text = (
        f"{html.escape(card.front)}\n\n"
        f"\U0001f4a1 {html.escape(card.back)}\n\n"
        f"{_footer(machine, context)}"
    )
    markup = InlineKeyboardMarkup([
        [
            InlineKeyboardButton(
                f"❌ Incorrect · {next_interval_label(card, StudyResult.INCORRECT)}",
                callback_data='answer_incorrect',
            ),
            InlineKeyboardButton(
                f"✅ Correct · {next_interval_label(card, StudyResult.CORRECT)}",
                callback_data='answer_correct',
            ),
        ],
        [InlineKeyboardButton("⏹ Stop", callback_data='study_stop')],
    ])
    await safe_edit_text(query, text, reply_markup=markup)
    return StudyState.ANSWERING


async def answer_card(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query

    machine = _active_machine(context)
    if machine is None:
        await query.answer()
        return await _expired(query, context)

    result = StudyResult.CORRECT if query.data == 'answer_correct' else StudyResult.INCORRECT
    position = machine.position

    try:
        outcome = await machine.answer(machine.current_card, result)
    except SessionBusyError:
        await query.answer("Still saving the last answer…")
        return StudyState.ANSWERING
    except StorageError as e:
        logging.error(f"Couldn't save answer: {e}")
        await query.answer()
        if machine.position > position:
            text = "⚠️ Couldn't save your progress. Your answer is kept, tap Retry."
        else:
            # nothing was recorded for this answer
            text = "⚠️ Couldn't save your progress. Tap Retry, then answer this card again."
        await safe_edit_text(query, text, reply_markup=RETRY_MARKUP)
        return StudyState.ANSWERING
    except CardGoneError as e:
        logging.info(f"Skipped deleted card: {e}")
        await query.answer("That card was deleted, skipping it.")
        if machine.state == SessionState.ACTIVE:
            return await _show_front(query, context, machine)
        if machine.state == SessionState.COMPLETED:
            return await _finish(query, context, machine, await machine.flush())
        return await _expired(query, context)

    await query.answer()

    if outcome.completed:
        return await _finish(query, context, machine, outcome.stats)

    return await _show_front(query, context, machine)


async def retry_save(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Push writes left over from a failed answer, then carry on."""
    query = update.callback_query
    machine: StudySessionMachine | None = context.user_data.get('study_session')
    if machine is None:
        await query.answer()
        return await _expired(query, context)

    try:
        stats = await machine.flush()
    except SessionBusyError:
        await query.answer("Still saving…")
        return StudyState.ANSWERING
    except StorageError as e:
        logging.error(f"Retry failed: {e}")
        await query.answer("Still can't save. Try again in a moment.", show_alert=True)
        return StudyState.ANSWERING

    await query.answer()

    if machine.state == SessionState.COMPLETED:
        return await _finish(query, context, machine, stats)
    if machine.state == SessionState.ACTIVE:
        return await _show_front(query, context, machine)
    if machine.state == SessionState.ABANDONED:
        reviewed = machine.position
        _cleanup_study_data(context)
        await safe_edit_text(query, _stopped_text(reviewed), reply_markup=MENU_MARKUP)
        return ConversationHandler.END
    return await _expired(query, context)


async def stop_study(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Stop mid-session. Works for both the Stop button and /cancel."""
    query = update.callback_query
    machine: StudySessionMachine | None = context.user_data.get('study_session')

    if machine is not None and machine.has_pending_writes:
        try:
            stats = await machine.flush()
        except SessionBusyError:
            if query:
                await query.answer("Still saving the last answer…")
            return StudyState.ANSWERING
        except StorageError as e:
            # unsaved answers are only dropped through study_discard
            logging.error(f"Stop blocked by unsaved progress: {e}")
            return await _ask_about_unsaved(update, "⚠️ Your last answer isn't saved yet. Tap Retry, or discard it.")

        if query and machine.state == SessionState.COMPLETED:
            await query.answer()
            return await _finish(query, context, machine, stats)

    reviewed = 0
    if machine is not None:
        reviewed = machine.position
        if machine.state == SessionState.ACTIVE:
            try:
                await machine.abandon()
            except SessionBusyError:
                if query:
                    await query.answer("Still saving the last answer…")
                return StudyState.ANSWERING
            except StorageError as e:
                logging.error(f"Couldn't save abandoned session: {e}")
                return await _ask_about_unsaved(update, "⚠️ Your answers so far aren't saved yet. Tap Retry, or discard them.")

    _cleanup_study_data(context)

    if query:
        await query.answer()
        await safe_edit_text(query, _stopped_text(reviewed), reply_markup=MENU_MARKUP)
    else:
        await safe_send_text(update.message, _stopped_text(reviewed), reply_markup=MENU_MARKUP)

    return ConversationHandler.END


async def discard_study(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Leave the session and drop writes that never made it to storage."""
    query = update.callback_query
    await query.answer()

    machine: StudySessionMachine | None = context.user_data.get('study_session')
    if machine is not None and machine.has_pending_writes:
        logging.warning(f"Discarded unsaved progress of session {machine.session.id}")

    _cleanup_study_data(context)
    await safe_edit_text(query, "\U0001f5d1 Unsaved progress discarded.", reply_markup=MENU_MARKUP)
    return ConversationHandler.END


async def study_menu_exit(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()

    _cleanup_study_data(context)
    text, markup = await build_main_menu(get_storage(context))
    await safe_edit_text(query, text, reply_markup=markup)
    return ConversationHandler.END


# ============================================================
# Private helpers
# ============================================================

async def _begin(
    query: CallbackQuery,
    context: ContextTypes.DEFAULT_TYPE,
    queue: list,
    deck_id: str | None,
) -> int:
    old: StudySessionMachine | None = context.user_data.get('study_session')
    if old is not None and old.state == SessionState.ACTIVE:
        try:
            await old.abandon()
        except (SessionBusyError, StorageError) as e:
            logging.warning(f"Previous session not closed cleanly: {e}")

    machine = StudySessionMachine(get_storage(context))
    try:
        machine.start(queue, deck_id=deck_id)
    except EmptyQueueError:
        _cleanup_study_data(context)
        await safe_edit_text(query, "✨ Nothing to study here — you're all caught up!", reply_markup=MENU_MARKUP)
        return ConversationHandler.END

    decks = await get_storage(context).get_all_decks()
    context.user_data['study_session'] = machine
    context.user_data['study_deck_names'] = {d.id: d.name for d in decks}

    return await _show_front(query, context, machine)


def _stopped_text(reviewed: int) -> str:
    return f"⏹ Stopped after {reviewed} card{'s' if reviewed != 1 else ''}"


async def _ask_about_unsaved(update: Update, text: str) -> int:
    """Stay in the session until the unsaved writes land or the user drops them."""
    if update.callback_query:
        await update.callback_query.answer()
        await safe_edit_text(update.callback_query, text, reply_markup=UNSAVED_MARKUP)
    else:
        await safe_send_text(update.message, text, reply_markup=UNSAVED_MARKUP)
    return StudyState.ANSWERING


def _active_machine(context: ContextTypes.DEFAULT_TYPE) -> StudySessionMachine | None:
    machine: StudySessionMachine | None = context.user_data.get('study_session')
    if machine is None or machine.state != SessionState.ACTIVE:
        return None
    return machine


def _footer(machine: StudySessionMachine, context: ContextTypes.DEFAULT_TYPE) -> str:
    card = machine.current_card
    deck_name = context.user_data.get('study_deck_names', {}).get(card.deck_id, '—')
    return f"\U0001f4c1 {html.escape(deck_name)}  ·  {machine.position + 1}/{machine.queue_length}"


async def _show_front(query: CallbackQuery, context: ContextTypes.DEFAULT_TYPE, machine: StudySessionMachine) -> int:
    card = machine.current_card
    buttons = InlineKeyboardMarkup([
        [InlineKeyboardButton("\U0001f440 Show answer", callback_data='show_answer')],
        [InlineKeyboardButton("⏹ Stop", callback_data='study_stop')],
    ])
    await safe_edit_text(query, f"{html.escape(card.front)}\n\n{_footer(machine, context)}", reply_markup=buttons)
    return StudyState.SHOWING_FRONT


def build_summary_text(stats: SessionStats) -> str:
    return (
        f"\U0001f389 <b>Done!</b> {stats.correct_cards}/{stats.total_cards} correct\n\n"
        f"\U0001f3af Accuracy: {stats.accuracy:.0f}%\n"
        f"⏱ Time: {format_duration(stats.total_time)}\n"
        f"\U0001f4c8 Per card: {format_duration(stats.average_time_per_card)}"
    )


async def _finish(
    query: CallbackQuery,
    context: ContextTypes.DEFAULT_TYPE,
    machine: StudySessionMachine,
    stats: SessionStats | None,
) -> int:
    """Show the session summary and end the conversation."""
    if stats is None:
        stats = session_stats(machine.session, machine.queue_length)

    _cleanup_study_data(context)

    markup = InlineKeyboardMarkup([
        [InlineKeyboardButton("\U0001f4dd New Card", callback_data='add_card'),
         InlineKeyboardButton("\U0001f3e0 Menu", callback_data='main_menu')]
    ])
    await safe_edit_text(query, build_summary_text(stats), reply_markup=markup)
    return ConversationHandler.END


async def _expired(query: CallbackQuery, context: ContextTypes.DEFAULT_TYPE) -> int:
    _cleanup_study_data(context)
    await safe_edit_text(query, "⚠️ This session has ended.", reply_markup=MENU_MARKUP)
    return ConversationHandler.END


def _cleanup_study_data(context: ContextTypes.DEFAULT_TYPE) -> None:
    context.user_data.pop('study_session', None)
    context.user_data.pop('study_deck_names', None)
