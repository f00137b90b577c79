import logging

from telegram import Update
from telegram.error import BadRequest, Forbidden, TimedOut, NetworkError
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    MessageHandler,
    ConversationHandler,
    CallbackQueryHandler,
    ContextTypes,
    TypeHandler,
    filters,
)

from config import TG_BOT_TOKEN, PROXY_URL, OWNER_ID, DB_PATH, BACKUP_DIR
from database.database import Storage
import handlers.backup as hand_backup
import handlers.cards as hand_card
import handlers.start as hand_start
import handlers.flow_handlers as hand_flow
import handlers.decks as hand_deck
import handlers.study as hand_study
import handlers.stats as hand_stats
import handlers.decks_menu as hand_decks_menu
import handlers.help as hand_help
import handlers.manage as hand_manage
from utils.constants import AddCardState, StudyState
from utils.errors import StorageError

ID = r'[0-9a-f-]+'


async def post_init(application: Application) -> None:
    logging.info("Init db...")
    await application.bot_data['storage'].init_db()


def main() -> None:
    logging.info("Running main")

    builder = ApplicationBuilder().token(TG_BOT_TOKEN).post_init(post_init)
    if PROXY_URL:
        builder = builder.proxy(PROXY_URL).get_updates_proxy(PROXY_URL)
    application = builder.build()

    application.bot_data['storage'] = Storage(DB_PATH)
    application.bot_data['owner_id'] = OWNER_ID
    application.bot_data['backup_dir'] = BACKUP_DIR

    if OWNER_ID is None:
        logging.warning("OWNER_ID is not set, the bot will answer anyone")

    # Add Card conversation
    add_card_handler = ConversationHandler(
        entry_points=[
            CallbackQueryHandler(hand_card.add_card_entry, pattern=rf'^add_card(_{ID})?$')
        ],
        per_message=False,

        states={
            AddCardState.AWAITING_CONTENT: [
                CallbackQueryHandler(hand_flow.menu_exit, pattern='^main_menu$'),
                CallbackQueryHandler(hand_card.change_deck, pattern='^change_deck$'),
                MessageHandler(filters.TEXT & ~filters.COMMAND, hand_flow.get_content),
            ],

            AddCardState.AWAITING_DECK: [
                CallbackQueryHandler(hand_deck.selected_deck, pattern=rf'^pick_deck_{ID}$'),
                CallbackQueryHandler(hand_deck.create_new_deck, pattern='^new_deck$'),
                CallbackQueryHandler(hand_flow.back_to_content, pattern='^back$'),
                CallbackQueryHandler(hand_flow.cancel, pattern='^cancel$'),
            ],

            AddCardState.CREATING_DECK: [
                MessageHandler(filters.TEXT & ~filters.COMMAND, hand_deck.create_deck)
            ],

            AddCardState.CONFIRMATION_PREVIEW: [
                CallbackQueryHandler(hand_card.save_card, pattern='^save_card$'),
                CallbackQueryHandler(hand_card.edit_card, pattern='^edit_card$'),
                CallbackQueryHandler(hand_card.change_deck, pattern='^change_deck$'),
                CallbackQueryHandler(hand_flow.back_to_content, pattern='^back$'),
                CallbackQueryHandler(hand_flow.cancel, pattern='^cancel$'),
            ]
        },

        fallbacks=[
            CommandHandler('cancel', hand_flow.cancel),
            CommandHandler('start', hand_start.force_start),
        ]
    )

    # Study conversation
    study_handler = ConversationHandler(
        entry_points=[
            CallbackQueryHandler(hand_study.study_entry, pattern='^study$'),
            CallbackQueryHandler(hand_study.study_deck_entry, pattern=rf'^study_deck_{ID}$'),
            CallbackQueryHandler(hand_study.study_mode_selected, pattern=rf'^study_mode_[a-z]+_{ID}$'),
        ],
        per_message=False,
        allow_reentry=True,

        states={
            StudyState.MODE_PICKER: [
                CallbackQueryHandler(hand_study.study_mode_selected, pattern=rf'^study_mode_[a-z]+_{ID}$'),
                CallbackQueryHandler(hand_study.study_menu_exit, pattern='^main_menu$'),
            ],

            StudyState.SHOWING_FRONT: [
                CallbackQueryHandler(hand_study.show_answer, pattern='^show_answer$'),
                CallbackQueryHandler(hand_study.stop_study, pattern='^study_stop$'),
            ],

            StudyState.ANSWERING: [
                CallbackQueryHandler(hand_study.answer_card, pattern='^answer_(correct|incorrect)$'),
                CallbackQueryHandler(hand_study.retry_save, pattern='^study_retry$'),
                CallbackQueryHandler(hand_study.discard_study, pattern='^study_discard$'),
                CallbackQueryHandler(hand_study.stop_study, pattern='^study_stop$'),
            ],
        },

        fallbacks=[
            CommandHandler('cancel', hand_study.stop_study),
            CommandHandler('start', hand_start.force_start),
        ]
    )

    # Single-user bot: everyone else is turned away before any other handler runs
    application.add_handler(TypeHandler(Update, hand_start.reject_stranger), group=-1)

    application.add_handler(CommandHandler('start', hand_start.start))
    application.add_handler(add_card_handler)
    application.add_handler(study_handler)
    application.add_handler(hand_manage.edit_card_handler)

    # Slash commands
    application.add_handler(CommandHandler('study', hand_study.study_command))
    application.add_handler(CommandHandler('stats', hand_stats.stats_command))
    application.add_handler(CommandHandler('decks', hand_decks_menu.decks_command))
    application.add_handler(CommandHandler('help', hand_help.help_command))
    application.add_handler(CommandHandler('export', hand_backup.export_command))

    # Standalone callback handlers
    application.add_handler(CallbackQueryHandler(hand_start.main_menu, pattern='^main_menu$'))
    application.add_handler(CallbackQueryHandler(hand_stats.stats_entry, pattern='^stats$'))
    application.add_handler(CallbackQueryHandler(hand_stats.stats_reset, pattern='^stats_reset$'))
    application.add_handler(CallbackQueryHandler(hand_stats.stats_reset_yes, pattern='^stats_reset_yes$'))
    application.add_handler(CallbackQueryHandler(hand_help.help_entry, pattern='^help$'))

    # My Decks
    application.add_handler(CallbackQueryHandler(hand_decks_menu.decks_page, pattern=r'^(my_decks|decks_page_\d+)$'))

    # Manage: deck detail & card actions
    application.add_handler(CallbackQueryHandler(hand_manage.deck_open, pattern=rf'^deck_open_{ID}$'))
    application.add_handler(CallbackQueryHandler(hand_manage.deck_cards_page, pattern=r'^deck_page_\d+$'))
    application.add_handler(CallbackQueryHandler(hand_manage.card_info, pattern=rf'^card_info_{ID}$'))
    application.add_handler(CallbackQueryHandler(hand_manage.card_delete_confirm, pattern=rf'^card_delete_{ID}$'))
    application.add_handler(CallbackQueryHandler(hand_manage.card_delete_yes, pattern=rf'^card_delete_yes_{ID}$'))
    application.add_handler(CallbackQueryHandler(hand_manage.deck_delete_confirm, pattern=rf'^deck_delete_{ID}$'))
    application.add_handler(CallbackQueryHandler(hand_manage.deck_delete_yes, pattern=rf'^deck_delete_yes_{ID}$'))

    # Backup restore
    application.add_handler(MessageHandler(filters.Document.FileExtension('json'), hand_backup.receive_backup))
    application.add_handler(CallbackQueryHandler(hand_backup.restore_yes, pattern='^restore_yes$'))
    application.add_handler(CallbackQueryHandler(hand_backup.restore_no, pattern='^restore_no$'))

    application.add_error_handler(error_handler)
    application.run_polling()


# API errors that say nothing about our own state
_IGNORED_BAD_REQUESTS = ("message is not modified", "message to edit not found")


def _is_noise(error: BaseException | None) -> bool:
    if isinstance(error, (Forbidden, TimedOut, NetworkError)):
        return True
    return isinstance(error, BadRequest) and any(m in str(error).lower() for m in _IGNORED_BAD_REQUESTS)


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE):
    """Log anything a handler let through and tell the user what to do next."""
    error = context.error

    if _is_noise(error):
        logging.warning(f"Telegram API hiccup: {error}")
        return

    logging.error(f"Update {update} caused error: {error}", exc_info=error)

    if isinstance(error, StorageError):
        text = "⚠️ Couldn't reach the database. Nothing was lost, try again in a moment."
    else:
        text = "⚠️ Something went wrong. Try /start to reset."

    if isinstance(update, Update) and update.effective_chat:
        try:
            await context.bot.send_message(chat_id=update.effective_chat.id, text=text)
        except (BadRequest, Forbidden, TimedOut, NetworkError) as e:
            logging.warning(f"Couldn't notify user about the error: {e}")


if __name__ == '__main__':
    logging.info("Starting app")
    main()
