import json
import logging

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.ext import ContextTypes

from database.backup import export_backup, parse_backup, restore_backup
from utils.errors import BackupError, StorageError
from utils.telegram_helpers import get_storage, safe_edit_text, safe_send_document, safe_send_text

MENU_MARKUP = InlineKeyboardMarkup([
    [InlineKeyboardButton("\U0001f3e0 Menu", callback_data='main_menu')]
])


async def export_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/export: write a backup file and send it to the chat."""
    backup_dir = context.application.bot_data['backup_dir']

    try:
        path = await export_backup(get_storage(context), backup_dir)
    except BackupError as e:
        logging.error(f"Export failed: {e}")
        await safe_send_text(update.message, "⚠️ Couldn't write the backup file.")
        return

    await safe_send_document(
        update.message,
        path.read_bytes(),
        filename=path.name,
        caption="\U0001f4be Backup. Send this file back to me to restore it.",
    )


async def receive_backup(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """A .json document was sent: check it and ask before replacing anything."""
    document = update.message.document
    logging.info(f"Got backup file {document.file_name}")

    tg_file = await document.get_file()
    raw = await tg_file.download_as_bytearray()

    try:
        data = json.loads(raw.decode('utf-8'))
        backup = parse_backup(data)
    except (UnicodeDecodeError, ValueError, BackupError) as e:
        logging.warning(f"Rejected backup file: {e}")
        await safe_send_text(update.message, "⚠️ That isn't a backup I can read.", reply_markup=MENU_MARKUP)
        return

    context.user_data['pending_restore'] = data

    await safe_send_text(
        update.message,
        f"\U0001f4e6 Backup from {backup['timestamp']}\n"
        f"{len(backup['decks'])} decks · {len(backup['cards'])} cards · "
        f"{len(backup['sessions'])} sessions\n\n"
        f"<b>Restore it?</b> Everything currently stored will be replaced.",
        reply_markup=InlineKeyboardMarkup([[
            InlineKeyboardButton('Yes, restore', callback_data='restore_yes'),
            InlineKeyboardButton('Cancel', callback_data='restore_no'),
        ]]),
    )


async def restore_yes(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()

    data = context.user_data.pop('pending_restore', None)
    if data is None:
        await safe_edit_text(query, "⚠️ Nothing to restore — send the backup file again.", reply_markup=MENU_MARKUP)
        return

    try:
        await restore_backup(get_storage(context), data)
    except (BackupError, StorageError) as e:
        logging.error(f"Restore failed: {e}")
        await safe_edit_text(query, "⚠️ Restore failed, nothing was changed.", reply_markup=MENU_MARKUP)
        return

    # remembered ids may point at decks that no longer exist
    context.user_data.pop('default_deck_id', None)
    await safe_edit_text(query, "✅ Backup restored.", reply_markup=MENU_MARKUP)


async def restore_no(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()

    context.user_data.pop('pending_restore', None)
    await safe_edit_text(query, "Restore cancelled.", reply_markup=MENU_MARKUP)
