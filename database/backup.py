"""
JSON snapshots of the whole database: export to a file, load it back, restore.

A backup is {'timestamp', 'decks', 'cards', 'sessions'} with every record in
its JSON form (ISO timestamps).
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from database.database import Storage
from utils.errors import BackupError, ValidationError
from utils.models import validate_card, validate_deck, validate_session

logger = logging.getLogger(__name__)

BACKUP_KEYS = ('timestamp', 'decks', 'cards', 'sessions')


async def create_backup(storage: Storage, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.now()
    decks = await storage.get_all_decks()
    cards = await storage.get_all_cards()
    sessions = await storage.get_all_sessions()

    return {
        'timestamp': now.isoformat(),
        'decks': [d.model_dump(mode='json') for d in decks],
        'cards': [c.model_dump(mode='json') for c in cards],
        'sessions': [s.model_dump(mode='json') for s in sessions],
    }


def backup_filename(timestamp: str) -> str:
    safe = timestamp.replace(':', '-').replace('.', '-')
    return f"backup_{safe}.json"


async def export_backup(storage: Storage, directory: str | Path, now: datetime | None = None) -> Path:
    """Write a fresh backup into `directory` and return the file path."""
    backup = await create_backup(storage, now)

    directory = Path(directory)
    path = directory / backup_filename(backup['timestamp'])
    try:
        directory.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(backup, ensure_ascii=False, indent=2), encoding='utf-8')
    except OSError as e:
        raise BackupError(f"Can't write backup to {path}: {e}") from e

    logger.info(
        f"Exported backup {path}: {len(backup['decks'])} decks, "
        f"{len(backup['cards'])} cards, {len(backup['sessions'])} sessions"
    )
    return path


def parse_backup(data: Any) -> dict[str, Any]:
    """Validate an already-decoded backup. Returns it with records as models."""
    if not isinstance(data, dict) or any(key not in data for key in BACKUP_KEYS):
        raise BackupError(f"Invalid backup format: expected keys {', '.join(BACKUP_KEYS)}")

    try:
        return {
            'timestamp': data['timestamp'],
            'decks': [validate_deck(d) for d in data['decks']],
            'cards': [validate_card(c) for c in data['cards']],
            'sessions': [validate_session(s) for s in data['sessions']],
        }
    except (TypeError, ValidationError) as e:
        raise BackupError(f"Backup contains invalid records: {e}") from e


def load_backup(path: str | Path) -> dict[str, Any]:
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding='utf-8'))
    except FileNotFoundError as e:
        raise BackupError(f"Backup file not found: {path}") from e
    except (OSError, ValueError) as e:
        raise BackupError(f"Can't read backup {path}: {e}") from e

    return parse_backup(data)


async def restore_backup(storage: Storage, backup: dict[str, Any]) -> None:
    """Replace everything in storage with the backup's decks, cards and sessions."""
    backup = parse_backup(backup)
    await storage.replace_all(backup['decks'], backup['cards'], backup['sessions'])
    logger.info(f"Restored backup from {backup['timestamp']}")
