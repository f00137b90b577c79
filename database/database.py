import asyncio
import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Iterable

from database.schema import ALL_SCHEMAS
from utils.errors import StorageError, ValidationError
from utils.models import Card, Deck, StudySession, validate_card, validate_deck, validate_session
from utils.srs import MASTERY_LEVEL

logger = logging.getLogger(__name__)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class Storage:
    """
    SQLite-backed storage for decks, cards and study sessions.

    Every public method is a coroutine; the blocking sqlite3 work runs in a
    worker thread with its own connection. sqlite3/OS failures come out as
    StorageError, records that fail their schema as ValidationError (and are
    never written).
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    # DB CONNECTION ==============================================

    @contextmanager
    def get_db(self):
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise StorageError(f"Can't open database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        conn.execute('PRAGMA foreign_keys = ON')

        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.to_thread(fn, *args)

    def _init_db(self) -> None:
        with self.get_db() as conn:
            for schema in ALL_SCHEMAS:
                conn.execute(schema)

    async def init_db(self) -> None:
        await self._run(self._init_db)
        logger.info(f"Database ready at {self.db_path}")

    # DECK COMMANDS ==============================================

    _DECK_SELECT = '''
        SELECT d.*,
               COUNT(c.id) AS live_total,
               COALESCE(SUM(c.level >= :mastery), 0) AS live_mastered,
               COALESCE(SUM(c.level > 0 AND c.level < :mastery), 0) AS live_learning
        FROM decks d
        LEFT JOIN cards c ON c.deck_id = d.id
    '''

    @staticmethod
    def _deck_from_row(row: sqlite3.Row) -> Deck:
        # counters always come from the live join, never from the stored columns
        return validate_deck({
            'id': row['id'],
            'name': row['name'],
            'description': row['description'],
            'color': row['color'],
            'created_at': _dt(row['created_at']),
            'updated_at': _dt(row['updated_at']),
            'last_studied': _dt(row['last_studied']),
            'total_cards': row['live_total'],
            'mastered_cards': row['live_mastered'],
            'learning_cards': row['live_learning'],
        })

    def _fetch_decks(self) -> list[Deck]:
        with self.get_db() as conn:
            rows = conn.execute(
                self._DECK_SELECT + ' GROUP BY d.id ORDER BY d.name COLLATE NOCASE',
                {'mastery': MASTERY_LEVEL},
            ).fetchall()
        return _rows_to_models(rows, self._deck_from_row, 'deck')

    def _fetch_deck(self, deck_id: str) -> Deck | None:
        with self.get_db() as conn:
            row = conn.execute(
                self._DECK_SELECT + ' WHERE d.id = :id GROUP BY d.id',
                {'mastery': MASTERY_LEVEL, 'id': deck_id},
            ).fetchone()
        return self._deck_from_row(row) if row else None

    def _write_deck(self, deck: Deck) -> None:
        with self.get_db() as conn:
            conn.execute(
                '''INSERT INTO decks (id, name, description, color, created_at, updated_at, last_studied)
                   VALUES (?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       name = excluded.name, description = excluded.description,
                       color = excluded.color, updated_at = excluded.updated_at,
                       last_studied = excluded.last_studied
                ''',
                (deck.id, deck.name, deck.description, deck.color,
                 _iso(deck.created_at), _iso(deck.updated_at), _iso(deck.last_studied))
            )
            _recompute(conn, deck.id)

    def _remove_deck(self, deck_id: str) -> None:
        with self.get_db() as conn:
            conn.execute('DELETE FROM decks WHERE id = ?', (deck_id,))

    async def get_all_decks(self) -> list[Deck]:
        return await self._run(self._fetch_decks)

    async def get_deck(self, deck_id: str) -> Deck | None:
        return await self._run(self._fetch_deck, deck_id)

    async def save_deck(self, deck: Deck | dict) -> Deck:
        deck = validate_deck(deck)
        await self._run(self._write_deck, deck)
        logger.debug(f"Saved deck {deck.id} ({deck.name})")
        return deck

    async def delete_deck(self, deck_id: str) -> None:
        """Delete a deck and, via ON DELETE CASCADE, all of its cards."""
        await self._run(self._remove_deck, deck_id)
        logger.info(f"Deleted deck {deck_id}")

    async def recompute_deck_stats(self, deck_id: str) -> Deck | None:
        """Rewrite the deck's stored counters from its cards and return the deck."""
        def _do() -> Deck | None:
            with self.get_db() as conn:
                _recompute(conn, deck_id)
            return self._fetch_deck(deck_id)

        return await self._run(_do)

    # CARD COMMANDS ==============================================

    @staticmethod
    def _card_from_row(row: sqlite3.Row) -> Card:
        try:
            tags = json.loads(row['tags'])
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid card {row['id']}: tags are not JSON") from e
        return validate_card({
            'id': row['id'],
            'deck_id': row['deck_id'],
            'front': row['front'],
            'back': row['back'],
            'created_at': _dt(row['created_at']),
            'updated_at': _dt(row['updated_at']),
            'level': row['level'],
            'next_review_date': _dt(row['next_review_date']),
            'correct_count': row['correct_count'],
            'incorrect_count': row['incorrect_count'],
            'last_reviewed': _dt(row['last_reviewed']),
            'tags': tags,
        })

    def _fetch_cards(self, deck_id: str | None = None) -> list[Card]:
        with self.get_db() as conn:
            if deck_id is None:
                rows = conn.execute('SELECT * FROM cards ORDER BY created_at, rowid').fetchall()
            else:
                rows = conn.execute(
                    'SELECT * FROM cards WHERE deck_id = ? ORDER BY created_at, rowid', (deck_id,)
                ).fetchall()
        return _rows_to_models(rows, self._card_from_row, 'card')

    def _fetch_card(self, card_id: str) -> Card | None:
        with self.get_db() as conn:
            row = conn.execute('SELECT * FROM cards WHERE id = ?', (card_id,)).fetchone()
        return self._card_from_row(row) if row else None

    def _write_card(self, card: Card) -> None:
        with self.get_db() as conn:
            previous = conn.execute('SELECT deck_id FROM cards WHERE id = ?', (card.id,)).fetchone()
            conn.execute(
                '''INSERT INTO cards (id, deck_id, front, back, tags, level, next_review_date,
                                      last_reviewed, correct_count, incorrect_count,
                                      created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       deck_id = excluded.deck_id, front = excluded.front, back = excluded.back,
                       tags = excluded.tags, level = excluded.level,
                       next_review_date = excluded.next_review_date,
                       last_reviewed = excluded.last_reviewed,
                       correct_count = excluded.correct_count,
                       incorrect_count = excluded.incorrect_count,
                       created_at = excluded.created_at, updated_at = excluded.updated_at
                ''',
                (card.id, card.deck_id, card.front, card.back, json.dumps(card.tags), card.level,
                 _iso(card.next_review_date), _iso(card.last_reviewed),
                 card.correct_count, card.incorrect_count,
                 _iso(card.created_at), _iso(card.updated_at))
            )
            _recompute(conn, card.deck_id)
            if previous and previous['deck_id'] != card.deck_id:
                _recompute(conn, previous['deck_id'])

    def _remove_card(self, card_id: str) -> None:
        with self.get_db() as conn:
            row = conn.execute('SELECT deck_id FROM cards WHERE id = ?', (card_id,)).fetchone()
            conn.execute('DELETE FROM cards WHERE id = ?', (card_id,))
            if row:
                _recompute(conn, row['deck_id'])

    async def get_all_cards(self) -> list[Card]:
        return await self._run(self._fetch_cards)

    async def get_cards_for_deck(self, deck_id: str) -> list[Card]:
        return await self._run(self._fetch_cards, deck_id)

    async def get_card(self, card_id: str) -> Card | None:
        return await self._run(self._fetch_card, card_id)

    async def save_card(self, card: Card | dict) -> Card:
        """Insert or update a card; its deck's counters are recomputed in the same transaction."""
        card = validate_card(card)
        await self._run(self._write_card, card)
        logger.debug(f"Saved card {card.id} level={card.level} next={card.next_review_date}")
        return card

    async def delete_card(self, card_id: str) -> None:
        await self._run(self._remove_card, card_id)
        logger.info(f"Deleted card {card_id}")

    # SESSION COMMANDS ===========================================

    def _fetch_sessions(self) -> list[StudySession]:
        with self.get_db() as conn:
            session_rows = conn.execute('SELECT * FROM sessions ORDER BY start_time').fetchall()
            review_rows = conn.execute(
                'SELECT * FROM session_reviews ORDER BY session_id, position'
            ).fetchall()

        reviews: dict[str, list[dict[str, Any]]] = {}
        for row in review_rows:
            reviews.setdefault(row['session_id'], []).append({
                'card_id': row['card_id'],
                'result': row['result'],
                'time_spent': row['time_spent'],
            })

        def _session(row: sqlite3.Row) -> StudySession:
            return validate_session({
                'id': row['id'],
                'deck_id': row['deck_id'],
                'start_time': _dt(row['start_time']),
                'end_time': _dt(row['end_time']),
                'cards_reviewed': reviews.get(row['id'], []),
            })

        return _rows_to_models(session_rows, _session, 'session')

    def _write_session(self, session: StudySession) -> None:
        with self.get_db() as conn:
            _insert_session(conn, session)
            # every deck a reviewed card belongs to was studied
            card_ids = [entry.card_id for entry in session.cards_reviewed]
            if card_ids:
                marks = ', '.join('?' * len(card_ids))
                conn.execute(
                    f'''UPDATE decks SET last_studied = ?
                        WHERE id IN (SELECT deck_id FROM cards WHERE id IN ({marks}))''',
                    (_iso(session.start_time), *card_ids)
                )

    def _remove_sessions(self) -> None:
        with self.get_db() as conn:
            conn.execute('DELETE FROM session_reviews')
            conn.execute('DELETE FROM sessions')

    async def get_all_sessions(self) -> list[StudySession]:
        return await self._run(self._fetch_sessions)

    async def save_session(self, session: StudySession | dict) -> StudySession:
        session = validate_session(session)
        await self._run(self._write_session, session)
        logger.debug(
            f"Saved session {session.id}: {len(session.cards_reviewed)} reviewed, "
            f"{session.correct_count} correct, ended={session.end_time is not None}"
        )
        return session

    async def clear_all_sessions(self) -> None:
        """Drop the study history but keep decks and cards."""
        await self._run(self._remove_sessions)
        logger.info("Cleared all study sessions")

    # BULK =======================================================

    async def replace_all(
        self,
        decks: Iterable[Deck | dict],
        cards: Iterable[Card | dict],
        sessions: Iterable[StudySession | dict],
    ) -> None:
        """Swap the whole database content for the given records in one transaction."""
        decks = [validate_deck(d) for d in decks]
        cards = [validate_card(c) for c in cards]
        sessions = [validate_session(s) for s in sessions]

        def _do() -> None:
            with self.get_db() as conn:
                conn.execute('DELETE FROM session_reviews')
                conn.execute('DELETE FROM sessions')
                conn.execute('DELETE FROM cards')
                conn.execute('DELETE FROM decks')
                for deck in decks:
                    conn.execute(
                        '''INSERT INTO decks (id, name, description, color, created_at, updated_at, last_studied)
                           VALUES (?, ?, ?, ?, ?, ?, ?)''',
                        (deck.id, deck.name, deck.description, deck.color,
                         _iso(deck.created_at), _iso(deck.updated_at), _iso(deck.last_studied))
                    )
                for card in cards:
                    conn.execute(
                        '''INSERT INTO cards (id, deck_id, front, back, tags, level, next_review_date,
                                              last_reviewed, correct_count, incorrect_count,
                                              created_at, updated_at)
                           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)''',
                        (card.id, card.deck_id, card.front, card.back, json.dumps(card.tags), card.level,
                         _iso(card.next_review_date), _iso(card.last_reviewed),
                         card.correct_count, card.incorrect_count,
                         _iso(card.created_at), _iso(card.updated_at))
                    )
                for session in sessions:
                    _insert_session(conn, session)
                for deck in decks:
                    _recompute(conn, deck.id)

        await self._run(_do)
        logger.info(f"Replaced database content: {len(decks)} decks, {len(cards)} cards, {len(sessions)} sessions")


# HELPERS ====================================================

def _recompute(conn: sqlite3.Connection, deck_id: str) -> None:
    """The one place deck counters are derived from cards."""
    row = conn.execute(
        '''SELECT COUNT(*) AS total,
                  COALESCE(SUM(level >= ?), 0) AS mastered,
                  COALESCE(SUM(level > 0 AND level < ?), 0) AS learning
           FROM cards WHERE deck_id = ?''',
        (MASTERY_LEVEL, MASTERY_LEVEL, deck_id)
    ).fetchone()
    conn.execute(
        'UPDATE decks SET total_cards = ?, mastered_cards = ?, learning_cards = ? WHERE id = ?',
        (row['total'], row['mastered'], row['learning'], deck_id)
    )


def _insert_session(conn: sqlite3.Connection, session: StudySession) -> None:
    conn.execute(
        '''INSERT INTO sessions (id, deck_id, start_time, end_time) VALUES (?, ?, ?, ?)
           ON CONFLICT(id) DO UPDATE SET
               deck_id = excluded.deck_id, start_time = excluded.start_time,
               end_time = excluded.end_time
        ''',
        (session.id, session.deck_id, _iso(session.start_time), _iso(session.end_time))
    )
    conn.execute('DELETE FROM session_reviews WHERE session_id = ?', (session.id,))
    conn.executemany(
        '''INSERT INTO session_reviews (session_id, position, card_id, result, time_spent)
           VALUES (?, ?, ?, ?, ?)''',
        [
            (session.id, i, entry.card_id, entry.result.value, entry.time_spent)
            for i, entry in enumerate(session.cards_reviewed)
        ]
    )


def _rows_to_models(rows: Iterable[sqlite3.Row], convert: Callable[[sqlite3.Row], Any], label: str) -> list:
    """Convert rows, skipping (and logging) any that no longer pass validation."""
    models = []
    for row in rows:
        try:
            models.append(convert(row))
        except (ValidationError, ValueError) as e:
            logger.warning(f"Skipping corrupt {label} row {row['id']}: {e}")
    return models
