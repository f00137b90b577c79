"""
Tests for database/database.py.

Uses a real SQLite file in a pytest tmp_path so every test gets an isolated DB.
No Telegram objects.
"""
import sqlite3
from datetime import datetime, timedelta

import pytest
import pytest_asyncio

from database.database import Storage
from utils.errors import StorageError, ValidationError
from utils.models import Card, Deck, ReviewEntry, StudyResult, StudySession

T0 = datetime(2024, 3, 10, 9, 0)


# ── Fixture ───────────────────────────────────────────────────

@pytest_asyncio.fixture()
async def storage(tmp_path):
    s = Storage(str(tmp_path / "test.db"))
    await s.init_db()
    return s


# ── Helpers ───────────────────────────────────────────────────

def _raw(db_path: str, sql: str, params=()):
    """Run a raw query against the test DB and return fetchall."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    cur = conn.execute(sql, params)
    rows = cur.fetchall()
    conn.commit()
    conn.close()
    return [dict(r) for r in rows]


async def _deck(storage, name='Spanish'):
    return await storage.save_deck(Deck(name=name))


async def _card(storage, deck, front='hola', **kwargs):
    return await storage.save_card(Card(deck_id=deck.id, front=front, back='hello', **kwargs))


# ── Decks ─────────────────────────────────────────────────────

class TestDecks:
    @pytest.mark.asyncio
    async def test_save_and_get(self, storage):
        deck = await storage.save_deck(Deck(name='French', description='A1', color='#FF8800'))
        loaded = await storage.get_deck(deck.id)
        assert loaded.name == 'French'
        assert loaded.description == 'A1'
        assert loaded.color == '#FF8800'
        assert loaded.created_at == deck.created_at

    @pytest.mark.asyncio
    async def test_get_nonexistent_returns_none(self, storage):
        assert await storage.get_deck('missing') is None

    @pytest.mark.asyncio
    async def test_all_decks_sorted_by_name(self, storage):
        for name in ('spanish', 'Arabic', 'German'):
            await _deck(storage, name)
        assert [d.name for d in await storage.get_all_decks()] == ['Arabic', 'German', 'spanish']

    @pytest.mark.asyncio
    async def test_save_is_upsert(self, storage):
        deck = await _deck(storage)
        await storage.save_deck(deck.model_copy(update={'name': 'Español'}))
        decks = await storage.get_all_decks()
        assert len(decks) == 1
        assert decks[0].name == 'Español'

    @pytest.mark.asyncio
    async def test_invalid_deck_rejected(self, storage):
        with pytest.raises(ValidationError):
            await storage.save_deck({'name': ''})
        assert await storage.get_all_decks() == []

    @pytest.mark.asyncio
    async def test_delete_cascades_to_cards(self, storage):
        deck = await _deck(storage)
        other = await _deck(storage, 'German')
        await _card(storage, deck, 'uno')
        await _card(storage, deck, 'dos')
        kept = await _card(storage, other, 'eins')

        await storage.delete_deck(deck.id)

        assert await storage.get_deck(deck.id) is None
        assert [c.id for c in await storage.get_all_cards()] == [kept.id]

    @pytest.mark.asyncio
    async def test_stored_counters_cannot_be_forced(self, storage):
        deck = await storage.save_deck(Deck(name='Fake', total_cards=99, mastered_cards=50))
        loaded = await storage.get_deck(deck.id)
        assert loaded.total_cards == 0
        assert loaded.mastered_cards == 0


# ── Deck counters ─────────────────────────────────────────────

class TestDeckCounters:
    @pytest.mark.asyncio
    async def test_counters_follow_cards(self, storage):
        deck = await _deck(storage)
        await _card(storage, deck, 'a', level=0)
        await _card(storage, deck, 'b', level=3)
        await _card(storage, deck, 'c', level=5)
        await _card(storage, deck, 'd', level=7)

        loaded = await storage.get_deck(deck.id)
        assert loaded.total_cards == 4
        assert loaded.mastered_cards == 2
        assert loaded.learning_cards == 1

    @pytest.mark.asyncio
    async def test_stored_columns_match_after_each_write(self, storage, tmp_path):
        deck = await _deck(storage)
        card = await _card(storage, deck, level=4)
        await storage.save_card(card.model_copy(update={'level': 5}))

        row = _raw(str(tmp_path / "test.db"), 'SELECT * FROM decks WHERE id = ?', (deck.id,))[0]
        assert (row['total_cards'], row['mastered_cards'], row['learning_cards']) == (1, 1, 0)

        await storage.delete_card(card.id)
        row = _raw(str(tmp_path / "test.db"), 'SELECT * FROM decks WHERE id = ?', (deck.id,))[0]
        assert row['total_cards'] == 0

    @pytest.mark.asyncio
    async def test_moving_a_card_updates_both_decks(self, storage):
        a = await _deck(storage, 'A')
        b = await _deck(storage, 'B')
        card = await _card(storage, a)

        await storage.save_card(card.model_copy(update={'deck_id': b.id}))

        assert (await storage.get_deck(a.id)).total_cards == 0
        assert (await storage.get_deck(b.id)).total_cards == 1

    @pytest.mark.asyncio
    async def test_recompute_repairs_stale_columns(self, storage, tmp_path):
        deck = await _deck(storage)
        await _card(storage, deck, level=2)
        _raw(str(tmp_path / "test.db"), 'UPDATE decks SET total_cards = 42 WHERE id = ?', (deck.id,))

        fixed = await storage.recompute_deck_stats(deck.id)

        assert fixed.total_cards == 1
        assert fixed.learning_cards == 1
        row = _raw(str(tmp_path / "test.db"), 'SELECT total_cards FROM decks WHERE id = ?', (deck.id,))[0]
        assert row['total_cards'] == 1


# ── Cards ─────────────────────────────────────────────────────

class TestCards:
    @pytest.mark.asyncio
    async def test_round_trip(self, storage):
        deck = await _deck(storage)
        card = Card(
            deck_id=deck.id, front='perro', back='dog', tags=['animals', 'a1'],
            level=3, correct_count=4, incorrect_count=1,
            last_reviewed=T0, next_review_date=T0 + timedelta(days=7),
        )
        await storage.save_card(card)
        assert await storage.get_card(card.id) == card

    @pytest.mark.asyncio
    async def test_cards_for_deck(self, storage):
        a = await _deck(storage, 'A')
        b = await _deck(storage, 'B')
        await _card(storage, a, 'x')
        await _card(storage, b, 'y')
        assert [c.front for c in await storage.get_cards_for_deck(a.id)] == ['x']

    @pytest.mark.asyncio
    async def test_card_needs_existing_deck(self, storage):
        with pytest.raises(StorageError):
            await storage.save_card(Card(deck_id='no-such-deck', front='a', back='b'))

    @pytest.mark.asyncio
    async def test_invalid_card_rejected(self, storage):
        deck = await _deck(storage)
        with pytest.raises(ValidationError):
            await storage.save_card({'deck_id': deck.id, 'front': 'a', 'back': 'b', 'level': -1})

    @pytest.mark.asyncio
    async def test_delete(self, storage):
        deck = await _deck(storage)
        card = await _card(storage, deck)
        await storage.delete_card(card.id)
        assert await storage.get_card(card.id) is None

    @pytest.mark.asyncio
    async def test_corrupt_row_is_skipped(self, storage, tmp_path):
        deck = await _deck(storage)
        good = await _card(storage, deck, 'good')
        bad = await _card(storage, deck, 'bad')
        _raw(str(tmp_path / "test.db"), "UPDATE cards SET tags = 'not json' WHERE id = ?", (bad.id,))

        assert [c.id for c in await storage.get_all_cards()] == [good.id]


# ── Sessions ──────────────────────────────────────────────────

class TestSessions:
    @pytest.mark.asyncio
    async def test_round_trip_keeps_entry_order(self, storage):
        session = StudySession(
            deck_id='deck-1', start_time=T0, end_time=T0 + timedelta(minutes=3),
            cards_reviewed=[
                ReviewEntry(card_id='c2', result=StudyResult.INCORRECT, time_spent=4000),
                ReviewEntry(card_id='c1', result=StudyResult.CORRECT, time_spent=9000),
            ],
        )
        await storage.save_session(session)
        assert await storage.get_all_sessions() == [session]

    @pytest.mark.asyncio
    async def test_resaving_partial_session_replaces_entries(self, storage):
        session = StudySession(start_time=T0)
        session.cards_reviewed.append(ReviewEntry(card_id='c1', result='correct', time_spent=10))
        await storage.save_session(session)
        session.cards_reviewed.append(ReviewEntry(card_id='c2', result='correct', time_spent=20))
        session.end_time = T0 + timedelta(seconds=30)
        await storage.save_session(session)

        (loaded,) = await storage.get_all_sessions()
        assert [e.card_id for e in loaded.cards_reviewed] == ['c1', 'c2']
        assert loaded.is_completed

    @pytest.mark.asyncio
    async def test_session_outlives_its_deck(self, storage):
        deck = await _deck(storage)
        await storage.save_session(StudySession(deck_id=deck.id, start_time=T0))
        await storage.delete_deck(deck.id)
        assert len(await storage.get_all_sessions()) == 1

    @pytest.mark.asyncio
    async def test_end_before_start_rejected(self, storage):
        with pytest.raises(ValidationError):
            await storage.save_session(StudySession(start_time=T0, end_time=T0 - timedelta(seconds=1)))

    @pytest.mark.asyncio
    async def test_marks_decks_studied(self, storage):
        deck = await _deck(storage)
        card = await _card(storage, deck)
        await storage.save_session(StudySession(
            start_time=T0,
            cards_reviewed=[ReviewEntry(card_id=card.id, result='correct', time_spent=5)],
        ))
        assert (await storage.get_deck(deck.id)).last_studied == T0

    @pytest.mark.asyncio
    async def test_clear_keeps_cards(self, storage):
        deck = await _deck(storage)
        await _card(storage, deck)
        await storage.save_session(StudySession(start_time=T0))

        await storage.clear_all_sessions()

        assert await storage.get_all_sessions() == []
        assert len(await storage.get_all_cards()) == 1


# ── Bulk replace ──────────────────────────────────────────────

class TestReplaceAll:
    @pytest.mark.asyncio
    async def test_replaces_everything(self, storage):
        old = await _deck(storage, 'Old')
        await _card(storage, old)

        deck = Deck(name='New')
        card = Card(deck_id=deck.id, front='q', back='a', level=5)
        session = StudySession(start_time=T0)
        await storage.replace_all([deck], [card], [session])

        decks = await storage.get_all_decks()
        assert [d.name for d in decks] == ['New']
        assert decks[0].mastered_cards == 1
        assert await storage.get_all_cards() == [card]
        assert await storage.get_all_sessions() == [session]

    @pytest.mark.asyncio
    async def test_failure_leaves_data_untouched(self, storage):
        old = await _deck(storage, 'Old')
        await _card(storage, old)

        orphan = Card(deck_id='missing', front='q', back='a')
        with pytest.raises(StorageError):
            await storage.replace_all([], [orphan], [])

        assert [d.name for d in await storage.get_all_decks()] == ['Old']
        assert len(await storage.get_all_cards()) == 1
