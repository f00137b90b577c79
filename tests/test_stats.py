"""
Tests for utils/stats.py: streaks, per-session summary and the overall view.
"""
from datetime import date, datetime, timedelta

import pytest

from utils.models import Card, Deck, ReviewEntry, StudyResult, StudySession
from utils.stats import aggregate_stats, calculate_streak, session_stats

D = date(2024, 3, 10)
NOW = datetime(2024, 3, 12, 20, 0)


def session_on(day, results=('correct',), minutes=5, completed=True, deck_id=None):
    start = datetime.combine(day, datetime.min.time()).replace(hour=9)
    return StudySession(
        deck_id=deck_id,
        start_time=start,
        end_time=start + timedelta(minutes=minutes) if completed else None,
        cards_reviewed=[
            ReviewEntry(card_id=f'card-{i}', result=r, time_spent=1000 * (i + 1))
            for i, r in enumerate(results)
        ],
    )


# ── Streak ────────────────────────────────────────────────────

class TestStreak:
    def test_three_consecutive_days(self):
        sessions = [session_on(D), session_on(D + timedelta(days=1)), session_on(D + timedelta(days=2))]
        streak = calculate_streak(sessions, today=D + timedelta(days=2))
        assert streak.current == 3
        assert streak.best == 3
        assert streak.total_days == 3

    def test_gap_breaks_the_run(self):
        sessions = [session_on(D), session_on(D + timedelta(days=2))]
        streak = calculate_streak(sessions, today=D + timedelta(days=2))
        assert streak.best == 1
        assert streak.current == 1
        assert streak.total_days == 2

    def test_several_sessions_same_day_count_once(self):
        sessions = [session_on(D), session_on(D), session_on(D)]
        streak = calculate_streak(sessions, today=D)
        assert streak.total_days == 1
        assert streak.best == 1

    def test_current_survives_until_end_of_next_day(self):
        sessions = [session_on(D), session_on(D + timedelta(days=1))]
        assert calculate_streak(sessions, today=D + timedelta(days=2)).current == 2

    def test_current_resets_after_a_missed_day(self):
        sessions = [session_on(D), session_on(D + timedelta(days=1))]
        streak = calculate_streak(sessions, today=D + timedelta(days=3))
        assert streak.current == 0
        assert streak.best == 2

    def test_unfinished_sessions_do_not_count(self):
        sessions = [session_on(D), session_on(D + timedelta(days=1), completed=False)]
        streak = calculate_streak(sessions, today=D + timedelta(days=1))
        assert streak.total_days == 1

    def test_no_sessions(self):
        streak = calculate_streak([], today=D)
        assert (streak.current, streak.best, streak.total_days) == (0, 0, 0)

    def test_input_order_does_not_matter(self):
        sessions = [session_on(D + timedelta(days=2)), session_on(D), session_on(D + timedelta(days=1))]
        assert calculate_streak(sessions, today=D + timedelta(days=2)).best == 3


# ── Per-session summary ───────────────────────────────────────

class TestSessionStats:
    def test_summary(self):
        s = session_on(D, results=('correct', 'incorrect', 'correct', 'correct'), minutes=2)
        stats = session_stats(s)
        assert stats.total_cards == 4
        assert stats.correct_cards == 3
        assert stats.accuracy == 75.0
        assert stats.total_time == 120_000
        assert stats.average_time_per_card == 30_000

    def test_queue_length_overrides_entry_count(self):
        s = session_on(D, results=('correct',), minutes=1)
        assert session_stats(s, queue_length=2).accuracy == 50.0

    def test_unfinished_session_raises(self):
        with pytest.raises(ValueError):
            session_stats(session_on(D, completed=False))


# ── aggregate_stats ───────────────────────────────────────────

@pytest.fixture()
def collection():
    deck_a = Deck(name='Spanish')
    deck_b = Deck(name='German')
    cards = [
        Card(id='a1', deck_id=deck_a.id, front='hola', back='hi', level=5),
        Card(id='a2', deck_id=deck_a.id, front='adios', back='bye', level=2),
        Card(id='a3', deck_id=deck_a.id, front='gato', back='cat'),
        Card(id='b1', deck_id=deck_b.id, front='Hund', back='dog', level=1),
    ]
    start = datetime(2024, 3, 11, 9, 0)
    sessions = [
        StudySession(
            deck_id=deck_a.id, start_time=start, end_time=start + timedelta(minutes=10),
            cards_reviewed=[
                ReviewEntry(card_id='a1', result=StudyResult.CORRECT, time_spent=1000),
                ReviewEntry(card_id='a2', result=StudyResult.INCORRECT, time_spent=2000),
            ],
        ),
        StudySession(
            deck_id=None, start_time=start + timedelta(days=1), end_time=start + timedelta(days=1, minutes=5),
            cards_reviewed=[
                ReviewEntry(card_id='b1', result=StudyResult.CORRECT, time_spent=1000),
                ReviewEntry(card_id='a2', result=StudyResult.CORRECT, time_spent=3000),
            ],
        ),
        # abandoned: kept in history but not counted
        StudySession(
            deck_id=deck_b.id, start_time=start + timedelta(days=1, hours=2),
            cards_reviewed=[ReviewEntry(card_id='b1', result=StudyResult.INCORRECT, time_spent=500)],
        ),
    ]
    return cards, sessions, [deck_a, deck_b]


class TestAggregateStats:
    def test_totals(self, collection):
        cards, sessions, decks = collection
        view = aggregate_stats(cards, sessions, decks, NOW)
        assert view.total_cards == 4
        assert view.mastered_cards == 1
        assert view.learning_cards == 2

    def test_accuracy_over_completed_sessions_only(self, collection):
        cards, sessions, decks = collection
        view = aggregate_stats(cards, sessions, decks, NOW)
        assert view.total_accuracy == 75.0
        assert view.total_study_time == 15 * 60 * 1000

    def test_recent_sessions_newest_first(self, collection):
        cards, sessions, decks = collection
        view = aggregate_stats(cards, sessions, decks, NOW)
        assert [s.id for s in view.recent_sessions] == [sessions[1].id, sessions[0].id]

    def test_streak(self, collection):
        cards, sessions, decks = collection
        view = aggregate_stats(cards, sessions, decks, NOW)
        assert view.streak.current == 2
        assert view.streak.best == 2

    def test_deck_breakdown(self, collection):
        cards, sessions, decks = collection
        view = aggregate_stats(cards, sessions, decks, NOW)
        spanish, german = view.decks
        assert spanish.name == 'Spanish'
        assert (spanish.total_cards, spanish.mastered_cards, spanish.learning_cards) == (3, 1, 1)
        assert spanish.reviews == 3
        assert spanish.accuracy == pytest.approx(200 / 3)
        assert german.reviews == 1
        assert german.accuracy == 100.0

    def test_idempotent(self, collection):
        cards, sessions, decks = collection
        first = aggregate_stats(cards, sessions, decks, NOW)
        second = aggregate_stats(cards, sessions, decks, NOW)
        assert first == second

    def test_corrupt_records_are_skipped(self, collection):
        cards, sessions, decks = collection
        broken_card = {'id': 'x', 'deck_id': decks[0].id, 'front': '', 'back': 'b'}
        broken_session = {'id': 's', 'start_time': 'not a date'}
        view = aggregate_stats(cards + [broken_card, 'junk'], sessions + [broken_session], decks, NOW)
        assert view.total_cards == 4
        assert view.skipped_cards == 2
        assert view.skipped_sessions == 1
        assert view.skipped_decks == 0

    def test_empty(self):
        view = aggregate_stats([], [], [], NOW)
        assert view.total_cards == 0
        assert view.total_accuracy == 0.0
        assert view.recent_sessions == []
        assert view.decks == []

    def test_session_with_utc_offset_is_skipped(self, collection):
        cards, sessions, decks = collection
        aware = {
            'start_time': '2024-03-11T09:00:00Z',
            'end_time': '2024-03-11T09:05:00Z',
            'cards_reviewed': [{'card_id': 'a1', 'result': 'correct', 'time_spent': 1000}],
        }
        mixed = {'start_time': '2024-03-11T09:00:00', 'end_time': '2024-03-11T09:05:00+00:00'}
        view = aggregate_stats(cards, sessions + [aware, mixed], decks, NOW)
        assert view.skipped_sessions == 2
        assert view.total_accuracy == 75.0
        assert len(view.recent_sessions) == 2
