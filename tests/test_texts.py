"""
Tests for the message builders in handlers/: plain strings, no Telegram calls.
"""
from datetime import datetime, timedelta

from handlers.decks_menu import build_decks_markup, deck_label
from handlers.stats import build_stats_text
from handlers.study import build_summary_text
from utils.models import Deck, ReviewEntry, StudySession
from utils.stats import SessionStats, StatsView, aggregate_stats


class TestSummary:
    def test_summary_numbers(self):
        stats = SessionStats(
            total_cards=4, correct_cards=3, accuracy=75.0, total_time=130_000, average_time_per_card=32_500,
        )
        text = build_summary_text(stats)
        assert '3/4 correct' in text
        assert '75%' in text
        assert '2m' in text
        assert '32s' in text


class TestStatsText:
    def test_empty_view(self):
        text = build_stats_text(StatsView())
        assert 'No finished sessions yet' in text
        assert 'No decks yet' in text
        assert 'skipped' not in text

    def test_deck_names_are_escaped(self):
        deck = Deck(name='<b>Latin</b>')
        text = build_stats_text(aggregate_stats([], [], [deck], datetime(2024, 3, 10)))
        assert '&lt;b&gt;Latin&lt;/b&gt;' in text

    def test_recent_session_line(self):
        start = datetime(2024, 3, 10, 9, 30)
        session = StudySession(
            start_time=start, end_time=start + timedelta(minutes=2),
            cards_reviewed=[ReviewEntry(card_id='c', result='correct', time_spent=10)],
        )
        text = build_stats_text(aggregate_stats([], [session], [], start))
        assert 'Mar 10, 09:30' in text
        assert '1/1 correct' in text

    def test_skipped_records_are_mentioned(self):
        text = build_stats_text(StatsView(skipped_cards=2))
        assert '2 unreadable records skipped' in text


class TestDecksMarkup:
    def test_label(self):
        deck = Deck(name='Spanish', total_cards=10, mastered_cards=3, learning_cards=0)
        assert deck_label(deck) == '\U0001f4da Spanish · 10 cards · ⭐ 3'

    def test_paging(self):
        decks = [Deck(name=f'D{i}') for i in range(7)]
        header, markup = build_decks_markup(decks, page=1)
        assert '(2/2)' in header
        rows = markup.inline_keyboard
        assert [r[0].callback_data for r in rows[:2]] == [f'deck_open_{decks[5].id}', f'deck_open_{decks[6].id}']
        assert rows[2][0].callback_data == 'decks_page_0'
