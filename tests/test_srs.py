"""
Tests for utils/srs.py: pure Python, no Telegram, no DB, no async.
"""
from datetime import datetime, timedelta

import pytest

from utils.models import Card, StudyResult
from utils.srs import (
    INTERVAL_DAYS, MASTERY_LEVEL,
    _format_days, interval_for_level, is_due, is_learning, is_mastered,
    next_interval_label, schedule_review,
)

NOW = datetime(2024, 3, 10, 9, 0)


# ── Shared helper ─────────────────────────────────────────────

def card(level=0, correct=0, incorrect=0, next_review=None, last_reviewed=None):
    return Card(
        deck_id='deck-1', front='hola', back='hello',
        level=level, correct_count=correct, incorrect_count=incorrect,
        next_review_date=next_review, last_reviewed=last_reviewed,
    )


# ── Interval table ────────────────────────────────────────────

class TestIntervalTable:
    def test_table_values(self):
        assert INTERVAL_DAYS == (0, 1, 3, 7, 14, 30, 90, 180)

    @pytest.mark.parametrize('level, days', [(0, 0), (1, 1), (4, 14), (7, 180)])
    def test_level_lookup(self, level, days):
        assert interval_for_level(level) == days

    def test_levels_past_the_table_clamp_to_last(self):
        assert interval_for_level(8) == 180
        assert interval_for_level(50) == 180

    def test_negative_level_clamps_to_first(self):
        assert interval_for_level(-3) == 0

    def test_table_is_non_decreasing(self):
        assert list(INTERVAL_DAYS) == sorted(INTERVAL_DAYS)


# ── schedule_review ───────────────────────────────────────────

class TestScheduleReview:
    def test_correct_moves_up_one_level(self):
        r = schedule_review(card(level=2), StudyResult.CORRECT, NOW)
        assert r.level == 3
        assert r.next_review_date == NOW + timedelta(days=7)
        assert r.correct_count == 1
        assert r.incorrect_count == 0

    def test_incorrect_moves_down_one_level(self):
        r = schedule_review(card(level=3), StudyResult.INCORRECT, NOW)
        assert r.level == 2
        assert r.next_review_date == NOW + timedelta(days=3)
        assert r.incorrect_count == 1
        assert r.correct_count == 0

    def test_incorrect_at_zero_stays_at_zero(self):
        r = schedule_review(card(level=0), StudyResult.INCORRECT, NOW)
        assert r.level == 0
        assert r.next_review_date == NOW

    def test_new_card_correct_is_due_tomorrow(self):
        r = schedule_review(card(), StudyResult.CORRECT, NOW)
        assert r.level == 1
        assert r.next_review_date == NOW + timedelta(days=1)

    def test_level_seven_correct_uses_last_interval(self):
        r = schedule_review(card(level=7), StudyResult.CORRECT, NOW)
        assert r.level == 8
        assert r.next_review_date == NOW + timedelta(days=180)

    def test_stamps_review_time(self):
        r = schedule_review(card(), StudyResult.CORRECT, NOW)
        assert r.last_reviewed == NOW
        assert r.updated_at == NOW

    def test_counts_accumulate(self):
        c = card(correct=4, incorrect=2)
        assert schedule_review(c, StudyResult.CORRECT, NOW).correct_count == 5
        assert schedule_review(c, StudyResult.INCORRECT, NOW).incorrect_count == 3

    def test_input_card_is_not_mutated(self):
        c = card(level=2)
        schedule_review(c, StudyResult.CORRECT, NOW)
        assert c.level == 2
        assert c.last_reviewed is None
        assert c.correct_count == 0

    def test_keeps_identity_and_content(self):
        c = card()
        r = schedule_review(c, StudyResult.CORRECT, NOW)
        assert r.id == c.id
        assert r.deck_id == c.deck_id
        assert r.front == c.front

    def test_accepts_plain_string_result(self):
        assert schedule_review(card(), 'correct', NOW).level == 1

    def test_unknown_result_raises(self):
        with pytest.raises(ValueError):
            schedule_review(card(), 'maybe', NOW)

    def test_climbing_to_mastery(self):
        c = card()
        for _ in range(MASTERY_LEVEL):
            c = schedule_review(c, StudyResult.CORRECT, NOW)
        assert c.level == MASTERY_LEVEL
        assert is_mastered(c)


# ── Classification ────────────────────────────────────────────

class TestClassification:
    def test_level_zero_is_neither(self):
        c = card(level=0)
        assert not is_mastered(c)
        assert not is_learning(c)

    def test_learning_band(self):
        assert is_learning(card(level=1))
        assert is_learning(card(level=4))
        assert not is_learning(card(level=5))

    def test_mastered_from_five(self):
        assert is_mastered(card(level=5))
        assert is_mastered(card(level=9))

    def test_never_scheduled_is_due(self):
        assert is_due(card(), NOW)

    def test_due_at_exact_time(self):
        assert is_due(card(next_review=NOW), NOW)

    def test_future_not_due(self):
        assert not is_due(card(next_review=NOW + timedelta(minutes=1)), NOW)


# ── Labels ────────────────────────────────────────────────────

class TestLabels:
    @pytest.mark.parametrize('days, label', [
        (0, 'now'), (1, '1d'), (7, '7d'), (14, '2w'), (30, '1mo'), (90, '3mo'), (180, '6mo'), (400, '1.1y'),
    ])
    def test_format_days(self, days, label):
        assert _format_days(days) == label

    def test_next_interval_label_new_card(self):
        c = card()
        assert next_interval_label(c, StudyResult.CORRECT) == '1d'
        assert next_interval_label(c, StudyResult.INCORRECT) == 'now'

    def test_next_interval_label_mid_level(self):
        c = card(level=4)
        assert next_interval_label(c, StudyResult.CORRECT) == '1mo'
        assert next_interval_label(c, StudyResult.INCORRECT) == '7d'
