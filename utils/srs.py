"""
Spaced repetition scheduler using a fixed level -> interval table.

Each card carries a mastery level. A correct answer moves it one level up,
an incorrect one moves it one level down (never below 0). The next review
date is always `now + INTERVAL_DAYS[level]`, with levels past the end of
the table clamped to the last entry.

    level:  0   1   2   3   4    5    6    7+
    days:   0   1   3   7   14   30   90   180
"""

from datetime import datetime, timedelta

from utils.models import Card, StudyResult

INTERVAL_DAYS = (0, 1, 3, 7, 14, 30, 90, 180)
MAX_LEVEL_INDEX = len(INTERVAL_DAYS) - 1

# cards at or above this level count as mastered
MASTERY_LEVEL = 5


def interval_for_level(level: int) -> int:
    """Days until the next review for a card sitting at `level`."""
    return INTERVAL_DAYS[max(0, min(level, MAX_LEVEL_INDEX))]


def is_mastered(card: Card) -> bool:
    return card.level >= MASTERY_LEVEL


def is_learning(card: Card) -> bool:
    return 0 < card.level < MASTERY_LEVEL


def is_due(card: Card, now: datetime) -> bool:
    """Never reviewed, or its next review date has arrived."""
    return card.next_review_date is None or card.next_review_date <= now


def schedule_review(card: Card, result: StudyResult | str, now: datetime | None = None) -> Card:
    """
    Apply one answer to a card and return the updated copy.

    The input card is left untouched; saving the result is up to the caller.
    Raises ValueError for anything that isn't a StudyResult.
    """
    result = StudyResult(result)
    now = now or datetime.now()

    if result == StudyResult.CORRECT:
        level = card.level + 1
        correct_count = card.correct_count + 1
        incorrect_count = card.incorrect_count
    else:
        level = max(0, card.level - 1)
        correct_count = card.correct_count
        incorrect_count = card.incorrect_count + 1

    return card.model_copy(update={
        'level': level,
        'correct_count': correct_count,
        'incorrect_count': incorrect_count,
        'last_reviewed': now,
        'updated_at': now,
        'next_review_date': now + timedelta(days=interval_for_level(level)),
    })


def next_interval_label(card: Card, result: StudyResult | str) -> str:
    """Human-readable label for what happens if the user picks this result."""
    return _format_days(interval_for_level(schedule_review(card, result).level))


def _format_days(days: int) -> str:
    if days == 0:
        return "now"
    elif days < 14:
        return f"{days}d"
    elif days < 30:
        return f"{days // 7}w"
    elif days < 365:
        return f"{round(days / 30)}mo"
    else:
        return f"{round(days / 365, 1)}y"
