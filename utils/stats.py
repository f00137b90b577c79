"""
Derived statistics: overall progress, streaks, per-deck breakdown and the
end-of-session summary.

Everything here is a pure function of its inputs. Corrupt records are
skipped (and counted) instead of failing the whole computation.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Any, Callable, Iterable

from pydantic import BaseModel, Field

from utils.constants import RECENT_SESSIONS_LIMIT
from utils.errors import ValidationError
from utils.models import Card, Deck, StudyResult, StudySession, validate_card, validate_deck, validate_session
from utils.srs import is_learning, is_mastered

logger = logging.getLogger(__name__)


class Streak(BaseModel):
    current: int = 0
    best: int = 0
    total_days: int = 0


class SessionStats(BaseModel):
    total_cards: int
    correct_cards: int
    accuracy: float
    total_time: int  # ms
    average_time_per_card: float  # ms


class DeckBreakdown(BaseModel):
    deck_id: str
    name: str
    total_cards: int = 0
    mastered_cards: int = 0
    learning_cards: int = 0
    reviews: int = 0
    accuracy: float = 0.0


class StatsView(BaseModel):
    total_cards: int = 0
    mastered_cards: int = 0
    learning_cards: int = 0
    total_accuracy: float = 0.0
    total_study_time: int = 0  # ms
    recent_sessions: list[StudySession] = []
    streak: Streak = Field(default_factory=Streak)
    decks: list[DeckBreakdown] = []
    skipped_cards: int = 0
    skipped_sessions: int = 0
    skipped_decks: int = 0


def _ms(delta: timedelta) -> int:
    return int(delta.total_seconds() * 1000)


def _percent(part: int, whole: int) -> float:
    return part / whole * 100 if whole else 0.0


def _keep_valid(items: Iterable[Any], validate: Callable[[Any], Any], label: str) -> tuple[list, int]:
    valid, skipped = [], 0
    for item in items:
        try:
            valid.append(validate(item))
        except ValidationError as e:
            skipped += 1
            logger.warning(f"Skipping corrupt {label} in stats: {e}")
    return valid, skipped


def calculate_streak(sessions: Iterable[StudySession], today: date | None = None) -> Streak:
    """Consecutive calendar days (local) with at least one completed session."""
    today = today or date.today()
    days = sorted({s.start_time.date() for s in sessions if s.end_time is not None})
    if not days:
        return Streak()

    run = best = 1
    for prev, cur in zip(days, days[1:]):
        if (cur - prev).days == 1:
            run += 1
            best = max(best, run)
        else:
            run = 1

    current = run if days[-1] in (today, today - timedelta(days=1)) else 0
    return Streak(current=current, best=best, total_days=len(days))


def session_stats(session: StudySession, queue_length: int | None = None) -> SessionStats:
    """End-of-session summary. The session must be finished."""
    if session.end_time is None:
        raise ValueError(f"Session {session.id} has not ended yet")

    total = queue_length if queue_length is not None else len(session.cards_reviewed)
    correct = session.correct_count
    total_time = _ms(session.end_time - session.start_time)

    return SessionStats(
        total_cards=total,
        correct_cards=correct,
        accuracy=_percent(correct, total),
        total_time=total_time,
        average_time_per_card=total_time / total if total else 0.0,
    )


def _deck_breakdown(deck: Deck, cards: list[Card], completed: list[StudySession]) -> DeckBreakdown:
    deck_cards = [c for c in cards if c.deck_id == deck.id]
    card_ids = {c.id for c in deck_cards}

    reviews = correct = 0
    for session in completed:
        for entry in session.cards_reviewed:
            if entry.card_id in card_ids:
                reviews += 1
                if entry.result == StudyResult.CORRECT:
                    correct += 1

    return DeckBreakdown(
        deck_id=deck.id,
        name=deck.name,
        total_cards=len(deck_cards),
        mastered_cards=sum(1 for c in deck_cards if is_mastered(c)),
        learning_cards=sum(1 for c in deck_cards if is_learning(c)),
        reviews=reviews,
        accuracy=_percent(correct, reviews),
    )


def aggregate_stats(
    cards: Iterable[Card | dict],
    sessions: Iterable[StudySession | dict],
    decks: Iterable[Deck | dict],
    now: datetime | None = None,
) -> StatsView:
    now = now or datetime.now()

    cards, skipped_cards = _keep_valid(cards, validate_card, 'card')
    sessions, skipped_sessions = _keep_valid(sessions, validate_session, 'session')
    decks, skipped_decks = _keep_valid(decks, validate_deck, 'deck')

    completed = [s for s in sessions if s.is_completed]

    total_reviewed = sum(len(s.cards_reviewed) for s in completed)
    total_correct = sum(s.correct_count for s in completed)

    recent = sorted(completed, key=lambda s: s.start_time, reverse=True)[:RECENT_SESSIONS_LIMIT]

    return StatsView(
        total_cards=len(cards),
        mastered_cards=sum(1 for c in cards if is_mastered(c)),
        learning_cards=sum(1 for c in cards if is_learning(c)),
        total_accuracy=_percent(total_correct, total_reviewed),
        total_study_time=sum(_ms(s.end_time - s.start_time) for s in completed),
        recent_sessions=recent,
        streak=calculate_streak(completed, now.date()),
        decks=[_deck_breakdown(d, cards, completed) for d in decks],
        skipped_cards=skipped_cards,
        skipped_sessions=skipped_sessions,
        skipped_decks=skipped_decks,
    )
