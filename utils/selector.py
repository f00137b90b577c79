"""
Build the ordered queue of cards for one study session.

Every mode works on a snapshot of the pool and never mutates a card.
An empty list is a normal answer ("nothing to study"), not an error.
"""

import logging
import random
from datetime import datetime
from typing import Iterable

from utils.constants import STUDY_BATCH_SIZE, StudyMode
from utils.models import Card
from utils.srs import MASTERY_LEVEL

logger = logging.getLogger(__name__)


def select_queue(
    cards: Iterable[Card],
    mode: StudyMode | str,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> list[Card]:
    """Return the cards to study, in presentation order."""
    mode = StudyMode(mode)
    now = now or datetime.now()
    rng = rng or random.Random()
    pool = list(cards)

    if mode == StudyMode.DUE_REVIEW:
        queue = _due_review(pool)
    elif mode == StudyMode.DECK_PRIORITY:
        queue = _deck_priority(pool, now)
    elif mode == StudyMode.RANDOM:
        queue = _shuffled(pool, rng)
    elif mode == StudyMode.NEVER_REVIEWED:
        queue = _shuffled([c for c in pool if c.is_new], rng)
    else:
        raise ValueError(f"Unsupported study mode: {mode}")

    logger.debug(f"select_queue mode={mode.value}: {len(queue)} of {len(pool)} cards")
    return queue


def _due_review(pool: list[Card]) -> list[Card]:
    """Unmastered cards, least recently reviewed first, capped to one batch."""
    candidates = [c for c in pool if c.level < MASTERY_LEVEL]
    # never-reviewed sorts before any real timestamp; sort is stable for ties
    candidates.sort(key=lambda c: (c.last_reviewed is not None, c.last_reviewed or datetime.min))
    return candidates[:STUDY_BATCH_SIZE]


def _deck_priority(pool: list[Card], now: datetime) -> list[Card]:
    """New cards, then due cards, then everything else."""
    new = [c for c in pool if c.next_review_date is None]
    due = [c for c in pool if c.next_review_date is not None and c.next_review_date <= now]
    later = [c for c in pool if c.next_review_date is not None and c.next_review_date > now]

    due.sort(key=lambda c: c.next_review_date)
    later.sort(key=lambda c: c.next_review_date)
    return new + due + later


def _shuffled(pool: list[Card], rng: random.Random) -> list[Card]:
    queue = list(pool)
    rng.shuffle(queue)
    return queue
