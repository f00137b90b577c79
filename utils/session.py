"""
State machine for one study session.

    IDLE --start(queue)--> ACTIVE --answer() x len(queue)--> COMPLETED
                             |
                             +--abandon()--> ABANDONED

The machine owns the only copy of the session state (queue, position and
the StudySession record). Each answer re-reads its card from storage, is
applied in memory, then its writes (the rescheduled card, then the session)
go to storage in order. A write that fails stays queued and is retried
before the next answer is accepted, so storage sees every step at least
once and in order.
"""

import logging
from datetime import datetime
from typing import Iterable

from pydantic import BaseModel

from utils.constants import SessionState
from utils.errors import CardGoneError, EmptyQueueError, SessionBusyError, SessionStateError
from utils.models import Card, ReviewEntry, StudyResult, StudySession
from utils.srs import schedule_review
from utils.stats import SessionStats, session_stats

logger = logging.getLogger(__name__)


class StepOutcome(BaseModel):
    card: Card
    entry: ReviewEntry
    completed: bool
    stats: SessionStats | None = None


class StudySessionMachine:
    def __init__(self, storage) -> None:
        self.storage = storage
        self.state = SessionState.IDLE
        self.session: StudySession | None = None
        self.position = 0
        self._queue: list[Card] = []
        self._busy = False
        self._pending: list[Card | StudySession] = []
        self._undelivered_stats: SessionStats | None = None

    # ── read-only views ───────────────────────────────────────

    @property
    def queue(self) -> tuple[Card, ...]:
        return tuple(self._queue)

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    @property
    def remaining(self) -> int:
        return len(self._queue) - self.position

    @property
    def current_card(self) -> Card | None:
        if self.state != SessionState.ACTIVE:
            return None
        return self._queue[self.position]

    @property
    def has_pending_writes(self) -> bool:
        return bool(self._pending)

    # ── transitions ───────────────────────────────────────────

    def start(self, queue: Iterable[Card], deck_id: str | None = None, now: datetime | None = None) -> StudySession:
        if self.state != SessionState.IDLE:
            raise SessionStateError(f"Can't start a session that is already {self.state.value}")

        queue = list(queue)
        if not queue:
            raise EmptyQueueError("Nothing to study")

        self._queue = queue
        self.position = 0
        self.session = StudySession(deck_id=deck_id, start_time=now or datetime.now())
        self.state = SessionState.ACTIVE

        logger.info(f"Session {self.session.id} started: {len(queue)} cards, deck={deck_id}")
        return self.session

    async def answer(self, card: Card, result: StudyResult | str, now: datetime | None = None) -> StepOutcome:
        """
        Record the answer for the current card, reschedule it and persist.

        The card is re-read from storage first, so edits made while the
        session was running are kept. The returned outcome carries the
        session stats on the final answer only.

        Raises SessionBusyError if a previous answer is still being
        processed, SessionStateError if the session isn't active or `card`
        isn't the current card, and CardGoneError if the card was deleted
        (it is dropped from the queue and nothing is recorded). A failed
        read raises StorageError before anything changes; a failed write
        raises StorageError after the step counted, and the write is
        retried on the next call.
        """
        if self._busy:
            raise SessionBusyError("Previous answer is still being saved")
        if self.state != SessionState.ACTIVE:
            raise SessionStateError(f"Session is {self.state.value}, not accepting answers")

        self._busy = True
        try:
            # earlier writes must land before anything new happens
            await self._flush()

            current = self._queue[self.position]
            if card.id != current.id:
                raise SessionStateError(f"Card {card.id} is not the current card ({current.id})")

            result = StudyResult(result)
            now = now or datetime.now()

            fresh = await self.storage.get_card(current.id)
            if fresh is None:
                self._drop_current(now)
                await self._flush()
                raise CardGoneError(f"Card {current.id} was deleted during session {self.session.id}")

            # cumulative since session start, not per card
            elapsed = int((now - self.session.start_time).total_seconds() * 1000)
            entry = ReviewEntry(card_id=fresh.id, result=result, time_spent=max(0, elapsed))
            updated = schedule_review(fresh, result, now)

            self.session.cards_reviewed.append(entry)
            self._queue[self.position] = updated
            self.position += 1

            completed = self.position >= len(self._queue)
            if completed:
                self._complete(now)

            self._pending.append(updated)
            self._pending.append(self.session.model_copy(deep=True))
            await self._flush()

            return StepOutcome(
                card=updated,
                entry=entry,
                completed=completed,
                stats=self._take_stats(),
            )
        finally:
            self._busy = False

    async def flush(self) -> SessionStats | None:
        """
        Retry writes left over from a failed step.

        If the session completed while its final write was failing, the
        session stats are returned here once the write finally succeeds.
        """
        if self._busy:
            raise SessionBusyError("An answer is still being saved")
        self._busy = True
        try:
            await self._flush()
            return self._take_stats()
        finally:
            self._busy = False

    async def abandon(self, now: datetime | None = None) -> StudySession | None:
        """
        Stop an active session early. Answers given so far are kept; the
        session never gets an end_time, so it doesn't count as completed.
        """
        if self._busy:
            raise SessionBusyError("An answer is still being saved")
        if self.state != SessionState.ACTIVE:
            raise SessionStateError(f"Can't abandon a session that is {self.state.value}")

        self.state = SessionState.ABANDONED
        logger.info(f"Session {self.session.id} abandoned after {self.position}/{len(self._queue)} cards")

        if not self.session.cards_reviewed:
            return None

        self._busy = True
        try:
            self._pending.append(self.session.model_copy(deep=True))
            await self._flush()
        finally:
            self._busy = False
        return self.session

    # ── internals ─────────────────────────────────────────────

    def _complete(self, now: datetime) -> None:
        self.session.end_time = now
        self.state = SessionState.COMPLETED
        self._undelivered_stats = session_stats(self.session, len(self._queue))
        logger.info(
            f"Session {self.session.id} completed: "
            f"{self.session.correct_count}/{len(self._queue)} correct"
        )

    def _drop_current(self, now: datetime) -> None:
        """Take a deleted card out of the queue. Closes the session if it was the last one."""
        gone = self._queue.pop(self.position)
        logger.warning(f"Card {gone.id} no longer exists, dropped from session {self.session.id}")

        if self.position < len(self._queue):
            return
        if self.session.cards_reviewed:
            self._complete(now)
            self._pending.append(self.session.model_copy(deep=True))
        else:
            self.state = SessionState.ABANDONED
            logger.info(f"Session {self.session.id} has no cards left")

    async def _flush(self) -> None:
        while self._pending:
            record = self._pending[0]
            if isinstance(record, Card):
                await self.storage.save_card(record)
            else:
                await self.storage.save_session(record)
            self._pending.pop(0)

    def _take_stats(self) -> SessionStats | None:
        if self._pending:
            return None
        stats, self._undelivered_stats = self._undelivered_stats, None
        return stats
