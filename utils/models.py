"""
Plain records passed between storage, the scheduler core and the handlers.

Card, Deck and StudySession are pydantic models. Timestamps are naive local
datetimes, the same way the rest of the app calls datetime.now(); values
carrying a UTC offset fail validation.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

import pydantic
from pydantic import BaseModel, ConfigDict, Field, NaiveDatetime

from utils.errors import ValidationError


def new_id() -> str:
    return str(uuid.uuid4())


class StudyResult(str, Enum):
    CORRECT = 'correct'
    INCORRECT = 'incorrect'


class Card(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=new_id, min_length=1)
    deck_id: str = Field(min_length=1)
    front: str = Field(min_length=1)
    back: str = Field(min_length=1)
    created_at: NaiveDatetime = Field(default_factory=datetime.now)
    updated_at: NaiveDatetime = Field(default_factory=datetime.now)

    # spaced repetition
    level: int = Field(default=0, ge=0)
    next_review_date: NaiveDatetime | None = None

    correct_count: int = Field(default=0, ge=0)
    incorrect_count: int = Field(default=0, ge=0)
    last_reviewed: NaiveDatetime | None = None

    tags: list[str] = Field(default_factory=list)

    @property
    def is_new(self) -> bool:
        """Never answered in any session."""
        return self.last_reviewed is None and self.correct_count == 0 and self.incorrect_count == 0


class Deck(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=new_id, min_length=1)
    name: str = Field(min_length=1)
    description: str = ''
    created_at: NaiveDatetime = Field(default_factory=datetime.now)
    updated_at: NaiveDatetime = Field(default_factory=datetime.now)
    last_studied: NaiveDatetime | None = None

    # derived, see Storage.recompute_deck_stats
    total_cards: int = Field(default=0, ge=0)
    mastered_cards: int = Field(default=0, ge=0)
    learning_cards: int = Field(default=0, ge=0)

    color: str | None = Field(default=None, pattern=r'^#[0-9A-Fa-f]{6}$')


class ReviewEntry(BaseModel):
    card_id: str = Field(min_length=1)
    result: StudyResult
    time_spent: int = Field(ge=0)  # ms since session start


class StudySession(BaseModel):
    id: str = Field(default_factory=new_id, min_length=1)
    deck_id: str | None = None  # None = queue spanned every deck
    start_time: NaiveDatetime = Field(default_factory=datetime.now)
    end_time: NaiveDatetime | None = None
    cards_reviewed: list[ReviewEntry] = Field(default_factory=list)

    @property
    def is_completed(self) -> bool:
        return self.end_time is not None

    @property
    def correct_count(self) -> int:
        return sum(1 for r in self.cards_reviewed if r.result == StudyResult.CORRECT)


def _validate(model: type[BaseModel], data: Any, label: str):
    if isinstance(data, model):
        data = data.model_dump()
    elif not isinstance(data, Mapping):
        raise ValidationError(f"{label} must be a mapping, got {type(data).__name__}")
    try:
        return model.model_validate(dict(data))
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid {label}: {e.error_count()} error(s)", e.errors()) from e


def validate_card(data: Any) -> Card:
    return _validate(Card, data, 'card')


def validate_deck(data: Any) -> Deck:
    return _validate(Deck, data, 'deck')


def validate_session(data: Any) -> StudySession:
    session = _validate(StudySession, data, 'session')
    if session.end_time is not None and session.end_time < session.start_time:
        raise ValidationError(f"Invalid session {session.id}: ends before it starts")
    return session
