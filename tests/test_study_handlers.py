"""
Tests for the Stop / Retry / Discard paths in handlers/study.py.

Telegram objects are stand-ins: only the attributes the handlers touch.
"""
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from telegram.ext import ConversationHandler

from handlers.study import UNSAVED_MARKUP, discard_study, retry_save, stop_study
from utils.constants import SessionState, StudyState
from utils.errors import StorageError
from utils.models import Card, StudyResult
from utils.session import StudySessionMachine

T0 = datetime(2024, 3, 10, 9, 0)


class FlakyStorage:
    def __init__(self, cards):
        self.cards = {c.id: c for c in cards}
        self.sessions = {}
        self.broken = False

    async def get_card(self, card_id):
        return self.cards.get(card_id)

    async def save_card(self, card):
        if self.broken:
            raise StorageError("disk full")
        self.cards[card.id] = card
        return card

    async def save_session(self, session):
        if self.broken:
            raise StorageError("disk full")
        self.sessions[session.id] = session
        return session


def button_update():
    query = SimpleNamespace(answer=AsyncMock(), edit_message_text=AsyncMock(), message=None)
    return SimpleNamespace(callback_query=query, message=None)


def last_markup(update):
    return update.callback_query.edit_message_text.call_args.kwargs['reply_markup']


@pytest.fixture()
def unsaved_finish():
    """A one-card session whose final write failed."""
    card = Card(deck_id='deck-1', front='hola', back='hello')
    storage = FlakyStorage([card])
    machine = StudySessionMachine(storage)
    machine.start([card], now=T0)
    return storage, machine, card


async def _fail_last_answer(storage, machine, card):
    storage.broken = True
    with pytest.raises(StorageError):
        await machine.answer(card, StudyResult.CORRECT, T0)
    assert machine.state == SessionState.COMPLETED
    assert machine.has_pending_writes


@pytest.mark.asyncio
async def test_stop_keeps_the_session_while_writes_fail(unsaved_finish):
    storage, machine, card = unsaved_finish
    await _fail_last_answer(storage, machine, card)
    context = SimpleNamespace(user_data={'study_session': machine})

    update = button_update()
    state = await stop_study(update, context)

    assert state == StudyState.ANSWERING
    assert context.user_data['study_session'] is machine
    assert machine.has_pending_writes
    assert last_markup(update) is UNSAVED_MARKUP


@pytest.mark.asyncio
async def test_retry_after_blocked_stop_saves_everything(unsaved_finish):
    storage, machine, card = unsaved_finish
    await _fail_last_answer(storage, machine, card)
    context = SimpleNamespace(user_data={'study_session': machine})
    await stop_study(button_update(), context)

    storage.broken = False
    state = await retry_save(button_update(), context)

    assert state == ConversationHandler.END
    assert storage.sessions[machine.session.id].end_time is not None
    assert storage.cards[card.id].level == 1
    assert 'study_session' not in context.user_data


@pytest.mark.asyncio
async def test_stop_with_working_storage_saves_then_ends(unsaved_finish):
    storage, machine, card = unsaved_finish
    await _fail_last_answer(storage, machine, card)
    context = SimpleNamespace(user_data={'study_session': machine})

    storage.broken = False
    state = await stop_study(button_update(), context)

    assert state == ConversationHandler.END
    assert machine.session.id in storage.sessions
    assert 'study_session' not in context.user_data


@pytest.mark.asyncio
async def test_discard_is_the_only_way_to_drop_unsaved(unsaved_finish):
    storage, machine, card = unsaved_finish
    await _fail_last_answer(storage, machine, card)
    context = SimpleNamespace(user_data={'study_session': machine})
    await stop_study(button_update(), context)

    state = await discard_study(button_update(), context)

    assert state == ConversationHandler.END
    assert storage.sessions == {}
    assert 'study_session' not in context.user_data


@pytest.mark.asyncio
async def test_cancel_command_also_waits_for_unsaved(unsaved_finish):
    storage, machine, card = unsaved_finish
    await _fail_last_answer(storage, machine, card)
    context = SimpleNamespace(user_data={'study_session': machine})

    message = SimpleNamespace(reply_text=AsyncMock())
    update = SimpleNamespace(callback_query=None, message=message)
    state = await stop_study(update, context)

    assert state == StudyState.ANSWERING
    assert message.reply_text.call_args.kwargs['reply_markup'] is UNSAVED_MARKUP
    assert context.user_data['study_session'] is machine
