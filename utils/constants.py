from enum import auto, Enum, IntEnum

DECK_NAME_MAX = 50
CARD_SIDE_MAX = 1000

# due-review sessions never present more than this many cards
STUDY_BATCH_SIZE = 20

RECENT_SESSIONS_LIMIT = 5


class StudyMode(str, Enum):
    DUE_REVIEW = 'due'
    DECK_PRIORITY = 'priority'
    RANDOM = 'random'
    NEVER_REVIEWED = 'new'


STUDY_MODE_LABELS = {
    StudyMode.DUE_REVIEW: '\U0001f9e0 Due review',
    StudyMode.DECK_PRIORITY: '\U0001f4cb Whole deck',
    StudyMode.RANDOM: '\U0001f500 Shuffle',
    StudyMode.NEVER_REVIEWED: '\U0001f195 New cards',
}


class SessionState(str, Enum):
    IDLE = 'idle'
    ACTIVE = 'active'
    COMPLETED = 'completed'
    ABANDONED = 'abandoned'


class AddCardState(IntEnum):
    AWAITING_DECK = auto()
    AWAITING_CONTENT = auto()
    CREATING_DECK = auto()
    CONFIRMATION_PREVIEW = auto()


class StudyState(IntEnum):
    MODE_PICKER = auto()
    SHOWING_FRONT = auto()
    ANSWERING = auto()


class ManageState(IntEnum):
    EDIT_CARD_CONTENT = auto()
    EDIT_CARD_PREVIEW = auto()
