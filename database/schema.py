# ======================= DECKS ==========================

deck_schema = '''
    CREATE TABLE IF NOT EXISTS decks (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        color TEXT,

        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        last_studied TEXT,

        -- Derived counters, rewritten by recompute_deck_stats
        total_cards INTEGER NOT NULL DEFAULT 0,
        mastered_cards INTEGER NOT NULL DEFAULT 0,
        learning_cards INTEGER NOT NULL DEFAULT 0
    )
'''

# ======================= CARDS ==========================

card_schema = '''
    CREATE TABLE IF NOT EXISTS cards (
        id TEXT PRIMARY KEY,
        deck_id TEXT NOT NULL,

        -- Card content
        front TEXT NOT NULL,
        back TEXT NOT NULL,
        tags TEXT NOT NULL DEFAULT '[]',

        -- Spaced repetition
        level INTEGER NOT NULL DEFAULT 0,
        next_review_date TEXT,
        last_reviewed TEXT,
        correct_count INTEGER NOT NULL DEFAULT 0,
        incorrect_count INTEGER NOT NULL DEFAULT 0,

        -- Metadata
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,

        FOREIGN KEY (deck_id) REFERENCES decks(id) ON DELETE CASCADE
    )
'''

card_index = 'CREATE INDEX IF NOT EXISTS idx_cards_deck_id ON cards(deck_id)'

# ======================= SESSIONS =======================

# deck_id has no foreign key: history outlives deleted decks
session_schema = '''
    CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        deck_id TEXT,
        start_time TEXT NOT NULL,
        end_time TEXT
    )
'''

session_review_schema = '''
    CREATE TABLE IF NOT EXISTS session_reviews (
        session_id TEXT NOT NULL,
        position INTEGER NOT NULL,
        card_id TEXT NOT NULL,
        result TEXT NOT NULL,
        time_spent INTEGER NOT NULL,

        PRIMARY KEY (session_id, position),
        FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
    )
'''

ALL_SCHEMAS = (deck_schema, card_schema, card_index, session_schema, session_review_schema)
