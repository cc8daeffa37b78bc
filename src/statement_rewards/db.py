"""Database connection helper and schema."""

from __future__ import annotations

import psycopg
from psycopg.rows import dict_row

from statement_rewards.config import get_database_url

SCHEMA = """
CREATE TABLE IF NOT EXISTS statements (
    id UUID PRIMARY KEY,
    user_id TEXT NOT NULL,
    file_name TEXT NOT NULL,
    bank_name TEXT NOT NULL,
    statement_period TEXT,
    card_variant TEXT NOT NULL,
    card_number TEXT,
    reward_points JSONB NOT NULL,
    raw_extracted_text TEXT,
    ai_response JSONB,
    processing_status TEXT NOT NULL,
    error_message TEXT,
    source TEXT NOT NULL,
    upload_date TIMESTAMPTZ NOT NULL,
    inbox JSONB,
    inbox_message_id TEXT
);

CREATE INDEX IF NOT EXISTS statements_user_idx
    ON statements (user_id, upload_date DESC);

CREATE INDEX IF NOT EXISTS statements_inbox_key_idx
    ON statements (user_id, file_name, inbox_message_id);
"""


def get_connection() -> psycopg.Connection[dict[str, object]]:
    """Create and return a new database connection."""
    return psycopg.connect(get_database_url(), row_factory=dict_row)


def ensure_schema(conn: psycopg.Connection[dict[str, object]]) -> None:
    """Create the statements table and its indexes if missing."""
    with conn.cursor() as cur:
        cur.execute(SCHEMA)
    conn.commit()
