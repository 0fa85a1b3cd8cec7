"""
PostgreSQL schema for the booking engine.

``bookings_no_overlap`` is the storage-level guard against double booking:
two confirmed bookings of the same user can never overlap, whatever the
application does. Buffers and caps are enforced by the resolver inside the
advisory-locked critical section.
"""

import logging

from asyncpg import Pool

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE EXTENSION IF NOT EXISTS btree_gist;

CREATE TABLE IF NOT EXISTS booking_links (
    link_id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    link_data JSONB NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS availability_rules (
    user_id TEXT PRIMARY KEY,
    rule_data JSONB NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS calendar_connections (
    connection_id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    connection_data JSONB NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS calendar_connections_owner_idx
    ON calendar_connections (owner_id);

CREATE TABLE IF NOT EXISTS bookings (
    booking_id TEXT PRIMARY KEY,
    booking_link_id TEXT NOT NULL,
    assigned_user_id TEXT NOT NULL,
    window_start TIMESTAMPTZ NOT NULL,
    window_end TIMESTAMPTZ NOT NULL,
    status TEXT NOT NULL,
    requester JSONB NOT NULL,
    external_event_ref JSONB,
    calendar_sync_failed BOOLEAN NOT NULL DEFAULT FALSE,
    calendar_sync_error TEXT,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ,
    cancelled_at TIMESTAMPTZ,
    cancellation_reason TEXT,
    CONSTRAINT bookings_window_valid CHECK (window_end > window_start),
    CONSTRAINT bookings_no_overlap EXCLUDE USING gist (
        assigned_user_id WITH =,
        tstzrange(window_start, window_end, '[)') WITH &&
    ) WHERE (status = 'confirmed')
);

CREATE INDEX IF NOT EXISTS bookings_user_window_idx
    ON bookings (assigned_user_id, window_start);

CREATE INDEX IF NOT EXISTS bookings_sync_failed_idx
    ON bookings (created_at) WHERE calendar_sync_failed;

CREATE TABLE IF NOT EXISTS rotation_states (
    booking_link_id TEXT PRIMARY KEY,
    last_assigned_index INTEGER NOT NULL DEFAULT -1,
    member_loads JSONB NOT NULL DEFAULT '{}'::jsonb,
    updated_at TIMESTAMPTZ
);

CREATE TABLE IF NOT EXISTS reminder_outbox (
    dedupe_key TEXT PRIMARY KEY,
    recipient TEXT NOT NULL,
    send_at TIMESTAMPTZ NOT NULL,
    payload JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    sent_at TIMESTAMPTZ
);

CREATE INDEX IF NOT EXISTS reminder_outbox_due_idx
    ON reminder_outbox (send_at) WHERE sent_at IS NULL;

CREATE TABLE IF NOT EXISTS notification_outbox (
    dedupe_key TEXT PRIMARY KEY,
    recipient TEXT NOT NULL,
    template TEXT NOT NULL,
    data JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    sent_at TIMESTAMPTZ
);
"""


async def ensure_schema(pool: Pool) -> None:
    """Create the booking tables if they do not exist."""
    async with pool.acquire() as conn:
        await conn.execute(SCHEMA_SQL)
    logger.info("Booking schema ensured")
