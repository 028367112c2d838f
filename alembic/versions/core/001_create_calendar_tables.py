"""create_calendar_tables

Revision ID: katalyst_001
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""

from __future__ import annotations

from alembic import op

# revision identifiers, used by Alembic.
revision = "katalyst_001"
down_revision = None
branch_labels = ("core",)
depends_on = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS meetings (
            id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            start_time TIMESTAMPTZ NOT NULL,
            end_time TIMESTAMPTZ NOT NULL,
            duration_minutes INTEGER NOT NULL,
            location TEXT,
            meeting_url TEXT,
            organizer_email TEXT NOT NULL,
            organizer_name TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (user_id, id)
        )
    """)

    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_meetings_user_start
            ON meetings (user_id, start_time)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS meeting_attendees (
            id BIGSERIAL PRIMARY KEY,
            user_id TEXT NOT NULL,
            meeting_id TEXT NOT NULL,
            email TEXT NOT NULL,
            name TEXT,
            response_status TEXT NOT NULL DEFAULT 'needsAction',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            FOREIGN KEY (user_id, meeting_id)
                REFERENCES meetings (user_id, id) ON DELETE CASCADE,
            CONSTRAINT meeting_attendees_response_status_check
                CHECK (response_status IN ('accepted', 'declined', 'tentative', 'needsAction'))
        )
    """)

    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_meeting_attendees_meeting
            ON meeting_attendees (user_id, meeting_id)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS user_calendar_connections (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id TEXT NOT NULL,
            provider TEXT NOT NULL DEFAULT 'google',
            access_token TEXT,
            refresh_token TEXT,
            expires_at BIGINT,
            scope TEXT,
            calendar_id TEXT,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT user_calendar_connections_user_provider_key UNIQUE (user_id, provider)
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS user_calendar_connections")
    op.execute("DROP TABLE IF EXISTS meeting_attendees")
    op.execute("DROP TABLE IF EXISTS meetings")
