"""Persistence of per-user Google tokens in ``user_calendar_connections``.

Token values are stored server-side so the session cookie carries only the
user's identity.
"""

from __future__ import annotations

import logging

import asyncpg

from katalyst.google.oauth import TokenSet

logger = logging.getLogger(__name__)

PROVIDER_GOOGLE = "google"


class TokenStore:
    """Load and save one active Google token set per user."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def load(self, user_id: str) -> TokenSet | None:
        """Return the user's active tokens, or None if they have never signed in."""
        row = await self._pool.fetchrow(
            """
            SELECT access_token, refresh_token, expires_at, scope
            FROM user_calendar_connections
            WHERE user_id = $1 AND provider = $2 AND is_active
            """,
            user_id,
            PROVIDER_GOOGLE,
        )
        if row is None:
            return None
        return TokenSet(
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            expires_at=row["expires_at"],
            scope=row["scope"],
        )

    async def save(self, user_id: str, tokens: TokenSet, calendar_id: str = "primary") -> None:
        """Upsert *tokens* for *user_id* and mark the connection active.

        A missing refresh token never overwrites a stored one, since Google
        only returns it on the first consent.
        """
        await self._pool.execute(
            """
            INSERT INTO user_calendar_connections (
                user_id, provider, access_token, refresh_token, expires_at, scope,
                calendar_id, is_active, updated_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, true, now())
            ON CONFLICT (user_id, provider) DO UPDATE SET
                access_token = EXCLUDED.access_token,
                refresh_token = COALESCE(
                    EXCLUDED.refresh_token, user_calendar_connections.refresh_token
                ),
                expires_at = EXCLUDED.expires_at,
                scope = COALESCE(EXCLUDED.scope, user_calendar_connections.scope),
                calendar_id = EXCLUDED.calendar_id,
                is_active = true,
                updated_at = now()
            """,
            user_id,
            PROVIDER_GOOGLE,
            tokens.access_token,
            tokens.refresh_token,
            tokens.expires_at,
            tokens.scope,
            calendar_id,
        )

    async def deactivate(self, user_id: str) -> None:
        """Mark the connection inactive and drop stored token values."""
        await self._pool.execute(
            """
            UPDATE user_calendar_connections
            SET is_active = false, access_token = NULL, refresh_token = NULL,
                updated_at = now()
            WHERE user_id = $1 AND provider = $2
            """,
            user_id,
            PROVIDER_GOOGLE,
        )
        logger.info("Google calendar connection deactivated")
