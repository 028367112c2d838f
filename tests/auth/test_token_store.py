"""Tests for the server-side Google token store."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from katalyst.auth.tokens import PROVIDER_GOOGLE, TokenStore
from katalyst.google.oauth import TokenSet

pytestmark = pytest.mark.unit


@pytest.fixture
def pool():
    pool = MagicMock()
    pool.fetchrow = AsyncMock(return_value=None)
    pool.execute = AsyncMock()
    return pool


class TestLoad:
    async def test_missing_row(self, pool):
        assert await TokenStore(pool).load("alice@example.com") is None
        args = pool.fetchrow.await_args.args
        assert args[1:] == ("alice@example.com", PROVIDER_GOOGLE)
        assert "is_active" in args[0]

    async def test_row_to_token_set(self, pool):
        pool.fetchrow.return_value = {
            "access_token": "ya29.access",
            "refresh_token": "1//refresh",
            "expires_at": 1_800_000_000,
            "scope": "openid",
        }
        tokens = await TokenStore(pool).load("alice@example.com")
        assert tokens == TokenSet(
            access_token="ya29.access",
            refresh_token="1//refresh",
            expires_at=1_800_000_000,
            scope="openid",
        )


class TestSave:
    async def test_upsert_keeps_existing_refresh_token(self, pool):
        tokens = TokenSet(access_token="new", expires_at=1_800_000_000)
        await TokenStore(pool).save("alice@example.com", tokens, calendar_id="work")

        sql, *params = pool.execute.await_args.args
        assert "ON CONFLICT (user_id, provider)" in sql
        assert "EXCLUDED.refresh_token, user_calendar_connections.refresh_token" in sql
        assert params == [
            "alice@example.com",
            PROVIDER_GOOGLE,
            "new",
            None,
            1_800_000_000,
            None,
            "work",
        ]


class TestDeactivate:
    async def test_clears_token_values(self, pool):
        await TokenStore(pool).deactivate("alice@example.com")
        sql, *params = pool.execute.await_args.args
        assert "is_active = false" in sql
        assert "refresh_token = NULL" in sql
        assert params == ["alice@example.com", PROVIDER_GOOGLE]
