"""Tests for database URL handling."""

import pytest

from app.db import async_database_url


class TestAsyncDatabaseUrl:
    @pytest.mark.parametrize(
        "url, expected",
        [
            ("postgres://u:p@db:5432/escrow", "postgresql+asyncpg://u:p@db:5432/escrow"),
            ("postgresql://u:p@db:5432/escrow", "postgresql+asyncpg://u:p@db:5432/escrow"),
            ("postgresql+asyncpg://db/escrow", "postgresql+asyncpg://db/escrow"),
        ],
    )
    def test_rewrites_to_asyncpg(self, url, expected):
        assert async_database_url(url) == expected

    def test_only_scheme_is_rewritten(self):
        url = "postgres://u:p@db/postgres://weird"
        assert async_database_url(url) == "postgresql+asyncpg://u:p@db/postgres://weird"
