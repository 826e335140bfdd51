"""
Tests for messaging query filters, compiled for PostgreSQL.
"""

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from kinderhub.modules.messaging import repository

NOW = datetime(2026, 3, 10, 9, 0, tzinfo=UTC)


@pytest.mark.asyncio
async def test_typing_row_expiring_now_is_inactive(mock_db):
    mock_db.execute.return_value = MagicMock(
        scalars=MagicMock(return_value=MagicMock(all=MagicMock(return_value=[])))
    )

    await repository.get_active_typers(mock_db, ["key"], NOW)

    statement = mock_db.execute.call_args.args[0]
    compiled = statement.compile(dialect=postgresql.dialect())
    assert "typing_indicators.expires_at > %(expires_at_1)s" in str(compiled)
    assert compiled.params["expires_at_1"] == NOW


@pytest.mark.asyncio
async def test_no_keys_skips_the_query(mock_db):
    assert await repository.get_active_typers(mock_db, [], NOW) == []
    mock_db.execute.assert_not_awaited()
