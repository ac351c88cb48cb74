"""
Shared fixtures for the database service tests.

Sessions are MagicMocks whose ``execute`` returns prepared SQLAlchemy-like
results in order; ``get_session`` behaves like DatabaseManager.get_session
(commit on success, rollback on error).
"""

import pytest
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

from app.core.database_connection import DatabaseManager


def _make_result(rows=None, rowcount=1, scalar=None):
    """
    Build a mock SQLAlchemy result.

    Args:
        rows: Mapping rows returned by ``mappings().all()``; the first one is
            also returned by ``one_or_none()`` and ``first()``
        rowcount: Rows affected for update/delete statements
        scalar: Value returned by ``scalar_one()``
    """
    rows = rows or []
    mock_result = MagicMock()
    mock_result.mappings.return_value = mock_result
    mock_result.all.return_value = rows
    mock_result.one_or_none.return_value = rows[0] if rows else None
    mock_result.first.return_value = rows[0] if rows else None
    mock_result.scalar_one.return_value = scalar
    mock_result.rowcount = rowcount
    return mock_result


@pytest.fixture
def mock_db_manager():
    """Mock database manager for testing."""
    return AsyncMock(spec=DatabaseManager)


@pytest.fixture
def bind_session(mock_db_manager):
    """
    Attach a mock session to ``mock_db_manager``.

    Returns a function taking the results ``execute`` should return, in
    order, and returning the mock session.
    """

    def _bind(*results):
        mock_session = MagicMock()
        mock_session.commit = AsyncMock()
        mock_session.rollback = AsyncMock()
        mock_session.execute = AsyncMock(side_effect=list(results) or [_make_result()])

        @asynccontextmanager
        async def mock_get_session_cm():
            try:
                yield mock_session
            except Exception:
                await mock_session.rollback()
                raise
            else:
                await mock_session.commit()

        mock_db_manager.get_session = MagicMock(side_effect=lambda: mock_get_session_cm())
        return mock_session

    return _bind


def _executed_sql(mock_session, index=0):
    """SQL text and parameters of the ``index``-th execute call."""
    call = mock_session.execute.call_args_list[index]
    return str(call.args[0]), call.args[1]


@pytest.fixture
def make_result():
    return _make_result


@pytest.fixture
def executed_sql():
    return _executed_sql
