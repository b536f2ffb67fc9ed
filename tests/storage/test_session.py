"""Tests for database initialization and session management."""

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import inspect

from cashupay.gateway.domain.models import Store
from cashupay.storage.database import base
from cashupay.storage.session import db_session


@pytest.fixture
def sqlite_db(tmp_path, monkeypatch):
    monkeypatch.setattr(base, "engine", None)
    monkeypatch.setattr(base, "SessionLocal", None)
    base.init_db(f"sqlite:///{tmp_path}/test.db")
    yield base.engine
    base.engine.dispose()


class TestInitDb:
    def test_creates_tables(self, sqlite_db):
        tables = set(inspect(sqlite_db).get_table_names())

        assert {"stores", "invoices", "webhooks", "webhook_deliveries", "config"} <= tables

    def test_session_requires_init(self, monkeypatch):
        monkeypatch.setattr(base, "SessionLocal", None)

        with pytest.raises(RuntimeError, match="not initialized"):
            base.get_session()


class TestDbSession:
    def test_commit_persists(self, sqlite_db):
        with db_session() as session:
            store = Store(name="Coffee Shop")
            session.add(store)
            session.commit()
            store_id = store.id

        with db_session() as session:
            assert session.get(Store, store_id).name == "Coffee Shop"

    def test_rollback_on_exception(self, sqlite_db):
        with pytest.raises(ValueError):
            with db_session() as session:
                session.add(Store(name="Never saved"))
                session.flush()
                raise ValueError("boom")

        with db_session() as session:
            assert session.query(Store).count() == 0

    def test_session_closed(self):
        mock_session = MagicMock()
        with patch("cashupay.storage.database.base.get_session", return_value=mock_session):
            with db_session():
                pass

        mock_session.close.assert_called_once()
        mock_session.rollback.assert_not_called()
