"""
Tests for sda_kernel.db.engine: the process-wide engine, unit-of-work
scope and savepoint behaviour on SQLite.
"""

from datetime import UTC, datetime
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import inspect, select

from sda_kernel.db import engine as db
from sda_kernel.models.transaction import Transaction, TransactionStatus
from tests.conftest import TEST_ACTOR_ID


@pytest.fixture
def sqlite_url(tmp_path):
    url = f"sqlite:///{tmp_path / 'engine.db'}"
    db.init_engine_from_url(url)
    db.create_tables()
    yield url
    db.reset_engine()


def _txn(number: str) -> Transaction:
    return Transaction(
        organization_id=uuid4(),
        transaction_number=number,
        resident_id=uuid4(),
        amount=Decimal("10.00"),
        occurred_at=datetime(2024, 2, 15, 2, 0, tzinfo=UTC),
        status=TransactionStatus.DRAFT.value,
        is_automated=True,
        created_by_id=TEST_ACTOR_ID,
    )


def _numbers() -> list[str]:
    with db.get_session() as session:
        return list(session.execute(select(Transaction.transaction_number)).scalars())


class TestInitialization:

    def test_uninitialized(self):
        db.reset_engine()
        with pytest.raises(RuntimeError, match="not initialized"):
            db.get_session()

    def test_tables_created(self, sqlite_url):
        tables = set(inspect(db.get_engine()).get_table_names())
        assert {
            "funding_contracts",
            "transactions",
            "claims",
            "claim_reconciliations",
            "automation_logs",
        } <= tables

    def test_drop_tables(self, sqlite_url):
        db.drop_tables()
        assert inspect(db.get_engine()).get_table_names() == []

    def test_reinitialize_replaces_engine(self, sqlite_url, tmp_path):
        first = db.get_engine()
        second = db.init_engine_from_url(f"sqlite:///{tmp_path / 'other.db'}")
        assert db.get_engine() is second
        assert second is not first


class TestSessionScope:

    def test_commits(self, sqlite_url):
        with db.session_scope() as session:
            session.add(_txn("TXN-A000001"))
        assert _numbers() == ["TXN-A000001"]

    def test_rolls_back_and_reraises(self, sqlite_url, captured_logs):
        with pytest.raises(ValueError):
            with db.session_scope() as session:
                session.add(_txn("TXN-A000001"))
                session.flush()
                raise ValueError("abort")

        assert _numbers() == []
        assert any(r["message"] == "session_rolled_back" for r in captured_logs())


class TestSqliteSavepoints:

    def test_inner_rollback_keeps_outer_work(self, sqlite_url):
        with db.session_scope() as session:
            session.add(_txn("TXN-A000001"))
            session.flush()
            savepoint = session.begin_nested()
            session.add(_txn("TXN-A000002"))
            session.flush()
            savepoint.rollback()

        assert _numbers() == ["TXN-A000001"]

    def test_released_savepoint_does_not_commit(self, sqlite_url):
        session = db.get_session()
        try:
            with session.begin_nested():
                session.add(_txn("TXN-A000001"))
            session.rollback()
        finally:
            session.close()

        assert _numbers() == []
