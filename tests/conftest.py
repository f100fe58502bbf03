"""
Pytest fixtures for the SDA drawdown engine test suite.

Provides:
- In-memory SQLite sessions for kernel tests (one fresh schema per test)
- File-backed SQLite session factories for tests that commit (run guard,
  handlers)
- Deterministic clock, tenant and actor ids
- Contract and transaction builders

Environment Variables:
- DATABASE_URL: PostgreSQL connection URL used by tests marked ``postgres``.
  Those tests skip when it is not set.
"""

import json
import logging
from collections.abc import Callable, Generator
from datetime import UTC, date, datetime
from decimal import Decimal
from io import StringIO
from uuid import UUID, uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import sda_kernel.models  # noqa: F401  (registers every table on Base.metadata)
from sda_kernel.db.base import Base
from sda_kernel.db.engine import enable_sqlite_savepoints
from sda_kernel.domain.clock import DeterministicClock
from sda_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from sda_kernel.models.funding_contract import (
    ContractStatus,
    DrawdownRate,
    FundingContract,
    FundingType,
)
from sda_kernel.models.transaction import Transaction, TransactionStatus

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture sda_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ...):
            ...
            logs = captured_logs()
            assert any(r["message"] == "claim_packaged" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("sda_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


# =============================================================================
# Database fixtures
# =============================================================================


def _sqlite_engine(url: str, **kwargs) -> Engine:
    engine = create_engine(url, **kwargs)
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """Fresh in-memory database with every table created."""
    eng = _sqlite_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    """Session on the in-memory database.  Tests never need to commit."""
    sess = Session(bind=engine, expire_on_commit=False)
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def session_factory(tmp_path) -> Generator[sessionmaker, None, None]:
    """
    Factory over a file-backed database, for code that owns its commits.

    Seed through a session from this factory, commit and close it before
    handing the factory to the code under test.
    """
    eng = _sqlite_engine(f"sqlite:///{tmp_path / 'sda_test.db'}")
    yield sessionmaker(bind=eng, expire_on_commit=False)
    eng.dispose()


# =============================================================================
# Identity and clock fixtures
# =============================================================================


@pytest.fixture
def test_actor_id() -> UUID:
    return TEST_ACTOR_ID


@pytest.fixture
def org_id() -> UUID:
    return uuid4()


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(datetime(2024, 2, 15, 2, 0, tzinfo=UTC))


# =============================================================================
# Builders
# =============================================================================


def build_contract(
    organization_id: UUID,
    *,
    resident_id: UUID | None = None,
    original_amount: Decimal = Decimal("3650.00"),
    current_balance: Decimal | None = None,
    drawdown_rate: DrawdownRate = DrawdownRate.DAILY,
    auto_drawdown: bool = True,
    daily_support_item_cost: Decimal | None = Decimal("10.00"),
    start_date: date = date(2024, 1, 1),
    end_date: date | None = date(2024, 12, 31),
    last_drawdown_date: date | None = None,
    status: ContractStatus = ContractStatus.ACTIVE,
    support_item_code: str | None = "01_821_0115_1_1",
) -> FundingContract:
    return FundingContract(
        organization_id=organization_id,
        resident_id=resident_id or uuid4(),
        funding_type=FundingType.SDA.value,
        support_item_code=support_item_code,
        original_amount=original_amount,
        current_balance=original_amount if current_balance is None else current_balance,
        drawdown_rate=drawdown_rate.value,
        auto_drawdown=auto_drawdown,
        daily_support_item_cost=daily_support_item_cost,
        last_drawdown_date=last_drawdown_date,
        start_date=start_date,
        end_date=end_date,
        contract_status=status.value,
        created_by_id=TEST_ACTOR_ID,
    )


@pytest.fixture
def make_contract(session, org_id) -> Callable[..., FundingContract]:
    """Insert a funding contract in the test session and return it."""

    def _make(**overrides) -> FundingContract:
        organization_id = overrides.pop("organization_id", org_id)
        contract = build_contract(organization_id, **overrides)
        session.add(contract)
        session.flush()
        return contract

    return _make


@pytest.fixture
def make_transaction(session, org_id) -> Callable[..., Transaction]:
    """Insert a transaction outside the TXN number series and return it."""

    def _make(
        *,
        amount: Decimal = Decimal("50.00"),
        resident_id: UUID | None = None,
        contract_id: UUID | None = None,
        occurred_at: datetime = datetime(2024, 2, 10, 3, 0, tzinfo=UTC),
        status: TransactionStatus = TransactionStatus.DRAFT,
        claim_id: UUID | None = None,
        transaction_number: str | None = None,
        organization_id: UUID | None = None,
    ) -> Transaction:
        txn = Transaction(
            organization_id=organization_id or org_id,
            transaction_number=transaction_number or f"SEED-{uuid4().hex[:12]}",
            resident_id=resident_id or uuid4(),
            contract_id=contract_id,
            amount=amount,
            occurred_at=occurred_at,
            status=status.value,
            claim_id=claim_id,
            is_automated=False,
            created_by_id=TEST_ACTOR_ID,
        )
        session.add(txn)
        session.flush()
        return txn

    return _make
