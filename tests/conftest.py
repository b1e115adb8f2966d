"""
Pytest fixtures for the voucher engine test suite.

Provides:
- Structured logging configured once per session, plus ``captured_logs``
- A deterministic clock, seeded RNG and a codec with a fixed test secret
- In-memory and SQLite-backed stores
- Template / voucher factories and a fake artifact renderer

No external database is needed: SQL tests run on in-memory SQLite.
"""

import json
import logging
import random
from datetime import date, datetime, timezone
from io import StringIO
from uuid import UUID, uuid4

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from voucher_config import EngineConfig
from voucher_kernel.db.engine import create_tables
from voucher_kernel.domain.clock import DeterministicClock
from voucher_kernel.domain.codec import SerialTokenCodec
from voucher_kernel.domain.rendering import Artifact
from voucher_kernel.domain.serial import compute_check_digit
from voucher_kernel.domain.types import (
    RecipientInfo,
    ValueType,
    Voucher,
    VoucherTemplate,
)
from voucher_kernel.exceptions import StoreUnavailableError
from voucher_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from voucher_kernel.services.lifecycle_service import VoucherLifecycleService
from voucher_kernel.services.memory_store import InMemoryVoucherStore
from voucher_kernel.services.sql_store import SqlVoucherStore

TEST_SECRET = "test-signing-secret-not-for-production"
TEST_ACTOR_ID = UUID("11111111-2222-3333-4444-555555555555")
FIXED_NOW = datetime(2025, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


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
    Capture voucher_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, lifecycle):
            lifecycle.verify(payload)
            logs = captured_logs()
            assert any(r["message"] == "payload_verified" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("voucher_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Helpers
# =============================================================================


def make_serial(index: int, issue_date: date = date(2025, 3, 1)) -> str:
    """Distinct valid serial per ``index`` (0..99999)."""
    base = issue_date.strftime("%y%m%d") + f"{index:05d}"
    return f"{base}{compute_check_digit(base)}"


def make_voucher(template: VoucherTemplate, index: int, **overrides) -> Voucher:
    values = dict(
        voucher_id=uuid4(),
        serial_no=make_serial(index),
        template_id=template.template_id,
        association="Riverside Seniors",
        member_id=f"M-{index:05d}",
        name=f"Holder {index}",
        amount=template.amount,
        created_at=FIXED_NOW,
    )
    values.update(overrides)
    return Voucher(**values)


class RecordingRenderer:
    """Fake ArtifactRenderer; raises for ids in ``fail_for``."""

    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.rendered: list[UUID] = []

    def render(self, voucher, template, render_format, fields):
        if voucher.voucher_id in self.fail_for:
            raise RuntimeError("design template could not be rendered")
        self.rendered.append(voucher.voucher_id)
        return Artifact(
            voucher_id=voucher.voucher_id,
            render_format=render_format,
            media_type="text/plain",
            content=f"{fields['serial_display']} {fields['amount']}",
            metadata={"qr_payload": fields["qr_payload"]},
        )


class FailingStore(InMemoryVoucherStore):
    """In-memory store that fails writes, chunk loads or batch bookkeeping.

    ``fail_progress`` is the number of ``record_batch_progress`` calls that
    fail before the store recovers; ``fail_finish`` fails every
    ``finish_batch``.
    """

    def __init__(
        self, fail_updates=(), fail_loads_containing=(), fail_progress=0, fail_finish=False,
    ):
        super().__init__()
        self.fail_updates = set(fail_updates)
        self.fail_loads_containing = set(fail_loads_containing)
        self.fail_progress = fail_progress
        self.fail_finish = fail_finish

    def update(self, voucher_id, expected_status, mutation):
        if voucher_id in self.fail_updates:
            raise StoreUnavailableError("update", "connection reset by peer")
        return super().update(voucher_id, expected_status, mutation)

    def get_by_ids(self, voucher_ids):
        if self.fail_loads_containing.intersection(voucher_ids):
            raise StoreUnavailableError("get_by_ids", "read timeout")
        return super().get_by_ids(voucher_ids)

    def record_batch_progress(self, batch_id, generated, failed):
        if self.fail_progress:
            self.fail_progress -= 1
            raise StoreUnavailableError("record_batch_progress", "timeout")
        return super().record_batch_progress(batch_id, generated, failed)

    def finish_batch(self, batch_id, status, completed_at):
        if self.fail_finish:
            raise StoreUnavailableError("finish_batch", "timeout")
        return super().finish_batch(batch_id, status, completed_at)


# =============================================================================
# Core fixtures
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(FIXED_NOW)


@pytest.fixture
def rng():
    return random.Random(20250301)


@pytest.fixture
def codec():
    return SerialTokenCodec(TEST_SECRET)


@pytest.fixture
def actor_id():
    return TEST_ACTOR_ID


@pytest.fixture
def engine_config():
    return EngineConfig(config_id="voucher-engine-test", version=1)


@pytest.fixture
def memory_store():
    return InMemoryVoucherStore()


@pytest.fixture
def cash_template(memory_store):
    template = VoucherTemplate(
        template_id=uuid4(),
        name="Winter Support 50k",
        value_type=ValueType.CASH,
        amount=50_000,
        valid_until=date(2025, 12, 31),
    )
    return memory_store.add_template(template)


@pytest.fixture
def recipient():
    return RecipientInfo(
        association="Riverside Seniors",
        member_id="M-00042",
        name="Kim Jisoo",
        dob=date(1950, 5, 17),
        phone="010-1234-5678",
    )


@pytest.fixture
def lifecycle(memory_store, codec, clock, rng):
    return VoucherLifecycleService(memory_store, codec, clock=clock, rng=rng)


@pytest.fixture
def seed_vouchers(memory_store, cash_template):
    """Insert ``count`` REGISTERED vouchers directly; returns them in order."""

    def _seed(count: int, store=None, template=None, start: int = 0) -> list[Voucher]:
        target = store or memory_store
        tmpl = template or cash_template
        return [
            target.add_voucher(make_voucher(tmpl, start + i))
            for i in range(count)
        ]

    return _seed


# =============================================================================
# SQLite fixtures
# =============================================================================


@pytest.fixture
def sqlite_engine():
    """In-memory SQLite with SAVEPOINT support enabled for pysqlite."""
    engine = create_engine("sqlite:///:memory:")

    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(sqlite_engine):
    factory = sessionmaker(bind=sqlite_engine, expire_on_commit=False)
    session = factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def sql_store(db_session):
    return SqlVoucherStore(db_session)


@pytest.fixture
def sql_template(sql_store):
    return sql_store.add_template(VoucherTemplate(
        template_id=uuid4(),
        name="Rice Exchange",
        value_type=ValueType.FIXED_ITEM,
        amount=30_000,
        eligible_site_ids=("A", "B"),
    ))
