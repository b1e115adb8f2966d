"""Tests for voucher_kernel.db.engine: module engine and session_scope."""

from datetime import date
from uuid import uuid4

import pytest

from voucher_kernel.db.engine import (
    create_tables,
    get_engine,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from voucher_kernel.domain.types import ValueType, VoucherTemplate
from voucher_kernel.exceptions import TemplateNotFoundError
from voucher_kernel.services.sql_store import SqlVoucherStore


def _template(name: str) -> VoucherTemplate:
    return VoucherTemplate(
        template_id=uuid4(),
        name=name,
        value_type=ValueType.CASH,
        amount=10_000,
        valid_until=date(2025, 12, 31),
    )


@pytest.fixture
def file_engine(tmp_path):
    engine = init_engine_from_url(f"sqlite:///{tmp_path / 'engine.db'}")
    create_tables()
    yield engine
    reset_engine()


class TestModuleEngine:

    def test_uninitialized(self):
        reset_engine()
        with pytest.raises(RuntimeError, match="not initialized"):
            get_engine()
        with pytest.raises(RuntimeError):
            with session_scope():
                pass

    def test_init_sets_module_engine(self, file_engine):
        assert get_engine() is file_engine
        assert file_engine.dialect.name == "sqlite"


class TestSessionScope:

    def test_commits_on_exit(self, file_engine):
        template = _template("Committed")
        with session_scope() as session:
            SqlVoucherStore(session).add_template(template)

        with session_scope() as session:
            assert SqlVoucherStore(session).get_template(template.template_id).name == "Committed"

    def test_rolls_back_on_error(self, file_engine):
        template = _template("Rolled back")
        with pytest.raises(ValueError):
            with session_scope() as session:
                SqlVoucherStore(session).add_template(template)
                raise ValueError("abort")

        with session_scope() as session:
            with pytest.raises(TemplateNotFoundError):
                SqlVoucherStore(session).get_template(template.template_id)
