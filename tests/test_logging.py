"""Tests for the structured logging system (voucher_kernel/logging_config.py)."""

import json
import logging
from io import StringIO
from uuid import uuid4

import pytest

from voucher_kernel.exceptions import AlreadyTerminalError, ConfigurationError
from voucher_kernel.logging_config import (
    REDACTED,
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)
from voucher_kernel.domain.types import VoucherStatus


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "voucher_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("voucher_transitioned", extra={"audit_seq": 42, "to_status": "issued"})

        record = _parse_log(stream)
        assert record["audit_seq"] == 42
        assert record["to_status"] == "issued"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="abc-123", batch_id="batch-9")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["batch_id"] == "batch-9"

    def test_engine_exception_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise AlreadyTerminalError("v-1", "used", "used", serial_no="250301000017")
        except AlreadyTerminalError:
            get_logger("test").error("redeem_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "ALREADY_TERMINAL"
        assert record["exc_type"] == "AlreadyTerminalError"
        assert record["exc_serial_no"] == "250301000017"
        assert record["exc_current_status"] == "used"
        assert "traceback" in record

    def test_foreign_exception_has_no_engine_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        error = KeyError("missing")
        error.code = "NOT_OURS"
        try:
            raise error
        except KeyError:
            get_logger("test").error("lookup_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "KeyError"
        assert "exc_code" not in record
        assert sorted(k for k in record if k.startswith("exc_")) == ["exc_message", "exc_type"]

    def test_secret_extra_fields_redacted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info(
            "config_loaded",
            extra={
                "secret": "s3cr3t",
                "signing_secret": "s3cr3t",
                "Share_Token": "n.sig",
                "secret_env": "VOUCHER_SIGNING_SECRET",
            },
        )

        line = stream.getvalue()
        assert "s3cr3t" not in line
        assert "n.sig" not in line
        record = _parse_log(stream)
        assert record["secret"] == REDACTED
        assert record["signing_secret"] == REDACTED
        assert record["Share_Token"] == REDACTED
        assert record["secret_env"] == "VOUCHER_SIGNING_SECRET"

    def test_secret_exception_attribute_redacted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        error = ConfigurationError("codec.secret", "too short")
        error.dev_secret = "s3cr3t"
        try:
            raise error
        except ConfigurationError:
            get_logger("test").error("config_rejected", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "CONFIGURATION_ERROR"
        assert record["exc_dev_secret"] == REDACTED
        assert "s3cr3t" not in stream.getvalue()

    def test_custom_redact_keys(self):
        stream = StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(StructuredFormatter(redact_keys={"member_id"}))
        configure_logging(handler=handler)
        get_logger("test").info("lookup", extra={"member_id": "M-1", "api_secret": "x"})

        record = _parse_log(stream)
        assert record["member_id"] == REDACTED
        assert record["api_secret"] == REDACTED

    def test_uuid_and_enum_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info("typed", extra={"voucher_id": uid, "status": VoucherStatus.USED})

        record = _parse_log(stream)
        assert record["voucher_id"] == str(uid)
        assert record["status"] == "used"

    def test_debug_filtered_at_info(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        assert [r["message"] for r in logs] == ["first", "second"]


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", voucher_id="y")
        assert LogContext.get_all() == {"correlation_id": "x", "voucher_id": "y"}

    def test_clear(self):
        LogContext.set(operation="issue")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous(self):
        LogContext.set(operation="outer")
        with LogContext.bind(operation="inner", voucher_id="v-1"):
            assert LogContext.get_all() == {"operation": "inner", "voucher_id": "v-1"}
        assert LogContext.get_all() == {"operation": "outer"}

    def test_bind_ignores_none(self):
        with LogContext.bind(batch_id=None, actor_id="a"):
            assert LogContext.get_all() == {"actor_id": "a"}

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError):
            LogContext.set(member_id="M-1")
        assert LogContext.get_all() == {}

    def test_all_fields(self):
        LogContext.set(
            correlation_id="c", actor_id="a", batch_id="b", voucher_id="v", operation="o",
        )
        assert len(LogContext.get_all()) == 5


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)
        assert len(logging.getLogger("voucher_kernel").handlers) == 1

    def test_get_logger_returns_child(self):
        assert get_logger("batch.processor").name == "voucher_kernel.batch.processor"

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["logger"] == "voucher_kernel.deep.nested.module"
