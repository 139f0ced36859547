"""Tests for structured logging utilities."""

import io
import json
import logging
import sys

from s3_hybrid_storage.logging_utils import (
    StorageLoggerAdapter,
    StructuredJsonFormatter,
    configure_structured_logging,
    get_storage_logger,
)


def make_record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord("s3_hybrid_storage.engine", logging.WARNING, __file__, 1, "fallback %s", ("on",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredJsonFormatter:
    def test_basic_fields(self) -> None:
        data = json.loads(StructuredJsonFormatter().format(make_record()))

        assert data["level"] == "WARNING"
        assert data["logger"] == "s3_hybrid_storage.engine"
        assert data["message"] == "fallback on"
        assert data["timestamp"].endswith("+00:00")
        assert "storage" not in data

    def test_context_grouped_under_storage(self) -> None:
        record = make_record(context_id="j12", bucket="b", mode="hybrid", component="reconcile")

        data = json.loads(StructuredJsonFormatter().format(record))

        assert data["storage"] == {"context_id": "j12", "bucket": "b", "mode": "hybrid", "component": "reconcile"}
        assert "bucket" not in data

    def test_unset_context_fields_omitted(self) -> None:
        """A local-only engine has no bucket."""
        data = json.loads(StructuredJsonFormatter().format(make_record(context_id="j12", bucket=None)))
        assert data["storage"] == {"context_id": "j12"}

    def test_other_extras_kept_and_stringified(self) -> None:
        data = json.loads(StructuredJsonFormatter().format(make_record(key="a.pdf", path=object())))

        assert data["key"] == "a.pdf"
        assert isinstance(data["path"], str)


class TestConfigureStructuredLogging:
    def test_defaults_to_stderr(self) -> None:
        logger = configure_structured_logging(logging.DEBUG, logger_name="s3_hybrid_storage.test_stderr")
        try:
            assert logger.level == logging.DEBUG
            assert len(logger.handlers) == 1
            handler = logger.handlers[0]
            assert isinstance(handler, logging.StreamHandler)
            assert handler.stream is sys.stderr
            assert isinstance(handler.formatter, StructuredJsonFormatter)
        finally:
            logger.handlers.clear()

    def test_level_name_and_stream(self) -> None:
        stream = io.StringIO()
        logger = configure_structured_logging("warning", logger_name="s3_hybrid_storage.test_stream", stream=stream)
        try:
            logger.info("hidden")
            logger.warning("shown")

            lines = stream.getvalue().splitlines()
            assert len(lines) == 1
            assert json.loads(lines[0])["message"] == "shown"
        finally:
            logger.handlers.clear()

    def test_reconfigure_does_not_duplicate(self) -> None:
        configure_structured_logging(logger_name="s3_hybrid_storage.test_twice")
        logger = configure_structured_logging(logger_name="s3_hybrid_storage.test_twice")
        try:
            assert len(logger.handlers) == 1
        finally:
            logger.handlers.clear()


class TestStorageLoggerAdapter:
    def test_get_storage_logger(self) -> None:
        assert get_storage_logger("reconcile").name == "s3_hybrid_storage.reconcile"

    def test_call_site_extra_wins(self) -> None:
        adapter = StorageLoggerAdapter(logging.getLogger("x"), {"context_id": "j12", "mode": "fallback"})

        _, kwargs = adapter.process("msg", {"extra": {"mode": "override", "key": "a.txt"}})

        assert kwargs["extra"] == {"context_id": "j12", "mode": "override", "key": "a.txt"}

    def test_bind_extends_context(self) -> None:
        base = StorageLoggerAdapter(get_storage_logger("engine"), {"context_id": "j12", "bucket": "b"})

        child = base.bind(get_storage_logger("health"), component="health")

        assert child.logger.name == "s3_hybrid_storage.health"
        assert child.extra == {"context_id": "j12", "bucket": "b", "component": "health"}
        assert base.extra == {"context_id": "j12", "bucket": "b"}

    def test_bind_keeps_logger_by_default(self) -> None:
        base = StorageLoggerAdapter(get_storage_logger("engine"), {"context_id": "j12"})
        assert base.bind(mode="hybrid").logger is base.logger
