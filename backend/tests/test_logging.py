"""Tests for structured logging."""

import json
import logging

from keymanager.core.logging import (
    HumanFormatter,
    KeyContextFilter,
    StructuredFormatter,
    get_logger,
    key_context,
    key_id_var,
    mask_sensitive,
)


def make_record(level=logging.INFO, **extra_fields) -> logging.LogRecord:
    record = logging.LogRecord(
        name="keymanager.test",
        level=level,
        pathname=__file__,
        lineno=1,
        msg="Rotated key",
        args=(),
        exc_info=None,
    )
    if extra_fields:
        record.extra_fields = extra_fields
    return record


class TestMasking:
    """Test masking of credentials."""

    def test_masks_credentials(self):
        masked = mask_sensitive({
            "secret_access_key": "wJalrXUtnFEMI/K7MDENG",
            "session_token": "short",
            "kms_key_id": "1234abcd-12ab-34cd-56ef-1234567890ab",
        })

        assert masked["secret_access_key"] == "wJal...DENG"
        assert masked["session_token"] == "[REDACTED]"
        assert masked["kms_key_id"] == "1234abcd-12ab-34cd-56ef-1234567890ab"

    def test_masks_nested(self):
        masked = mask_sensitive({"aws": {"password": "x"}})
        assert masked["aws"]["password"] == "[REDACTED]"

    def test_bytes_rendered_as_hex(self):
        assert mask_sensitive({"signature": b"\x01\xff"}) == {"signature": "01ff"}


class TestKeyContext:
    """Test key id propagation."""

    def test_context_resets(self):
        with key_context("svid-1", "generate_key"):
            assert key_id_var.get() == "svid-1"
        assert key_id_var.get() is None

    def test_filter_stamps_record_at_emit_time(self):
        record = make_record()

        with key_context("svid-1", "sign_data"):
            assert KeyContextFilter().filter(record) is True

        # Formatting happens after the context has been left
        entry = json.loads(StructuredFormatter().format(record))
        assert entry["key_id"] == "svid-1"
        assert entry["operation"] == "sign_data"

    def test_json_output(self):
        record = make_record(logging.WARNING, kms_key_id="kms-1")
        KeyContextFilter().filter(record)

        entry = json.loads(StructuredFormatter().format(record))

        assert entry["message"] == "Rotated key"
        assert entry["level"] == "WARNING"
        assert entry["kms_key_id"] == "kms-1"
        assert "key_id" not in entry
        assert entry["source"].endswith(":1")

    def test_human_output(self):
        record = make_record(replaced="kms-0")

        with key_context("svid-1"):
            KeyContextFilter().filter(record)
        line = HumanFormatter().format(record)

        assert "Rotated key" in line
        assert "key=svid-1" in line
        assert "replaced=kms-0" in line


class TestStructuredLogger:
    """Test keyword fields on log calls."""

    def test_kwargs_become_extra_fields(self, caplog):
        logger = get_logger("keymanager.tests.structured")

        with caplog.at_level(logging.INFO, logger="keymanager.tests.structured"):
            logger.info("Generated key", kms_key_id="kms-1")

        record = caplog.records[-1]
        assert record.getMessage() == "Generated key"
        assert record.extra_fields == {"kms_key_id": "kms-1"}

    def test_records_point_at_caller(self, caplog):
        logger = get_logger("keymanager.tests.caller")

        with caplog.at_level(logging.INFO, logger="keymanager.tests.caller"):
            logger.warning("Orphaned key", kms_key_id="kms-1")

        assert caplog.records[-1].funcName == "test_records_point_at_caller"
