"""
Structured logging tests - JSON formatter, correlation IDs and PII masking.
"""
import json
import logging
import sys

from wilnara.utils.logging import (
    StructuredJsonFormatter,
    configure_structured_logging,
    generate_correlation_id,
    get_correlation_id,
    mask_email,
    mask_phone,
    set_correlation_id,
)


def _record(msg="hello %s", args=("world",), **extra) -> logging.LogRecord:
    record = logging.LogRecord("wilnara.test", logging.INFO, __file__, 1, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestCorrelationId:

    def test_generate_is_hex(self):
        cid = generate_correlation_id()
        assert len(cid) == 32
        int(cid, 16)

    def test_set_and_get(self):
        set_correlation_id("job-123")
        assert get_correlation_id() == "job-123"


class TestStructuredJsonFormatter:

    def test_formats_single_json_line(self):
        set_correlation_id("cid-1")
        line = StructuredJsonFormatter().format(_record())
        entry = json.loads(line)
        assert entry["level"] == "INFO"
        assert entry["module"] == "wilnara.test"
        assert entry["message"] == "hello world"
        assert entry["correlation_id"] == "cid-1"
        assert entry["timestamp"].endswith("Z")

    def test_includes_known_extra_fields_only(self):
        record = _record(job_id="abc", job_type="sms", provider="twilio", secret="x")
        entry = json.loads(StructuredJsonFormatter().format(record))
        assert entry["job_id"] == "abc"
        assert entry["job_type"] == "sms"
        assert entry["provider"] == "twilio"
        assert "secret" not in entry

    def test_includes_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord(
                "wilnara.test", logging.ERROR, __file__, 1, "failed", (), sys.exc_info(),
            )
        entry = json.loads(StructuredJsonFormatter().format(record))
        assert "ValueError: boom" in entry["exception"]


class TestConfigureStructuredLogging:

    def test_installs_json_handler(self):
        root = logging.getLogger()
        saved_handlers = root.handlers[:]
        saved_level = root.level
        try:
            configure_structured_logging("debug")
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, StructuredJsonFormatter)
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            for handler in root.handlers[:]:
                root.removeHandler(handler)
            for handler in saved_handlers:
                root.addHandler(handler)
            root.setLevel(saved_level)


class TestMasking:

    def test_mask_email(self):
        assert mask_email("wilnara@example.com") == "wil***@example.com"

    def test_mask_email_without_domain(self):
        assert mask_email("nobody") == "nob***"

    def test_mask_phone(self):
        assert mask_phone("+5511999990000") == "+55119***"

    def test_short_phone_unchanged(self):
        assert mask_phone("12345") == "12345"
