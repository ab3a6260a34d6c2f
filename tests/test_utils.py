"""
Logging, formatting and metrics tests.
"""

import json
import logging

import pytest

from launch_sniper.logging_utils import JSONFormatter, MetricsCollector
from launch_sniper.utils import (
    InsufficientCapitalError,
    InsufficientFundsError,
    InsufficientGasError,
    PlanningError,
    SecureLogger,
    format_address,
    format_tx_hash,
    format_units,
    setup_logging,
    to_minor_units,
    validate_private_key,
)

from conftest import FUNDER_SECRET


@pytest.fixture
def secure_logger():
    base = logging.getLogger("redaction_test")
    base.setLevel(logging.DEBUG)
    return SecureLogger(base)


class TestSecureLogger:
    def test_registered_secret_redacted(self, secure_logger, caplog):
        secure_logger.register_secret(FUNDER_SECRET)
        with caplog.at_level(logging.DEBUG, logger="redaction_test"):
            secure_logger.info(f"key is {FUNDER_SECRET} and bare {FUNDER_SECRET[2:].upper()}")

        assert "11" * 32 not in caplog.text
        assert caplog.text.count("[SECRET_REDACTED]") == 2

    def test_bytes_secret(self, secure_logger, caplog):
        secure_logger.register_secret(b"\xab" * 32)
        with caplog.at_level(logging.DEBUG, logger="redaction_test"):
            secure_logger.warning("leak " + "ab" * 32)
        assert "ab" * 32 not in caplog.text

    def test_patterns(self, secure_logger, caplog):
        with caplog.at_level(logging.DEBUG, logger="redaction_test"):
            secure_logger.error("private_key=deadbeef password: hunter2")
        assert "deadbeef" not in caplog.text
        assert "hunter2" not in caplog.text

    def test_tx_hashes_untouched(self, secure_logger, caplog):
        tx_hash = "0x" + "cd" * 32
        with caplog.at_level(logging.DEBUG, logger="redaction_test"):
            secure_logger.info(f"sent {tx_hash}")
        assert tx_hash in caplog.text

    def test_setup_logging_file(self, tmp_path):
        log_file = tmp_path / "logs" / "run.log"
        log = setup_logging("DEBUG", str(log_file))
        log.info("hello file")
        for handler in log.raw.handlers:
            handler.flush()

        record = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert record["message"] == "hello file"
        assert record["level"] == "INFO"
        setup_logging("INFO")


class TestFormatting:
    def test_to_minor_units(self):
        assert to_minor_units("100", 6) == 100_000_000
        assert to_minor_units("0.1234567", 6) == 123_456
        assert to_minor_units(1, 18) == 10**18

    def test_format_units(self):
        assert format_units(32_059_812, 6) == "32.06"
        assert format_units(10**18 * 1234, 18, 0) == "1,234"

    def test_format_address(self):
        address = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
        assert format_address(address) == "0x833589...A02913"

    def test_format_tx_hash(self):
        assert format_tx_hash("0xDRYRUN") == "0xDRYRUN"
        assert format_tx_hash("0x" + "a" * 64).startswith("0xaaaaaaaa...")

    @pytest.mark.parametrize("key,valid", [
        (FUNDER_SECRET, True),
        (FUNDER_SECRET[2:], True),
        ("0x123", False),
        ("0x" + "g" * 64, False),
        (None, False),
    ])
    def test_validate_private_key(self, key, valid):
        assert validate_private_key(key) is valid


class TestErrors:
    def test_hierarchy(self):
        assert issubclass(InsufficientCapitalError, InsufficientFundsError)
        assert issubclass(InsufficientGasError, InsufficientFundsError)
        assert issubclass(PlanningError, ValueError)


class TestMetrics:
    def test_summary(self):
        metrics = MetricsCollector()
        metrics.start("swap", 0).finalize(success=True)
        metrics.start("swap", 1).finalize(success=False, error="reverted")
        metrics.start("swap", 2)  # never finished

        summary = metrics.get_summary()["swap"]
        assert summary["total"] == 2
        assert summary["success"] == 1
        assert summary["failure"] == 1
        assert summary["max_duration_ms"] >= summary["min_duration_ms"]

    def test_to_dict(self):
        metric = MetricsCollector().start("transfer", 3)
        metric.finalize()
        data = metric.to_dict()
        assert data["operation"] == "transfer"
        assert data["account_index"] == 3
        assert data["success"] is True

    def test_json_formatter(self):
        record = logging.LogRecord("launch_sniper", logging.WARNING, __file__, 1, "msg %s", ("x",), None)
        data = json.loads(JSONFormatter().format(record))
        assert data["message"] == "msg x"
        assert data["level"] == "WARNING"

    def test_json_formatter_account_extras(self):
        record = logging.LogRecord("launch_sniper", logging.INFO, __file__, 1, "swapped", (), None)
        record.account_index = 2
        data = json.loads(JSONFormatter().format(record))
        assert data["account_index"] == 2
        assert "tx_hash" not in data
