"""Unit tests for the sandbox audit trail and logging setup."""

import logging

import pytest

from stagegate.logging_config import NOISY_LOGGERS, configure_logging, get_logger, suppress_noisy_loggers
from stagegate.settings import Settings
from stagegate.staging.audit import log_sandbox_operation, redact_sandbox_path

HASH = "0123456789abcdef" * 4


class TestRedaction:
    """Identity hashes never reach the logs."""

    def test_hash_segment_replaced(self):
        assert redact_sandbox_path(f"/home/u/.zipline_tmp/users/{HASH}/a.txt") == (
            "/home/u/.zipline_tmp/users/[HASH]/a.txt"
        )

    def test_windows_separators(self):
        assert "[HASH]" in redact_sandbox_path(f"C:\\tmp\\users\\{HASH}")

    def test_other_paths_untouched(self):
        assert redact_sandbox_path("/tmp/shared/a.txt") == "/tmp/shared/a.txt"

    def test_none(self):
        assert redact_sandbox_path(None) == "-"


class TestLogSandboxOperation:
    """Audit line format."""

    def test_format(self, caplog: pytest.LogCaptureFixture):
        with caplog.at_level(logging.INFO, logger="stagegate.audit"):
            log_sandbox_operation(
                "FILE_CREATED", "a.txt", "Size: 3 bytes", sandbox_root=f"/x/users/{HASH}"
            )
        assert caplog.records[-1].name == "stagegate.audit"
        assert caplog.records[-1].getMessage() == (
            "SANDBOX_OPERATION: FILE_CREATED - a.txt - Path: /x/users/[HASH] - Size: 3 bytes"
        )

    def test_level(self, caplog: pytest.LogCaptureFixture):
        with caplog.at_level(logging.INFO, logger="stagegate.audit"):
            log_sandbox_operation("SECRET_DETECTED", level=logging.WARNING)
        assert caplog.records[-1].levelno == logging.WARNING
        assert caplog.records[-1].getMessage() == "SANDBOX_OPERATION: SECRET_DETECTED - Path: -"


class TestLoggingConfig:
    """Application logging setup."""

    @pytest.fixture(autouse=True)
    def _restore_root(self):
        root = logging.getLogger()
        app = logging.getLogger("stagegate")
        handlers, level, app_level = list(root.handlers), root.level, app.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)
        app.setLevel(app_level)

    def test_configure_uses_settings_level(self, mock_settings: Settings):
        configure_logging()
        assert logging.getLogger("stagegate").level == logging.INFO

    def test_configure_override(self, mock_settings: Settings):
        configure_logging("DEBUG")
        assert logging.getLogger("stagegate").level == logging.DEBUG

    def test_noisy_loggers_suppressed(self):
        suppress_noisy_loggers()
        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level >= logging.WARNING

    def test_get_logger(self):
        assert get_logger("stagegate.test").name == "stagegate.test"
