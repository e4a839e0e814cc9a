# ABOUTME: Unit tests for logging utilities
# ABOUTME: Tests correlation IDs, secret masking, configure_logging, and AuditLogger

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from kserve_reconciler.utils.logging import (
    AuditLogger,
    add_correlation_id,
    configure_logging,
    correlation_id,
    get_correlation_id,
    mask_secrets,
    set_correlation_id,
)


@pytest.mark.unit
class TestCorrelationId:
    """Tests for correlation ID generation and context management."""

    def test_generates_hex_id_when_empty(self):
        correlation_id.set("")

        cid = get_correlation_id()

        assert len(cid) == 8
        int(cid, 16)

    def test_returns_existing(self):
        set_correlation_id("test1234")
        assert get_correlation_id() == "test1234"

    def test_generated_id_is_stable(self):
        correlation_id.set("")
        assert get_correlation_id() == get_correlation_id()

    def test_processor_adds_id(self):
        set_correlation_id("proc1234")

        result = add_correlation_id(MagicMock(), "info", {"event": "reconciled"})

        assert result == {"event": "reconciled", "correlation_id": "proc1234"}


@pytest.mark.unit
class TestMaskSecrets:
    """Tests for mask_secrets."""

    def test_masks_token_in_string(self):
        masked = mask_secrets('{"token": "sha256~abcdef"}')
        assert "sha256~abcdef" not in masked
        assert "***MASKED***" in masked

    def test_masks_bearer_header(self):
        assert mask_secrets("Authorization: Bearer abc.def") == "Authorization: Bearer ***MASKED***"

    def test_masks_sensitive_dict_keys_recursively(self):
        data = {"spec": {"clientSecret": "s3cr3t", "hosts": ["a"]}, "items": [{"password": "p"}]}

        masked = mask_secrets(data)

        assert masked == {"spec": {"clientSecret": "***MASKED***", "hosts": ["a"]}, "items": [{"password": "***MASKED***"}]}

    def test_leaves_other_values(self):
        assert mask_secrets(42) == 42
        assert mask_secrets("servicemonitors \"istiod-monitor\" not found") == 'servicemonitors "istiod-monitor" not found'

    def test_input_is_not_modified(self):
        data = {"token": "t"}
        mask_secrets(data)
        assert data == {"token": "t"}


@pytest.mark.unit
class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_json_output_uses_json_renderer(self):
        with patch("kserve_reconciler.utils.logging.structlog") as mock_structlog:
            configure_logging(json_output=True)

            mock_structlog.processors.JSONRenderer.assert_called_once()
            mock_structlog.dev.ConsoleRenderer.assert_not_called()
            mock_structlog.configure.assert_called_once()

    def test_console_output_by_default(self):
        with patch("kserve_reconciler.utils.logging.structlog") as mock_structlog:
            configure_logging()

            mock_structlog.dev.ConsoleRenderer.assert_called_once()

    def test_correlation_processor_precedes_renderer(self):
        with patch("kserve_reconciler.utils.logging.structlog") as mock_structlog:
            configure_logging(level="DEBUG")

            processors = mock_structlog.configure.call_args.kwargs["processors"]
            assert processors[-2] is add_correlation_id
            mock_structlog.make_filtering_bound_logger.assert_called_once_with(10)


@pytest.mark.unit
class TestAuditLogger:
    """Tests for AuditLogger."""

    def test_log_to_file(self, tmp_path: Path):
        log_file = tmp_path / "audit.log"
        set_correlation_id("file1234")

        AuditLogger(log_path=log_file).log("create", "ServiceMonitor demo/istiod-monitor", "success")

        entry = json.loads(log_file.read_text().strip())
        assert entry["action"] == "create"
        assert entry["target"] == "ServiceMonitor demo/istiod-monitor"
        assert entry["result"] == "success"
        assert entry["correlation_id"] == "file1234"
        assert "timestamp" in entry
        assert "details" not in entry

    def test_log_appends(self, tmp_path: Path):
        log_file = tmp_path / "audit.log"
        audit = AuditLogger(log_path=log_file)

        audit.log_write("create", "a", "success")
        audit.log_write("delete", "b", "success")

        lines = log_file.read_text().strip().split("\n")
        assert [json.loads(line)["action"] for line in lines] == ["create", "delete"]

    def test_details_are_masked(self, tmp_path: Path):
        log_file = tmp_path / "audit.log"

        AuditLogger(log_path=log_file).log_write("update", "x", "success", {"token": "abc", "resource_version": "4"})

        entry = json.loads(log_file.read_text().strip())
        assert entry["details"] == {"token": "***MASKED***", "resource_version": "4"}

    def test_log_error(self, tmp_path: Path):
        log_file = tmp_path / "audit.log"

        AuditLogger(log_path=log_file).log_error("update", "x", "could not UPDATE widget demo/x: conflict")

        entry = json.loads(log_file.read_text().strip())
        assert entry["result"] == "error"
        assert entry["details"] == {"error": "could not UPDATE widget demo/x: conflict"}

    def test_log_to_structlog_without_path(self):
        audit = AuditLogger()

        with patch.object(audit, "_logger") as mock_logger:
            audit.log_write("delete", "AuthConfig demo/iris", "success")

            mock_logger.info.assert_called_once_with(
                "audit",
                action="delete",
                target="AuthConfig demo/iris",
                result="success",
                details=None,
            )
