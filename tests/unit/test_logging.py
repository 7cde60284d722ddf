"""Tests for structured logging and correlation IDs."""

from __future__ import annotations

import json
import logging

from storage_reconciler.logging import log_resource_event, sanitize_secrets
from storage_reconciler.utils.context import get_context_dict, get_correlation_id, with_correlation_id

logger = logging.getLogger("storage_reconciler.tests")


class TestLogResourceEvent:
    """Test cases for log_resource_event."""

    def test_json_line(self, caplog):
        """Test that an event is logged as one JSON object."""
        caplog.set_level(logging.INFO, logger=logger.name)
        log_resource_event(logger, "ctl", "Bucket", "b1", "create", "Created", "Bucket created", region="us-east-1")

        data = json.loads(caplog.records[-1].getMessage())
        assert data["resource"] == "Bucket"
        assert data["name"] == "b1"
        assert data["reason"] == "Created"
        assert data["region"] == "us-east-1"

    def test_level(self, caplog):
        """Test that the requested level is used."""
        caplog.set_level(logging.INFO, logger=logger.name)
        log_resource_event(logger, "ctl", "Bucket", "b1", "error", "Failed", "boom", level=logging.ERROR)
        assert caplog.records[-1].levelno == logging.ERROR

    def test_secrets_redacted(self, caplog):
        """Test that credential fields never reach the log."""
        caplog.set_level(logging.INFO, logger=logger.name)
        log_resource_event(logger, "ctl", "ServiceAccount", "sa-1", "create", "Created", "ok", secret="SK", access_key="AK")
        line = caplog.records[-1].getMessage()
        assert "SK" not in json.loads(line).values()
        assert json.loads(line)["access_key"] == "***REDACTED***"

    def test_sanitize_secrets_copies(self):
        """Test that the input mapping is not modified."""
        data = {"token": "t", "name": "n"}
        assert sanitize_secrets(data) == {"token": "***REDACTED***", "name": "n"}
        assert data["token"] == "t"


class TestCorrelationId:
    """Test cases for correlation ID propagation."""

    def test_generated_and_reset(self):
        """Test that an ID exists only inside the block."""
        assert get_correlation_id() is None
        with with_correlation_id() as corr_id:
            assert get_correlation_id() == corr_id
            assert len(corr_id) == 16
        assert get_correlation_id() is None

    def test_nested_blocks_share_outer_id(self):
        """Test that nested steps keep the ID of the run that started them."""
        with with_correlation_id("outer-id"):
            with with_correlation_id() as inner:
                assert inner == "outer-id"

    def test_context_dict(self):
        """Test that the correlation ID is included in log context."""
        with with_correlation_id("abc"):
            assert get_context_dict({"x": 1}) == {"correlation_id": "abc", "x": 1}
        assert get_context_dict() == {}
