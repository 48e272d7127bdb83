"""
test_core.py - Tests for cross-cutting helpers: log context, formatters,
error bodies and health aggregation.

Run with:
    pytest tests/test_core.py -v
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys

from sosalert.app.alerts.channels.simulated_push import SimulatedPushTransport
from sosalert.app.alerts.record_store import InMemoryRecordStore
from sosalert.app.core.errors import FailedPreconditionError, InvalidArgumentError, NotFoundError
from sosalert.app.core.health import (
    ComponentHealth,
    HealthReport,
    HealthStatus,
    run_health_check,
)
from sosalert.app.core.logging_config import (
    JSONFormatter,
    PrettyFormatter,
    abbreviate_token,
    get_request_context,
    log_context,
)


def _record(msg="hello", **extra):
    record = logging.LogRecord("sosalert.test", logging.INFO, __file__, 10, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class DownStore(InMemoryRecordStore):
    async def ping(self):
        raise ConnectionError("connection refused")


# ═══════════════════════════════════════════════════════════════════════════
# Logging
# ═══════════════════════════════════════════════════════════════════════════

class TestLogContext:

    def test_nested_merge_and_restore(self):
        with log_context(request_id="req-1"):
            with log_context(alert_id="ALR-1", actor_id=None):
                assert get_request_context() == {"request_id": "req-1", "alert_id": "ALR-1"}
            assert get_request_context() == {"request_id": "req-1"}
        assert get_request_context() == {}

    def test_json_formatter_includes_context_and_extra(self):
        with log_context(alert_id="ALR-1"):
            line = JSONFormatter().format(_record(sent_count=3))
        entry = json.loads(line)
        assert entry["message"] == "hello"
        assert entry["alert_id"] == "ALR-1"
        assert entry["sent_count"] == 3

    def test_json_formatter_exception(self):
        try:
            raise ValueError("bad token")
        except ValueError:
            record = _record()
            record.exc_info = sys.exc_info()
        entry = json.loads(JSONFormatter().format(record))
        assert entry["exception"]["type"] == "ValueError"

    def test_pretty_formatter_tags(self):
        with log_context(request_id="abcdef123456", actor_id="staff-9"):
            line = PrettyFormatter().format(_record(alert_id="ALR-1"))
        assert "[abcdef12]" in line
        assert "<ALR-1>" in line
        assert "@staff-9" in line

    def test_abbreviate_token(self):
        assert abbreviate_token("short") == "short"
        assert abbreviate_token("a" * 40) == "a" * 12 + "..."


# ═══════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════

class TestErrorBodies:

    def test_codes_and_statuses(self):
        assert InvalidArgumentError("x").to_dict()["status"] == 400
        assert NotFoundError("Target user").to_dict()["code"] == "not-found"
        assert FailedPreconditionError("x").status_code == 412

    def test_not_found_message_and_details(self):
        body = NotFoundError("Target user", target_id="T1").to_dict()
        assert body["message"] == "Target user not found"
        assert body["details"] == {"resource": "Target user", "target_id": "T1"}

    def test_details_omitted_when_empty(self):
        assert "details" not in FailedPreconditionError("x").to_dict()


# ═══════════════════════════════════════════════════════════════════════════
# Health
# ═══════════════════════════════════════════════════════════════════════════

class TestHealth:

    def test_worst_status_wins(self):
        report = HealthReport(components=[
            ComponentHealth("a"),
            ComponentHealth("b", status=HealthStatus.DEGRADED),
        ])
        assert report.status == HealthStatus.DEGRADED

    def test_empty_report_healthy(self):
        assert HealthReport().status == HealthStatus.HEALTHY

    def test_uninitialised_is_degraded(self):
        report = asyncio.run(run_health_check())
        assert report.status == HealthStatus.DEGRADED

    def test_store_ping_failure_unhealthy(self):
        report = asyncio.run(run_health_check(DownStore(), SimulatedPushTransport()))
        store = report.components[0]
        assert store.status == HealthStatus.UNHEALTHY
        assert "connection refused" in store.message
        assert report.to_dict()["status"] == "unhealthy"
