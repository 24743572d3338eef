import logging

import pytest

from manual_rag.logging_utils import configure_logging, get_logger
from manual_rag.obs.audit import SafetyAuditLog, Timer
from manual_rag.types import SafetyAction, SafetyTrigger, Severity


def _record(log: SafetyAuditLog, action: SafetyAction, triggers=(), latency_ms: float = 10.0):
    return log.record(
        sku_id="AP-100",
        package_version=1,
        question="How do I rinse the filter?",
        action=action,
        triggers=list(triggers),
        citations=["c1"],
        matched_count=1,
        confidence=0.7,
        latency_ms=latency_ms,
    )


def test_summary_counts_actions_triggers_and_escalations() -> None:
    log = SafetyAuditLog()
    shock = SafetyTrigger(type="electrical", severity=Severity.HIGH, reason="r")
    _record(log, SafetyAction.ALLOW, latency_ms=10.0)
    _record(log, SafetyAction.ESCALATE, [shock], latency_ms=20.0)
    _record(log, SafetyAction.BLOCK, [shock], latency_ms=30.0)
    _record(log, SafetyAction.WARN, latency_ms=40.0)

    summary = log.summary()

    assert summary["total_requests"] == 4
    assert summary["avg_latency_ms"] == pytest.approx(25.0)
    assert summary["escalation_rate"] == pytest.approx(0.5)
    assert summary["action_allow"] == 1
    assert summary["action_block"] == 1
    assert summary["trigger_electrical"] == 2


def test_empty_log_summary_and_lookup() -> None:
    log = SafetyAuditLog()

    assert log.summary()["total_requests"] == 0
    assert log.summary()["escalation_rate"] == 0.0
    with pytest.raises(KeyError):
        log.get("missing")


def test_list_recent_returns_latest_records_in_order() -> None:
    log = SafetyAuditLog()
    ids = [_record(log, SafetyAction.ALLOW).record_id for _ in range(5)]

    assert [entry.record_id for entry in log.list_recent(limit=2)] == ids[-2:]


def test_timer_measures_elapsed_time() -> None:
    with Timer() as timer:
        sum(range(1000))

    assert timer.elapsed_ms >= 0.0


def test_configure_logging_installs_one_handler() -> None:
    configure_logging(logging.DEBUG)
    configure_logging(logging.DEBUG)

    package_logger = logging.getLogger("manual_rag")
    assert len(package_logger.handlers) == 1
    assert package_logger.level == logging.DEBUG
    assert get_logger("manual_rag.lifecycle.service").getEffectiveLevel() == logging.DEBUG

    package_logger.handlers.clear()
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)
