"""Logging, metrics and configuration tests."""

from __future__ import annotations

import json
import logging

import pytest

from ewma_registry.accumulators.registry import AccumulatorRegistry
from ewma_registry.config import Settings, get_settings
from ewma_registry.lib.logger import JsonFormatter, configure_logging, get_logger
from ewma_registry.lib.metrics import MetricsRegistry


def _record(msg: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("ewma_registry.test", logging.WARNING, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_extra_fields() -> None:
    payload = json.loads(JsonFormatter().format(_record("accumulator_invalid_handle", operation="update", handle=7)))

    assert payload["message"] == "accumulator_invalid_handle"
    assert payload["level"] == "WARNING"
    assert payload["logger"] == "ewma_registry.test"
    assert payload["operation"] == "update"
    assert payload["handle"] == 7
    assert "timestamp" in payload


def test_json_formatter_reprs_unserializable_extra() -> None:
    payload = json.loads(JsonFormatter().format(_record("odd", handle=object)))

    assert payload["handle"] == repr(object)


def test_configure_logging_is_idempotent() -> None:
    configure_logging()
    root = logging.getLogger()
    handlers = list(root.handlers)

    configure_logging("DEBUG")
    assert root.handlers == handlers
    assert root.level == logging.DEBUG

    configure_logging("WARNING")
    assert get_logger("ewma_registry.test").getEffectiveLevel() == logging.WARNING


def test_registry_logs_rejections(caplog: pytest.LogCaptureFixture, metrics: MetricsRegistry) -> None:
    registry = AccumulatorRegistry(max_instances=4, max_outstanding_buffers=4, metrics=metrics)

    with caplog.at_level(logging.INFO, logger="ewma_registry.accumulators.registry"):
        handle = registry.create(0.5)
        registry.create(2.0)
        registry.destroy(handle)
        registry.get_value(handle)

    messages = [record.getMessage() for record in caplog.records]
    assert messages == [
        "accumulator_created",
        "accumulator_create_rejected",
        "accumulator_destroyed",
        "accumulator_invalid_handle",
    ]
    assert caplog.records[-1].operation == "get_value"


def test_metrics_registry_snapshot_and_reset() -> None:
    metrics = MetricsRegistry()
    metrics.increment("ewma.create.success")
    metrics.increment("ewma.create.success", 2)

    assert metrics.get("ewma.create.success") == 3
    assert metrics.snapshot() == {"ewma.create.success": 3}

    metrics.reset()
    assert metrics.snapshot() == {}
    assert metrics.get("ewma.create.success") == 0


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EWMA_MAX_INSTANCES", "12")
    monkeypatch.setenv("EWMA_MAX_OUTSTANDING_BUFFERS", "3")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings()  # type: ignore[call-arg]

    assert settings.max_instances == 12
    assert settings.max_outstanding_buffers == 3
    assert settings.log_level == "debug"


def test_registry_defaults_come_from_settings(metrics: MetricsRegistry) -> None:
    registry = AccumulatorRegistry(metrics=metrics)
    limit = get_settings().max_instances

    handles = [registry.create(0.5) for _ in range(limit)]
    assert 0 not in handles
    assert registry.create(0.5) == 0


def test_release_and_update_are_observable(caplog: pytest.LogCaptureFixture, metrics: MetricsRegistry) -> None:
    registry = AccumulatorRegistry(max_instances=4, max_outstanding_buffers=4, metrics=metrics)
    handle = registry.create(0.5)
    registry.update(handle, 1.0)
    registry.update(handle, 3.0)
    buffer = registry.serialize_state(handle)

    with caplog.at_level(logging.INFO, logger="ewma_registry.accumulators.registry"):
        registry.release_text(buffer)

    released = [record for record in caplog.records if record.getMessage() == "state_buffer_released"]
    assert len(released) == 1
    assert released[0].buffer_id == buffer.buffer_id
    assert metrics.get("ewma.update") == 2
    assert metrics.get("ewma.buffer.released") == 1


def test_metrics_snapshot_filters_by_prefix() -> None:
    metrics = MetricsRegistry()
    metrics.increment("ewma.create.success")
    metrics.increment("ewma.create.rejected", 2)
    metrics.increment("ewma.created_elsewhere")
    metrics.increment("ewma.update", 5)

    assert metrics.snapshot("ewma.create") == {"ewma.create.success": 1, "ewma.create.rejected": 2}
    assert metrics.snapshot("ewma.create.") == metrics.snapshot("ewma.create")
    assert metrics.snapshot("ewma.update") == {"ewma.update": 5}
    assert metrics.total("ewma.create") == 3
    assert len(metrics.snapshot()) == 4
