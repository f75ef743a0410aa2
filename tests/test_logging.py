from __future__ import annotations

import logging

import orjson
import pytest

from source_registry_core.logging import JsonFormatter, RegistryLogger


def test_ring_buffer_evicts_oldest_entries() -> None:
    log = RegistryLogger(max_logs=3)
    for i in range(5):
        log.info("scan", f"message {i}")

    assert len(log) == 3
    assert [e.message for e in log.recent()] == ["message 2", "message 3", "message 4"]
    assert [e.message for e in log.recent(2)] == ["message 3", "message 4"]
    assert log.recent(0) == []


def test_clear_empties_the_buffer() -> None:
    log = RegistryLogger()
    log.warn("fetch", "slow")
    log.clear()
    assert len(log) == 0


def test_rejects_non_positive_capacity() -> None:
    with pytest.raises(ValueError):
        RegistryLogger(max_logs=0)


def test_entry_render_includes_context_fields() -> None:
    log = RegistryLogger()
    entry = log.error(
        "fetch",
        "HTTP 500",
        source_id="src-1",
        asset_id="asset-1",
        url="https://example.org/x",
        duration_ms=42,
        details={"attempt": 2},
    )

    line = entry.render()
    assert "[ERROR] [source-registry] [fetch] HTTP 500" in line
    assert "source=src-1" in line
    assert "asset=asset-1" in line
    assert "url=https://example.org/x" in line
    assert "duration=42ms" in line
    assert 'details={"attempt":2}' in line


def test_entries_are_forwarded_to_stdlib_logging(caplog: pytest.LogCaptureFixture) -> None:
    log = RegistryLogger()
    with caplog.at_level(logging.WARNING, logger="source_registry_core.audit"):
        log.debug("scan", "hidden")
        log.warn("scan", "visible")

    messages = [r.getMessage() for r in caplog.records]
    assert any("visible" in m for m in messages)
    assert not any("hidden" in m for m in messages)


def test_json_formatter_emits_ctx_fields() -> None:
    record = logging.LogRecord("registry", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    record.ctx_action = "scan"
    payload = orjson.loads(JsonFormatter().format(record))

    assert payload["message"] == "hello world"
    assert payload["level"] == "INFO"
    assert payload["ctx_action"] == "scan"
