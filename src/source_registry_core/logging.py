"""Process logging setup and the registry's structured audit log."""

from __future__ import annotations

import logging
import sys
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

import orjson

LogLevel = Literal["debug", "info", "warn", "error"]

SERVICE_NAME = "source-registry"

_STDLIB_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class JsonFormatter(logging.Formatter):
    """Lightweight JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for key, value in record.__dict__.items():
            if key.startswith("ctx_"):
                payload[key] = value
        return orjson.dumps(payload, default=str).decode("utf-8")


def configure_logging(level: str | int = "INFO", use_json: bool = True) -> None:
    root = logging.getLogger()
    root.setLevel(level.upper() if isinstance(level, str) else level)
    handler = logging.StreamHandler(sys.stderr)
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.handlers = [handler]


def get_logger(name: str = "source_registry_core") -> logging.Logger:
    return logging.getLogger(name)


@dataclass(frozen=True)
class StructuredLog:
    timestamp: datetime
    level: LogLevel
    action: str
    message: str
    service: str = SERVICE_NAME
    source_id: str | None = None
    asset_id: str | None = None
    url: str | None = None
    duration_ms: int | None = None
    details: dict[str, Any] | None = None

    def render(self) -> str:
        parts = [
            f"[{self.timestamp.isoformat()}]",
            f"[{self.level.upper()}]",
            f"[{self.service}]",
            f"[{self.action}]",
            self.message,
        ]
        if self.source_id:
            parts.append(f"source={self.source_id}")
        if self.asset_id:
            parts.append(f"asset={self.asset_id}")
        if self.url:
            parts.append(f"url={self.url}")
        if self.duration_ms is not None:
            parts.append(f"duration={self.duration_ms}ms")
        if self.details:
            parts.append("details=" + orjson.dumps(self.details, default=str).decode("utf-8"))
        return " ".join(parts)


@dataclass
class RegistryLogger:
    """
    Append-only audit log shared by the registry, fetcher and grounding components.

    Entries live in a bounded ring buffer (oldest evicted once `max_logs` is reached) and are
    mirrored to the stdlib logger so they reach whatever handler `configure_logging` installed.
    Appends are serialized by a lock so concurrent tasks and threads can share one instance.
    """

    max_logs: int = 1000
    logger: logging.Logger = field(default_factory=lambda: get_logger("source_registry_core.audit"))

    _buffer: deque[StructuredLog] = field(init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_logs <= 0:
            raise ValueError("max_logs must be > 0")
        self._buffer = deque(maxlen=self.max_logs)

    def log(
        self,
        level: LogLevel,
        action: str,
        message: str,
        *,
        source_id: str | None = None,
        asset_id: str | None = None,
        url: str | None = None,
        duration_ms: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> StructuredLog:
        entry = StructuredLog(
            timestamp=datetime.now(timezone.utc),
            level=level,
            action=action,
            message=message,
            source_id=source_id,
            asset_id=asset_id,
            url=url,
            duration_ms=duration_ms,
            details=details,
        )
        with self._lock:
            self._buffer.append(entry)
        self.logger.log(
            _STDLIB_LEVELS[level],
            entry.render(),
            extra={"ctx_action": action, "ctx_service": SERVICE_NAME},
        )
        return entry

    def debug(self, action: str, message: str, **extra: Any) -> StructuredLog:
        return self.log("debug", action, message, **extra)

    def info(self, action: str, message: str, **extra: Any) -> StructuredLog:
        return self.log("info", action, message, **extra)

    def warn(self, action: str, message: str, **extra: Any) -> StructuredLog:
        return self.log("warn", action, message, **extra)

    def error(self, action: str, message: str, **extra: Any) -> StructuredLog:
        return self.log("error", action, message, **extra)

    def recent(self, count: int = 100) -> list[StructuredLog]:
        with self._lock:
            items = list(self._buffer)
        if count <= 0:
            return []
        return items[-count:]

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)
