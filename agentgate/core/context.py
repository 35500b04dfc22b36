"""Per-request runtime context."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from agentgate.config.settings import Settings
from agentgate.core.debug_sink import DebugSink
from agentgate.util.logger import get_logger


@dataclass(slots=True)
class RequestContext:
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    settings: Settings = field(default_factory=Settings)
    sink: DebugSink = field(default_factory=DebugSink)
    report_items: list[dict] = field(default_factory=list)
    _logger: logging.LoggerAdapter | None = None

    @property
    def logger(self) -> logging.LoggerAdapter:
        if self._logger is None:
            self._logger = RequestLoggerAdapter(get_logger("request"), {"request_id": self.request_id})
        return self._logger

    def add_report(self, item: dict) -> None:
        self.report_items.append(item)


class RequestLoggerAdapter(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        return f"[{self.extra['request_id'][:8]}] {msg}", kwargs
