"""Debug artifact sinks.

The core calls a sink at fixed extension points (raw request, post-normalize,
pre-bridge-submit). Nothing in the request path depends on whether the sink
actually writes anything.
"""

from __future__ import annotations

import json
import queue
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from agentgate.util.logger import get_logger


logger = get_logger("debug_sink")


class DebugSink:
    """No-op sink; subclasses persist artifacts."""

    def on_raw_request(self, session_id: str, payload: Any) -> None:
        return None

    def on_normalized(self, session_id: str, request: BaseModel) -> None:
        return None

    def on_bridge_submit(self, session_id: str, submission: BaseModel) -> None:
        return None

    def close(self) -> None:
        return None


def _file_stamp() -> str:
    return datetime.now(tz=timezone.utc).isoformat().replace(":", "-").replace(".", "-")


class FileDebugSink(DebugSink):
    """Writes one JSON file per artifact on a background thread."""

    def __init__(self, directory: str | Path, max_queue: int = 1000) -> None:
        self.directory = Path(directory)
        self._queue: queue.Queue[tuple[Path, str] | None] = queue.Queue(maxsize=max_queue)
        self._worker: threading.Thread | None = None
        self._lock = threading.Lock()

    def _write(self, path: Path, body: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(body, encoding="utf-8")
        logger.debug("debug artifact saved path=%s", path)

    def _worker_loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is None:
                    break
                self._write(*item)
            except OSError as exc:
                logger.warning("debug artifact write failed: %s", exc)
            finally:
                self._queue.task_done()

    def _ensure_worker(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        with self._lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(target=self._worker_loop, name="agentgate-debug-writer", daemon=True)
            self._worker.start()

    def _submit(self, kind: str, session_id: str, body: str) -> None:
        path = self.directory / f"{kind}-{_file_stamp()}-{session_id[:8]}.json"
        self._ensure_worker()
        try:
            self._queue.put_nowait((path, body))
        except queue.Full:
            logger.warning("debug artifact queue full, dropping kind=%s session=%s", kind, session_id)

    def on_raw_request(self, session_id: str, payload: Any) -> None:
        try:
            body = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            body = str(payload)
        self._submit("raw", session_id, body)

    def on_normalized(self, session_id: str, request: BaseModel) -> None:
        self._submit("request", session_id, request.model_dump_json(indent=2))

    def on_bridge_submit(self, session_id: str, submission: BaseModel) -> None:
        self._submit("submit", session_id, submission.model_dump_json(indent=2))

    def close(self) -> None:
        if self._worker is None or not self._worker.is_alive():
            return
        self._queue.put(None)
        self._worker.join(timeout=5)
        self._worker = None
