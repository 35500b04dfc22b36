"""JSONL files on local disk; the resume handle is the file path."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from agentgate.bridge.transcript import Transcript
from agentgate.storage.kv import TranscriptStore
from agentgate.util.logger import get_logger


logger = get_logger("file_store")


class FileTranscriptStore(TranscriptStore):
    def __init__(self, directory: str = "debug-requests") -> None:
        self.directory = Path(directory)

    def save(self, transcript: Transcript) -> str:
        self.directory.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(tz=timezone.utc).isoformat().replace(":", "-").replace(".", "-")
        path = self.directory / f"jsonl-{stamp}-{transcript.session_id[:8]}.jsonl"
        path.write_text(transcript.to_jsonl(), encoding="utf-8")
        logger.debug("transcript saved path=%s records=%d", path, len(transcript.records))
        return str(path.resolve())
