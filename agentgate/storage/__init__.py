"""Storage backend selection helpers."""

from __future__ import annotations

from agentgate.config.settings import Settings
from agentgate.storage.file_store import FileTranscriptStore
from agentgate.storage.kv import TranscriptStore
from agentgate.storage.redis_store import RedisTranscriptStore


def create_store(settings: Settings) -> TranscriptStore:
    backend = settings.transcript_backend.strip().lower()
    if backend == "redis":
        return RedisTranscriptStore(
            redis_url=settings.redis_url,
            key_prefix=settings.redis_key_prefix,
            ttl_seconds=settings.transcript_ttl_seconds,
        )
    return FileTranscriptStore(settings.transcript_dir)
