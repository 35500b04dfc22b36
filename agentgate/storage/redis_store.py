"""Redis-backed transcript store."""

from __future__ import annotations

import json
from typing import Any

import redis

from agentgate.bridge.transcript import Transcript
from agentgate.storage.kv import TranscriptStore


HANDLE_SCHEME = "redis:"


class RedisTranscriptStore(TranscriptStore):
    def __init__(self, *, redis_url: str, key_prefix: str = "agentgate", ttl_seconds: int = 86400, client: Any = None) -> None:
        if client is None:
            client = redis.Redis.from_url(redis_url, decode_responses=False)
        self.client = client
        self.key_prefix = key_prefix.strip() or "agentgate"
        self.ttl_seconds = max(0, int(ttl_seconds))

    def _transcript_key(self, session_id: str) -> str:
        return f"{self.key_prefix}:transcript:{session_id}"

    def save(self, transcript: Transcript) -> str:
        key = self._transcript_key(transcript.session_id)
        pipe = self.client.pipeline()
        pipe.delete(key)
        if transcript.records:
            pipe.rpush(key, *(json.dumps(record, ensure_ascii=False) for record in transcript.records))
        if self.ttl_seconds > 0:
            pipe.expire(key, self.ttl_seconds)
        pipe.execute()
        return f"{HANDLE_SCHEME}{key}"
