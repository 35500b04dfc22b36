"""Transcript store abstraction."""

from __future__ import annotations

from abc import ABC, abstractmethod

from agentgate.bridge.transcript import Transcript


class TranscriptStore(ABC):
    @abstractmethod
    def save(self, transcript: Transcript) -> str:
        """Persist the transcript and return the resume handle the runtime reads."""
        pass
