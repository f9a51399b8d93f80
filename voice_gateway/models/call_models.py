"""
Data structures shared by the call session, the AI session adapter and the tool dispatcher.

These models carry audio frames between pipeline stages, the engine's events
(audio, transcript fragments, tool-call batches) and tool-call results back to
the engine.
"""

import time
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from voice_gateway.config.constants import (
    CODEC_MULAW,
    CODEC_PCM,
    ENGINE_INPUT_SAMPLE_RATE,
    ENGINE_OUTPUT_SAMPLE_RATE,
    TELEPHONY_SAMPLE_RATE,
)


class CallState(str, Enum):
    """Lifecycle states of a call session."""
    CONNECTING = "connecting"
    STREAMING = "streaming"
    CLOSING = "closing"
    CLOSED = "closed"


class AudioEncoding(BaseModel):
    """Encoding descriptor of an audio frame."""
    model_config = ConfigDict(frozen=True)

    sample_rate: int
    bit_depth: int
    codec: str


TELEPHONY_ENCODING = AudioEncoding(sample_rate=TELEPHONY_SAMPLE_RATE, bit_depth=8, codec=CODEC_MULAW)
ENGINE_INPUT_ENCODING = AudioEncoding(sample_rate=ENGINE_INPUT_SAMPLE_RATE, bit_depth=16, codec=CODEC_PCM)
ENGINE_OUTPUT_ENCODING = AudioEncoding(sample_rate=ENGINE_OUTPUT_SAMPLE_RATE, bit_depth=16, codec=CODEC_PCM)


class AudioFrame(BaseModel):
    """An immutable, timestamped audio payload."""
    model_config = ConfigDict(frozen=True)

    payload: bytes
    encoding: AudioEncoding
    timestamp: float = Field(default_factory=time.monotonic)


class ToolCallRequest(BaseModel):
    """A single function call requested by the engine."""
    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolCallResult(BaseModel):
    """Outcome of a tool call, correlated to its request by id."""
    id: str
    name: str
    payload: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, request: ToolCallRequest, payload: Dict[str, Any]) -> "ToolCallResult":
        return cls(id=request.id, name=request.name, payload=payload)

    @classmethod
    def failure(cls, request: ToolCallRequest, message: str) -> "ToolCallResult":
        return cls(id=request.id, name=request.name, error=message)

    @property
    def ok(self) -> bool:
        return self.error is None

    def response(self) -> Dict[str, Any]:
        """Body handed back to the engine as the function response."""
        if self.error is not None:
            return {"success": False, "message": self.error}
        return self.payload or {"success": True}


class Speaker(str, Enum):
    CUSTOMER = "customer"
    AGENT = "agent"


class TranscriptEntry(BaseModel):
    speaker: Speaker
    text: str


class Transcript:
    """Append-only conversation transcript scoped to one call session."""

    LABELS = {Speaker.CUSTOMER: "Customer", Speaker.AGENT: "Agent"}

    def __init__(self):
        self._entries: List[TranscriptEntry] = []

    def append(self, speaker: Speaker, text: str) -> None:
        text = text.strip()
        if text:
            self._entries.append(TranscriptEntry(speaker=speaker, text=text))

    @property
    def entries(self) -> List[TranscriptEntry]:
        return list(self._entries)

    def is_empty(self) -> bool:
        return not self._entries

    def render(self) -> str:
        return "\n".join(f"{self.LABELS[e.speaker]}: {e.text}" for e in self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


# Engine events delivered by the AI session adapter

class AudioChunk(BaseModel):
    """Engine speech, linear PCM at the engine output rate."""
    data: bytes


class TranscriptFragment(BaseModel):
    """Recognised speech for one speaker, flushed at a turn boundary."""
    speaker: Speaker
    text: str


class ToolCallBatch(BaseModel):
    calls: List[ToolCallRequest]


class SessionError(BaseModel):
    """The engine session failed mid-stream."""
    message: str
