"""
Models module for data structures and shared state in the voice gateway.

Key components:
- call_models: call states, audio frames, tool-call requests/results, the
  conversation transcript and the engine event types.
- message_schemas: Pydantic models for the telephony provider's media stream
  messages, plus a tolerant parser that drops malformed frames.
- records: work-order fields and their translation to the records service.
- store: the keyed store abstraction shared by callbacks and incomplete records.
- conversation: registry of call sessions with an open socket.

Usage examples:
```python
from voice_gateway.models.message_schemas import parse_stream_message

message = parse_stream_message(raw_text)
if message is not None and message.event == "media":
    audio = message.audio()
```
"""

from voice_gateway.models.call_models import (
    AudioChunk,
    AudioEncoding,
    AudioFrame,
    CallState,
    SessionError,
    Speaker,
    ToolCallBatch,
    ToolCallRequest,
    ToolCallResult,
    Transcript,
    TranscriptEntry,
    TranscriptFragment,
)
from voice_gateway.models.conversation import CallRegistry
from voice_gateway.models.message_schemas import (
    MediaMessage,
    OutboundMediaMessage,
    StartMessage,
    StopMessage,
    parse_stream_message,
)
from voice_gateway.models.records import WorkOrderFields
from voice_gateway.models.store import InMemoryKeyedStore, KeyedStore
