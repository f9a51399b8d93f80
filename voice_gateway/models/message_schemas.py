"""
Pydantic models for the telephony provider's media stream messages.

The provider opens one websocket per call and sends JSON control events
(``connected``, ``start``, ``media``, ``mark``, ``stop``). The gateway answers
with outbound ``media`` frames carrying base64 µ-law audio for the caller.
"""

import base64
import binascii
import json
import logging
from typing import Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from voice_gateway.config.constants import (
    EVENT_CONNECTED,
    EVENT_MARK,
    EVENT_MEDIA,
    EVENT_START,
    EVENT_STOP,
    LOGGER_NAME,
)

logger = logging.getLogger(LOGGER_NAME)


class BaseStreamMessage(BaseModel):
    """Base model for all media stream messages."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event: str = Field(..., description="Event type identifier")
    streamSid: Optional[str] = Field(None, description="Provider stream identifier")
    sequenceNumber: Optional[str] = None


class ConnectedMessage(BaseStreamMessage):
    event: Literal["connected"]
    protocol: Optional[str] = None


class StartDetails(BaseModel):
    model_config = ConfigDict(extra="ignore")

    streamSid: str
    callSid: Optional[str] = None
    customParameters: Dict[str, str] = Field(default_factory=dict)


class StartMessage(BaseStreamMessage):
    """Model for the ``start`` event that opens the media stream."""
    event: Literal["start"]
    start: StartDetails

    @property
    def caller_number(self) -> Optional[str]:
        return self.start.customParameters.get("from")

    @property
    def dialed_number(self) -> Optional[str]:
        return self.start.customParameters.get("to")

    @property
    def context(self) -> Optional[str]:
        return self.start.customParameters.get("context")


class MediaPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    payload: str = Field(..., description="Base64-encoded µ-law audio")
    track: Optional[str] = None
    timestamp: Optional[str] = None

    @field_validator("payload")
    def validate_payload(cls, v):
        """Validate that the payload is non-empty base64."""
        if not v:
            raise ValueError("Media payload cannot be empty")
        try:
            base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError):
            raise ValueError("Invalid base64 encoded audio data")
        return v


class MediaMessage(BaseStreamMessage):
    event: Literal["media"]
    media: MediaPayload

    def audio(self) -> bytes:
        return base64.b64decode(self.media.payload)


class MarkMessage(BaseStreamMessage):
    event: Literal["mark"]


class StopMessage(BaseStreamMessage):
    event: Literal["stop"]


IncomingStreamMessage = Union[ConnectedMessage, StartMessage, MediaMessage, MarkMessage, StopMessage]

_MESSAGE_MODELS = {
    EVENT_CONNECTED: ConnectedMessage,
    EVENT_START: StartMessage,
    EVENT_MEDIA: MediaMessage,
    EVENT_MARK: MarkMessage,
    EVENT_STOP: StopMessage,
}


class OutboundMedia(BaseModel):
    payload: str


class OutboundMediaMessage(BaseModel):
    """Model for audio sent back to the caller."""
    event: Literal["media"] = "media"
    streamSid: str
    media: OutboundMedia

    @classmethod
    def from_audio(cls, stream_sid: str, mulaw: bytes) -> "OutboundMediaMessage":
        return cls(streamSid=stream_sid, media=OutboundMedia(payload=base64.b64encode(mulaw).decode("ascii")))


def parse_stream_message(raw: str) -> Optional[IncomingStreamMessage]:
    """
    Parse a raw websocket text frame into a typed stream message.

    Malformed frames are logged and dropped by returning None; the session
    carries on with the next frame.

    Args:
        raw: The JSON text received from the provider

    Returns:
        The typed message, or None if the frame is malformed or of an unknown type
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning(f"Dropping non-JSON stream frame: {str(raw)[:100]}")
        return None

    if not isinstance(data, dict):
        logger.warning("Dropping stream frame that is not a JSON object")
        return None

    model = _MESSAGE_MODELS.get(data.get("event"))
    if model is None:
        logger.debug(f"Ignoring unknown stream event: {data.get('event')}")
        return None

    try:
        return model(**data)
    except ValidationError as e:
        logger.warning(f"Dropping invalid {data.get('event')} frame: {e.error_count()} validation error(s)")
        return None
