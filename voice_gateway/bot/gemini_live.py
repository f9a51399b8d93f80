import asyncio
import base64
import json
import logging
import time
from typing import Any, AsyncIterator, Dict, List, Optional, Set, Union

import websockets
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK, WebSocketException

from voice_gateway.config.constants import (
    DEFAULT_LIVE_MODEL,
    DEFAULT_VOICE,
    ENGINE_INPUT_MIME_TYPE,
    LOGGER_NAME,
)
from voice_gateway.models.call_models import (
    AudioChunk,
    SessionError,
    Speaker,
    ToolCallBatch,
    ToolCallRequest,
    ToolCallResult,
    TranscriptFragment,
)

logger = logging.getLogger(LOGGER_NAME)

LIVE_URL = (
    "wss://generativelanguage.googleapis.com/ws/"
    "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
)

# WebSocket configuration for low latency
WS_MAX_SIZE = 16 * 1024 * 1024  # 16MB - large enough for audio chunks
WS_PING_INTERVAL = 5  # 5 seconds between pings

GREETING_TRIGGER = "[Start the conversation now. Greet the caller using your opening line from the instructions.]"

EngineEvent = Union[AudioChunk, TranscriptFragment, ToolCallBatch, SessionError]


class LiveSessionError(Exception):
    """The engine session could not be opened."""


class LiveSessionClient:
    """
    One duplex speech session with the Gemini Live API for a single call.

    Caller audio goes up as 16 kHz PCM through ``send_audio``. Everything the
    engine sends back is decoded by a receive task into ``AudioChunk``,
    ``TranscriptFragment``, ``ToolCallBatch`` and ``SessionError`` events and
    handed out in arrival order by ``events()``.

    The client keeps the ids of tool calls it has emitted and accepts exactly
    one result for each.
    """
    def __init__(self, api_key: Optional[str], model: str = DEFAULT_LIVE_MODEL,
                 voice_name: str = DEFAULT_VOICE, url: str = LIVE_URL):
        self.api_key = api_key
        self.model = model
        self.voice_name = voice_name
        self.url = url
        self.ws = None
        self._events: asyncio.Queue = asyncio.Queue()
        self._recv_task: Optional[asyncio.Task] = None
        self._connection_active = False
        self._is_closing = False
        self._pending_tool_calls: Set[str] = set()
        self._customer_text: List[str] = []
        self._agent_text: List[str] = []

    @property
    def is_active(self) -> bool:
        return self._connection_active

    @property
    def pending_tool_calls(self) -> Set[str]:
        """Ids of tool calls still waiting for a result."""
        return set(self._pending_tool_calls)

    def _setup_message(self, prompt: str, tools: List[Dict[str, Any]]) -> Dict[str, Any]:
        return {
            "setup": {
                "model": self.model,
                "generation_config": {
                    "response_modalities": ["AUDIO"],
                    "speech_config": {
                        "voice_config": {"prebuilt_voice_config": {"voice_name": self.voice_name}}
                    },
                },
                "system_instruction": {"parts": [{"text": prompt}]},
                "input_audio_transcription": {},
                "output_audio_transcription": {},
                "tools": [{"function_declarations": tools}],
            }
        }

    async def open(self, prompt: str, tools: List[Dict[str, Any]]) -> "LiveSessionClient":
        """
        Connect, send the session setup and wait for the engine to acknowledge it.

        Args:
            prompt: The system instruction for this call
            tools: Function declarations the engine may call

        Returns:
            LiveSessionClient: this client, ready for audio

        Raises:
            LiveSessionError: if the connection or the setup handshake fails
        """
        if not self.api_key:
            raise LiveSessionError("GEMINI_API_KEY is not configured")
        if self._is_closing:
            raise LiveSessionError("Session is closed")

        # TODO: bound connect + setup with a timeout; a stalled handshake currently holds the caller in silence
        url = f"{self.url}?key={self.api_key}"
        logger.info(f"Opening Gemini Live session with model: {self.model}")
        connection_start = time.time()
        try:
            self.ws = await websockets.connect(
                url,
                max_size=WS_MAX_SIZE,
                ping_interval=WS_PING_INTERVAL,
                compression=None,  # Disable compression for lower latency
            )
        except (OSError, WebSocketException) as e:
            raise LiveSessionError(f"Failed to connect to Gemini Live: {e}") from e

        try:
            await self.ws.send(json.dumps(self._setup_message(prompt, tools)))
            reply = self._decode(await self.ws.recv())
        except WebSocketException as e:
            await self._close_socket()
            raise LiveSessionError(f"Gemini Live setup failed: {e}") from e

        if not reply or "setupComplete" not in reply:
            await self._close_socket()
            raise LiveSessionError(f"Unexpected setup reply from Gemini Live: {str(reply)[:200]}")

        logger.debug(f"Gemini Live session ready in {time.time() - connection_start:.2f} seconds")
        self._connection_active = True
        self._recv_task = asyncio.create_task(self._recv_loop())
        return self

    async def start_conversation(self, text: str = GREETING_TRIGGER) -> bool:
        """Send a text turn so the agent speaks first instead of waiting for caller audio."""
        return await self._send({
            "client_content": {
                "turns": [{"role": "user", "parts": [{"text": text}]}],
                "turn_complete": True,
            }
        })

    async def send_audio(self, pcm: bytes) -> bool:
        """
        Send 16 kHz PCM caller audio. Fire-and-forget: failures are logged, not raised.

        Returns:
            bool: True if the chunk was handed to the socket
        """
        if not pcm:
            return False
        return await self._send({
            "realtime_input": {
                "media_chunks": [{
                    "mime_type": ENGINE_INPUT_MIME_TYPE,
                    "data": base64.b64encode(pcm).decode("ascii"),
                }]
            }
        })

    async def send_tool_result(self, result: ToolCallResult) -> bool:
        """
        Return a tool result to the engine. Only the first result for an id is sent.

        Returns:
            bool: True if the result was sent
        """
        if result.id not in self._pending_tool_calls:
            logger.warning(f"Dropping result for unknown, cancelled or answered tool call {result.id} ({result.name})")
            return False
        self._pending_tool_calls.discard(result.id)

        return await self._send({
            "tool_response": {
                "function_responses": [{
                    "id": result.id,
                    "name": result.name,
                    "response": result.response(),
                }]
            }
        })

    async def _send(self, message: Dict[str, Any]) -> bool:
        if not self._connection_active or self.ws is None:
            logger.debug("Cannot send to Gemini Live - session not active")
            return False
        try:
            await self.ws.send(json.dumps(message))
            return True
        except ConnectionClosedOK:
            logger.info("Gemini Live session closed normally while sending")
        except WebSocketException as e:
            logger.warning(f"Gemini Live send failed: {e}")
        self._connection_active = False
        return False

    async def events(self) -> AsyncIterator[EngineEvent]:
        """Yield engine events in arrival order until the session ends."""
        while True:
            event = await self._events.get()
            if event is None:
                return
            yield event

    async def _recv_loop(self) -> None:
        """Decode engine messages into events until the socket closes."""
        try:
            while self._connection_active and not self._is_closing:
                message = await self.ws.recv()
                await self._handle_message(message)
        except ConnectionClosedOK:
            logger.info("Gemini Live connection closed normally")
        except ConnectionClosedError as e:
            logger.warning(f"Gemini Live connection closed unexpectedly: {e}")
            await self._events.put(SessionError(message=f"Engine connection lost: {e}"))
        except WebSocketException as e:
            logger.error(f"Gemini Live receive failed: {e}", exc_info=True)
            await self._events.put(SessionError(message=str(e)))
        except Exception as e:
            logger.error(f"Error handling Gemini Live message: {e}", exc_info=True)
            await self._events.put(SessionError(message=str(e)))
        finally:
            self._connection_active = False
            self._flush_transcript()
            self._events.put_nowait(None)
            logger.info("Gemini Live receive loop exited")

    @staticmethod
    def _decode(message: Union[str, bytes]) -> Optional[Dict[str, Any]]:
        try:
            if isinstance(message, bytes):
                message = message.decode("utf-8")
            data = json.loads(message)
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.warning(f"Received invalid JSON from Gemini Live: {str(message)[:100]}")
            return None
        return data if isinstance(data, dict) else None

    async def _handle_message(self, message: Union[str, bytes]) -> None:
        data = self._decode(message)
        if data is None:
            return

        if "serverContent" in data:
            await self._handle_server_content(data["serverContent"])

        if "toolCall" in data:
            calls = [
                ToolCallRequest(id=fc.get("id", ""), name=fc.get("name", ""), arguments=fc.get("args") or {})
                for fc in data["toolCall"].get("functionCalls", [])
            ]
            if calls:
                self._pending_tool_calls.update(call.id for call in calls)
                logger.info(f"Engine requested tools: {[call.name for call in calls]}")
                await self._events.put(ToolCallBatch(calls=calls))

        if "toolCallCancellation" in data:
            ids = data["toolCallCancellation"].get("ids", [])
            self._pending_tool_calls.difference_update(ids)
            logger.info(f"Engine cancelled tool calls: {ids}")

        if "goAway" in data:
            logger.warning(f"Gemini Live will close the session soon: {data['goAway']}")

    async def _handle_server_content(self, content: Dict[str, Any]) -> None:
        for part in (content.get("modelTurn") or {}).get("parts", []):
            inline = part.get("inlineData") or {}
            if inline.get("data"):
                await self._events.put(AudioChunk(data=base64.b64decode(inline["data"])))

        heard = (content.get("inputTranscription") or {}).get("text")
        if heard:
            self._customer_text.append(heard)
        spoken = (content.get("outputTranscription") or {}).get("text")
        if spoken:
            self._agent_text.append(spoken)

        if content.get("interrupted"):
            logger.debug("Agent speech interrupted by caller")

        if content.get("turnComplete"):
            self._flush_transcript()

    def _flush_transcript(self) -> None:
        """Queue buffered transcription as fragments; runs at turn end and when the session ends."""
        for speaker, buffer in ((Speaker.CUSTOMER, self._customer_text), (Speaker.AGENT, self._agent_text)):
            text = "".join(buffer).strip()
            buffer.clear()
            if text:
                self._events.put_nowait(TranscriptFragment(speaker=speaker, text=text))

    def drain_transcript(self) -> List[TranscriptFragment]:
        """
        Take the transcript fragments still queued after the session ended.

        Other queued events are discarded. Never blocks.
        """
        fragments = []
        while not self._events.empty():
            event = self._events.get_nowait()
            if isinstance(event, TranscriptFragment):
                fragments.append(event)
        return fragments

    async def _close_socket(self) -> None:
        if self.ws is not None:
            try:
                await self.ws.close()
            except WebSocketException as e:
                logger.debug(f"Error closing Gemini Live socket: {e}")

    async def close(self) -> None:
        """Close the session and stop the receive task. Safe to call more than once."""
        if self._is_closing:
            return
        logger.info("Closing Gemini Live session")
        self._is_closing = True
        self._connection_active = False

        if self._recv_task and not self._recv_task.done():
            self._recv_task.cancel()
            try:
                await self._recv_task
            except asyncio.CancelledError:
                pass
        elif self._recv_task is None:
            self._flush_transcript()
            self._events.put_nowait(None)

        await self._close_socket()

        if self._pending_tool_calls:
            logger.warning(f"Session closed with unanswered tool calls: {sorted(self._pending_tool_calls)}")
        logger.info("Gemini Live session closed")
