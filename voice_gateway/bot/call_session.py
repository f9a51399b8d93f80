"""
One phone call, from websocket accept to close.

A ``CallSession`` bridges the telephony media stream and one engine session.
Caller audio is transcoded and forwarded as it arrives; a relay task drains
the engine's events in order, sending speech back to the caller, recording
the transcript and starting a task per tool call so audio keeps flowing while
tools run. When the call ends the session closes the engine session and the
socket, then hands the transcript to dropped-call recovery.

States move strictly forward: CONNECTING -> STREAMING -> CLOSING -> CLOSED.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from voice_gateway.bot.gemini_live import LiveSessionClient, LiveSessionError
from voice_gateway.bot.prompt import (
    DEFAULT_BUSINESS_HOURS,
    BusinessHoursWindow,
    build_annotation,
    build_system_prompt,
)
from voice_gateway.bot.tools import VOICE_TOOLS
from voice_gateway.bot.transcoding import engine_to_telephony, telephony_to_engine
from voice_gateway.config.constants import (
    CALLBACK_CONTEXT,
    EVENT_CONNECTED,
    EVENT_MARK,
    EVENT_MEDIA,
    EVENT_START,
    EVENT_STOP,
    LOGGER_NAME,
    STATUS_INCOMPLETE,
)
from voice_gateway.handlers.recovery import CallRecoveryCoordinator
from voice_gateway.handlers.tool_dispatcher import ToolDispatcher
from voice_gateway.models.call_models import (
    ENGINE_OUTPUT_ENCODING,
    TELEPHONY_ENCODING,
    AudioChunk,
    AudioFrame,
    CallState,
    SessionError,
    ToolCallBatch,
    ToolCallRequest,
    Transcript,
    TranscriptFragment,
)
from voice_gateway.models.message_schemas import (
    MediaMessage,
    OutboundMediaMessage,
    StartMessage,
    parse_stream_message,
)
from voice_gateway.services.records_client import RecordsService, RecordsServiceError

logger = logging.getLogger(LOGGER_NAME)


class CallSession:
    """Lifecycle of a single call's media stream and its engine session."""

    def __init__(
        self,
        websocket: WebSocket,
        live_client: LiveSessionClient,
        dispatcher: ToolDispatcher,
        recovery: CallRecoveryCoordinator,
        records: RecordsService,
        caller_number: Optional[str] = None,
        dialed_number: Optional[str] = None,
        context: Optional[str] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        business_hours: BusinessHoursWindow = DEFAULT_BUSINESS_HOURS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.websocket = websocket
        self.live_client = live_client
        self.dispatcher = dispatcher
        self.recovery = recovery
        self.records = records
        self.tools = tools if tools is not None else VOICE_TOOLS
        self.business_hours = business_hours
        self.clock = clock

        self.state = CallState.CONNECTING
        self.stream_sid: Optional[str] = None
        self.call_sid: Optional[str] = None
        self.caller_number = caller_number
        self.dialed_number = dialed_number
        self.context = context
        self.transcript = Transcript()

        self._callback_cancelled = False
        self._close_started = False
        self._inbound_task: Optional[asyncio.Task] = None
        self._relay_task: Optional[asyncio.Task] = None
        self._tool_tasks: Set[asyncio.Task] = set()

        self.handlers = {
            EVENT_CONNECTED: self._handle_connected,
            EVENT_START: self._handle_start,
            EVENT_MEDIA: self._handle_media,
            EVENT_MARK: self._handle_mark,
            EVENT_STOP: self._handle_stop,
        }

    @property
    def is_callback(self) -> bool:
        return self.context == CALLBACK_CONTEXT

    @property
    def is_active(self) -> bool:
        return self.state in (CallState.CONNECTING, CallState.STREAMING)

    async def run(self) -> None:
        """
        Drive the call until it ends, then close it.

        The websocket must already be accepted. Nothing raised while handling
        the call escapes this method except cancellation.
        """
        await self._cancel_pending_callback()

        self._inbound_task = asyncio.create_task(self._receive_loop())
        try:
            await asyncio.wait({self._inbound_task})
            if not self._inbound_task.cancelled() and self._inbound_task.exception():
                error = self._inbound_task.exception()
                logger.error(f"Call session failed: {error}", exc_info=error)
        finally:
            await self.close()

    async def _cancel_pending_callback(self) -> None:
        if self._callback_cancelled or not self.caller_number:
            return
        self._callback_cancelled = True
        try:
            await self.recovery.cancel_pending_callback(self.caller_number)
        except Exception as e:
            logger.error(f"Failed to cancel pending callback for {self.caller_number}: {e}", exc_info=True)

    async def _receive_loop(self) -> None:
        while self.is_active:
            try:
                raw = await self.websocket.receive_text()
            except WebSocketDisconnect:
                logger.info(f"Telephony socket disconnected (stream {self.stream_sid})")
                break
            except (RuntimeError, KeyError) as e:
                # Starlette raises these for a closed socket or a non-text frame
                logger.warning(f"Telephony socket receive failed: {e}")
                break

            message = parse_stream_message(raw)
            if message is None:
                continue
            await self.handlers[message.event](message)

    async def _handle_connected(self, message) -> None:
        logger.info("Telephony media stream connected")

    async def _handle_start(self, message: StartMessage) -> None:
        if self.state is not CallState.CONNECTING:
            logger.warning(f"Ignoring repeated start event for stream {message.start.streamSid}")
            return

        self.stream_sid = message.start.streamSid
        self.call_sid = message.start.callSid
        self.caller_number = self.caller_number or message.caller_number
        self.dialed_number = self.dialed_number or message.dialed_number
        self.context = self.context or message.context
        self.dispatcher.call_id = self.call_sid
        logger.info(
            f"Media stream started: stream={self.stream_sid} call={self.call_sid} "
            f"from={self.caller_number} to={self.dialed_number}"
            + (" (callback)" if self.is_callback else "")
        )

        await self._cancel_pending_callback()
        prompt = await self._build_prompt()

        try:
            await self.live_client.open(prompt, self.tools)
        except LiveSessionError as e:
            logger.error(f"Could not open engine session for call {self.call_sid}: {e}")
            self.state = CallState.CLOSING
            return

        self.state = CallState.STREAMING
        self._relay_task = asyncio.create_task(self._relay_engine_events())
        await self.live_client.start_conversation()

    async def _resume_fields(self) -> Dict[str, Any]:
        """Details saved from this caller's earlier dropped call, if any."""
        if not self.caller_number:
            return {}
        try:
            record = await self.records.lookup(phone=self.caller_number)
        except RecordsServiceError as e:
            logger.warning(f"Could not look up earlier record for {self.caller_number}: {e}")
            return {}
        if not record or record.get("status") != STATUS_INCOMPLETE:
            return {}
        logger.info(f"Resuming incomplete record for {self.caller_number}")
        return record

    async def _build_prompt(self) -> str:
        annotation = build_annotation(
            self.dialed_number,
            resume_fields=await self._resume_fields(),
            is_callback=self.is_callback,
            business_hours=self.business_hours,
            at=self.clock() if self.clock else None,
        )
        return build_system_prompt(annotation)

    async def _handle_media(self, message: MediaMessage) -> None:
        if self.state is not CallState.STREAMING:
            logger.debug(f"Dropping media frame received while {self.state.value}")
            return
        frame = AudioFrame(payload=message.audio(), encoding=TELEPHONY_ENCODING)
        engine_frame = telephony_to_engine(frame)
        if engine_frame.payload:
            await self.live_client.send_audio(engine_frame.payload)

    async def _handle_mark(self, message) -> None:
        logger.debug(f"Playback mark received for stream {self.stream_sid}")

    async def _handle_stop(self, message) -> None:
        logger.info(f"Media stream stopped: {self.stream_sid}")
        self.state = CallState.CLOSING

    async def _relay_engine_events(self) -> None:
        """Drain engine events in receipt order until the engine session ends."""
        try:
            async for event in self.live_client.events():
                if isinstance(event, AudioChunk):
                    await self._send_to_caller(event.data)
                elif isinstance(event, TranscriptFragment):
                    self.transcript.append(event.speaker, event.text)
                elif isinstance(event, ToolCallBatch):
                    for request in event.calls:
                        self._start_tool_task(request)
                elif isinstance(event, SessionError):
                    logger.error(f"Engine session failed: {event.message}")
                    break
        except Exception as e:
            logger.error(f"Error relaying engine events: {e}", exc_info=True)
        finally:
            if self.is_active:
                logger.info("Engine session ended; closing call")
                self.state = CallState.CLOSING
                if self._inbound_task and not self._inbound_task.done():
                    self._inbound_task.cancel()

    async def _send_to_caller(self, pcm: bytes) -> None:
        if not self.stream_sid:
            return
        outbound = engine_to_telephony(AudioFrame(payload=pcm, encoding=ENGINE_OUTPUT_ENCODING))
        if not outbound.payload:
            return
        message = OutboundMediaMessage.from_audio(self.stream_sid, outbound.payload)
        try:
            await self.websocket.send_text(message.model_dump_json())
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug(f"Could not send audio to caller: {e}")

    def _start_tool_task(self, request: ToolCallRequest) -> None:
        task = asyncio.create_task(self._run_tool(request))
        self._tool_tasks.add(task)
        task.add_done_callback(self._tool_tasks.discard)

    async def _run_tool(self, request: ToolCallRequest) -> None:
        result = await self.dispatcher.dispatch(request)
        await self.live_client.send_tool_result(result)

    async def close(self) -> None:
        """
        Tear the call down: stop reading, finish in-flight tools, close the engine
        session and the socket, then run dropped-call recovery. Safe to call twice.
        """
        if self._close_started:
            return
        self._close_started = True
        self.state = CallState.CLOSING
        logger.info(f"Closing call session (stream {self.stream_sid})")

        if self._inbound_task and not self._inbound_task.done() \
                and self._inbound_task is not asyncio.current_task():
            self._inbound_task.cancel()
            try:
                await self._inbound_task
            except asyncio.CancelledError:
                pass

        while self._tool_tasks:
            await asyncio.gather(*list(self._tool_tasks), return_exceptions=True)

        if self._relay_task and not self._relay_task.done():
            self._relay_task.cancel()
            try:
                await self._relay_task
            except asyncio.CancelledError:
                pass

        await self.live_client.close()
        for fragment in self.live_client.drain_transcript():
            self.transcript.append(fragment.speaker, fragment.text)

        if self.websocket.application_state != WebSocketState.DISCONNECTED:
            try:
                await self.websocket.close()
            except RuntimeError as e:
                logger.debug(f"Telephony socket already closed: {e}")

        try:
            await self.recovery.evaluate(self.caller_number, self.transcript, self.dispatcher.work_order_created)
        except Exception as e:
            logger.error(f"Recovery for call {self.call_sid} failed: {e}", exc_info=True)
        finally:
            self.transcript.clear()
            self.state = CallState.CLOSED
            logger.info(f"Call session closed (stream {self.stream_sid})")
