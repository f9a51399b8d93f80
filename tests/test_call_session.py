import asyncio
import base64
import json
from datetime import datetime

import pytest
from fastapi import WebSocketDisconnect
from starlette.websockets import WebSocketState
from unittest.mock import AsyncMock, MagicMock

from voice_gateway.bot.call_session import CallSession
from voice_gateway.bot.gemini_live import LiveSessionError
from voice_gateway.bot.prompt import CALLBACK_NOTE, RESUME_HEADER, TECH_LINE_OPEN_NOTE
from voice_gateway.bot.transcoding import encode_mulaw, pcm_to_bytes
from voice_gateway.handlers.recovery import CallRecoveryCoordinator
from voice_gateway.handlers.tool_dispatcher import ToolDispatcher
from voice_gateway.models.call_models import (
    AudioChunk,
    CallState,
    SessionError,
    Speaker,
    ToolCallBatch,
    ToolCallRequest,
    TranscriptFragment,
)
from voice_gateway.models.records import WorkOrderFields
from voice_gateway.services.records_client import InMemoryRecordsService
from voice_gateway.services.telephony import TwilioTelephony

DISCONNECT = object()
CALLER = "+12055551234"


class FakeTelephonySocket:
    """Media-stream websocket fed from a queue."""

    def __init__(self):
        self.incoming = asyncio.Queue()
        self.sent = []
        self.closed = False
        self.application_state = WebSocketState.CONNECTED

    def push(self, frame):
        self.incoming.put_nowait(frame if frame is DISCONNECT else json.dumps(frame))

    async def receive_text(self):
        item = await self.incoming.get()
        if item is DISCONNECT:
            raise WebSocketDisconnect(code=1000)
        return item

    async def send_text(self, text):
        self.sent.append(json.loads(text))

    async def close(self):
        self.closed = True
        self.application_state = WebSocketState.DISCONNECTED


class FakeLiveClient:
    """Engine session whose events are emitted by the test."""

    def __init__(self, fail_open=False):
        self.fail_open = fail_open
        self.prompt = None
        self.audio = []
        self.results = []
        self.closed = False
        self.greeted = False
        self.unflushed = []
        self._events = asyncio.Queue()

    async def open(self, prompt, tools):
        if self.fail_open:
            raise LiveSessionError("no setupComplete")
        self.prompt = prompt
        return self

    async def start_conversation(self):
        self.greeted = True
        return True

    async def send_audio(self, pcm):
        self.audio.append(pcm)
        return True

    async def send_tool_result(self, result):
        self.results.append(result)
        return True

    async def events(self):
        while True:
            event = await self._events.get()
            if event is None:
                return
            yield event

    def emit(self, event):
        self._events.put_nowait(event)

    async def close(self):
        self.closed = True
        for fragment in self.unflushed:
            self._events.put_nowait(fragment)
        self._events.put_nowait(None)

    def drain_transcript(self):
        fragments = []
        while not self._events.empty():
            event = self._events.get_nowait()
            if isinstance(event, TranscriptFragment):
                fragments.append(event)
        return fragments


def start_frame(**custom):
    return {
        "event": "start",
        "streamSid": "MZ1",
        "start": {"streamSid": "MZ1", "callSid": "CA1", "customParameters": custom},
    }


def media_frame(mulaw):
    return {"event": "media", "streamSid": "MZ1", "media": {"payload": base64.b64encode(mulaw).decode()}}


async def wait_until(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)


@pytest.fixture
def socket():
    return FakeTelephonySocket()


@pytest.fixture
def live():
    return FakeLiveClient()


@pytest.fixture
def records():
    return InMemoryRecordsService()


@pytest.fixture
def telephony():
    telephony = MagicMock(spec=TwilioTelephony)
    telephony.send_text = AsyncMock(return_value="SM1")
    telephony.redirect_call = AsyncMock()
    return telephony


@pytest.fixture
def recovery():
    recovery = AsyncMock(spec=CallRecoveryCoordinator)
    recovery.evaluate.return_value = False
    return recovery


def make_session(socket, live, records, telephony, recovery, **kwargs):
    kwargs.setdefault("clock", lambda: datetime(2025, 6, 3, 10, 0))
    return CallSession(socket, live, ToolDispatcher(records, telephony), recovery, records, **kwargs)


@pytest.mark.asyncio
async def test_full_call_flow(socket, live, records, telephony, recovery):
    captured = {}

    async def evaluate(caller, transcript, work_order_created):
        captured.update(caller=caller, text=transcript.render(), created=work_order_created)
        return False

    recovery.evaluate.side_effect = evaluate
    session = make_session(socket, live, records, telephony, recovery)
    task = asyncio.create_task(session.run())

    socket.push({"event": "connected", "protocol": "Call"})
    socket.push(start_frame(**{"from": CALLER, "to": "+12055557797"}))
    await wait_until(lambda: session.state is CallState.STREAMING)

    assert session.stream_sid == "MZ1"
    assert session.call_sid == "CA1"
    assert session.dispatcher.call_id == "CA1"
    assert session.caller_number == CALLER
    assert TECH_LINE_OPEN_NOTE in live.prompt
    assert live.greeted
    recovery.cancel_pending_callback.assert_awaited_once_with(CALLER)

    socket.push(media_frame(bytes([0xFF, 0x80])))
    await wait_until(lambda: live.audio)
    assert live.audio[0] == pcm_to_bytes([0, 0, 32124, 32124])

    live.emit(AudioChunk(data=pcm_to_bytes([1000] * 6)))
    live.emit(TranscriptFragment(speaker=Speaker.CUSTOMER, text="My mailbox fell over."))
    await wait_until(lambda: socket.sent and len(session.transcript) == 1)

    assert socket.sent[0] == {
        "event": "media",
        "streamSid": "MZ1",
        "media": {"payload": base64.b64encode(encode_mulaw([1000, 1000])).decode()},
    }

    socket.push({"event": "stop", "streamSid": "MZ1"})
    await asyncio.wait_for(task, timeout=1)

    assert session.state is CallState.CLOSED
    assert live.closed
    assert socket.closed
    assert captured == {"caller": CALLER, "text": "Customer: My mailbox fell over.", "created": False}
    assert session.transcript.is_empty()


@pytest.mark.asyncio
async def test_media_before_start_is_dropped(socket, live, records, telephony, recovery):
    session = make_session(socket, live, records, telephony, recovery)
    task = asyncio.create_task(session.run())

    socket.push(media_frame(b"\xff\xff"))
    socket.push("garbage")
    socket.push(start_frame(**{"from": CALLER}))
    await wait_until(lambda: session.state is CallState.STREAMING)
    socket.push(DISCONNECT)
    await asyncio.wait_for(task, timeout=1)

    assert live.audio == []
    assert session.state is CallState.CLOSED


@pytest.mark.asyncio
async def test_malformed_frames_do_not_end_the_call(socket, live, records, telephony, recovery):
    session = make_session(socket, live, records, telephony, recovery)
    task = asyncio.create_task(session.run())

    socket.push(start_frame(**{"from": CALLER}))
    await wait_until(lambda: session.state is CallState.STREAMING)
    socket.incoming.put_nowait("{not json")
    socket.push({"event": "media", "media": {"payload": "!!!"}})
    socket.push(media_frame(b"\xff"))
    await wait_until(lambda: live.audio)

    assert session.state is CallState.STREAMING
    socket.push(DISCONNECT)
    await asyncio.wait_for(task, timeout=1)


@pytest.mark.asyncio
async def test_open_failure_closes_the_call(socket, records, telephony, recovery):
    live = FakeLiveClient(fail_open=True)
    session = make_session(socket, live, records, telephony, recovery)
    task = asyncio.create_task(session.run())

    socket.push(start_frame(**{"from": CALLER}))
    await asyncio.wait_for(task, timeout=1)

    assert session.state is CallState.CLOSED
    assert socket.closed
    assert live.closed
    recovery.evaluate.assert_awaited_once()


@pytest.mark.asyncio
async def test_engine_end_closes_the_call(socket, live, records, telephony, recovery):
    session = make_session(socket, live, records, telephony, recovery)
    task = asyncio.create_task(session.run())

    socket.push(start_frame(**{"from": CALLER}))
    await wait_until(lambda: session.state is CallState.STREAMING)
    live.emit(SessionError(message="engine connection lost"))
    await asyncio.wait_for(task, timeout=1)

    assert session.state is CallState.CLOSED
    assert socket.closed
    recovery.evaluate.assert_awaited_once()


@pytest.mark.asyncio
async def test_one_result_per_tool_call_and_close_waits_for_tools(socket, live, records, telephony, recovery):
    release = asyncio.Event()

    async def slow_sms(to, body):
        await release.wait()
        return "SM9"

    telephony.send_text.side_effect = slow_sms
    session = make_session(socket, live, records, telephony, recovery)
    task = asyncio.create_task(session.run())

    socket.push(start_frame(**{"from": CALLER}))
    await wait_until(lambda: session.state is CallState.STREAMING)
    live.emit(ToolCallBatch(calls=[
        ToolCallRequest(id="a", name="get_zipcode_for_address", arguments={"address": "1 A St", "city": "Auburn", "state": "AL"}),
        ToolCallRequest(id="b", name="send_sms", arguments={"to": CALLER, "body": "link"}),
        ToolCallRequest(id="c", name="no_such_tool", arguments={}),
    ]))
    await wait_until(lambda: len(live.results) == 2)

    # Audio keeps flowing while a tool is still running
    socket.push(media_frame(b"\xff"))
    await wait_until(lambda: live.audio)

    socket.push({"event": "stop"})
    await asyncio.sleep(0.01)
    assert not task.done()
    assert not live.closed

    release.set()
    await asyncio.wait_for(task, timeout=1)

    assert sorted(r.id for r in live.results) == ["a", "b", "c"]
    results = {r.id: r for r in live.results}
    assert results["b"].response() == {"success": True, "sid": "SM9"}
    assert not results["c"].ok
    assert live.closed


@pytest.mark.asyncio
async def test_work_order_reported_to_recovery(socket, live, records, telephony, recovery):
    session = make_session(socket, live, records, telephony, recovery)
    task = asyncio.create_task(session.run())

    socket.push(start_frame(**{"from": CALLER}))
    await wait_until(lambda: session.state is CallState.STREAMING)
    live.emit(ToolCallBatch(calls=[ToolCallRequest(id="w", name="create_work_order", arguments={
        "firstName": "Ada", "lastName": "Lovelace", "phone": "2055551234", "email": "ada@example.com",
        "address": "123 Main St", "city": "Birmingham", "state": "AL", "zip": "35203",
        "serviceType": "Repair", "serviceDescription": "Leaning post", "preferredContact": "Text Message",
    })]))
    await wait_until(lambda: live.results)
    socket.push(DISCONNECT)
    await asyncio.wait_for(task, timeout=1)

    assert live.results[0].ok
    assert recovery.evaluate.await_args.args[2] is True


@pytest.mark.asyncio
async def test_returning_caller_cancels_callback_before_start(socket, live, records, telephony, recovery):
    session = make_session(socket, live, records, telephony, recovery, caller_number=CALLER)
    task = asyncio.create_task(session.run())

    await wait_until(lambda: recovery.cancel_pending_callback.await_count == 1)
    assert session.state is CallState.CONNECTING

    socket.push(start_frame(**{"from": CALLER}))
    await wait_until(lambda: session.state is CallState.STREAMING)
    socket.push(DISCONNECT)
    await asyncio.wait_for(task, timeout=1)

    recovery.cancel_pending_callback.assert_awaited_once_with(CALLER)


@pytest.mark.asyncio
async def test_resume_and_callback_notes(socket, live, records, telephony, recovery):
    await records.save_incomplete(CALLER, WorkOrderFields(first_name="Ada", city="Auburn"))
    session = make_session(socket, live, records, telephony, recovery)
    task = asyncio.create_task(session.run())

    socket.push(start_frame(**{"from": CALLER, "context": "callback"}))
    await wait_until(lambda: session.state is CallState.STREAMING)

    assert session.is_callback
    assert live.prompt.startswith(CALLBACK_NOTE)
    assert RESUME_HEADER in live.prompt
    assert "first_name: Ada" in live.prompt

    socket.push(DISCONNECT)
    await asyncio.wait_for(task, timeout=1)


@pytest.mark.asyncio
async def test_close_is_idempotent(socket, live, records, telephony, recovery):
    session = make_session(socket, live, records, telephony, recovery)
    await session.close()
    await session.close()

    assert session.state is CallState.CLOSED
    recovery.evaluate.assert_awaited_once()


@pytest.mark.asyncio
async def test_speech_unflushed_at_hangup_reaches_recovery(socket, live, records, telephony, recovery):
    captured = {}

    async def evaluate(caller, transcript, work_order_created):
        captured["text"] = transcript.render()
        return False

    recovery.evaluate.side_effect = evaluate
    session = make_session(socket, live, records, telephony, recovery)
    task = asyncio.create_task(session.run())

    socket.push(start_frame(**{"from": CALLER}))
    await wait_until(lambda: session.state is CallState.STREAMING)

    live.unflushed.append(TranscriptFragment(speaker=Speaker.CUSTOMER, text="I'm Ada Smith at 12 Oak Street"))
    socket.push(DISCONNECT)
    await asyncio.wait_for(task, timeout=1)

    assert captured["text"] == "Customer: I'm Ada Smith at 12 Oak Street"
