"""
WebSocket connection manager for the telephony media stream.

The provider opens one websocket per call. The ``WebSocketManager`` holds the
process-wide collaborators (records service, telephony client, recovery
coordinator), builds a fresh engine client and tool dispatcher for each
connection, and runs a ``CallSession`` for it while it is registered in the
``CallRegistry``.
"""

import logging
import socket
import uuid
from typing import Optional

from fastapi import WebSocket

from voice_gateway.bot.call_session import CallSession
from voice_gateway.bot.gemini_live import LiveSessionClient
from voice_gateway.config.constants import LOGGER_NAME
from voice_gateway.config.settings import Settings
from voice_gateway.handlers.recovery import CallRecoveryCoordinator
from voice_gateway.handlers.tool_dispatcher import ToolDispatcher
from voice_gateway.models.conversation import CallRegistry
from voice_gateway.services.callback_scheduler import CallbackScheduler
from voice_gateway.services.records_client import (
    HttpRecordsService,
    InMemoryRecordsService,
    RecordsService,
)
from voice_gateway.services.summarizer import TranscriptSummarizer
from voice_gateway.services.telephony import TwilioTelephony

logger = logging.getLogger(LOGGER_NAME)


def build_records_service(settings: Settings) -> RecordsService:
    if settings.records_service_url:
        return HttpRecordsService(settings.records_service_url)
    logger.warning("RECORDS_SERVICE_URL not set; keeping work orders in memory")
    return InMemoryRecordsService()


class WebSocketManager:
    """Accepts media-stream connections and runs one call session per connection."""

    def __init__(
        self,
        settings: Settings,
        records: Optional[RecordsService] = None,
        telephony: Optional[TwilioTelephony] = None,
        scheduler: Optional[CallbackScheduler] = None,
        summarizer: Optional[TranscriptSummarizer] = None,
    ):
        self.settings = settings
        self.registry = CallRegistry()
        self.records = records or build_records_service(settings)
        self.telephony = telephony or TwilioTelephony(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_phone_number,
            settings.media_stream_url,
        )
        self.scheduler = scheduler or CallbackScheduler(settings.callback_delay_seconds)
        self.recovery = CallRecoveryCoordinator(
            summarizer or TranscriptSummarizer(settings.gemini_api_key, settings.summary_model),
            self.records,
            self.telephony,
            self.scheduler,
        )

    def create_session(self, websocket: WebSocket) -> CallSession:
        """Wire a call session with its own engine client and dispatcher."""
        params = websocket.query_params
        live_client = LiveSessionClient(
            self.settings.gemini_api_key,
            model=self.settings.live_model,
            voice_name=self.settings.voice_name,
        )
        return CallSession(
            websocket,
            live_client,
            ToolDispatcher(self.records, self.telephony),
            self.recovery,
            self.records,
            caller_number=params.get("from") or None,
            dialed_number=params.get("to") or None,
            context=params.get("context") or None,
        )

    async def _optimize_socket(self, websocket: WebSocket) -> None:
        """Disable Nagle's algorithm on the underlying socket when it is reachable."""
        try:
            client = websocket.client
            if hasattr(client, "sock") and client.sock is not None:
                client.sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        except OSError as e:
            logger.warning(f"Could not optimize socket: {e}")

    async def handle_websocket(self, websocket: WebSocket) -> None:
        """Handle a media-stream connection for the whole call."""
        await websocket.accept()
        await self._optimize_socket(websocket)
        session_id = uuid.uuid4().hex
        logger.info(f"Media stream websocket accepted ({session_id})")

        session = self.create_session(websocket)
        self.registry.add_session(session_id, session)
        try:
            await session.run()
        except Exception as e:
            logger.error(f"Error in media stream connection: {e}", exc_info=True)
        finally:
            self.registry.remove_session(session_id)
            logger.info(f"Media stream websocket closed ({session_id})")

    async def shutdown(self) -> None:
        """Close live calls and drop pending callbacks."""
        for session in list(self.registry.get_all_sessions().values()):
            await session.close()
        await self.scheduler.shutdown()
