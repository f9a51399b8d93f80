"""
Telephony and messaging through the Twilio REST API.

Covers the three provider operations the gateway needs: sending a text,
placing an outbound callback call whose audio is streamed back to this
server, and redirecting a live call to another number. The Twilio client is
synchronous, so each request runs in a worker thread.
"""

import asyncio
import logging
from typing import Optional

from twilio.base.exceptions import TwilioException
from twilio.rest import Client
from twilio.twiml.voice_response import Connect, Dial, VoiceResponse

from voice_gateway.config.constants import CALLBACK_CONTEXT, LOGGER_NAME

logger = logging.getLogger(LOGGER_NAME)


class TelephonyError(Exception):
    """A telephony or messaging request failed."""


class TwilioTelephony:
    def __init__(self, account_sid: Optional[str], auth_token: Optional[str],
                 from_number: Optional[str], media_stream_url: Optional[str] = None,
                 client: Optional[Client] = None):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.media_stream_url = media_stream_url
        self._client = client

    @property
    def client(self) -> Client:
        # Created on first use so the app can start without Twilio credentials
        if self._client is None:
            if not self.account_sid or not self.auth_token:
                raise TelephonyError("Twilio credentials are not configured")
            self._client = Client(self.account_sid, self.auth_token)
        return self._client

    def stream_twiml(self, caller_number: str, context: str = CALLBACK_CONTEXT) -> str:
        """Call-control markup connecting a call's audio to the media-stream endpoint."""
        response = VoiceResponse()
        connect = Connect()
        stream = connect.stream(url=self.media_stream_url, track="inbound_track")
        stream.parameter(name="from", value=caller_number)
        stream.parameter(name="context", value=context)
        response.append(connect)
        return str(response)

    async def send_text(self, to: str, body: str) -> str:
        """
        Send an SMS from the business number.

        Returns:
            str: The provider's message id
        """
        if not self.from_number:
            raise TelephonyError("TWILIO_PHONE_NUMBER is not configured")
        try:
            message = await asyncio.to_thread(
                self.client.messages.create, body=body, from_=self.from_number, to=to
            )
        except TwilioException as e:
            raise TelephonyError(f"Failed to send SMS to {to}: {e}") from e
        logger.info(f"SMS sent to {to} ({message.sid})")
        return message.sid

    async def place_call(self, to: str, context: str = CALLBACK_CONTEXT) -> str:
        """
        Call a customer back; the answered call streams into a new session with the given context.

        Returns:
            str: The provider's call id
        """
        if not self.from_number or not self.media_stream_url:
            raise TelephonyError("TWILIO_PHONE_NUMBER and PUBLIC_URL are required for callbacks")
        twiml = self.stream_twiml(to, context)
        try:
            call = await asyncio.to_thread(
                self.client.calls.create, to=to, from_=self.from_number, twiml=twiml
            )
        except TwilioException as e:
            raise TelephonyError(f"Failed to call {to}: {e}") from e
        logger.info(f"Outbound call to {to} placed ({call.sid})")
        return call.sid

    async def redirect_call(self, call_id: str, to: str) -> None:
        """Replace a live call's instructions with a dial to another number."""
        response = VoiceResponse()
        response.append(Dial(to))
        try:
            await asyncio.to_thread(self.client.calls(call_id).update, twiml=str(response))
        except TwilioException as e:
            raise TelephonyError(f"Failed to redirect call {call_id}: {e}") from e
        logger.info(f"Call {call_id} redirected to {to}")
