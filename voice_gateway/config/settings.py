"""
Environment-driven settings for the voice gateway.

Settings are read once at startup (after ``.env`` has been loaded by the app
module) and passed to the services that need them, so tests can build a
``Settings`` instance directly instead of patching the environment.
"""

import os
from typing import Optional

from pydantic import BaseModel, Field

from voice_gateway.config.constants import (
    CALLBACK_DELAY_SECONDS,
    DEFAULT_LIVE_MODEL,
    DEFAULT_SUMMARY_MODEL,
    DEFAULT_VOICE,
)


class Settings(BaseModel):
    """Runtime configuration for the gateway and its collaborators."""

    gemini_api_key: Optional[str] = None
    live_model: str = DEFAULT_LIVE_MODEL
    summary_model: str = DEFAULT_SUMMARY_MODEL
    voice_name: str = DEFAULT_VOICE

    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None

    # Public base URL of this server, used to point callback calls back at /media-stream
    public_url: Optional[str] = None
    # Empty means records are kept in memory
    records_service_url: Optional[str] = None

    callback_delay_seconds: float = Field(CALLBACK_DELAY_SECONDS, gt=0)

    host: str = "0.0.0.0"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        return cls(
            gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
            live_model=os.getenv("GEMINI_LIVE_MODEL", DEFAULT_LIVE_MODEL),
            summary_model=os.getenv("GEMINI_SUMMARY_MODEL", DEFAULT_SUMMARY_MODEL),
            voice_name=os.getenv("GEMINI_VOICE", DEFAULT_VOICE),
            twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID") or None,
            twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN") or None,
            twilio_phone_number=os.getenv("TWILIO_PHONE_NUMBER") or None,
            public_url=os.getenv("PUBLIC_URL") or None,
            records_service_url=os.getenv("RECORDS_SERVICE_URL") or None,
            callback_delay_seconds=float(
                os.getenv("CALLBACK_DELAY_SECONDS", str(CALLBACK_DELAY_SECONDS))
            ),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8000")),
        )

    @property
    def media_stream_url(self) -> Optional[str]:
        """Websocket URL of the media-stream endpoint, derived from PUBLIC_URL."""
        if not self.public_url:
            return None
        base = self.public_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return f"{base}/media-stream"
