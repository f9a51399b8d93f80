"""
Constants and configuration values used throughout the application.

This module defines constants that are used across different parts of the application,
providing a centralized location for configuration values and making it easier to
maintain consistent naming throughout the codebase.
"""

# Logger name used throughout the application
LOGGER_NAME = "voice_gateway"

# Default Gemini models
DEFAULT_LIVE_MODEL = "models/gemini-2.5-flash-native-audio-preview-09-2025"
DEFAULT_SUMMARY_MODEL = "gemini-2.5-flash"
DEFAULT_VOICE = "Fenrir"

# Audio formats
TELEPHONY_SAMPLE_RATE = 8000
ENGINE_INPUT_SAMPLE_RATE = 16000
ENGINE_OUTPUT_SAMPLE_RATE = 24000
ENGINE_INPUT_MIME_TYPE = f"audio/pcm;rate={ENGINE_INPUT_SAMPLE_RATE}"
CODEC_MULAW = "mulaw"
CODEC_PCM = "pcm"

# Telephony media stream event types
EVENT_CONNECTED = "connected"
EVENT_START = "start"
EVENT_MEDIA = "media"
EVENT_MARK = "mark"
EVENT_STOP = "stop"

# Tool names
TOOL_CREATE_WORK_ORDER = "create_work_order"
TOOL_SEND_SMS = "send_sms"
TOOL_GET_ZIPCODE = "get_zipcode_for_address"
TOOL_LOOKUP_WORK_ORDER = "lookup_work_order"
TOOL_ROUTE_TO_TECHNICIAN = "route_to_technician"

# Record status values
STATUS_COMPLETE = "complete"
STATUS_INCOMPLETE = "incomplete"

# Dropped call recovery
CALLBACK_DELAY_SECONDS = 4 * 60
CALLBACK_CONTEXT = "callback"

# Dialed-number suffixes of the technician lines
TECHNICIAN_LINES = {
    "7797": "Scott",
    "7794": "Jacob",
    "7792": "Landon",
}

# Business hours (Mon-Fri, 7 AM - 7 PM Central)
BUSINESS_DAYS = frozenset({0, 1, 2, 3, 4})  # datetime.weekday(), Monday = 0
BUSINESS_START_HOUR = 7
BUSINESS_END_HOUR = 19
BUSINESS_TIMEZONE = "America/Chicago"
