"""
Configuration module for the voice gateway.

Key components:
- constants: application-wide constants (event names, audio formats, tool names,
  business hours, technician lines).
- logging_config: console and rotating-file logging for the ``voice_gateway`` logger.
- settings: environment-driven settings (API keys, Twilio credentials, URLs).

Usage examples:
```python
from voice_gateway.config.logging_config import configure_logging
from voice_gateway.config.settings import Settings

logger = configure_logging()
settings = Settings.from_env()
```
"""
