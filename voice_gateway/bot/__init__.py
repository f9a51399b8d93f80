"""
Bot module for bridging phone calls to the Gemini Live API.

Key components:
- CallSession: one call's lifecycle, relaying audio between the telephony
  media stream and the engine and dispatching the engine's tool calls.
- LiveSessionClient: one duplex streaming session with Gemini Live, exposing
  engine output as an ordered stream of events.
- transcoding: G.711 µ-law and sample-rate conversion between the telephony
  and engine audio formats.
- prompt: the agent persona plus the routing, resume and callback notes
  placed ahead of it for each call.
- tools: the function declarations offered to the engine.

Usage examples:
```python
from voice_gateway.bot import LiveSessionClient
from voice_gateway.bot.tools import VOICE_TOOLS

client = LiveSessionClient(api_key)
await client.open(prompt, VOICE_TOOLS)
await client.send_audio(pcm16k)
async for event in client.events():
    ...
await client.close()
```
"""

from voice_gateway.bot.call_session import CallSession
from voice_gateway.bot.gemini_live import LiveSessionClient, LiveSessionError

__all__ = ["CallSession", "LiveSessionClient", "LiveSessionError"]
