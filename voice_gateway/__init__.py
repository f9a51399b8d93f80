"""
Real-Time Voice Gateway - Twilio Media Streams to Gemini Live Bridge

This application answers a service business's phone calls with an AI voice
agent. It bridges the telephony provider's 8 kHz µ-law media stream to a
Gemini Live speech session, runs the business actions the agent requests
(work orders, texts, zip codes, lookups, transfers) and, when a call drops
before a work order is created, saves what was gathered and calls the
customer back.

Key Components:
- bot: call sessions, the Gemini Live client, audio transcoding, prompt and tools
- config: constants, settings and logging setup
- handlers: tool dispatch and dropped-call recovery
- models: data structures, stream message schemas and the keyed store
- services: records service, Twilio telephony, transcript summarizer, callback scheduler
- websocket_manager: accepts media-stream connections and wires each session

Getting Started:
1. Set up environment variables (or a .env file):
   - GEMINI_API_KEY: Gemini API key
   - TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_PHONE_NUMBER
   - PUBLIC_URL: public base URL of this server, used for callbacks
   - RECORDS_SERVICE_URL: records backend (omit to keep records in memory)

2. Start the server:
   ```bash
   python run.py
   ```

3. Point the phone number's voice webhook at markup that connects a
   <Stream> to wss://your-server/media-stream.
"""
