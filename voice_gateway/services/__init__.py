"""
Services module for the external systems the voice gateway talks to.

Key components:
- records_client: the records service holding work orders, over HTTP JSON or
  kept in memory when no backend is configured.
- telephony: text messages, outbound callback calls and live-call redirects
  through the Twilio REST API.
- summarizer: one-shot extraction of work-order fields from a call transcript.
- callback_scheduler: deferred callbacks to customers whose calls dropped, at
  most one per phone number.

Usage examples:
```python
from voice_gateway.services.records_client import InMemoryRecordsService
from voice_gateway.services.callback_scheduler import CallbackScheduler

records = InMemoryRecordsService()
scheduler = CallbackScheduler(delay_seconds=240)

async def call_back(number):
    record = await records.lookup(phone=number)
    ...

await scheduler.arm("+15551234567", call_back)
```
"""
