"""
Recovery for calls that end before a work order is created.

When a session closes without a work order, the transcript is summarized into
whatever customer details were collected, saved as an ``incomplete`` record
under the caller's number, and a callback is armed. If the record is still
incomplete when the callback fires, the customer is called back and the new
session resumes from the saved details.
"""

import logging
from typing import Optional

from voice_gateway.config.constants import CALLBACK_CONTEXT, LOGGER_NAME, STATUS_INCOMPLETE
from voice_gateway.models.call_models import Transcript
from voice_gateway.services.callback_scheduler import CallbackScheduler
from voice_gateway.services.records_client import RecordsService, RecordsServiceError
from voice_gateway.services.summarizer import SummarizationError, TranscriptSummarizer
from voice_gateway.services.telephony import TelephonyError, TwilioTelephony

logger = logging.getLogger(LOGGER_NAME)


class CallRecoveryCoordinator:
    def __init__(self, summarizer: TranscriptSummarizer, records: RecordsService,
                 telephony: TwilioTelephony, scheduler: CallbackScheduler):
        self.summarizer = summarizer
        self.records = records
        self.telephony = telephony
        self.scheduler = scheduler

    async def cancel_pending_callback(self, caller_number: Optional[str]) -> bool:
        """Called first thing when a caller connects; they are back, so no callback is needed."""
        if not caller_number:
            return False
        return await self.scheduler.cancel(caller_number)

    async def evaluate(self, caller_number: Optional[str], transcript: Transcript,
                       work_order_created: bool) -> bool:
        """
        Decide whether a closed call needs recovery and, if so, save it and arm a callback.

        Args:
            caller_number: The customer's number, if known
            transcript: What was said during the call
            work_order_created: Whether the agent completed a work order

        Returns:
            bool: True if a callback was armed
        """
        if work_order_created:
            logger.info("Work order created during the call; no recovery needed")
            return False
        if transcript.is_empty():
            logger.info("Call ended with an empty transcript; no recovery needed")
            return False
        if not caller_number:
            logger.warning("Call dropped without a known caller number; cannot recover")
            return False

        logger.info(f"Call from {caller_number} ended without a work order; saving progress")
        try:
            fields = await self.summarizer.extract(transcript)
            # The caller id is more reliable than anything transcribed
            fields = fields.model_copy(update={"phone": caller_number})
            await self.records.save_incomplete(caller_number, fields)
        except (SummarizationError, RecordsServiceError) as e:
            logger.error(f"Failed to save dropped call from {caller_number}: {e}")
            return False

        return await self.scheduler.arm(caller_number, self._call_back)

    async def _call_back(self, caller_number: str) -> None:
        try:
            record = await self.records.lookup(phone=caller_number)
        except RecordsServiceError as e:
            logger.error(f"Could not check record for {caller_number} before callback: {e}")
            return

        if not record or record.get("status") != STATUS_INCOMPLETE:
            logger.info(f"Record for {caller_number} no longer incomplete; skipping callback")
            return

        try:
            await self.telephony.place_call(caller_number, context=CALLBACK_CONTEXT)
        except TelephonyError as e:
            logger.error(f"Callback to {caller_number} failed: {e}")
