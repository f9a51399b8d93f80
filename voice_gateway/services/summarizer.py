"""
One-shot extraction of work-order fields from a call transcript.
"""

import asyncio
import json
import logging
import re
from typing import Any, Dict, Optional

import requests
from pydantic import ValidationError

from voice_gateway.config.constants import DEFAULT_SUMMARY_MODEL, LOGGER_NAME
from voice_gateway.models.call_models import Transcript
from voice_gateway.models.records import WorkOrderFields

logger = logging.getLogger(LOGGER_NAME)

GENERATE_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

EXTRACTION_PROMPT = (
    "You are a data extraction system. Analyze the following phone conversation between a "
    "virtual assistant named Lando and a customer, and extract the customer's information into "
    "a JSON object with exactly these keys: 'firstName', 'lastName', 'phone', 'email', 'address', "
    "'city', 'state', 'zip', 'serviceType', 'serviceDescription', 'preferredContact'. "
    "If a value is not present in the transcript, use null for that key. Do not guess. "
    "Return only the JSON object.\n\nTranscript:\n\n{transcript}"
)

_FENCE = re.compile(r"```(?:json)?")


class SummarizationError(Exception):
    """The transcript could not be turned into work-order fields."""


class TranscriptSummarizer:
    def __init__(self, api_key: Optional[str], model: str = DEFAULT_SUMMARY_MODEL,
                 timeout: Optional[float] = None):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    def _request_body(self, transcript: str) -> Dict[str, Any]:
        return {
            "contents": [{"role": "user", "parts": [{"text": EXTRACTION_PROMPT.format(transcript=transcript)}]}],
            "generationConfig": {"responseMimeType": "application/json", "temperature": 0},
        }

    @staticmethod
    def parse_fields(text: str) -> WorkOrderFields:
        """Parse the model's reply, tolerating markdown code fences around the JSON."""
        cleaned = _FENCE.sub("", text).strip()
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise SummarizationError(f"Summary was not JSON: {cleaned[:100]}") from e
        if not isinstance(data, dict):
            raise SummarizationError("Summary was not a JSON object")
        try:
            return WorkOrderFields.model_validate(data)
        except ValidationError as e:
            raise SummarizationError(f"Summary had unexpected fields: {e}") from e

    async def extract(self, transcript: Transcript) -> WorkOrderFields:
        """
        Ask the engine for the customer's details as stated in the transcript.

        Raises:
            SummarizationError: if the request fails or the reply cannot be parsed
        """
        if not self.api_key:
            raise SummarizationError("GEMINI_API_KEY is not configured")
        if transcript.is_empty():
            raise SummarizationError("Transcript is empty")

        url = GENERATE_URL.format(model=self.model)
        try:
            response = await asyncio.to_thread(
                requests.post,
                url,
                headers={"x-goog-api-key": self.api_key},
                json=self._request_body(transcript.render()),
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise SummarizationError(f"Summary request failed: {e}") from e

        try:
            text = "".join(
                part.get("text", "") for part in data["candidates"][0]["content"]["parts"]
            )
        except (KeyError, IndexError, TypeError) as e:
            raise SummarizationError("Summary response had no candidates") from e

        fields = self.parse_fields(text)
        logger.debug(f"Extracted fields: {fields.filled()}")
        return fields
