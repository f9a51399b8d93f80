"""
Clients for the records service that stores work orders.

``HttpRecordsService`` talks to the records backend over HTTP JSON; the
in-memory implementation is used when no backend URL is configured and in
tests. Both key records by the customer's phone number, and a newer record for
a number replaces the older one.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from voice_gateway.config.constants import LOGGER_NAME, STATUS_COMPLETE, STATUS_INCOMPLETE
from voice_gateway.models.records import WorkOrderFields, WorkOrderReceipt, normalize_phone
from voice_gateway.models.store import InMemoryKeyedStore, KeyedStore

logger = logging.getLogger(LOGGER_NAME)

PLACEHOLDER_ZIP = "00000"


class RecordsServiceError(Exception):
    """The records service could not complete a request."""


class RecordsService(ABC):
    """Interface to the work-order records, shared by the voice and text channels."""

    @abstractmethod
    async def create_work_order(self, fields: WorkOrderFields) -> WorkOrderReceipt:
        """Store a complete work order and return its tracking code and upload link."""

    @abstractmethod
    async def save_incomplete(self, phone: str, fields: WorkOrderFields) -> None:
        """Store a partial record for a dropped call, replacing any earlier one for the number."""

    @abstractmethod
    async def lookup(self, phone: Optional[str] = None, email: Optional[str] = None,
                     last_name: Optional[str] = None, address: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Find a record by any one criterion; None when nothing matches."""

    @abstractmethod
    async def get_zipcode(self, address: str, city: str, state: str) -> Optional[str]:
        ...


class HttpRecordsService(RecordsService):
    """Records backend reached over HTTP (POST JSON endpoints)."""

    CREATE_PATH = "/api/create-workorder"
    LOOKUP_PATH = "/api/lookup-workorder"
    ZIPCODE_PATH = "/api/get-zipcode"

    def __init__(self, base_url: str, timeout: Optional[float] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def _post(self, path: str, payload: Dict[str, Any], allow_not_found: bool = False) -> Any:
        url = f"{self.base_url}{path}"
        logger.debug(f"POST {url}")
        try:
            response = await asyncio.to_thread(requests.post, url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise RecordsServiceError(f"Request to {path} failed: {e}") from e

        if allow_not_found and response.status_code == 404:
            return None
        if not response.ok:
            raise RecordsServiceError(f"{path} returned {response.status_code}: {response.text[:200]}")
        try:
            return response.json()
        except ValueError as e:
            raise RecordsServiceError(f"{path} returned invalid JSON") from e

    async def create_work_order(self, fields: WorkOrderFields) -> WorkOrderReceipt:
        data = await self._post(self.CREATE_PATH, fields.to_backend_payload(STATUS_COMPLETE))
        try:
            return WorkOrderReceipt.model_validate(data)
        except ValueError as e:
            raise RecordsServiceError(f"Unexpected work order response: {data}") from e

    async def save_incomplete(self, phone: str, fields: WorkOrderFields) -> None:
        payload = fields.to_backend_payload(STATUS_INCOMPLETE)
        payload["phone"] = phone
        await self._post(self.CREATE_PATH, payload)

    async def lookup(self, phone: Optional[str] = None, email: Optional[str] = None,
                     last_name: Optional[str] = None, address: Optional[str] = None) -> Optional[Dict[str, Any]]:
        criteria = {"phone": phone, "email": email, "lastName": last_name, "address": address}
        payload = {k: v for k, v in criteria.items() if v}
        data = await self._post(self.LOOKUP_PATH, payload, allow_not_found=True)
        if not isinstance(data, dict) or not data or data.get("found") is False:
            return None
        return data

    async def get_zipcode(self, address: str, city: str, state: str) -> Optional[str]:
        data = await self._post(self.ZIPCODE_PATH, {"address": address, "city": city, "state": state})
        if isinstance(data, dict):
            return data.get("zipCode") or data.get("zip")
        return None


class InMemoryRecordsService(RecordsService):
    """Process-local records keyed by phone number."""

    def __init__(self, store: Optional[KeyedStore[Dict[str, Any]]] = None,
                 zip_codes: Optional[Dict[str, str]] = None,
                 upload_base_url: str = "https://uploads.landonsmailbox.com/"):
        self.store = store if store is not None else InMemoryKeyedStore()
        # Keys are "city,state" in lower case
        self.zip_codes = zip_codes or {}
        self.upload_base_url = upload_base_url

    async def _put(self, phone: str, record: Dict[str, Any]) -> None:
        key = normalize_phone(phone)
        if not key:
            raise RecordsServiceError("A phone number is required to store a record")
        async with self.store.lock(key):
            await self.store.set(key, record)

    async def create_work_order(self, fields: WorkOrderFields) -> WorkOrderReceipt:
        tracking_code = f"LMS-{uuid.uuid4().hex[:8].upper()}"
        upload_link = f"{self.upload_base_url}{tracking_code}"
        record = fields.to_backend_payload(STATUS_COMPLETE)
        record.update(tracking_code=tracking_code, folder_link=upload_link)
        await self._put(fields.phone, record)
        logger.info(f"Stored work order {tracking_code}")
        return WorkOrderReceipt(tracking_code=tracking_code, upload_link=upload_link)

    async def save_incomplete(self, phone: str, fields: WorkOrderFields) -> None:
        record = fields.to_backend_payload(STATUS_INCOMPLETE)
        record["phone"] = phone
        await self._put(phone, record)

    async def lookup(self, phone: Optional[str] = None, email: Optional[str] = None,
                     last_name: Optional[str] = None, address: Optional[str] = None) -> Optional[Dict[str, Any]]:
        if phone:
            record = await self.store.get(normalize_phone(phone))
            return dict(record) if record else None

        for key in await self.store.keys():
            record = await self.store.get(key)
            if not record:
                continue
            street = f"{record.get('street_number', '')} {record.get('street_name', '')}".strip().lower()
            if (email and record.get("email", "").lower() == email.lower()) \
                    or (last_name and record.get("last_name", "").lower() == last_name.lower()) \
                    or (address and street and street == address.strip().lower()):
                return dict(record)
        return None

    async def get_zipcode(self, address: str, city: str, state: str) -> Optional[str]:
        return self.zip_codes.get(f"{city},{state}".lower(), PLACEHOLDER_ZIP)
