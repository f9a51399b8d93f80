"""
Executes the business actions the engine requests during a call.

Each call session owns one dispatcher. Every request gets exactly one
``ToolCallResult``: argument errors, collaborator failures and unknown tool
names all come back as a failure result instead of an exception, so the
engine's turn can always continue.
"""

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import ValidationError

from voice_gateway.config.constants import (
    LOGGER_NAME,
    TOOL_CREATE_WORK_ORDER,
    TOOL_GET_ZIPCODE,
    TOOL_LOOKUP_WORK_ORDER,
    TOOL_ROUTE_TO_TECHNICIAN,
    TOOL_SEND_SMS,
)
from voice_gateway.models.call_models import ToolCallRequest, ToolCallResult
from voice_gateway.models.records import WorkOrderFields
from voice_gateway.services.records_client import RecordsService
from voice_gateway.services.telephony import TwilioTelephony

logger = logging.getLogger(LOGGER_NAME)

E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")

ToolHandler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


class ToolArgumentError(ValueError):
    """A tool call is missing or has an invalid argument."""


def _required(arguments: Dict[str, Any], *names: str) -> Dict[str, str]:
    values = {name: str(arguments.get(name) or "").strip() for name in names}
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise ToolArgumentError(f"Missing required argument(s): {', '.join(missing)}")
    return values


class ToolDispatcher:
    """Runs the five voice tools against the records service and the telephony provider."""

    def __init__(self, records: RecordsService, telephony: TwilioTelephony):
        self.records = records
        self.telephony = telephony
        # Set once the provider's call id is known; transfers need it
        self.call_id: Optional[str] = None
        self.work_order_created = False
        self._work_order_lock = asyncio.Lock()

        self.handlers: Dict[str, ToolHandler] = {
            TOOL_CREATE_WORK_ORDER: self.create_work_order,
            TOOL_SEND_SMS: self.send_sms,
            TOOL_GET_ZIPCODE: self.get_zipcode_for_address,
            TOOL_LOOKUP_WORK_ORDER: self.lookup_work_order,
            TOOL_ROUTE_TO_TECHNICIAN: self.route_to_technician,
        }

    async def dispatch(self, request: ToolCallRequest) -> ToolCallResult:
        """Run one tool call. Never raises; failures become a failure result."""
        handler = self.handlers.get(request.name)
        if handler is None:
            logger.warning(f"Engine requested unknown tool: {request.name}")
            return ToolCallResult.failure(request, f"Unknown tool: {request.name}")

        logger.info(f"Executing tool {request.name} ({request.id})")
        try:
            payload = await handler(request.arguments or {})
        except ToolArgumentError as e:
            logger.warning(f"Invalid arguments for {request.name}: {e}")
            return ToolCallResult.failure(request, str(e))
        except Exception as e:
            logger.error(f"Tool {request.name} failed: {e}", exc_info=True)
            return ToolCallResult.failure(request, str(e) or type(e).__name__)

        logger.info(f"Tool {request.name} ({request.id}) succeeded")
        return ToolCallResult.success(request, payload)

    async def create_work_order(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        try:
            fields = WorkOrderFields.model_validate(arguments)
        except ValidationError as e:
            raise ToolArgumentError(f"Invalid work order fields: {e}") from e
        missing = fields.missing()
        if missing:
            raise ToolArgumentError(f"Missing required field(s): {', '.join(missing)}")

        async with self._work_order_lock:
            receipt = await self.records.create_work_order(fields)
            self.work_order_created = True

        return {
            "success": True,
            "trackingCode": receipt.tracking_code,
            "uploadLink": receipt.upload_link,
        }

    async def send_sms(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        values = _required(arguments, "to", "body")
        sid = await self.telephony.send_text(values["to"], values["body"])
        return {"success": True, "sid": sid}

    async def get_zipcode_for_address(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        values = _required(arguments, "address", "city", "state")
        zip_code = await self.records.get_zipcode(values["address"], values["city"], values["state"])
        if not zip_code:
            return {"success": False, "message": "Zip code not found for that address"}
        return {"success": True, "zipCode": zip_code}

    async def lookup_work_order(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        criteria = {
            "phone": arguments.get("phone"),
            "email": arguments.get("email"),
            "last_name": arguments.get("lastName"),
            "address": arguments.get("address"),
        }
        criteria = {k: str(v).strip() for k, v in criteria.items() if v and str(v).strip()}
        if not criteria:
            raise ToolArgumentError("Provide a phone number, email, last name or address")

        record = await self.records.lookup(**criteria)
        return {"success": True, "found": record is not None, "workOrder": record}

    async def route_to_technician(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        number = _required(arguments, "technicianPhoneNumber")["technicianPhoneNumber"]
        if not E164_PATTERN.match(number):
            raise ToolArgumentError(f"Technician number must be in E.164 format, got {number}")
        if not self.call_id:
            raise ToolArgumentError("No active call to transfer")

        await self.telephony.redirect_call(self.call_id, number)
        return {"success": True, "message": f"Transferring the call to {number}"}
