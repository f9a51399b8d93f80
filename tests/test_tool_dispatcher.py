import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from voice_gateway.handlers.tool_dispatcher import ToolDispatcher
from voice_gateway.models.call_models import ToolCallRequest
from voice_gateway.models.records import WorkOrderReceipt
from voice_gateway.services.records_client import RecordsService, RecordsServiceError
from voice_gateway.services.telephony import TelephonyError, TwilioTelephony

WORK_ORDER_ARGS = {
    "firstName": "Ada",
    "lastName": "Lovelace",
    "phone": "2055551234",
    "email": "ada@example.com",
    "address": "123 Main St",
    "city": "Birmingham",
    "state": "AL",
    "zip": "35203",
    "serviceType": "Repair",
    "serviceDescription": "Mailbox post is leaning",
    "preferredContact": "Text Message",
}


@pytest.fixture
def records():
    records = AsyncMock(spec=RecordsService)
    records.create_work_order.return_value = WorkOrderReceipt(
        tracking_code="LMS-ABC", upload_link="https://uploads/LMS-ABC"
    )
    records.get_zipcode.return_value = "35203"
    records.lookup.return_value = {"status": "complete", "last_name": "Lovelace"}
    return records


@pytest.fixture
def telephony():
    telephony = MagicMock(spec=TwilioTelephony)
    telephony.send_text = AsyncMock(return_value="SM123")
    telephony.redirect_call = AsyncMock()
    return telephony


@pytest.fixture
def dispatcher(records, telephony):
    return ToolDispatcher(records, telephony)


def _request(name, arguments=None, call_id="call-1"):
    return ToolCallRequest(id=call_id, name=name, arguments=arguments or {})


def test_dispatcher_registers_five_tools(dispatcher):
    assert set(dispatcher.handlers) == {
        "create_work_order",
        "send_sms",
        "get_zipcode_for_address",
        "lookup_work_order",
        "route_to_technician",
    }


@pytest.mark.asyncio
async def test_create_work_order(dispatcher, records):
    result = await dispatcher.dispatch(_request("create_work_order", WORK_ORDER_ARGS))

    assert result.ok
    assert result.id == "call-1"
    assert result.response() == {
        "success": True,
        "trackingCode": "LMS-ABC",
        "uploadLink": "https://uploads/LMS-ABC",
    }
    assert dispatcher.work_order_created
    fields = records.create_work_order.await_args.args[0]
    assert fields.first_name == "Ada"
    assert fields.service_type == "Repair"


@pytest.mark.asyncio
async def test_create_work_order_missing_fields(dispatcher, records):
    args = dict(WORK_ORDER_ARGS, email="")
    result = await dispatcher.dispatch(_request("create_work_order", args))

    assert not result.ok
    assert "email" in result.response()["message"]
    records.create_work_order.assert_not_awaited()
    assert not dispatcher.work_order_created


@pytest.mark.asyncio
async def test_create_work_order_is_serialised(dispatcher, records):
    active = 0
    peak = 0

    async def slow_create(fields):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return WorkOrderReceipt(tracking_code="LMS-1")

    records.create_work_order.side_effect = slow_create
    results = await asyncio.gather(*(
        dispatcher.dispatch(_request("create_work_order", WORK_ORDER_ARGS, call_id=str(i)))
        for i in range(3)
    ))

    assert peak == 1
    assert [r.id for r in results] == ["0", "1", "2"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "name,arguments,collaborator,method",
    [
        ("create_work_order", WORK_ORDER_ARGS, "records", "create_work_order"),
        ("send_sms", {"to": "+12055551234", "body": "hi"}, "telephony", "send_text"),
        ("get_zipcode_for_address", {"address": "1 A St", "city": "Auburn", "state": "AL"}, "records", "get_zipcode"),
        ("lookup_work_order", {"phone": "2055551234"}, "records", "lookup"),
        ("route_to_technician", {"technicianPhoneNumber": "+12055557797"}, "telephony", "redirect_call"),
    ],
)
async def test_exactly_one_failure_result_when_collaborator_raises(
    dispatcher, records, telephony, name, arguments, collaborator, method
):
    dispatcher.call_id = "CA123"
    target = records if collaborator == "records" else telephony
    getattr(target, method).side_effect = RuntimeError("backend exploded")

    result = await dispatcher.dispatch(_request(name, arguments))

    assert result.id == "call-1"
    assert result.name == name
    assert result.response() == {"success": False, "message": "backend exploded"}


@pytest.mark.asyncio
async def test_typed_collaborator_errors_become_failures(dispatcher, records, telephony):
    records.get_zipcode.side_effect = RecordsServiceError("404")
    telephony.send_text.side_effect = TelephonyError("bad number")

    zip_result = await dispatcher.dispatch(_request("get_zipcode_for_address", {"address": "1 A", "city": "B", "state": "AL"}))
    sms_result = await dispatcher.dispatch(_request("send_sms", {"to": "x", "body": "y"}))

    assert zip_result.response()["success"] is False
    assert sms_result.response() == {"success": False, "message": "bad number"}


@pytest.mark.asyncio
async def test_send_sms(dispatcher, telephony):
    result = await dispatcher.dispatch(_request("send_sms", {"to": "+12055551234", "body": "Your link"}))

    assert result.response() == {"success": True, "sid": "SM123"}
    telephony.send_text.assert_awaited_once_with("+12055551234", "Your link")


@pytest.mark.asyncio
async def test_send_sms_requires_arguments(dispatcher, telephony):
    result = await dispatcher.dispatch(_request("send_sms", {"to": "+12055551234"}))

    assert not result.ok
    assert "body" in result.error
    telephony.send_text.assert_not_awaited()


@pytest.mark.asyncio
async def test_get_zipcode(dispatcher, records):
    result = await dispatcher.dispatch(
        _request("get_zipcode_for_address", {"address": "123 Main St", "city": "Birmingham", "state": "AL"})
    )
    assert result.response() == {"success": True, "zipCode": "35203"}
    records.get_zipcode.assert_awaited_once_with("123 Main St", "Birmingham", "AL")


@pytest.mark.asyncio
async def test_lookup_work_order(dispatcher, records):
    result = await dispatcher.dispatch(_request("lookup_work_order", {"lastName": "Lovelace"}))

    assert result.response() == {
        "success": True,
        "found": True,
        "workOrder": {"status": "complete", "last_name": "Lovelace"},
    }
    records.lookup.assert_awaited_once_with(last_name="Lovelace")


@pytest.mark.asyncio
async def test_lookup_not_found(dispatcher, records):
    records.lookup.return_value = None
    result = await dispatcher.dispatch(_request("lookup_work_order", {"email": "nobody@example.com"}))
    assert result.response() == {"success": True, "found": False, "workOrder": None}


@pytest.mark.asyncio
async def test_lookup_requires_a_criterion(dispatcher, records):
    result = await dispatcher.dispatch(_request("lookup_work_order", {}))
    assert not result.ok
    records.lookup.assert_not_awaited()


@pytest.mark.asyncio
async def test_route_to_technician(dispatcher, telephony):
    dispatcher.call_id = "CA123"
    result = await dispatcher.dispatch(_request("route_to_technician", {"technicianPhoneNumber": "+12055557797"}))

    assert result.ok
    assert result.response()["success"] is True
    telephony.redirect_call.assert_awaited_once_with("CA123", "+12055557797")


@pytest.mark.asyncio
async def test_route_fails_without_active_call(dispatcher, telephony):
    result = await dispatcher.dispatch(_request("route_to_technician", {"technicianPhoneNumber": "+12055557797"}))

    assert not result.ok
    telephony.redirect_call.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize("number", ["2055557797", "+0205555", "+1 205 555 7797", "tech"])
async def test_route_rejects_non_e164_numbers(dispatcher, telephony, number):
    dispatcher.call_id = "CA123"
    result = await dispatcher.dispatch(_request("route_to_technician", {"technicianPhoneNumber": number}))

    assert not result.ok
    assert "E.164" in result.error
    telephony.redirect_call.assert_not_awaited()


@pytest.mark.asyncio
async def test_unknown_tool(dispatcher):
    result = await dispatcher.dispatch(_request("order_pizza", {}))
    assert result.response() == {"success": False, "message": "Unknown tool: order_pizza"}
