import pytest
from pydantic import ValidationError

from voice_gateway.models.call_models import (
    TELEPHONY_ENCODING,
    AudioFrame,
    Speaker,
    ToolCallRequest,
    ToolCallResult,
    Transcript,
)
from voice_gateway.models.records import WorkOrderFields, WorkOrderReceipt, normalize_phone


def test_audio_frame_is_immutable():
    frame = AudioFrame(payload=b"\x00", encoding=TELEPHONY_ENCODING)
    with pytest.raises(ValidationError):
        frame.payload = b"\x01"


def test_tool_call_result_response():
    request = ToolCallRequest(id="1", name="send_sms", arguments={"to": "x"})

    ok = ToolCallResult.success(request, {"success": True, "sid": "SM1"})
    assert ok.ok
    assert ok.response() == {"success": True, "sid": "SM1"}

    failed = ToolCallResult.failure(request, "boom")
    assert not failed.ok
    assert failed.id == "1" and failed.name == "send_sms"
    assert failed.response() == {"success": False, "message": "boom"}


def test_transcript_render_and_clear():
    transcript = Transcript()
    transcript.append(Speaker.AGENT, "Hi there!")
    transcript.append(Speaker.CUSTOMER, "  My mailbox is broken. ")
    transcript.append(Speaker.CUSTOMER, "   ")

    assert len(transcript) == 2
    assert transcript.render() == "Agent: Hi there!\nCustomer: My mailbox is broken."

    transcript.clear()
    assert transcript.is_empty()


def test_work_order_fields_from_engine_arguments():
    fields = WorkOrderFields.model_validate({
        "firstName": "Ada",
        "lastName": None,
        "address": "123 Main St",
        "zip": 35203,
    })

    assert fields.first_name == "Ada"
    assert fields.last_name == ""
    assert fields.zip_code == "35203"
    assert "lastName" in fields.missing()
    assert "firstName" not in fields.missing()
    assert fields.filled() == {"firstName": "Ada", "address": "123 Main St", "zip": "35203"}


def test_backend_payload_splits_street_number():
    payload = WorkOrderFields(
        address="123 Main St", service_type="Repair", service_description="Post leaning",
        preferred_contact="Text Message",
    ).to_backend_payload("complete")

    assert payload["street_number"] == "123"
    assert payload["street_name"] == "Main St"
    assert payload["category"] == "Repair"
    assert payload["job_description"] == "Post leaning"
    assert payload["call_or_text"] == "Text Message"
    assert payload["status"] == "complete"


def test_receipt_aliases():
    receipt = WorkOrderReceipt.model_validate({"trackingCode": "LMS-1", "folder_link": "https://x/LMS-1"})
    assert receipt.tracking_code == "LMS-1"
    assert receipt.upload_link == "https://x/LMS-1"


def test_normalize_phone():
    assert normalize_phone("+1 (205) 555-1234") == "2055551234"
    assert normalize_phone("2055551234") == "2055551234"
    assert normalize_phone(None) == ""
