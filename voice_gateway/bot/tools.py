"""
Function declarations offered to the engine for a voice call.

Schemas use the engine's OpenAPI-subset type names (OBJECT, STRING).
"""

from typing import Any, Dict, List

from voice_gateway.config.constants import (
    TOOL_CREATE_WORK_ORDER,
    TOOL_GET_ZIPCODE,
    TOOL_LOOKUP_WORK_ORDER,
    TOOL_ROUTE_TO_TECHNICIAN,
    TOOL_SEND_SMS,
)
from voice_gateway.models.records import REQUIRED_WORK_ORDER_FIELDS


def _string(description: str) -> Dict[str, str]:
    return {"type": "STRING", "description": description}


CREATE_WORK_ORDER = {
    "name": TOOL_CREATE_WORK_ORDER,
    "description": "Creates a new work order and returns a tracking code and photo upload link.",
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "firstName": _string("The customer's first name."),
            "lastName": _string("The customer's last name."),
            "phone": _string("The 10-digit contact phone number."),
            "email": _string("The contact email address."),
            "address": _string("The full service street address."),
            "city": _string("The service city."),
            "state": _string("The service state abbreviation (e.g., AL)."),
            "zip": _string("The service zip code."),
            "serviceType": _string("The category of service required (e.g., Repair, Replacement)."),
            "serviceDescription": _string("A brief description of the job needed."),
            "preferredContact": _string("Preferred contact method (Phone Call or Text Message)."),
        },
        "required": list(REQUIRED_WORK_ORDER_FIELDS),
    },
}

SEND_SMS = {
    "name": TOOL_SEND_SMS,
    "description": "Sends a text message to a customer.",
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "to": _string("The phone number to send the message to."),
            "body": _string("The content of the text message."),
        },
        "required": ["to", "body"],
    },
}

GET_ZIPCODE_FOR_ADDRESS = {
    "name": TOOL_GET_ZIPCODE,
    "description": "Gets the zip code for a street address, city and state.",
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "address": _string("The street address (e.g., 123 Main St)."),
            "city": _string("The city (e.g., Birmingham)."),
            "state": _string("The state abbreviation (e.g., AL)."),
        },
        "required": ["address", "city", "state"],
    },
}

LOOKUP_WORK_ORDER = {
    "name": TOOL_LOOKUP_WORK_ORDER,
    "description": "Finds an existing work order by phone number, email, last name or address.",
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "phone": _string("The customer contact phone number."),
            "email": _string("The customer email address."),
            "lastName": _string("The customer's last name."),
            "address": _string("The service address."),
        },
    },
}

ROUTE_TO_TECHNICIAN = {
    "name": TOOL_ROUTE_TO_TECHNICIAN,
    "description": "Transfers the customer's call to the assigned technician.",
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "technicianPhoneNumber": _string("The technician's direct number in E.164 format."),
        },
        "required": ["technicianPhoneNumber"],
    },
}

VOICE_TOOLS: List[Dict[str, Any]] = [
    CREATE_WORK_ORDER,
    SEND_SMS,
    GET_ZIPCODE_FOR_ADDRESS,
    LOOKUP_WORK_ORDER,
    ROUTE_TO_TECHNICIAN,
]
