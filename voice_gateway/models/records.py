"""
Work-order field models shared by the tool dispatcher and dropped-call recovery.

The engine speaks camelCase (``firstName``, ``serviceType``); the records
service expects snake_case with the street number split off the address.
"""

import re
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


REQUIRED_WORK_ORDER_FIELDS = (
    "firstName",
    "lastName",
    "phone",
    "email",
    "address",
    "city",
    "state",
    "zip",
    "serviceType",
    "serviceDescription",
    "preferredContact",
)


class WorkOrderFields(BaseModel):
    """Customer and service details for a work order; absent fields are empty strings."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    first_name: str = Field("", alias="firstName")
    last_name: str = Field("", alias="lastName")
    phone: str = ""
    email: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = Field("", alias="zip")
    service_type: str = Field("", alias="serviceType")
    service_description: str = Field("", alias="serviceDescription")
    preferred_contact: str = Field("", alias="preferredContact")

    @field_validator("*", mode="before")
    def empty_for_missing(cls, v):
        """Summaries report unknown values as null; keep them empty rather than guessed."""
        if v is None:
            return ""
        return str(v).strip()

    def missing(self) -> List[str]:
        """Aliases of required fields that are still empty."""
        values = self.model_dump(by_alias=True)
        return [name for name in REQUIRED_WORK_ORDER_FIELDS if not values.get(name)]

    def filled(self) -> Dict[str, str]:
        return {k: v for k, v in self.model_dump(by_alias=True).items() if v}

    def to_backend_payload(self, status: str) -> Dict[str, Any]:
        """Translate to the records service's field names."""
        street_number, _, street_name = self.address.partition(" ")
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "phone": self.phone,
            "email": self.email,
            "street_number": street_number,
            "street_name": street_name,
            "city": self.city,
            "state": self.state,
            "zip": self.zip_code,
            "category": self.service_type,
            "job_description": self.service_description,
            "call_or_text": self.preferred_contact,
            "status": status,
        }


class WorkOrderReceipt(BaseModel):
    """What the records service hands back for a newly created work order."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    tracking_code: str = Field(validation_alias=AliasChoices("tracking_code", "trackingCode"))
    upload_link: Optional[str] = Field(
        None, validation_alias=AliasChoices("folder_link", "upload_link", "uploadLink")
    )


def normalize_phone(number: Optional[str]) -> str:
    """Key a phone number by its last ten digits so +1 and formatting variants collide."""
    digits = re.sub(r"\D", "", number or "")
    return digits[-10:]
