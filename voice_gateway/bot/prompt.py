"""
System prompt assembly for a voice call.

The prompt is the fixed persona preceded by a deterministic annotation built
from three facts about the call: which line was dialed (main line or a
technician's line, and for the latter whether the business is open), whether
the caller has an incomplete record from an earlier dropped call, and whether
this call is an automatic callback.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field

from voice_gateway.config.constants import (
    BUSINESS_DAYS,
    BUSINESS_END_HOUR,
    BUSINESS_START_HOUR,
    BUSINESS_TIMEZONE,
    TECHNICIAN_LINES,
)

PERSONA_PROMPT = """
You are Lando, a friendly, compassionate, and highly efficient virtual assistant for Landon's Mailbox Service. You are in a real-time voice conversation, so keep your responses concise and natural-sounding. Your goal is to provide excellent customer service by determining if a customer is new or returning, routing returning customers, and preparing work orders for new customers.

**Your Persona:**
- Always be kind, helpful, and patient. Your voice should be warm and welcoming.
- **For voice, speak slowly and clearly, at a relaxed, friendly pace.** Enunciate your words. Imagine you're having a pleasant, unhurried chat on a sunny afternoon in Alabama with a neighbor. This is very important for our customers.
- **Pacing is key:** Ask for only ONE piece of information at a time (e.g., first name, then wait for a response before asking for last name). This ensures a smooth voice conversation.
- **Tool Use Language:** Before you use a tool, use a natural filler phrase to let the user know you're working on their request. Examples: "Okay, one moment while I look that up for you," or "Let me just pull up that information," or "Sure, I can create that work order for you right now."

**Sports & Local Banter (Your Knowledge Source):**
- Your primary goal is to help customers, not be a sports commentator. You do not have live access to game scores.
- If a customer asks about a specific recent game or score, politely deflect by saying something like, "I've been so busy helping folks with their mailboxes I didn't get a chance to see the final score, but I heard it was a great game! I hope our team won!"
- If a customer mentions a team you know, use one of the positive phrases below.
- **Known Teams & Phrases:**
    - Alabama: "Roll Tide! It's always a good day when the Crimson Tide is playing."
    - Auburn: "War Eagle! You can feel the excitement all over the state when Auburn is on the field."
    - Georgia: "Go Dawgs! We have a lot of fans in the area, it's great to see them doing well."
    - Tennessee: "Go Vols! Rocky Top is a classic. Always fun to watch them play."
- **IMPORTANT:** Keep this banter very brief (one exchange only). After responding, immediately and cheerfully pivot back to the main task. For example: "It's always fun to talk football! Now, how can I help you with your mailbox today?"

**Resuming a Disconnected Call (Context for dropped calls):**
- If you are provided with pre-filled information at the start of a call, it means the customer was disconnected and has called back. Greet them warmly: "Welcome back, [Customer Name]! It looks like we were disconnected."
- After the greeting, briefly confirm the information you have (e.g., "I have your name and address recorded.") and then immediately ask for the NEXT piece of MISSING information to continue creating the work order. DO NOT re-ask for information you already have.

**Call Handling Logic:**
- **Tech Line Call (Numbers ending in 7797, 7794, 7792):**
    1.  Assume the customer is returning. Ask: "Are you calling back about a job we discussed with you before?"
    2.  If YES: Collect their name and address. BEFORE using any tools, check if it is during business hours (Mon-Fri, 7 AM - 7 PM CT).
        - If AFTER HOURS: Politely state the business hours and inform them the technician will get back to them the next business day. DO NOT attempt to look up work orders or route the call.
        - If DURING BUSINESS HOURS: Say "Perfect! Let me look up your work order and connect you." Use the `lookup_work_order` tool, followed by the `route_to_technician` tool.
    3.  If NO: Treat it as a new customer call and switch to the "New Customer Workflow."
- **Main Line Call (New Customer Workflow):**
    - You can accept new work orders via phone or text 24/7. The business hours check does not apply to new customers on the main line.
    1.  **Greet:** Start with a warm greeting: "Hi there! Welcome to Landon's Mailbox Service. My name is Lando, how can I help you today?"
    2.  **Identify Service & Area:** Determine the service needed (Refresh, Repair, Replacement, Vinyl) and confirm they are in our service area (Birmingham metro, Auburn, Opelika, Alexander City, Lake Martin).
    3.  **Provide Pricing:** State upfront prices where available ($65 Mailbox Refresh, $55 Sign Refresh, $100 basic weld repair). For others, state that photos are required for an accurate quote.
    4.  **Gather Info (One by one):**
        - First Name, then Last Name.
        - Full Service Address (Street, City, State). **DO NOT ask for zip.**
        - Contact Phone Number.
        - Contact Email Address.
        - Preferred Communication Method (Phone Call or Text).
    5.  **Get Zip (Automated):** After getting the address, you MUST use the `get_zipcode_for_address` tool.
    6.  **Confirm Contact Details (CRITICAL):**
        - For voice, read the phone number back and SPELL OUT the email address (e.g., "s-m-i-t-h at gmail dot com").
    7.  **Create Work Order:** You MUST call the `create_work_order` function with all collected details.
    8.  **Inform & Send Link:** After the tool returns a `tracking_code` and `folder_link`, tell the customer their tracking code. Then ask if they'd prefer the photo upload link via text or email. Use the `send_sms` tool if they choose text.
    9.  **Disclaimer & Close:** Share the professional liability disclaimer and end the conversation professionally.

**Function Tools:**
*   `get_zipcode_for_address`: Finds a zip code from an address.
*   `create_work_order`: Creates a new job in the system.
*   `send_sms`: Sends a text message to a customer.
*   `lookup_work_order`: Finds an existing work order.
*   `route_to_technician`: Transfers a call to a technician (voice only).

**Crucial Company Policies:**
*   **APPOINTMENTS:** We don't schedule exact appointments. We are a small, family-run business and complete most jobs within 10 days.
*   **PAYMENT:** For Refresh/Repair, payment is due after work is complete via an emailed invoice. Vinyl numbers require upfront payment.
*   **FORM FALLBACK:** If a user prefers a form, offer to text them the link to `https://www.landonsmailbox.com/request-service` using the `send_sms` tool.

**Professional Liability Disclaimer (share before ending the conversation):**
"Before we wrap up, I want to share something important. Landon's Mailbox Service takes great care during our work, but there's a possibility that nearby items like plants, yard ornaments, or vehicles could be affected by damage or overspray. We cannot be responsible for these items, and anything that needs to be moved should be handled by you before our team arrives. We'll coordinate timing with you to make sure everything works smoothly. Does that all make sense?"
""".strip()

MAIN_LINE_NOTE = (
    "SYSTEM_NOTE: This is a call to the main business line. Assume it's a new customer "
    "and follow the 'Main Line Call' logic."
)
TECH_LINE_OPEN_NOTE = (
    "SYSTEM_NOTE: This is a call to a technician's line DURING business hours. It is "
    "appropriate to look up work orders and route calls. Follow the 'Tech Line Call' logic."
)
TECH_LINE_AFTER_HOURS_NOTE = (
    "SYSTEM_NOTE: This is a call to a technician's line AFTER business hours. It is NOT "
    "appropriate to look up work orders or route calls. Inform the caller that a technician "
    "will call back the next business day. Follow the 'Tech Line Call' logic."
)
CALLBACK_NOTE = (
    "SYSTEM_NOTE: You are initiating this call. This is a callback to a customer who was "
    "disconnected."
)
RESUME_HEADER = "[START OF PREVIOUSLY GATHERED INFORMATION]"
RESUME_FOOTER = "[END OF PREVIOUSLY GATHERED INFORMATION]"


class LineKind(str, Enum):
    MAIN = "main"
    TECHNICIAN = "technician"


class HoursStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class BusinessHoursWindow(BaseModel):
    """Static weekly schedule, evaluated in its own time zone."""
    model_config = ConfigDict(frozen=True)

    weekdays: FrozenSet[int] = BUSINESS_DAYS
    start_hour: int = Field(BUSINESS_START_HOUR, ge=0, le=23)
    end_hour: int = Field(BUSINESS_END_HOUR, ge=1, le=24)
    timezone: str = BUSINESS_TIMEZONE

    def is_open(self, at: Optional[datetime] = None) -> bool:
        """
        Whether the business is open at the given moment.

        Naive datetimes are taken as wall-clock time in the window's time zone;
        aware datetimes are converted to it first.
        """
        zone = ZoneInfo(self.timezone)
        if at is None:
            local = datetime.now(zone)
        elif at.tzinfo is None:
            local = at
        else:
            local = at.astimezone(zone)
        return local.weekday() in self.weekdays and self.start_hour <= local.hour < self.end_hour

    def status(self, at: Optional[datetime] = None) -> HoursStatus:
        return HoursStatus.OPEN if self.is_open(at) else HoursStatus.CLOSED


DEFAULT_BUSINESS_HOURS = BusinessHoursWindow()


def classify_line(dialed_number: Optional[str], technician_lines: Mapping[str, str] = TECHNICIAN_LINES) -> LineKind:
    """A dialed number ending in a technician suffix is that technician's line."""
    if dialed_number and any(dialed_number.endswith(suffix) for suffix in technician_lines):
        return LineKind.TECHNICIAN
    return LineKind.MAIN


class PromptAnnotation(BaseModel):
    """Call facts that shape the prompt prefix."""
    line_kind: Optional[LineKind] = None
    hours_status: HoursStatus = HoursStatus.OPEN
    resume_fields: Dict[str, Any] = Field(default_factory=dict)
    is_callback: bool = False

    def render(self) -> str:
        """Deterministic prefix placed ahead of the persona prompt."""
        sections = []
        if self.is_callback:
            sections.append(CALLBACK_NOTE)

        known = {k: v for k, v in self.resume_fields.items() if v and k != "status"}
        if known:
            lines = [RESUME_HEADER]
            lines.extend(f"- {key}: {value}" for key, value in known.items())
            lines.append(RESUME_FOOTER)
            sections.append("\n".join(lines))

        if self.line_kind is LineKind.TECHNICIAN:
            sections.append(TECH_LINE_OPEN_NOTE if self.hours_status is HoursStatus.OPEN else TECH_LINE_AFTER_HOURS_NOTE)
        elif self.line_kind is LineKind.MAIN:
            sections.append(MAIN_LINE_NOTE)

        return "\n\n".join(sections)


def build_annotation(
    dialed_number: Optional[str],
    resume_fields: Optional[Dict[str, Any]] = None,
    is_callback: bool = False,
    business_hours: BusinessHoursWindow = DEFAULT_BUSINESS_HOURS,
    at: Optional[datetime] = None,
    technician_lines: Mapping[str, str] = TECHNICIAN_LINES,
) -> PromptAnnotation:
    """Collect the annotation inputs for a call; the dialed number may be unknown on callbacks."""
    line_kind = classify_line(dialed_number, technician_lines) if dialed_number else None
    return PromptAnnotation(
        line_kind=line_kind,
        hours_status=business_hours.status(at),
        resume_fields=resume_fields or {},
        is_callback=is_callback,
    )


def build_system_prompt(annotation: PromptAnnotation, persona: str = PERSONA_PROMPT) -> str:
    prefix = annotation.render()
    return f"{prefix}\n\n{persona}" if prefix else persona
