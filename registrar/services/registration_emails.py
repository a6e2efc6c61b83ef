"""
Email bodies for registration outcomes.

Two messages exist: a success confirmation and a manual-registration request
prefilled with the family's details. The manual message always states why
automation did not complete.
"""

from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

from registrar.models import (
    CalendarResult,
    ErrorType,
    Event,
    FailureReason,
    FamilyContext,
    RegistrationResult,
)
from registrar.services.payment_guard import is_provably_free, parse_cost

GOOGLE_CALENDAR_URL = "https://calendar.google.com/calendar/render"
DEFAULT_EVENT_DURATION = timedelta(hours=2)
SIGNATURE = "Thanks!\nYour Family Event Assistant"


def format_event_date(date: datetime | None) -> str:
    if date is None:
        return "Date to be confirmed"
    return date.strftime("%A, %B %d, %Y at %I:%M %p").replace(" 0", " ")


def format_cost(cost) -> str:
    value = parse_cost(cost)
    if value is None:
        return "Unknown - check the event listing"
    if value == 0:
        return "FREE!"
    return f"${value}"


def _calendar_timestamp(date: datetime) -> str:
    if date.tzinfo is not None:
        date = date.astimezone(timezone.utc)
    return date.strftime("%Y%m%dT%H%M%SZ")


def generate_calendar_url(event: Event, duration: timedelta = DEFAULT_EVENT_DURATION) -> str | None:
    """
    Build a Google Calendar "add event" link for manual calendar entry.

    Returns None when the event has no date.
    """
    if event.date is None:
        return None

    end = event.date + duration
    params = {
        "action": "TEMPLATE",
        "text": event.title,
        "dates": f"{_calendar_timestamp(event.date)}/{_calendar_timestamp(end)}",
    }
    if event.location_address:
        params["location"] = event.location_address
    details = event.description or ""
    if event.registration_url:
        details = f"{details}\n\nRegistration: {event.registration_url}".strip()
    if details:
        params["details"] = details
    return f"{GOOGLE_CALENDAR_URL}?{urlencode(params)}"


def success_subject(event: Event) -> str:
    return f"Registration Confirmed: {event.title}"


def manual_subject(event: Event, reason: FailureReason) -> str:
    if reason == FailureReason.PAID_EVENT:
        return f"Action Needed (paid event): {event.title}"
    return f"Complete Registration: {event.title}"


def build_success_confirmation_body(
    event: Event,
    result: RegistrationResult,
    recipient_name: str,
    calendar_result: CalendarResult | None = None,
) -> str:
    lines = [
        f"Hi {recipient_name}!",
        "",
        "Great news! I successfully registered your family for:",
        "",
        event.title,
        format_event_date(event.date),
    ]
    if event.location_address:
        lines.append(event.location_address)
    if result.confirmation_number:
        lines.append(f"Confirmation: {result.confirmation_number}")
    lines.append("")

    if is_provably_free(event.cost):
        lines += ["FREE event - no payment required!", ""]

    if calendar_result and calendar_result.success:
        lines.append("Calendar: added to your calendar automatically.")
        if calendar_result.event_link:
            lines.append(f"View/Edit Event: {calendar_result.event_link}")
    else:
        calendar_url = generate_calendar_url(event)
        if calendar_url:
            lines.append(f"Add to Calendar: {calendar_url}")
        else:
            lines.append("Calendar: please add this event to your calendar manually.")
    lines.append("")

    if event.description:
        lines += ["About the event:", event.description, ""]

    lines += [
        "Questions? Just reply to this email.",
        "",
        "Have a wonderful time!",
        "Your Family Event Assistant",
    ]
    return "\n".join(lines)


def explain_manual_reason(reason: FailureReason, result: RegistrationResult | None = None, cost=None) -> str:
    """Human-readable explanation of why the family has to register themselves."""
    if reason == FailureReason.PAID_EVENT:
        if parse_cost(cost) is None:
            prefix = "I couldn't confirm that this event is free, so it is treated as a paid event."
        else:
            prefix = f"This is a paid event ({format_cost(cost)})."
        return (
            f"{prefix} Automatic registration is never used for paid events so that "
            "no payment is ever made on your behalf. Please register and pay securely yourself."
        )
    if reason == FailureReason.NO_REGISTRATION_URL:
        return (
            "I couldn't find a registration link for this event, so there was nothing "
            "to fill in automatically. Check the event listing for how to sign up."
        )
    if reason == FailureReason.COOLDOWN_SKIP:
        return (
            "An automatic registration attempt for this event failed only moments ago, "
            "so I didn't try again right now. Registering manually will be quickest."
        )
    if reason == FailureReason.AUTOMATION_ERROR and result is not None:
        if result.final_error_type == ErrorType.REGISTRATION_CLOSED.value:
            return "The registration site reported that the event is full, closed or expired."
        if result.final_error_type == ErrorType.CLIENT_ERROR.value:
            return "The registration form rejected the automated request and needs a person to complete it."
        if result.attempts > 1:
            return (
                f"I tried {result.attempts} times but couldn't complete the registration "
                "automatically. Manual registration will be most reliable."
            )
        return "The registration form needed some information I couldn't fill in automatically."
    if reason == FailureReason.UNEXPECTED_ERROR:
        return "Something unexpected went wrong during automatic registration."
    return "Some registration forms require human verification."


def build_manual_registration_body(
    event: Event,
    family: FamilyContext,
    reason: FailureReason,
    recipient_name: str,
    result: RegistrationResult | None = None,
) -> str:
    lines = [
        f"Hi {recipient_name}!",
        "",
        f'I could not register you automatically for "{event.title}", '
        "so it needs a few manual steps.",
        "",
        "Event details:",
        format_event_date(event.date),
    ]
    if event.location_address:
        lines.append(event.location_address)
    lines += [f"Cost: {format_cost(event.cost)}", ""]

    if event.registration_url:
        lines += ["Registration link:", event.registration_url, ""]

    lines.append("Your family info (for easy copy/paste):")
    lines.append(f"- Adult 1: {family.parent1_name}" + (f" - {family.parent1_email}" if family.parent1_email else ""))
    lines.append(f"- Adult 2: {family.parent2_name}" + (f" - {family.parent2_email}" if family.parent2_email else ""))
    for child in family.children:
        age = f", Age {child.age}" if child.age is not None else ""
        lines.append(f"- Child: {child.name}{age}")
    if family.emergency_contact:
        lines.append(f"- Phone: {family.emergency_contact}")
    lines.append("")

    lines += [f"Why manual? {explain_manual_reason(reason, result, event.cost)}", ""]

    calendar_url = generate_calendar_url(event)
    if calendar_url:
        lines += [f"Add to Calendar once registered: {calendar_url}", ""]

    lines += [
        "Registration tip: most events fill up quickly, so register as soon as possible!",
        "",
        SIGNATURE,
    ]
    return "\n".join(lines)
