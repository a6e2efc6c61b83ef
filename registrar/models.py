from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

MAX_ID_LENGTH = 100
MAX_TITLE_LENGTH = 500
MAX_MESSAGE_LENGTH = 2000
MAX_URL_LENGTH = 2048


class EventStatus(str, Enum):
    DISCOVERED = "discovered"
    APPROVED = "approved"
    REGISTERING = "registering"
    REGISTERED = "registered"
    MANUAL_REGISTRATION_SENT = "manual_registration_sent"
    REGISTRATION_FAILED = "registration_failed"


# Statuses an orchestration call may start from. registration_failed is a
# deferral (cooldown skip or cancellation), so it may be picked up again.
REGISTRABLE_STATUSES = {
    EventStatus.APPROVED,
    EventStatus.REGISTRATION_FAILED,
}


class ErrorType(str, Enum):
    """Classification tags for failed registration attempts."""
    NETWORK_ERROR = "network_error"
    SERVER_ERROR = "server_error"
    RATE_LIMIT = "rate_limit"
    BROWSER_ERROR = "browser_error"
    SITE_UNAVAILABLE = "site_unavailable"
    CLIENT_ERROR = "client_error"
    REGISTRATION_CLOSED = "registration_closed"
    UNKNOWN_ERROR = "unknown_error"


# Unknown errors are retried: availability is preferred over precision here
DEFAULT_RETRYABLE_ERRORS = [
    ErrorType.NETWORK_ERROR,
    ErrorType.SERVER_ERROR,
    ErrorType.RATE_LIMIT,
    ErrorType.BROWSER_ERROR,
    ErrorType.SITE_UNAVAILABLE,
    ErrorType.UNKNOWN_ERROR,
]


class FailureReason(str, Enum):
    """Why an orchestration call did not end in registered."""
    PAID_EVENT = "paid_event"
    NO_REGISTRATION_URL = "no_registration_url"
    COOLDOWN_SKIP = "cooldown_skip"
    AUTOMATION_ERROR = "automation_error"
    UNEXPECTED_ERROR = "unexpected_error"
    NOT_APPROVED = "not_approved"


class Event(BaseModel):
    id: str = Field(..., min_length=1, max_length=MAX_ID_LENGTH)
    title: str = Field(..., min_length=1, max_length=MAX_TITLE_LENGTH)
    # Raw value as stored. Only the payment guard interprets it.
    cost: Any = None
    registration_url: str | None = Field(default=None, max_length=MAX_URL_LENGTH)
    status: EventStatus = EventStatus.DISCOVERED
    date: datetime | None = None
    location_address: str | None = None
    description: str | None = None

    @field_validator("registration_url")
    @classmethod
    def validate_registration_url(cls, v: str | None) -> str | None:
        """Treat blank URLs as missing."""
        if v is not None:
            v = v.strip()
            if not v:
                return None
        return v


class FamilyMember(BaseModel):
    name: str
    role: str = Field(..., pattern=r"^(parent|child)$")
    birthdate: datetime | None = None
    active: bool = True


class Child(BaseModel):
    name: str
    age: int | None = None


class FamilyContext(BaseModel):
    """Registration data handed to site adapters and manual-registration emails."""
    parent1_name: str
    parent1_email: str | None = None
    parent2_name: str
    parent2_email: str | None = None
    children: list[Child] = Field(default_factory=list)
    emergency_contact: str | None = None


class ApprovalContext(BaseModel):
    approval_id: str
    event_id: str
    channel: str = "email_reply"


class RetryConfig(BaseModel):
    """Options for a bounded retry sequence. Durations are in seconds."""
    max_retries: int = Field(default=3, ge=0, le=10)
    base_delay: float = Field(default=1.0, ge=0.0)
    max_delay: float = Field(default=30.0, ge=0.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    jitter: bool = True
    retryable_errors: list[ErrorType] = Field(
        default_factory=lambda: list(DEFAULT_RETRYABLE_ERRORS)
    )


class RegistrationAttempt(BaseModel):
    """One call to a site adapter inside a retry sequence."""
    event_id: str
    attempt: int = Field(..., ge=1)
    error_type: str | None = None
    error_message: str | None = Field(default=None, max_length=MAX_MESSAGE_LENGTH)
    elapsed_seconds: float = 0.0
    retryable: bool = False

    @field_validator("error_message", mode="before")
    @classmethod
    def truncate_message(cls, v):
        if isinstance(v, str) and len(v) > MAX_MESSAGE_LENGTH:
            return v[:MAX_MESSAGE_LENGTH]
        return v


class SiteAdapterResult(BaseModel):
    success: bool
    confirmation_number: str | None = None
    error_message: str | None = None


class CalendarResult(BaseModel):
    success: bool
    calendar_event_id: str | None = None
    event_link: str | None = None
    error: str | None = None


class RegistrationRecord(BaseModel):
    """Persisted audit row for every orchestration outcome."""
    event_id: str
    approval_id: str | None = None
    channel: str | None = None
    success: bool
    status: EventStatus
    reason: FailureReason | None = None
    error_message: str | None = None
    confirmation_number: str | None = None
    adapter_used: str | None = None
    attempts: int = 0
    final_error_type: str | None = None
    calendar_event_created: bool = False
    calendar_event_id: str | None = None
    calendar_event_link: str | None = None
    requires_manual_completion: bool = False
    created_at: datetime = Field(default_factory=datetime.now)


class RegistrationResult(BaseModel):
    event_id: str
    approval_id: str | None = None
    success: bool
    status: EventStatus
    reason: FailureReason | None = None
    message: str = ""
    confirmation_number: str | None = None
    attempts: int = 0
    final_error_type: str | None = None
    adapter_name: str | None = None
    calendar_event_id: str | None = None
    calendar_event_link: str | None = None
    notification_sent: bool = False
    elapsed_seconds: float = 0.0
