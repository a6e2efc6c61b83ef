"""
Registration orchestrator.
Drives one approved event through: approved -> registering -> registered |
manual_registration_sent | registration_failed.
Free events with a registration link are attempted through the site adapter
under the retry engine; everything else ends on the manual path with an email
that explains why.
"""

import asyncio
import logging
import time
from datetime import date, datetime

from registrar.config import Settings, settings as app_settings
from registrar.database import EventNotFoundError
from registrar.models import (
    ApprovalContext,
    CalendarResult,
    ErrorType,
    Event,
    EventStatus,
    FailureReason,
    FamilyContext,
    Child,
    REGISTRABLE_STATUSES,
    RegistrationRecord,
    RegistrationResult,
    RetryConfig,
    SiteAdapterResult,
)
from registrar.services.collaborators import CalendarService, EmailSender, EventStore
from registrar.services.payment_guard import PAID_EVENT_REASON, PaymentGuard
from registrar.services.registration_emails import (
    build_manual_registration_body,
    build_success_confirmation_body,
    manual_subject,
    success_subject,
)
from registrar.services.retry_manager import (
    OperationContext,
    RetryAbort,
    RetryManager,
    RetryResult,
    create_retry_manager_from_settings,
)
from registrar.services.site_adapter import SiteAdapter

logger = logging.getLogger(__name__)


class RegistrationAttemptError(Exception):
    """A site adapter reported failure; carries an explicit error type when known."""

    def __init__(self, message: str, error_type: ErrorType | None = None):
        super().__init__(message)
        self.error_type = error_type.value if error_type else None


def calculate_age(birthdate: datetime | date, today: date | None = None) -> int:
    """Age in whole years on ``today``."""
    today = today or date.today()
    if isinstance(birthdate, datetime):
        birthdate = birthdate.date()
    age = today.year - birthdate.year
    if (today.month, today.day) < (birthdate.month, birthdate.day):
        age -= 1
    return age


class RegistrationOrchestrator:
    """
    Single integration point between approvals and site adapters.

    The payment guard runs before anything else for every orchestration call
    and again at the start of every adapter attempt, against a fresh copy of
    the event. Calendar and email side effects are isolated: their failure
    never changes the registration outcome.
    """

    def __init__(
        self,
        database: EventStore,
        adapter: SiteAdapter,
        email_sender: EmailSender,
        calendar: CalendarService | None = None,
        retry_manager: RetryManager | None = None,
        payment_guard: PaymentGuard | None = None,
        retry_options: RetryConfig | None = None,
        config: Settings | None = None,
    ):
        self.database = database
        self.adapter = adapter
        self.email_sender = email_sender
        self.calendar = calendar
        self.retry_manager = retry_manager or create_retry_manager_from_settings()
        self.payment_guard = payment_guard or PaymentGuard()
        self.retry_options = retry_options
        self.config = config or app_settings

    async def process_auto_registration(
        self,
        event_id: str,
        approval_id: str,
        channel: str = "email_reply",
    ) -> RegistrationResult:
        """
        Main entry point: register an approved event, or fall back to manual.

        Raises:
            EventNotFoundError: The event does not exist. Nothing is changed.
        """
        approval = ApprovalContext(approval_id=approval_id, event_id=event_id, channel=channel)
        started = time.monotonic()
        logger.info(f"Processing auto-registration for event {event_id}, approval {approval_id}")

        async with self.retry_manager.store.event_lock(event_id):
            event = await self.database.get_event(event_id)
            if event is None:
                raise EventNotFoundError(event_id)

            try:
                result = await self._run(event, approval)
            except asyncio.CancelledError:
                logger.warning(f"Registration for event {event_id} cancelled")
                await asyncio.shield(self._mark_cancelled(event_id))
                raise
            except Exception as e:
                logger.error(f"Error in process_auto_registration for event {event_id}: {e}")
                result = await self._handle_failure(
                    event, approval, FailureReason.UNEXPECTED_ERROR, f"Unexpected error: {e}"
                )

        result.elapsed_seconds = time.monotonic() - started
        return result

    async def _run(self, event: Event, approval: ApprovalContext) -> RegistrationResult:
        if event.status == EventStatus.REGISTERED:
            logger.info(f"Event {event.id} is already registered, nothing to do")
            return RegistrationResult(
                event_id=event.id,
                approval_id=approval.approval_id,
                success=True,
                status=EventStatus.REGISTERED,
                message="Event already registered",
            )

        if event.status not in REGISTRABLE_STATUSES:
            # Unapproved or already handed to the family; leave it untouched
            logger.warning(
                f"Event {event.id} is '{event.status.value}', not approved for registration; skipping"
            )
            return RegistrationResult(
                event_id=event.id,
                approval_id=approval.approval_id,
                success=False,
                status=event.status,
                reason=FailureReason.NOT_APPROVED,
                message=f"Event status is '{event.status.value}'; only approved events are registered",
            )

        await self.database.update_event_status(event.id, EventStatus.REGISTERING)

        # Never auto-register for paid events
        decision = self.payment_guard.guard(event, caller=f"orchestrator:{approval.approval_id}")
        if not decision.allowed:
            return await self._handle_failure(
                event, approval, FailureReason.PAID_EVENT,
                f"Paid event (cost {decision.cost!r}) requires manual registration and payment",
            )

        if not event.registration_url:
            logger.warning(f"No registration URL for event: {event.title}")
            return await self._handle_failure(
                event, approval, FailureReason.NO_REGISTRATION_URL, "No registration URL provided"
            )

        if not self.retry_manager.should_retry_event(event.id):
            return await self._handle_failure(
                event, approval, FailureReason.COOLDOWN_SKIP,
                "Skipped: registration for this event failed moments ago",
            )

        family = await self.get_family_registration_data()
        context = OperationContext(
            event_id=event.id,
            event_title=event.title,
            adapter_name=self.adapter.name,
        )

        logger.info(f"Attempting automated registration for: {event.title}")
        retry_result = await self.retry_manager.execute_with_retry(
            lambda: self._attempt(event.id, family),
            context,
            self.retry_options,
        )
        await self._save_attempt_log(retry_result)

        if retry_result.success:
            return await self._handle_success(event, approval, retry_result)

        reason = FailureReason.AUTOMATION_ERROR
        if retry_result.final_error_type == PAID_EVENT_REASON:
            reason = FailureReason.PAID_EVENT
            # The cost changed mid-sequence; the email must show the current one
            event = await self.database.get_event(event.id) or event
        return await self._handle_failure(
            event, approval, reason, retry_result.final_error or "Registration failed", retry_result
        )

    async def _attempt(self, event_id: str, family: FamilyContext) -> SiteAdapterResult:
        """One adapter attempt. The event is re-read and re-checked every time."""
        event = await self.database.get_event(event_id)
        if event is None:
            raise RetryAbort(f"Event not found: {event_id}", ErrorType.CLIENT_ERROR.value)

        decision = self.payment_guard.guard(event, caller="orchestrator:attempt")
        if not decision.allowed:
            raise RetryAbort(
                f"Payment guard blocked paid event (cost {decision.cost!r})", PAID_EVENT_REASON
            )

        timeout = self.config.adapter_timeout
        try:
            result = await asyncio.wait_for(
                self.adapter.attempt_registration(event, family),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise RegistrationAttemptError(
                f"Registration attempt timed out after {timeout:.0f}s",
                ErrorType.NETWORK_ERROR,
            )

        if not result.success:
            raise RegistrationAttemptError(result.error_message or "Registration attempt failed")
        return result

    async def _handle_success(
        self,
        event: Event,
        approval: ApprovalContext,
        retry_result: RetryResult[SiteAdapterResult],
    ) -> RegistrationResult:
        adapter_result = retry_result.value
        await self.database.update_event_status(event.id, EventStatus.REGISTERED)

        result = RegistrationResult(
            event_id=event.id,
            approval_id=approval.approval_id,
            success=True,
            status=EventStatus.REGISTERED,
            message="Registration completed",
            confirmation_number=adapter_result.confirmation_number if adapter_result else None,
            attempts=retry_result.attempts,
            adapter_name=self.adapter.name,
        )

        # Side effects below are best-effort; the registration already happened
        calendar_result = await self._create_calendar_event(event, result)
        if calendar_result and calendar_result.success:
            result.calendar_event_id = calendar_result.calendar_event_id
            result.calendar_event_link = calendar_result.event_link

        try:
            recipients = self._recipients()
            if recipients:
                body = build_success_confirmation_body(
                    event, result, self._recipient_name(), calendar_result
                )
                await self.email_sender.send_email(recipients, success_subject(event), body)
                result.notification_sent = True
                logger.info(f"Success confirmation sent for: {event.title}")
            else:
                logger.warning("No recipient email configured; success confirmation not sent")
        except Exception as e:
            logger.error(f"Failed to send success confirmation for {event.title}: {e}")

        await self._record_registration(approval, result, calendar_result)
        logger.info(
            f"Successfully registered for event: {event.title}"
            f"{' (calendar event created)' if result.calendar_event_id else ''}"
        )
        return result

    async def _create_calendar_event(
        self,
        event: Event,
        result: RegistrationResult,
    ) -> CalendarResult | None:
        if self.calendar is None:
            return None
        try:
            return await self.calendar.create_event_for_registration(event, result)
        except Exception as e:
            logger.warning(f"Failed to create calendar event for {event.title}: {e}")
            return CalendarResult(success=False, error=str(e))

    async def _handle_failure(
        self,
        event: Event,
        approval: ApprovalContext,
        reason: FailureReason,
        message: str,
        retry_result: RetryResult | None = None,
    ) -> RegistrationResult:
        """
        Manual fallback. Cooldown skips end in registration_failed ("not trying
        right now"); every other failure ends in manual_registration_sent.
        Each step is isolated so the event never stays in 'registering'.
        """
        status = (
            EventStatus.REGISTRATION_FAILED
            if reason == FailureReason.COOLDOWN_SKIP
            else EventStatus.MANUAL_REGISTRATION_SENT
        )
        try:
            await self.database.update_event_status(event.id, status)
        except Exception as e:
            logger.error(f"Failed to set status {status.value} for event {event.id}: {e}")

        result = RegistrationResult(
            event_id=event.id,
            approval_id=approval.approval_id,
            success=False,
            status=status,
            reason=reason,
            message=message,
            attempts=retry_result.attempts if retry_result else 0,
            final_error_type=retry_result.final_error_type if retry_result else None,
            adapter_name=self.adapter.name if retry_result else None,
        )

        try:
            recipients = self._recipients()
            if recipients:
                family = await self.get_family_registration_data()
                body = build_manual_registration_body(
                    event, family, reason, self._recipient_name(), result
                )
                await self.email_sender.send_email(recipients, manual_subject(event, reason), body)
                result.notification_sent = True
                logger.info(f"Sent manual registration ({reason.value}) for event: {event.title}")
            else:
                logger.warning("No recipient email configured; manual registration not sent")
        except Exception as e:
            logger.error(f"Failed to send manual registration for {event.title}: {e}")

        await self._record_registration(approval, result)
        return result

    async def _mark_cancelled(self, event_id: str) -> None:
        try:
            event = await self.database.get_event(event_id)
            if event and event.status == EventStatus.REGISTERING:
                await self.database.update_event_status(event_id, EventStatus.REGISTRATION_FAILED)
        except Exception as e:
            logger.error(f"Failed to release cancelled event {event_id}: {e}")

    async def _record_registration(
        self,
        approval: ApprovalContext,
        result: RegistrationResult,
        calendar_result: CalendarResult | None = None,
    ) -> None:
        """Record the registration attempt for analytics."""
        record = RegistrationRecord(
            event_id=result.event_id,
            approval_id=approval.approval_id,
            channel=approval.channel,
            success=result.success,
            status=result.status,
            reason=result.reason,
            error_message=None if result.success else result.message,
            confirmation_number=result.confirmation_number,
            adapter_used=result.adapter_name,
            attempts=result.attempts,
            final_error_type=result.final_error_type,
            calendar_event_created=bool(calendar_result and calendar_result.success),
            calendar_event_id=result.calendar_event_id,
            calendar_event_link=result.calendar_event_link,
            requires_manual_completion=not result.success,
        )
        try:
            await self.database.save_registration_attempt(record)
            logger.debug(
                f"Recorded registration attempt: {result.event_id} - "
                f"{'SUCCESS' if result.success else 'FAILED'}"
            )
        except Exception as e:
            logger.warning(f"Could not record registration attempt: {e}")

    async def _save_attempt_log(self, retry_result: RetryResult) -> None:
        try:
            await self.database.save_attempt_log(retry_result.attempt_log)
        except Exception as e:
            logger.warning(f"Could not save attempt log: {e}")

    async def get_family_registration_data(self) -> FamilyContext:
        """Family data for registration forms, with configured fallbacks."""
        members = await self.database.get_family_members(active_only=True)
        parents = [m for m in members if m.role == "parent"]
        children = [m for m in members if m.role == "child"]

        return FamilyContext(
            parent1_name=parents[0].name if len(parents) > 0 else self.config.parent1_name,
            parent1_email=self.config.parent1_email,
            parent2_name=parents[1].name if len(parents) > 1 else self.config.parent2_name,
            parent2_email=self.config.parent2_email,
            children=[
                Child(
                    name=child.name,
                    age=calculate_age(child.birthdate) if child.birthdate else None,
                )
                for child in children
            ],
            emergency_contact=self.config.emergency_contact,
        )

    def _recipients(self) -> list[str]:
        if self.config.is_production:
            email = self.config.parent1_email
        else:
            email = self.config.parent2_email or self.config.parent1_email
        return [email] if email else []

    def _recipient_name(self) -> str:
        if self.config.is_production:
            return self.config.parent1_name
        return self.config.parent2_name

    async def process_approved_events(self) -> list[RegistrationResult]:
        """
        Process every approved event concurrently.

        Parallelism is bounded by ``max_parallel_registrations``. A failure in
        one event never affects another.
        """
        events = await self.database.get_events_by_status(EventStatus.APPROVED)
        logger.info(f"Processing {len(events)} approved events for registration")
        semaphore = asyncio.Semaphore(max(1, self.config.max_parallel_registrations))

        async def process(event: Event) -> RegistrationResult | None:
            async with semaphore:
                try:
                    return await self.process_auto_registration(
                        event.id, approval_id=f"sweep-{event.id}", channel="bulk_sweep"
                    )
                except EventNotFoundError:
                    logger.warning(f"Event {event.id} disappeared before processing")
                    return None
                except Exception as e:
                    logger.error(f"Error processing event {event.title}: {e}")
                    return None

        outcomes = await asyncio.gather(*(process(event) for event in events))
        results = [r for r in outcomes if r is not None]

        succeeded = sum(1 for r in results if r.success)
        logger.info(
            f"Processed {len(results)} events: {succeeded} successful, "
            f"{len(results) - succeeded} routed to manual registration"
        )
        return results

    def get_retry_statistics(self) -> dict:
        """Retry statistics for monitoring."""
        return {
            **self.retry_manager.get_retry_stats(),
            "attempt_metrics": self.retry_manager.metrics.get_metrics(),
            "payment_guard_blocks": self.payment_guard.get_audit_trail(limit=10),
        }

    async def close(self):
        """Clean up resources."""
        await self.adapter.close()
        logger.info("Registration orchestrator closed")
