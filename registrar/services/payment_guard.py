"""
Payment guard for registration automation.

No automated registration may run for an event that is not provably free.
``PaymentGuard.guard`` returns an explicit decision instead of raising, and
every blocked decision is written to the audit log at CRITICAL before the
decision is returned.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from threading import Lock
from typing import Any

from registrar.models import Event

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("registrar.audit")

PAID_EVENT_REASON = "paid_event"
MAX_AUDIT_ENTRIES = 500


@dataclass(frozen=True)
class GuardDecision:
    """Result of a payment check: allowed, or blocked with a reason and the cost."""
    allowed: bool
    reason: str | None = None
    cost: Any = None

    @classmethod
    def allow(cls) -> "GuardDecision":
        return cls(allowed=True)

    @classmethod
    def block(cls, cost: Any, reason: str = PAID_EVENT_REASON) -> "GuardDecision":
        return cls(allowed=False, reason=reason, cost=cost)


@dataclass(frozen=True)
class GuardAuditEntry:
    event_id: str
    cost: Any
    reason: str
    caller: str
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "cost": str(self.cost),
            "reason": self.reason,
            "caller": self.caller,
            "timestamp": self.timestamp.isoformat(),
        }


def parse_cost(cost: Any) -> Decimal | None:
    """
    Interpret a stored cost as a finite Decimal.

    Returns None for anything that is not a finite number: None, booleans,
    unparseable strings, NaN and infinities.
    """
    if cost is None or isinstance(cost, bool):
        return None

    if isinstance(cost, float):
        if not math.isfinite(cost):
            return None
        value = Decimal(repr(cost))
    elif isinstance(cost, (int, Decimal)):
        value = Decimal(cost)
    elif isinstance(cost, str):
        try:
            value = Decimal(cost.strip())
        except InvalidOperation:
            return None
    else:
        return None

    if not value.is_finite():
        return None
    return value


def is_provably_free(cost: Any) -> bool:
    """True only when the cost is a finite number exactly equal to zero."""
    value = parse_cost(cost)
    return value is not None and value == 0


class PaymentGuard:
    """
    Blocks automation for any event that is not provably free.

    The guard fails closed: negative, NaN, infinite, missing and non-numeric
    costs are all blocked. Blocked decisions are always logged and kept in a
    bounded in-memory audit trail; there is no way to call ``guard`` without
    that happening.
    """

    def __init__(self, max_audit_entries: int = MAX_AUDIT_ENTRIES):
        self._lock = Lock()
        self._audit_trail: list[GuardAuditEntry] = []
        self._max_audit_entries = max_audit_entries

    def guard(self, event: Event, caller: str = "unknown") -> GuardDecision:
        """
        Check whether automation may proceed for an event.

        Args:
            event: The event about to be registered
            caller: Who is asking, recorded in the audit entry

        Returns:
            GuardDecision.allow() for a free event, otherwise a blocked decision
            with reason "paid_event" and the offending cost
        """
        if is_provably_free(event.cost):
            logger.debug(f"Payment guard allowed event {event.id} (cost {event.cost!r})")
            return GuardDecision.allow()

        decision = GuardDecision.block(event.cost)
        self._audit(event, decision, caller)
        return decision

    def _audit(self, event: Event, decision: GuardDecision, caller: str) -> None:
        entry = GuardAuditEntry(
            event_id=event.id,
            cost=decision.cost,
            reason=decision.reason or PAID_EVENT_REASON,
            caller=caller,
            timestamp=datetime.now(),
        )
        audit_logger.critical(
            f"PAYMENT GUARD BLOCKED automated registration for event {event.id} "
            f"({event.title}): cost={decision.cost!r}, caller={caller}, "
            f"at={entry.timestamp.isoformat()}"
        )
        with self._lock:
            self._audit_trail.append(entry)
            if len(self._audit_trail) > self._max_audit_entries:
                self._audit_trail.pop(0)

    def get_audit_trail(self, limit: int = 50) -> list[dict]:
        """Most recent blocked decisions first."""
        with self._lock:
            entries = self._audit_trail[-limit:]
            return [e.to_dict() for e in reversed(entries)]
