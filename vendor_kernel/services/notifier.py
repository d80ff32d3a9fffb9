"""
TransitionNotifier -- side channel for audit trails and notifications.

Services describe every accepted state change as a ``TransitionEvent``
and hand it to an optional notifier after the change is flushed.
Delivery (e-mail, push, audit store) is the collaborator's business.

A notifier failure never undoes the transition: ``notify_safely`` logs it
at WARNING with the traceback and returns.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from vendor_kernel.domain.actor import ActorId
from vendor_kernel.logging_config import get_logger

logger = get_logger("services.notifier")


@dataclass(frozen=True)
class TransitionEvent:
    entity_type: str
    entity_id: str
    action: str
    from_state: str | None
    to_state: str
    actor_id: ActorId | None
    occurred_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)


class TransitionNotifier(Protocol):
    def notify(self, event: TransitionEvent) -> None: ...


def notify_safely(notifier: TransitionNotifier | None, event: TransitionEvent) -> bool:
    """Deliver ``event``; returns False (after logging) if the notifier raised."""
    if notifier is None:
        return True
    try:
        notifier.notify(event)
    except Exception:
        logger.warning(
            "transition_notification_failed",
            exc_info=True,
            extra={
                "entity_type": event.entity_type,
                "entity_id": event.entity_id,
                "transition_action": event.action,
                "to_state": event.to_state,
            },
        )
        return False
    return True
