"""
Payment approval workflow (``vendor_kernel.domain.payment_workflow``).

Responsibility
--------------
Pure state machine for a payment's progression from draft to completed
funds release: the legal edge table, threshold routing at creation,
dual-control evaluation, approval/release gating and append-only history
recording.  ZERO I/O; every timestamp is passed in by the caller.

State machine::

    draft -> pending_approval -> approved -> scheduled -> released -> completed
                              \\-> rejected -> draft (resubmission)

Invariants enforced
-------------------
* Only edges in ``PAYMENT_TRANSITIONS`` are legal; the machine performs a
  lookup on (current, desired) and never infers a path.
* ``state_history`` and ``approvals`` are append-only: every function here
  returns a new ``PaymentWorkflow`` whose tuples extend the old ones.
* ``current_state`` always equals the state of the last history entry
  (checked in ``PaymentWorkflow.__post_init__``).
* Dual control counts *distinct* ActorId values; the same actor can never
  supply both approvals.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol
from uuid import UUID

from vendor_kernel.domain.actor import ActorId
from vendor_kernel.exceptions import InvalidTransitionError


class PaymentState(str, Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    SCHEDULED = "scheduled"
    RELEASED = "released"
    COMPLETED = "completed"


PAYMENT_TRANSITIONS: dict[PaymentState, frozenset[PaymentState]] = {
    PaymentState.DRAFT: frozenset({PaymentState.PENDING_APPROVAL}),
    PaymentState.PENDING_APPROVAL: frozenset({
        PaymentState.APPROVED,
        PaymentState.REJECTED,
    }),
    PaymentState.APPROVED: frozenset({PaymentState.SCHEDULED}),
    PaymentState.REJECTED: frozenset({PaymentState.DRAFT}),
    PaymentState.SCHEDULED: frozenset({PaymentState.RELEASED}),
    PaymentState.RELEASED: frozenset({PaymentState.COMPLETED}),
    PaymentState.COMPLETED: frozenset(),
}

RELEASABLE_STATES: frozenset[PaymentState] = frozenset({
    PaymentState.APPROVED,
    PaymentState.SCHEDULED,
})


class PaymentAction(str, Enum):
    """Action recorded on each history entry."""

    CREATED = "created"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    RESUBMITTED = "resubmitted"
    SCHEDULED = "scheduled"
    RELEASED = "released"
    COMPLETED = "completed"


# Target state of every action except CREATED.
ACTION_TARGETS: dict[PaymentAction, PaymentState] = {
    PaymentAction.SUBMITTED: PaymentState.PENDING_APPROVAL,
    PaymentAction.APPROVED: PaymentState.APPROVED,
    PaymentAction.REJECTED: PaymentState.REJECTED,
    PaymentAction.RESUBMITTED: PaymentState.DRAFT,
    PaymentAction.SCHEDULED: PaymentState.SCHEDULED,
    PaymentAction.RELEASED: PaymentState.RELEASED,
    PaymentAction.COMPLETED: PaymentState.COMPLETED,
}

DEFAULT_THRESHOLD_AMOUNT = Decimal("10000")

# ApprovalRecord.status values.  A resubmission appends a voided record for
# every approval of the rejected round, so approvals stay append-only while
# the new round starts from zero.
APPROVAL_GRANTED = "approved"
APPROVAL_VOIDED = "voided"


# =========================================================================
# Workflow records
# =========================================================================


@dataclass(frozen=True)
class StateHistoryEntry:
    state: PaymentState
    timestamp: datetime
    actor: ActorId | None
    action: PaymentAction

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "timestamp": self.timestamp.isoformat(),
            "actor": self.actor.value if self.actor else None,
            "action": self.action.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StateHistoryEntry:
        return cls(
            state=PaymentState(data["state"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            actor=ActorId(data["actor"]) if data.get("actor") else None,
            action=PaymentAction(data["action"]),
        )


@dataclass(frozen=True)
class ApprovalRecord:
    approver_id: ActorId
    timestamp: datetime
    status: str = "approved"

    def to_dict(self) -> dict[str, Any]:
        return {
            "approver_id": self.approver_id.value,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ApprovalRecord:
        return cls(
            approver_id=ActorId(data["approver_id"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            status=data.get("status", "approved"),
        )


@dataclass(frozen=True)
class ApprovalRules:
    """Threshold and dual-control policy attached to one payment.

    ``approvers`` empty means any actor may approve.
    """

    threshold_amount: Decimal = DEFAULT_THRESHOLD_AMOUNT
    requires_dual_control: bool = False
    approvers: frozenset[ActorId] = field(default_factory=frozenset)

    def to_dict(self) -> dict[str, Any]:
        return {
            "threshold_amount": str(self.threshold_amount),
            "requires_dual_control": self.requires_dual_control,
            "approvers": sorted(a.value for a in self.approvers),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ApprovalRules:
        return cls(
            threshold_amount=Decimal(str(data.get("threshold_amount", DEFAULT_THRESHOLD_AMOUNT))),
            requires_dual_control=bool(data.get("requires_dual_control", False)),
            approvers=frozenset(ActorId(a) for a in data.get("approvers", ())),
        )


@dataclass(frozen=True)
class PaymentWorkflow:
    """Embedded workflow document of a payment.  Immutable."""

    current_state: PaymentState
    state_history: tuple[StateHistoryEntry, ...] = ()
    approval_rules: ApprovalRules = field(default_factory=ApprovalRules)
    approvals: tuple[ApprovalRecord, ...] = ()

    def __post_init__(self) -> None:
        if self.state_history and self.state_history[-1].state != self.current_state:
            raise ValueError(
                f"current_state '{self.current_state.value}' does not match last "
                f"history entry '{self.state_history[-1].state.value}'"
            )

    @property
    def approver_ids(self) -> frozenset[ActorId]:
        """Approvers whose approval still counts (not voided by a resubmission)."""
        current: set[ActorId] = set()
        for record in self.approvals:
            if record.status == APPROVAL_VOIDED:
                current.discard(record.approver_id)
            elif record.status == APPROVAL_GRANTED:
                current.add(record.approver_id)
        return frozenset(current)

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_state": self.current_state.value,
            "state_history": [e.to_dict() for e in self.state_history],
            "approval_rules": self.approval_rules.to_dict(),
            "approvals": [a.to_dict() for a in self.approvals],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PaymentWorkflow:
        return cls(
            current_state=PaymentState(data["current_state"]),
            state_history=tuple(
                StateHistoryEntry.from_dict(e) for e in data.get("state_history", ())
            ),
            approval_rules=ApprovalRules.from_dict(data.get("approval_rules", {})),
            approvals=tuple(
                ApprovalRecord.from_dict(a) for a in data.get("approvals", ())
            ),
        )


class PaymentRecord(Protocol):
    """What the gating functions need to know about a payment."""

    amount: Decimal
    created_by: ActorId | None

    @property
    def workflow(self) -> PaymentWorkflow | None: ...


@dataclass(frozen=True)
class PaymentFacts:
    """Minimal in-memory PaymentRecord (creation-time routing, tests)."""

    amount: Decimal
    created_by: ActorId | None = None
    workflow: PaymentWorkflow | None = None
    payment_id: UUID | None = None


# =========================================================================
# Transition table
# =========================================================================


def validate_state_transition(current_state: Any, new_state: Any) -> bool:
    """Pure lookup: True iff (current_state, new_state) is a legal edge."""
    if not current_state or not new_state:
        return False
    try:
        current = PaymentState(current_state)
        desired = PaymentState(new_state)
    except ValueError:
        return False
    return desired in PAYMENT_TRANSITIONS[current]


def get_workflow(payment: PaymentRecord) -> PaymentWorkflow:
    """Workflow of a payment, or an empty draft workflow if none is attached."""
    if payment.workflow is not None:
        return payment.workflow
    return PaymentWorkflow(current_state=PaymentState.DRAFT)


def requires_approval(payment: PaymentRecord, rules: ApprovalRules) -> bool:
    return Decimal(payment.amount) >= rules.threshold_amount


def create_initial_workflow_metadata(
    payment: PaymentRecord,
    rules: ApprovalRules | None,
    now: datetime,
) -> PaymentWorkflow:
    """
    Route a new payment.

    Amounts at or above ``threshold_amount`` start in pending_approval,
    everything else in draft.  This is the only place a state is chosen
    without an explicit transition call.
    """
    rules = rules or ApprovalRules()
    initial = (
        PaymentState.PENDING_APPROVAL
        if requires_approval(payment, rules)
        else PaymentState.DRAFT
    )
    return PaymentWorkflow(
        current_state=initial,
        state_history=(
            StateHistoryEntry(
                state=initial,
                timestamp=now,
                actor=payment.created_by,
                action=PaymentAction.CREATED,
            ),
        ),
        approval_rules=rules,
        approvals=(),
    )


# =========================================================================
# Dual control and gating
# =========================================================================


class DualControlReason(str, Enum):
    NOT_REQUIRED = "not_required"
    SATISFIED = "satisfied"
    FIRST_APPROVAL_NEEDED = "first_approval_needed"
    SECOND_APPROVAL_NEEDED = "second_approval_needed"
    SECOND_APPROVAL = "second_approval"
    ALREADY_APPROVED = "already_approved"


DUAL_CONTROL_MESSAGES: dict[DualControlReason, str] = {
    DualControlReason.NOT_REQUIRED: "Dual control not required",
    DualControlReason.SATISFIED: "Dual control satisfied",
    DualControlReason.FIRST_APPROVAL_NEEDED: "Dual control required: First approval needed",
    DualControlReason.SECOND_APPROVAL_NEEDED: "Dual control required: Second approval needed",
    DualControlReason.SECOND_APPROVAL: "Dual control satisfied: second approval by a different approver",
    DualControlReason.ALREADY_APPROVED: (
        "Dual control required: You have already approved. Another user must approve."
    ),
}


@dataclass(frozen=True)
class DualControlCheck:
    requires: bool
    satisfied: bool
    reason: DualControlReason

    @property
    def message(self) -> str:
        return DUAL_CONTROL_MESSAGES[self.reason]


def _dual(requires: bool, satisfied: bool, reason: DualControlReason) -> DualControlCheck:
    return DualControlCheck(requires=requires, satisfied=satisfied, reason=reason)


def check_dual_control(
    workflow: PaymentWorkflow,
    actor_id: ActorId | None = None,
) -> DualControlCheck:
    """
    Evaluate dual control from the recorded approvals.

    ``satisfied`` answers "would approval by ``actor_id`` now complete the
    rule".  Without an actor the check reports which approval is outstanding.
    """
    if not workflow.approval_rules.requires_dual_control:
        return _dual(False, True, DualControlReason.NOT_REQUIRED)

    approvers = workflow.approver_ids
    if len(approvers) >= 2:
        return _dual(True, True, DualControlReason.SATISFIED)
    if actor_id is not None and actor_id in approvers:
        return _dual(True, False, DualControlReason.ALREADY_APPROVED)
    if not approvers:
        return _dual(True, False, DualControlReason.FIRST_APPROVAL_NEEDED)
    if actor_id is None:
        return _dual(True, False, DualControlReason.SECOND_APPROVAL_NEEDED)
    return _dual(True, True, DualControlReason.SECOND_APPROVAL)


@dataclass(frozen=True)
class ApprovalCheck:
    can_approve: bool
    message: str
    blocked_by: str | None = None  # "state" | "eligibility" | "dual_control"
    dual_control: DualControlCheck | None = None


def can_approve_payment(payment: PaymentRecord, actor_id: ActorId) -> ApprovalCheck:
    """
    Fail-closed approval gate.

    Approvable only when pending_approval -> approved is legal for the
    current state, the actor is eligible, and dual control is satisfied.
    """
    workflow = get_workflow(payment)
    current = workflow.current_state

    if not validate_state_transition(current, PaymentState.APPROVED):
        return ApprovalCheck(
            can_approve=False,
            message=(
                f"Cannot approve payment in '{current.value}' state. Only "
                f"'{PaymentState.PENDING_APPROVAL.value}' payments can be approved."
            ),
            blocked_by="state",
        )

    eligible = workflow.approval_rules.approvers
    if eligible and actor_id not in eligible:
        return ApprovalCheck(
            can_approve=False,
            message=f"'{actor_id}' is not an eligible approver for this payment.",
            blocked_by="eligibility",
        )

    dual = check_dual_control(workflow, actor_id)
    if dual.requires and not dual.satisfied:
        return ApprovalCheck(
            can_approve=False,
            message=dual.message,
            blocked_by="dual_control",
            dual_control=dual,
        )

    return ApprovalCheck(
        can_approve=True,
        message="Payment can be approved",
        dual_control=dual,
    )


@dataclass(frozen=True)
class ReleaseCheck:
    can_release: bool
    message: str


def can_release_payment(payment: PaymentRecord) -> ReleaseCheck:
    current = get_workflow(payment).current_state
    if current not in RELEASABLE_STATES:
        return ReleaseCheck(
            can_release=False,
            message=(
                f"Cannot release payment in '{current.value}' state. Payment must be "
                f"'{PaymentState.APPROVED.value}' or '{PaymentState.SCHEDULED.value}'."
            ),
        )
    return ReleaseCheck(can_release=True, message="Payment can be released")


# =========================================================================
# History recording
# =========================================================================


def add_approval_history(
    workflow: PaymentWorkflow,
    action: PaymentAction,
    actor_id: ActorId | None,
    new_state: PaymentState,
    now: datetime,
) -> PaymentWorkflow:
    """
    Append one history entry.

    APPROVED also appends one approval record; RESUBMITTED appends a
    voided record for every approval still counting.
    """
    entry = StateHistoryEntry(state=new_state, timestamp=now, actor=actor_id, action=action)
    approvals = workflow.approvals
    if action == PaymentAction.APPROVED:
        if actor_id is None:
            raise ValueError("An approval must name its approver")
        approvals = approvals + (ApprovalRecord(approver_id=actor_id, timestamp=now),)
    elif action == PaymentAction.RESUBMITTED:
        approvals = approvals + tuple(
            ApprovalRecord(approver_id=approver, timestamp=now, status=APPROVAL_VOIDED)
            for approver in sorted(workflow.approver_ids)
        )
    return replace(
        workflow,
        current_state=new_state,
        state_history=workflow.state_history + (entry,),
        approvals=approvals,
    )


def apply_transition(
    workflow: PaymentWorkflow,
    action: PaymentAction,
    actor_id: ActorId | None,
    now: datetime,
    payment_id: Any = None,
) -> PaymentWorkflow:
    """Validate ``action``'s edge against the table and record it."""
    desired = ACTION_TARGETS[action]
    if not validate_state_transition(workflow.current_state, desired):
        raise InvalidTransitionError(
            "Payment", payment_id, workflow.current_state.value, desired.value,
        )
    return add_approval_history(workflow, action, actor_id, desired, now)


def record_partial_approval(
    workflow: PaymentWorkflow,
    actor_id: ActorId,
    now: datetime,
) -> PaymentWorkflow:
    """First of two dual-control approvals: recorded, state unchanged."""
    return add_approval_history(
        workflow, PaymentAction.APPROVED, actor_id, PaymentState.PENDING_APPROVAL, now,
    )


def reconstruct_state(history: tuple[StateHistoryEntry, ...]) -> PaymentState:
    """
    Replay a history log and return the state it ends in.

    Every entry after the first must either follow a legal edge or be a
    partial dual-control approval (action approved, state still
    pending_approval).

    Raises:
        ValueError: on an empty log or one that does not start with CREATED.
        InvalidTransitionError: on an illegal step.
    """
    if not history:
        raise ValueError("Cannot replay an empty history")
    if history[0].action != PaymentAction.CREATED:
        raise ValueError("History must start with a 'created' entry")

    state = history[0].state
    for entry in history[1:]:
        partial = (
            entry.action == PaymentAction.APPROVED
            and entry.state == PaymentState.PENDING_APPROVAL
            and state == PaymentState.PENDING_APPROVAL
        )
        if not partial and not validate_state_transition(state, entry.state):
            raise InvalidTransitionError("Payment", None, state.value, entry.state.value)
        state = entry.state
    return state
