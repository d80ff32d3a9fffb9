"""
PaymentWorkflowService -- persistence shell around the payment state machine.

Responsibility:
    Create payments with their embedded workflow document and apply the
    submit / approve / reject / resubmit / schedule / release / complete
    actions.  All decisions are taken by the pure functions in
    ``vendor_kernel.domain.payment_workflow``; this service loads a fresh
    snapshot, asks the domain for the next workflow, and writes it back
    with one conditional UPDATE.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/ and
    vendor_config.

Invariants enforced:
    - ``status`` is never written on its own: every write sets
      workflow_data, status (= workflow.current_state) and
      workflow_version together.
    - Each write is ``UPDATE ... WHERE payment_id = :id AND status =
      :expected AND workflow_version = :v AND deleted_at IS NULL``.  Two
      concurrent approvals cannot both succeed; the loser gets
      InvalidTransitionError and must re-read.
    - Dual control is re-derived from the persisted approvals on every
      call; no lock is held between the first and second approver.
    - Notifier failures are logged and never roll the transition back.

Failure modes:
    - ValidationError on non-positive amount, invalid currency or a
      missing actor / vendor.
    - EntityNotFoundError for unknown (or soft-deleted) payments.
    - InvalidTransitionError for an illegal edge or a lost race.
    - DualControlUnsatisfiedError when the approver already approved or
      is not eligible; ``reason`` carries the machine-readable cause.

Audit relevance:
    Every accepted action returns the history and approval entries it
    appended, so the caller can render the audit timeline directly.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from vendor_config import get_policy_set
from vendor_config.schema import PaymentApprovalDefaults
from vendor_kernel.db.types import to_money, validate_currency
from vendor_kernel.domain.actor import ActorId
from vendor_kernel.domain.clock import Clock
from vendor_kernel.domain.payment_workflow import (
    ApprovalRecord,
    ApprovalRules,
    DualControlCheck,
    DualControlReason,
    PaymentAction,
    PaymentFacts,
    PaymentState,
    PaymentWorkflow,
    StateHistoryEntry,
    apply_transition,
    can_approve_payment,
    can_release_payment,
    create_initial_workflow_metadata,
    reconstruct_state,
    record_partial_approval,
)
from vendor_kernel.exceptions import (
    DualControlUnsatisfiedError,
    EntityNotFoundError,
    InvalidTransitionError,
    ValidationError,
)
from vendor_kernel.logging_config import LogContext, get_logger
from vendor_kernel.models.payment import PaymentModel
from vendor_kernel.services.base import BaseService
from vendor_kernel.services.debit_note_service import DebitNoteService
from vendor_kernel.services.notifier import TransitionEvent, TransitionNotifier, notify_safely

logger = get_logger("services.payment_workflow")

INELIGIBLE_APPROVER = "ineligible_approver"


@dataclass(frozen=True)
class PaymentTransitionResult:
    """Updated payment plus the entries this call appended."""

    payment: PaymentModel
    history_entries: tuple[StateHistoryEntry, ...]
    approval_entries: tuple[ApprovalRecord, ...] = ()
    dual_control: DualControlCheck | None = None
    adjustments: Decimal | None = None
    net_amount: Decimal | None = None

    @property
    def state(self) -> PaymentState:
        return PaymentState(self.payment.status)


@dataclass(frozen=True)
class PaymentSnapshot:
    """State of a payment as read at the start of one action."""

    payment: PaymentModel
    status: str
    version: int
    workflow: PaymentWorkflow

    def facts(self) -> PaymentFacts:
        return PaymentFacts(
            amount=Decimal(self.payment.amount),
            created_by=self.payment.created_by,
            workflow=self.workflow,
            payment_id=self.payment.payment_id,
        )


class PaymentWorkflowService(BaseService):
    """Payment creation and approval workflow."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        notifier: TransitionNotifier | None = None,
        debit_notes: DebitNoteService | None = None,
        approval_defaults: PaymentApprovalDefaults | None = None,
    ):
        super().__init__(session, clock)
        self._notifier = notifier
        self._debit_notes = debit_notes or DebitNoteService(session, self.clock)
        self._approval_defaults = approval_defaults

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_payment(
        self,
        vendor_id: UUID,
        amount: Decimal | int | str,
        currency: str,
        created_by: ActorId | str,
        rules: ApprovalRules | None = None,
        tenant_id: str | None = None,
    ) -> PaymentTransitionResult:
        """
        Persist a new payment routed by its approval threshold.

        Without explicit ``rules`` the tenant's ``payment_approval`` policy
        applies; amounts at or above ``dual_control_threshold`` get dual
        control even when the policy does not require it generally.
        """
        self._require(vendor_id, "vendor_id")
        creator = self._actor(created_by, "created_by")
        value = to_money(amount)
        if value <= 0:
            raise ValidationError("amount", "must be greater than zero", value)
        currency = validate_currency(currency)
        if rules is None:
            rules = self._rules_from_policy(value, tenant_id)

        now = self.clock.now()
        workflow = create_initial_workflow_metadata(
            PaymentFacts(amount=value, created_by=creator), rules, now,
        )
        payment = PaymentModel(
            payment_id=uuid4(),
            vendor_id=vendor_id,
            amount=value,
            currency=currency,
            created_by=creator,
            tenant_id=tenant_id,
            workflow_data=workflow.to_dict(),
            status=workflow.current_state.value,
            workflow_version=1,
            created_at=now,
            updated_at=now,
        )
        self.session.add(payment)
        self.session.flush()

        logger.info(
            "payment_created",
            extra={
                "payment_id": str(payment.payment_id),
                "vendor_id": str(vendor_id),
                "amount": str(value),
                "currency": currency,
                "initial_state": workflow.current_state.value,
                "requires_dual_control": rules.requires_dual_control,
            },
        )
        self._notify(payment, None, workflow.current_state, PaymentAction.CREATED, creator)
        return PaymentTransitionResult(
            payment=payment,
            history_entries=workflow.state_history,
        )

    def _rules_from_policy(self, amount: Decimal, tenant_id: str | None) -> ApprovalRules:
        defaults = self._approval_defaults or get_policy_set(tenant_id).payment_approval
        dual = defaults.requires_dual_control or (
            defaults.dual_control_threshold is not None
            and amount >= defaults.dual_control_threshold
        )
        return ApprovalRules(
            threshold_amount=defaults.threshold_amount,
            requires_dual_control=dual,
            approvers=frozenset(ActorId(a) for a in defaults.approvers),
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def submit(self, payment_id: UUID, actor_id: ActorId | str) -> PaymentTransitionResult:
        """draft -> pending_approval."""
        return self._simple(payment_id, actor_id, PaymentAction.SUBMITTED)

    def approve(self, payment_id: UUID, actor_id: ActorId | str) -> PaymentTransitionResult:
        """
        pending_approval -> approved, subject to eligibility and dual control.

        Under dual control the first approval is recorded (history and
        approvals) while the payment stays pending_approval; a second,
        distinct approver then moves it to approved.

        Raises:
            InvalidTransitionError: payment is not pending_approval.
            DualControlUnsatisfiedError: the actor already approved this
                round, or is not in the payment's approver list.
        """
        actor = self._actor(actor_id)
        snapshot = self._snapshot(payment_id)
        check = can_approve_payment(snapshot.facts(), actor)

        if check.blocked_by == "state":
            raise InvalidTransitionError(
                "Payment", payment_id, snapshot.status, PaymentState.APPROVED.value,
                reason=check.message,
            )
        if check.blocked_by == "eligibility":
            raise DualControlUnsatisfiedError(
                payment_id, actor, INELIGIBLE_APPROVER, check.message,
            )

        now = self.clock.now()
        dual = check.dual_control
        if check.can_approve:
            workflow = apply_transition(
                snapshot.workflow, PaymentAction.APPROVED, actor, now, payment_id,
            )
        elif dual is not None and dual.reason == DualControlReason.FIRST_APPROVAL_NEEDED:
            workflow = record_partial_approval(snapshot.workflow, actor, now)
        else:
            logger.warning(
                "payment_approval_refused",
                extra={
                    "payment_id": str(payment_id),
                    "actor": actor.value,
                    "dual_control_reason": dual.reason.value,
                },
            )
            raise DualControlUnsatisfiedError(
                payment_id, actor, dual.reason.value, check.message,
            )

        return self._write(snapshot, workflow, actor, PaymentAction.APPROVED, dual_control=dual)

    def reject(
        self,
        payment_id: UUID,
        actor_id: ActorId | str,
        reason: str | None = None,
    ) -> PaymentTransitionResult:
        """pending_approval -> rejected."""
        return self._simple(payment_id, actor_id, PaymentAction.REJECTED, reason=reason)

    def resubmit(self, payment_id: UUID, actor_id: ActorId | str) -> PaymentTransitionResult:
        """rejected -> draft.  Approvals of the rejected round are voided."""
        return self._simple(payment_id, actor_id, PaymentAction.RESUBMITTED)

    def schedule(self, payment_id: UUID, actor_id: ActorId | str) -> PaymentTransitionResult:
        """approved -> scheduled."""
        return self._simple(payment_id, actor_id, PaymentAction.SCHEDULED)

    def release(self, payment_id: UUID, actor_id: ActorId | str) -> PaymentTransitionResult:
        """
        Release funds from approved or scheduled.

        From approved the two table edges approved -> scheduled -> released
        are recorded as two history entries in one write.  The result
        carries the vendor's approved debit-note adjustments in the
        payment currency and the net amount (never below zero).
        """
        actor = self._actor(actor_id)
        snapshot = self._snapshot(payment_id)
        check = can_release_payment(snapshot.facts())
        if not check.can_release:
            raise InvalidTransitionError(
                "Payment", payment_id, snapshot.status, PaymentState.RELEASED.value,
                reason=check.message,
            )

        now = self.clock.now()
        workflow = snapshot.workflow
        if workflow.current_state == PaymentState.APPROVED:
            workflow = apply_transition(workflow, PaymentAction.SCHEDULED, actor, now, payment_id)
        workflow = apply_transition(workflow, PaymentAction.RELEASED, actor, now, payment_id)

        payment = snapshot.payment
        adjustments = self._debit_notes.approved_adjustments(
            payment.vendor_id, payment.currency,
        )
        net_amount = max(Decimal(payment.amount) - adjustments, Decimal("0"))
        return self._write(
            snapshot, workflow, actor, PaymentAction.RELEASED,
            adjustments=adjustments,
            net_amount=net_amount,
        )

    def complete(self, payment_id: UUID, actor_id: ActorId | str) -> PaymentTransitionResult:
        """released -> completed (terminal)."""
        return self._simple(payment_id, actor_id, PaymentAction.COMPLETED)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_payment(self, payment_id: UUID) -> PaymentModel:
        return self._snapshot(payment_id).payment

    def list_for_vendor(
        self,
        vendor_id: UUID,
        state: PaymentState | str | None = None,
    ) -> list[PaymentModel]:
        stmt = select(PaymentModel).where(
            PaymentModel.vendor_id == vendor_id,
            PaymentModel.deleted_at.is_(None),
        )
        if state is not None:
            wanted = self._member(PaymentState, state, "state")
            stmt = stmt.where(PaymentModel.status == wanted.value)
        stmt = stmt.order_by(PaymentModel.created_at, PaymentModel.payment_id)
        return list(self.session.execute(stmt).scalars())

    @staticmethod
    def replay_workflow(workflow: PaymentWorkflow) -> PaymentState:
        """State reconstructed by replaying ``workflow.state_history``."""
        return reconstruct_state(workflow.state_history)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _snapshot(self, payment_id: UUID) -> PaymentSnapshot:
        payment = self.session.execute(
            select(PaymentModel)
            .where(
                PaymentModel.payment_id == payment_id,
                PaymentModel.deleted_at.is_(None),
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if payment is None:
            raise EntityNotFoundError("Payment", payment_id)
        workflow = payment.workflow or PaymentWorkflow(current_state=PaymentState(payment.status))
        return PaymentSnapshot(
            payment=payment,
            status=payment.status,
            version=payment.workflow_version,
            workflow=workflow,
        )

    def _simple(
        self,
        payment_id: UUID,
        actor_id: ActorId | str,
        action: PaymentAction,
        reason: str | None = None,
    ) -> PaymentTransitionResult:
        actor = self._actor(actor_id)
        snapshot = self._snapshot(payment_id)
        workflow = apply_transition(
            snapshot.workflow, action, actor, self.clock.now(), payment_id,
        )
        return self._write(snapshot, workflow, actor, action, reason=reason)

    def _write(
        self,
        snapshot: PaymentSnapshot,
        workflow: PaymentWorkflow,
        actor: ActorId,
        action: PaymentAction,
        dual_control: DualControlCheck | None = None,
        adjustments: Decimal | None = None,
        net_amount: Decimal | None = None,
        reason: str | None = None,
    ) -> PaymentTransitionResult:
        payment = snapshot.payment
        payment_id = payment.payment_id
        with LogContext.bind(actor_id=actor.value, entity_id=str(payment_id)):
            updated = self._guarded_update(
                PaymentModel,
                (
                    PaymentModel.payment_id == payment_id,
                    PaymentModel.status == snapshot.status,
                    PaymentModel.workflow_version == snapshot.version,
                    PaymentModel.deleted_at.is_(None),
                ),
                {
                    "workflow_data": workflow.to_dict(),
                    "status": workflow.current_state.value,
                    "workflow_version": snapshot.version + 1,
                    "updated_at": self.clock.now(),
                },
            )
            self.session.refresh(payment)
            if updated == 0:
                logger.warning(
                    "payment_transition_lost",
                    extra={
                        "payment_id": str(payment_id),
                        "expected_status": snapshot.status,
                        "expected_version": snapshot.version,
                        "found_status": payment.status,
                    },
                )
                raise InvalidTransitionError(
                    "Payment", payment_id, payment.status, workflow.current_state.value,
                    reason="concurrent update",
                )

            history_entries = workflow.state_history[len(snapshot.workflow.state_history):]
            approval_entries = workflow.approvals[len(snapshot.workflow.approvals):]
            logger.info(
                "payment_transitioned",
                extra={
                    "payment_id": str(payment_id),
                    "transition_action": action.value,
                    "from_state": snapshot.status,
                    "to_state": workflow.current_state.value,
                    "workflow_version": snapshot.version + 1,
                    "reason": reason,
                },
            )
            self._notify(
                payment, PaymentState(snapshot.status), workflow.current_state, action, actor,
                reason=reason,
            )

        return PaymentTransitionResult(
            payment=payment,
            history_entries=history_entries,
            approval_entries=approval_entries,
            dual_control=dual_control,
            adjustments=adjustments,
            net_amount=net_amount,
        )

    def _notify(
        self,
        payment: PaymentModel,
        from_state: PaymentState | None,
        to_state: PaymentState,
        action: PaymentAction,
        actor: ActorId,
        reason: str | None = None,
    ) -> None:
        payload = {
            "vendor_id": str(payment.vendor_id),
            "amount": str(payment.amount),
            "currency": payment.currency,
        }
        if reason:
            payload["reason"] = reason
        notify_safely(self._notifier, TransitionEvent(
            entity_type="Payment",
            entity_id=str(payment.payment_id),
            action=action.value,
            from_state=from_state.value if from_state else None,
            to_state=to_state.value,
            actor_id=actor,
            occurred_at=self.clock.now(),
            payload=payload,
        ))
