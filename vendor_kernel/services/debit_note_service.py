"""
DebitNoteService -- debit note lifecycle DRAFT -> APPROVED -> POSTED.

Responsibility:
    Propose debit notes (optionally tied to an SOA discrepancy), approve
    them, and mark them posted once the external ledger has accepted the
    adjustment.  Corrections supersede a note with a fresh draft.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - Transitions follow ``DEBIT_NOTE_TRANSITIONS``: no skips, no
      reversals.  Each one is a conditional UPDATE on the expected status.
    - posted_at and ledger_posted_at are written only by the
      APPROVED -> POSTED update.
    - The core performs no ledger I/O of its own: ``post_to_ledger`` calls
      the ``LedgerPostingGateway`` first and marks the note posted only
      if that call returned.
    - A note is superseded at most once; the original row is never
      modified by superseding.

Failure modes:
    - ValidationError on non-positive amount, unknown reason code,
      invalid currency or a duplicate document number.
    - EntityNotFoundError for unknown note / discrepancy ids.
    - InvalidTransitionError on an illegal or lost transition.
    - InvalidStateError when superseding a posted or already superseded
      note.
    - Whatever the ledger gateway raises, unchanged.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import exists, func, select
from sqlalchemy.orm import Session, aliased

from vendor_kernel.db.types import to_money, validate_currency
from vendor_kernel.domain.actor import ActorId
from vendor_kernel.domain.clock import Clock
from vendor_kernel.domain.debit_note import (
    SUPERSEDABLE_STATUSES,
    DebitNoteStatus,
    LedgerPostingGateway,
    ReasonCode,
    format_document_number,
    validate_debit_note_transition,
)
from vendor_kernel.exceptions import (
    EntityNotFoundError,
    InvalidStateError,
    InvalidTransitionError,
    ValidationError,
)
from vendor_kernel.logging_config import LogContext, get_logger
from vendor_kernel.models.debit_note import DebitNoteModel
from vendor_kernel.models.soa import SoaDiscrepancyModel
from vendor_kernel.services.base import BaseService
from vendor_kernel.services.notifier import TransitionEvent, TransitionNotifier, notify_safely
from vendor_kernel.services.sequence_service import SequenceService

logger = get_logger("services.debit_note")


class DebitNoteService(BaseService):
    """Debit note proposal, approval and posting."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        notifier: TransitionNotifier | None = None,
    ):
        super().__init__(session, clock)
        self._sequences = SequenceService(session)
        self._notifier = notifier

    # ------------------------------------------------------------------
    # Proposal
    # ------------------------------------------------------------------

    def propose_debit_note(
        self,
        vendor_id: UUID,
        statement_id: UUID,
        amount: Decimal | int | str,
        reason_code: ReasonCode | str,
        actor_id: ActorId | str,
        discrepancy_id: UUID | None = None,
        currency: str = "USD",
        document_number: str | None = None,
        notes: str | None = None,
        supersedes_id: UUID | None = None,
    ) -> DebitNoteModel:
        """Create a DRAFT note.  The document number is allocated when not given."""
        self._require(vendor_id, "vendor_id")
        self._require(statement_id, "statement_id")
        actor = self._actor(actor_id)
        value = to_money(amount)
        if value <= 0:
            raise ValidationError("amount", "must be greater than zero", value)
        reason = self._reason(reason_code)
        currency = validate_currency(currency)

        if discrepancy_id is not None and self.session.get(
            SoaDiscrepancyModel, discrepancy_id
        ) is None:
            raise EntityNotFoundError("SoaDiscrepancy", discrepancy_id)

        now = self.clock.now()
        if document_number is None:
            seq = self._sequences.next_value(f"debit_note:{now.year}")
            document_number = format_document_number(now.year, seq)
        else:
            document_number = document_number.strip()
            if not document_number:
                raise ValidationError("document_number", "must not be blank")
            taken = self.session.execute(
                select(DebitNoteModel.debit_note_id)
                .where(DebitNoteModel.document_number == document_number)
            ).first()
            if taken is not None:
                raise ValidationError(
                    "document_number", "is already in use", document_number,
                )

        note = DebitNoteModel(
            debit_note_id=uuid4(),
            vendor_id=vendor_id,
            statement_id=statement_id,
            discrepancy_id=discrepancy_id,
            document_number=document_number,
            amount=value,
            currency=currency,
            reason_code=reason.value,
            status=DebitNoteStatus.DRAFT.value,
            notes=notes,
            created_by=actor,
            supersedes_id=supersedes_id,
            created_at=now,
            updated_at=now,
        )
        self.session.add(note)
        self.session.flush()

        logger.info(
            "debit_note_proposed",
            extra={
                "debit_note_id": str(note.debit_note_id),
                "document_number": document_number,
                "vendor_id": str(vendor_id),
                "amount": str(value),
                "currency": currency,
                "reason_code": reason.value,
            },
        )
        self._notify(note, None, DebitNoteStatus.DRAFT, "proposed", actor)
        return note

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def approve(self, debit_note_id: UUID, actor_id: ActorId | str) -> DebitNoteModel:
        """DRAFT -> APPROVED, stamping approved_by / approved_at."""
        actor = self._actor(actor_id)
        return self._transition(
            debit_note_id,
            DebitNoteStatus.APPROVED,
            actor,
            "approved",
            {"approved_by": actor, "approved_at": self.clock.now()},
        )

    def post(
        self,
        debit_note_id: UUID,
        actor_id: ActorId | str,
        ledger_entry_id: str | None = None,
    ) -> DebitNoteModel:
        """
        APPROVED -> POSTED, stamping posted_at and ledger_posted_at.

        Call only after the ledger collaborator confirmed the posting
        (or use ``post_to_ledger``).
        """
        actor = self._actor(actor_id)
        now = self.clock.now()
        return self._transition(
            debit_note_id,
            DebitNoteStatus.POSTED,
            actor,
            "posted",
            {
                "posted_by": actor,
                "posted_at": now,
                "ledger_posted_at": now,
                "ledger_entry_id": ledger_entry_id,
            },
        )

    def post_to_ledger(
        self,
        debit_note_id: UUID,
        actor_id: ActorId | str,
        ledger: LedgerPostingGateway,
    ) -> DebitNoteModel:
        """
        Two-phase post: ledger gateway first, then ``post``.

        If the gateway raises, the exception propagates and the note stays
        APPROVED.
        """
        actor = self._actor(actor_id)
        note = self._load(debit_note_id)
        if not validate_debit_note_transition(note.status, DebitNoteStatus.POSTED):
            raise InvalidTransitionError(
                "DebitNote", debit_note_id, note.status, DebitNoteStatus.POSTED.value,
            )

        with LogContext.bind(actor_id=actor.value, entity_id=str(debit_note_id)):
            try:
                ledger_entry_id = ledger.post_debit_note(
                    debit_note_id=note.debit_note_id,
                    document_number=note.document_number,
                    vendor_id=note.vendor_id,
                    amount=Decimal(note.amount),
                    currency=note.currency,
                    reason_code=note.reason_code,
                    posted_on=self.clock.now(),
                )
            except Exception:
                logger.error(
                    "debit_note_ledger_post_failed",
                    exc_info=True,
                    extra={"document_number": note.document_number},
                )
                raise

            return self.post(debit_note_id, actor, ledger_entry_id=ledger_entry_id)

    def supersede(
        self,
        debit_note_id: UUID,
        actor_id: ActorId | str,
        amount: Decimal | int | str | None = None,
        reason_code: ReasonCode | str | None = None,
        notes: str | None = None,
    ) -> DebitNoteModel:
        """New DRAFT replacing a DRAFT or APPROVED note; the original is untouched."""
        original = self._load(debit_note_id)
        if DebitNoteStatus(original.status) not in SUPERSEDABLE_STATUSES:
            raise InvalidStateError(
                "DebitNote",
                debit_note_id,
                original.status,
                "|".join(s.value for s in sorted(SUPERSEDABLE_STATUSES, key=lambda s: s.value)),
            )
        if self._superseded_by(debit_note_id) is not None:
            raise InvalidStateError("DebitNote", debit_note_id, "superseded", original.status)

        replacement = self.propose_debit_note(
            vendor_id=original.vendor_id,
            statement_id=original.statement_id,
            amount=amount if amount is not None else Decimal(original.amount),
            reason_code=reason_code or original.reason_code,
            actor_id=actor_id,
            discrepancy_id=original.discrepancy_id,
            currency=original.currency,
            notes=notes if notes is not None else original.notes,
            supersedes_id=original.debit_note_id,
        )
        logger.info(
            "debit_note_superseded",
            extra={
                "debit_note_id": str(debit_note_id),
                "superseded_by": str(replacement.debit_note_id),
            },
        )
        return replacement

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, debit_note_id: UUID) -> DebitNoteModel:
        return self._load(debit_note_id)

    def list_for_vendor(
        self,
        vendor_id: UUID,
        status: DebitNoteStatus | str | None = None,
    ) -> list[DebitNoteModel]:
        stmt = select(DebitNoteModel).where(DebitNoteModel.vendor_id == vendor_id)
        if status is not None:
            wanted = self._member(DebitNoteStatus, status, "status")
            stmt = stmt.where(DebitNoteModel.status == wanted.value)
        stmt = stmt.order_by(DebitNoteModel.created_at, DebitNoteModel.document_number)
        return list(self.session.execute(stmt).scalars())

    def approved_adjustments(self, vendor_id: UUID, currency: str | None = None) -> Decimal:
        """
        Sum of APPROVED (not yet posted) note amounts for a vendor.

        Notes that have been superseded are excluded; their replacement
        counts once it is approved.
        """
        replacement = aliased(DebitNoteModel)
        stmt = select(func.coalesce(func.sum(DebitNoteModel.amount), 0)).where(
            DebitNoteModel.vendor_id == vendor_id,
            DebitNoteModel.status == DebitNoteStatus.APPROVED.value,
            ~exists().where(replacement.supersedes_id == DebitNoteModel.debit_note_id),
        )
        if currency is not None:
            stmt = stmt.where(DebitNoteModel.currency == validate_currency(currency))
        return Decimal(self.session.execute(stmt).scalar_one())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _reason(reason_code: ReasonCode | str) -> ReasonCode:
        try:
            return ReasonCode(reason_code)
        except ValueError:
            raise ValidationError(
                "reason_code",
                f"must be one of {[r.value for r in ReasonCode]}",
                reason_code,
            ) from None

    def _load(self, debit_note_id: UUID) -> DebitNoteModel:
        note = self.session.get(DebitNoteModel, debit_note_id)
        if note is None:
            raise EntityNotFoundError("DebitNote", debit_note_id)
        return note

    def _superseded_by(self, debit_note_id: UUID) -> UUID | None:
        return self.session.execute(
            select(DebitNoteModel.debit_note_id)
            .where(DebitNoteModel.supersedes_id == debit_note_id)
        ).scalar_one_or_none()

    def _transition(
        self,
        debit_note_id: UUID,
        desired: DebitNoteStatus,
        actor: ActorId,
        action: str,
        values: dict[str, Any],
    ) -> DebitNoteModel:
        note = self._load(debit_note_id)
        current = note.status
        if not validate_debit_note_transition(current, desired):
            raise InvalidTransitionError("DebitNote", debit_note_id, current, desired.value)

        updated = self._guarded_update(
            DebitNoteModel,
            (
                DebitNoteModel.debit_note_id == debit_note_id,
                DebitNoteModel.status == current,
            ),
            {"status": desired.value, "updated_at": self.clock.now(), **values},
        )
        self.session.refresh(note)
        if updated == 0:
            raise InvalidTransitionError(
                "DebitNote", debit_note_id, note.status, desired.value,
                reason="status changed concurrently",
            )

        logger.info(
            "debit_note_transitioned",
            extra={
                "debit_note_id": str(debit_note_id),
                "from_status": current,
                "to_status": desired.value,
                "actor": actor.value,
            },
        )
        self._notify(note, DebitNoteStatus(current), desired, action, actor)
        return note

    def _notify(
        self,
        note: DebitNoteModel,
        from_status: DebitNoteStatus | None,
        to_status: DebitNoteStatus,
        action: str,
        actor: ActorId,
    ) -> None:
        notify_safely(self._notifier, TransitionEvent(
            entity_type="DebitNote",
            entity_id=str(note.debit_note_id),
            action=action,
            from_state=from_status.value if from_status else None,
            to_state=to_status.value,
            actor_id=actor,
            occurred_at=self.clock.now(),
            payload={
                "document_number": note.document_number,
                "vendor_id": str(note.vendor_id),
                "amount": str(note.amount),
                "currency": note.currency,
            },
        ))
