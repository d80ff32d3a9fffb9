"""
SoaReconciliationService -- statement-of-account ingestion and matching.

Responsibility:
    Persist vendor statement lines, run them through the pure
    ``SoaMatchingEngine`` against the ledger invoices of the same vendor
    and company, and record the resulting matches and discrepancies.
    Also owns the reviewer actions (confirm / reject a proposed match,
    resolve a discrepancy) and the statement roll-up.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/,
    vendor_engines and vendor_config.

Invariants enforced:
    - Only pass-1 (deterministic) matches are confirmed automatically;
      fuzzy matches are persisted as proposed and the item stays
      extracted until a reviewer acts.
    - A SoaItem has at most one confirmed match (checked here, backed by
      a partial unique index).
    - Ambiguity degrades to a discrepancy: duplicate exact candidates and
      a rejected last proposal both raise one, never a silent match.
    - Ledger invoices are read, never written.
    - Every status change is a conditional UPDATE on the expected status.

Failure modes:
    - ValidationError on malformed statement lines.
    - EntityNotFoundError for unknown match / discrepancy ids.
    - InvalidStateError when a match is not proposed, an item already has
      a confirmed match, or a discrepancy is already resolved.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from vendor_config import get_policy_set
from vendor_config.schema import ReconciliationPolicy
from vendor_engines.discrepancy import DiscrepancyFinding, rejected_match_finding
from vendor_engines.matching import LineMatchOutcome, SoaMatchingEngine
from vendor_kernel.db.types import to_money, validate_currency
from vendor_kernel.domain.actor import ActorId
from vendor_kernel.domain.clock import Clock
from vendor_kernel.domain.soa import (
    DiscrepancyStatus,
    LedgerInvoice,
    MatchStatus,
    ResolutionAction,
    SoaItemStatus,
    StatementLineInput,
    StatementSummary,
)
from vendor_kernel.exceptions import (
    EntityNotFoundError,
    InvalidStateError,
    ValidationError,
)
from vendor_kernel.logging_config import LogContext, get_logger
from vendor_kernel.models.invoice import InvoiceModel
from vendor_kernel.models.soa import SoaDiscrepancyModel, SoaItemModel, SoaMatchModel
from vendor_kernel.services.base import BaseService

logger = get_logger("services.reconciliation")

_LIVE_MATCH_STATUSES = (MatchStatus.PROPOSED.value, MatchStatus.CONFIRMED.value)


@dataclass(frozen=True)
class ReconciliationRun:
    """Everything one reconcile pass created or touched."""

    case_id: UUID
    items: tuple[SoaItemModel, ...]
    matches: tuple[SoaMatchModel, ...]
    discrepancies: tuple[SoaDiscrepancyModel, ...]

    @property
    def confirmed_matches(self) -> tuple[SoaMatchModel, ...]:
        return tuple(m for m in self.matches if m.status == MatchStatus.CONFIRMED.value)

    @property
    def proposed_matches(self) -> tuple[SoaMatchModel, ...]:
        return tuple(m for m in self.matches if m.status == MatchStatus.PROPOSED.value)


@dataclass(frozen=True)
class MatchRejection:
    match: SoaMatchModel
    item: SoaItemModel
    discrepancy: SoaDiscrepancyModel | None = None


class SoaReconciliationService(BaseService):
    """Statement ingestion, matching and review."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: ReconciliationPolicy | None = None,
        engine: SoaMatchingEngine | None = None,
    ):
        super().__init__(session, clock)
        self._policy = policy
        self._engine = engine or SoaMatchingEngine()

    def _resolve_policy(self, tenant_id: str | None) -> ReconciliationPolicy:
        if self._policy is not None:
            return self._policy
        return get_policy_set(tenant_id).reconciliation

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest_statement(
        self,
        case_id: UUID,
        vendor_id: UUID,
        company_id: UUID,
        lines: Sequence[StatementLineInput],
        actor_id: ActorId | str,
    ) -> list[SoaItemModel]:
        """Persist statement lines as SoaItems in status extracted."""
        self._require(case_id, "case_id")
        self._require(vendor_id, "vendor_id")
        self._require(company_id, "company_id")
        actor = self._actor(actor_id)
        if not lines:
            raise ValidationError("lines", "at least one statement line is required")

        now = self.clock.now()
        items: list[SoaItemModel] = []
        for index, line in enumerate(lines):
            amount = to_money(line.amount, field=f"lines[{index}].amount")
            if amount < 0:
                raise ValidationError(f"lines[{index}].amount", "must be >= 0", amount)
            item = SoaItemModel(
                id=uuid4(),
                case_id=case_id,
                vendor_id=vendor_id,
                company_id=company_id,
                line_number=line.line_number if line.line_number is not None else index + 1,
                invoice_number=(line.invoice_number or "").strip() or None,
                invoice_date=line.invoice_date,
                amount=amount,
                currency_code=validate_currency(line.currency),
                description=line.description,
                extraction_method=line.extraction_method.value,
                allow_partial=line.allow_partial,
                status=SoaItemStatus.EXTRACTED.value,
                created_by=actor,
                created_at=now,
                updated_at=now,
            )
            self.session.add(item)
            items.append(item)

        self.session.flush()
        logger.info(
            "soa_statement_ingested",
            extra={
                "case_id": str(case_id),
                "vendor_id": str(vendor_id),
                "line_count": len(items),
            },
        )
        return items

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def reconcile_statement(
        self,
        case_id: UUID,
        actor_id: ActorId | str,
        tenant_id: str | None = None,
    ) -> ReconciliationRun:
        """
        Match every extracted item of ``case_id`` that has no live proposal.

        Deterministic hit -> confirmed match, item matched.
        Fuzzy hit         -> proposed match, item stays extracted.
        No hit            -> item unmatched, open discrepancy.
        """
        actor = self._actor(actor_id)
        policy = self._resolve_policy(tenant_id)
        now = self.clock.now()

        pending_review = (
            select(SoaMatchModel.soa_item_id)
            .where(
                SoaMatchModel.status == MatchStatus.PROPOSED.value,
                SoaMatchModel.deleted_at.is_(None),
            )
        )
        items = list(self.session.execute(
            select(SoaItemModel)
            .where(
                SoaItemModel.case_id == case_id,
                SoaItemModel.status == SoaItemStatus.EXTRACTED.value,
                SoaItemModel.deleted_at.is_(None),
                SoaItemModel.id.not_in(pending_review),
            )
            .order_by(SoaItemModel.line_number, SoaItemModel.id)
        ).scalars())

        candidates: dict[tuple[UUID, UUID], list[LedgerInvoice]] = {}
        matches: list[SoaMatchModel] = []
        discrepancies: list[SoaDiscrepancyModel] = []

        with LogContext.bind(actor_id=actor.value, tenant_id=tenant_id):
            for item in items:
                key = (item.vendor_id, item.company_id)
                if key not in candidates:
                    candidates[key] = self._ledger_invoices(*key)

                outcome = self._engine.match_line(
                    line=item.to_statement_line(),
                    invoices=candidates[key],
                    policy=policy,
                )
                if outcome.is_matched:
                    matches.append(self._record_match(item, outcome, now))
                else:
                    self._set_item_status(
                        item, (SoaItemStatus.EXTRACTED,), SoaItemStatus.UNMATCHED,
                    )
                    discrepancies.append(
                        self._record_discrepancy(item, outcome.discrepancy, now)
                    )

            self.session.flush()
            logger.info(
                "soa_statement_reconciled",
                extra={
                    "case_id": str(case_id),
                    "items_processed": len(items),
                    "matches_created": len(matches),
                    "discrepancies_created": len(discrepancies),
                },
            )

        return ReconciliationRun(
            case_id=case_id,
            items=tuple(items),
            matches=tuple(matches),
            discrepancies=tuple(discrepancies),
        )

    def submit_statement(
        self,
        case_id: UUID,
        vendor_id: UUID,
        company_id: UUID,
        lines: Sequence[StatementLineInput],
        actor_id: ActorId | str,
        tenant_id: str | None = None,
    ) -> ReconciliationRun:
        """Ingest then reconcile, within the caller's transaction."""
        self.ingest_statement(case_id, vendor_id, company_id, lines, actor_id)
        return self.reconcile_statement(case_id, actor_id, tenant_id)

    def _ledger_invoices(self, vendor_id: UUID, company_id: UUID) -> list[LedgerInvoice]:
        rows = self.session.execute(
            select(InvoiceModel)
            .where(
                InvoiceModel.vendor_id == vendor_id,
                InvoiceModel.company_id == company_id,
            )
            .order_by(InvoiceModel.invoice_number, InvoiceModel.invoice_id)
        ).scalars()
        return [row.to_ledger_invoice() for row in rows]

    def _record_match(
        self,
        item: SoaItemModel,
        outcome: LineMatchOutcome,
        now,
    ) -> SoaMatchModel:
        proposal = outcome.proposal
        status = MatchStatus.CONFIRMED if outcome.is_deterministic else MatchStatus.PROPOSED
        if status == MatchStatus.CONFIRMED:
            self._ensure_no_confirmed_match(item)

        match = SoaMatchModel(
            match_id=uuid4(),
            soa_item_id=item.id,
            invoice_id=proposal.invoice.invoice_id,
            match_type=proposal.match_type.value,
            is_exact_match=proposal.is_exact_match,
            match_confidence=proposal.confidence,
            match_score=proposal.score,
            match_pass=proposal.match_pass,
            soa_amount=item.amount,
            invoice_amount=proposal.invoice.amount,
            status=status.value,
            matched_at=now,
            created_at=now,
            updated_at=now,
        )
        self.session.add(match)
        if status == MatchStatus.CONFIRMED:
            self._set_item_status(item, (SoaItemStatus.EXTRACTED,), SoaItemStatus.MATCHED)
        else:
            self.session.flush()
        return match

    def _record_discrepancy(
        self,
        item: SoaItemModel,
        finding: DiscrepancyFinding,
        now,
    ) -> SoaDiscrepancyModel:
        discrepancy = SoaDiscrepancyModel(
            discrepancy_id=uuid4(),
            case_id=item.case_id,
            soa_item_id=item.id,
            invoice_id=finding.invoice_id,
            discrepancy_type=finding.discrepancy_type.value,
            severity=finding.severity.value,
            description=finding.description,
            difference_amount=finding.difference_amount,
            status=DiscrepancyStatus.OPEN.value,
            detected_at=now,
            created_at=now,
            updated_at=now,
        )
        self.session.add(discrepancy)
        self.session.flush()
        logger.info(
            "soa_discrepancy_raised",
            extra={
                "discrepancy_id": str(discrepancy.discrepancy_id),
                "item_id": str(item.id),
                "discrepancy_type": discrepancy.discrepancy_type,
                "severity": discrepancy.severity,
            },
        )
        return discrepancy

    # ------------------------------------------------------------------
    # Reviewer actions
    # ------------------------------------------------------------------

    def confirm_match(self, match_id: UUID, actor_id: ActorId | str) -> SoaMatchModel:
        """proposed -> confirmed; the item becomes matched."""
        actor = self._actor(actor_id)
        match = self._load_match(match_id)
        if match.status != MatchStatus.PROPOSED.value:
            raise InvalidStateError(
                "SoaMatch", match_id, match.status, MatchStatus.PROPOSED.value,
            )
        item = self._load_item(match.soa_item_id)
        self._ensure_no_confirmed_match(item)

        now = self.clock.now()
        updated = self._guarded_update(
            SoaMatchModel,
            (
                SoaMatchModel.match_id == match_id,
                SoaMatchModel.status == MatchStatus.PROPOSED.value,
            ),
            {
                "status": MatchStatus.CONFIRMED.value,
                "reviewed_by": actor,
                "reviewed_at": now,
            },
        )
        if updated == 0:
            self.session.refresh(match)
            raise InvalidStateError(
                "SoaMatch", match_id, match.status, MatchStatus.PROPOSED.value,
            )
        self.session.refresh(match)

        self._set_item_status(
            item,
            (SoaItemStatus.EXTRACTED, SoaItemStatus.UNMATCHED, SoaItemStatus.DISPUTED),
            SoaItemStatus.MATCHED,
        )
        logger.info(
            "soa_match_confirmed",
            extra={
                "match_id": str(match_id),
                "item_id": str(item.id),
                "reviewed_by": actor.value,
            },
        )
        return match

    def reject_match(
        self,
        match_id: UUID,
        actor_id: ActorId | str,
        reason: str | None = None,
        tenant_id: str | None = None,
    ) -> MatchRejection:
        """
        proposed -> rejected.

        When the item is left with no proposed or confirmed match it
        becomes disputed and a ``match_rejected`` discrepancy is raised.
        """
        actor = self._actor(actor_id)
        match = self._load_match(match_id)
        now = self.clock.now()

        updated = self._guarded_update(
            SoaMatchModel,
            (
                SoaMatchModel.match_id == match_id,
                SoaMatchModel.status == MatchStatus.PROPOSED.value,
            ),
            {
                "status": MatchStatus.REJECTED.value,
                "reviewed_by": actor,
                "reviewed_at": now,
                "rejection_reason": reason,
            },
        )
        self.session.refresh(match)
        if updated == 0:
            raise InvalidStateError(
                "SoaMatch", match_id, match.status, MatchStatus.PROPOSED.value,
            )

        item = self._load_item(match.soa_item_id)
        remaining = self.session.execute(
            select(SoaMatchModel.match_id).where(
                SoaMatchModel.soa_item_id == item.id,
                SoaMatchModel.status.in_(_LIVE_MATCH_STATUSES),
                SoaMatchModel.deleted_at.is_(None),
            )
        ).first()

        discrepancy = None
        if remaining is None:
            self._set_item_status(
                item,
                (SoaItemStatus.EXTRACTED, SoaItemStatus.UNMATCHED),
                SoaItemStatus.DISPUTED,
            )
            invoice = self.session.get(InvoiceModel, match.invoice_id)
            finding = rejected_match_finding(
                item.to_statement_line(),
                invoice.to_ledger_invoice(),
                reason,
                self._resolve_policy(tenant_id),
            )
            discrepancy = self._record_discrepancy(item, finding, now)

        logger.info(
            "soa_match_rejected",
            extra={
                "match_id": str(match_id),
                "item_id": str(item.id),
                "reviewed_by": actor.value,
                "item_disputed": discrepancy is not None,
            },
        )
        return MatchRejection(match=match, item=item, discrepancy=discrepancy)

    def resolve_discrepancy(
        self,
        discrepancy_id: UUID,
        resolution_action: ResolutionAction | str,
        actor_id: ActorId | str,
        notes: str | None = None,
    ) -> SoaDiscrepancyModel:
        """
        open -> resolved, stamping resolution_action and resolved_at together.

        Does not touch the originating item or match.
        """
        actor = self._actor(actor_id)
        action = self._member(ResolutionAction, resolution_action, "resolution_action")

        discrepancy = self.session.get(SoaDiscrepancyModel, discrepancy_id)
        if discrepancy is None:
            raise EntityNotFoundError("SoaDiscrepancy", discrepancy_id)

        updated = self._guarded_update(
            SoaDiscrepancyModel,
            (
                SoaDiscrepancyModel.discrepancy_id == discrepancy_id,
                SoaDiscrepancyModel.status == DiscrepancyStatus.OPEN.value,
            ),
            {
                "status": DiscrepancyStatus.RESOLVED.value,
                "resolution_action": action.value,
                "resolution_notes": notes,
                "resolved_by": actor,
                "resolved_at": self.clock.now(),
            },
        )
        self.session.refresh(discrepancy)
        if updated == 0:
            raise InvalidStateError(
                "SoaDiscrepancy",
                discrepancy_id,
                discrepancy.status,
                DiscrepancyStatus.OPEN.value,
            )

        logger.info(
            "soa_discrepancy_resolved",
            extra={
                "discrepancy_id": str(discrepancy_id),
                "resolution_action": action.value,
                "resolved_by": actor.value,
            },
        )
        return discrepancy

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_items(self, case_id: UUID) -> list[SoaItemModel]:
        return list(self.session.execute(
            select(SoaItemModel)
            .where(SoaItemModel.case_id == case_id, SoaItemModel.deleted_at.is_(None))
            .order_by(SoaItemModel.line_number, SoaItemModel.id)
        ).scalars())

    def list_matches(self, item_id: UUID) -> list[SoaMatchModel]:
        return list(self.session.execute(
            select(SoaMatchModel)
            .where(SoaMatchModel.soa_item_id == item_id, SoaMatchModel.deleted_at.is_(None))
            .order_by(SoaMatchModel.matched_at, SoaMatchModel.match_id)
        ).scalars())

    def list_discrepancies(
        self,
        case_id: UUID,
        status: DiscrepancyStatus | str | None = None,
    ) -> list[SoaDiscrepancyModel]:
        stmt = select(SoaDiscrepancyModel).where(SoaDiscrepancyModel.case_id == case_id)
        if status is not None:
            wanted = self._member(DiscrepancyStatus, status, "status")
            stmt = stmt.where(SoaDiscrepancyModel.status == wanted.value)
        stmt = stmt.order_by(SoaDiscrepancyModel.detected_at, SoaDiscrepancyModel.discrepancy_id)
        return list(self.session.execute(stmt).scalars())

    def summarize_statement(self, case_id: UUID) -> StatementSummary:
        """Counts and amounts per item status plus open discrepancies."""
        items = self.list_items(case_id)
        counts: Counter[str] = Counter(item.status for item in items)
        amounts: dict[str, Decimal] = {}
        for item in items:
            amounts[item.status] = amounts.get(item.status, Decimal(0)) + Decimal(item.amount)

        open_discrepancies = self.list_discrepancies(case_id, DiscrepancyStatus.OPEN)
        by_type: Counter[str] = Counter(d.discrepancy_type for d in open_discrepancies)
        discrepancy_amount = sum(
            (abs(Decimal(d.difference_amount)) for d in open_discrepancies
             if d.difference_amount is not None),
            Decimal(0),
        )

        return StatementSummary(
            case_id=case_id,
            total_items=len(items),
            matched_items=counts[SoaItemStatus.MATCHED.value],
            unmatched_items=counts[SoaItemStatus.UNMATCHED.value],
            disputed_items=counts[SoaItemStatus.DISPUTED.value],
            pending_items=counts[SoaItemStatus.EXTRACTED.value],
            total_amount=sum(amounts.values(), Decimal(0)),
            matched_amount=amounts.get(SoaItemStatus.MATCHED.value, Decimal(0)),
            unmatched_amount=amounts.get(SoaItemStatus.UNMATCHED.value, Decimal(0)),
            open_discrepancies=len(open_discrepancies),
            discrepancy_amount=discrepancy_amount,
            by_type=dict(by_type),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_match(self, match_id: UUID) -> SoaMatchModel:
        match = self.session.get(SoaMatchModel, match_id)
        if match is None or match.deleted_at is not None:
            raise EntityNotFoundError("SoaMatch", match_id)
        return match

    def _load_item(self, item_id: UUID) -> SoaItemModel:
        item = self.session.get(SoaItemModel, item_id)
        if item is None or item.deleted_at is not None:
            raise EntityNotFoundError("SoaItem", item_id)
        return item

    def _ensure_no_confirmed_match(self, item: SoaItemModel) -> None:
        confirmed = self.session.execute(
            select(SoaMatchModel.match_id).where(
                SoaMatchModel.soa_item_id == item.id,
                SoaMatchModel.status == MatchStatus.CONFIRMED.value,
                SoaMatchModel.deleted_at.is_(None),
            )
        ).first()
        if confirmed is not None:
            raise InvalidStateError(
                "SoaItem", item.id, "confirmed_match_exists", "no_confirmed_match",
            )

    def _set_item_status(
        self,
        item: SoaItemModel,
        expected: tuple[SoaItemStatus, ...],
        new_status: SoaItemStatus,
    ) -> None:
        updated = self._guarded_update(
            SoaItemModel,
            (
                SoaItemModel.id == item.id,
                SoaItemModel.status.in_([s.value for s in expected]),
                SoaItemModel.deleted_at.is_(None),
            ),
            {"status": new_status.value, "updated_at": self.clock.now()},
        )
        self.session.refresh(item)
        if updated == 0:
            raise InvalidStateError(
                "SoaItem", item.id, item.status, "|".join(s.value for s in expected),
            )


__all__ = [
    "MatchRejection",
    "ReconciliationRun",
    "SoaReconciliationService",
]
