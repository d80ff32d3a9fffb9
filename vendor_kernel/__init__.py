"""
Vendor Finance Core

Financial workflow kernel of the vendor-management platform:
- Payment approval state machine with threshold routing and dual control
- Statement-of-account reconciliation against the ledger
- Debit note lifecycle (DRAFT -> APPROVED -> POSTED)
- Soft-delete repository base shared by every persisted entity
"""

__version__ = "0.1.0"
