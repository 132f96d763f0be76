"""
Approval Kernel -- multi-stage approval workflow engine.

Routes approvable business documents (procurement requisitions, invoices,
purchase orders) through an ordered sequence of approval stages:
- Deterministic workflow selection by request type and amount
- Pinned approver sets resolved once per stage entry
- SINGLE / ALL / MAJORITY quorum rules
- Time-based, idempotent escalation of stalled stages
- Append-only decision ledger and terminal-state freeze
"""

__version__ = "0.1.0"
