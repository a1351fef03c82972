"""
Order Reconciliation

Per-order polling workers that settle accrual verdicts into the order
store and the ledger.
"""
from app.domain.services.reconciliation.lease import LeaseStatus, OrderLease
from app.domain.services.reconciliation.policy import PollPolicy
from app.domain.services.reconciliation.supervisor import ReconciliationSupervisor
from app.domain.services.reconciliation.worker import ReconciliationWorker, WorkerOutcome

__all__ = [
    "LeaseStatus",
    "OrderLease",
    "PollPolicy",
    "ReconciliationSupervisor",
    "ReconciliationWorker",
    "WorkerOutcome",
]
