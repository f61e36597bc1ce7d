from app.models.transaction import Transaction
from app.models.reconciliation import Reconciliation, ReconciliationItem, ReconciliationAuditLog

__all__ = ["Transaction", "Reconciliation", "ReconciliationItem", "ReconciliationAuditLog"]
