class MatchingError(Exception):
    """Base class for transaction matching failures."""


class InvalidMatchInputError(MatchingError, ValueError):
    """Raised when a matching run is given malformed input."""


class DuplicateMatchError(MatchingError):
    """Raised when a bank record or ledger transaction is claimed twice."""


class ReconciliationNotFoundError(LookupError):
    def __init__(self, reconciliation_id: int):
        self.reconciliation_id = reconciliation_id
        super().__init__(f"Reconciliation {reconciliation_id} not found")


class TransactionNotFoundError(LookupError):
    def __init__(self, transaction_id: int):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} not found")


class ReconciliationItemNotFoundError(LookupError):
    def __init__(self, item_id: int):
        self.item_id = item_id
        super().__init__(f"Reconciliation item {item_id} not found")


class ReconciliationStateError(Exception):
    """Raised when a reconciliation or one of its items is not in a state that allows the change."""
