"""
Transaction Mempool

The mempool holds signed transactions waiting to be sealed into a block:
- admission requires a verifying signature
- entries are keyed by signature, so resubmission is idempotent
- sealing drains the whole pool at once under the same lock as admission

A transaction is therefore either pending or drained into exactly one batch,
never both and never lost between the two.
"""

import logging
import threading
from enum import Enum
from typing import Dict, Iterable, List, Optional

from .errors import VerificationError
from .transactions import Transaction

logger = logging.getLogger(__name__)


class Admission(Enum):
    """Why a transaction is or is not pending after admit()."""
    ADDED = "added"
    DUPLICATE = "duplicate"
    INVALID = "invalid"
    FULL = "full"


class Mempool:
    """
    Admission-controlled holding area for unconfirmed transactions.

    Safe to use from several threads and from asyncio tasks: each public
    method holds the lock for its whole check-then-mutate sequence.
    """

    def __init__(self, max_size: int = 10000):
        """
        Args:
            max_size: Maximum number of distinct transactions to hold
        """
        self.max_size = max_size
        self._transactions: Dict[str, Transaction] = {}  # signature -> transaction
        self._lock = threading.RLock()

        self._stats = {
            'transactions_added': 0,
            'transactions_rejected': 0,
            'rejected_full': 0,
            'duplicates_ignored': 0,
            'transactions_drained': 0,
            'drains': 0,
        }

    def add(self, transaction: Transaction) -> bool:
        """
        Admit a transaction.

        Returns:
            True if the transaction is pending afterwards (newly added or
            already present), False if it was rejected
        """
        return self.admit(transaction) in (Admission.ADDED, Admission.DUPLICATE)

    def admit(self, transaction: Transaction) -> Admission:
        """Admit a transaction and report the outcome."""
        # Signature check needs no shared state; keep it outside the lock.
        try:
            transaction.ensure_valid()
        except VerificationError as e:
            with self._lock:
                self._stats['transactions_rejected'] += 1
            logger.debug("Rejected %s: %s", transaction, e)
            return Admission.INVALID

        with self._lock:
            if transaction.signature in self._transactions:
                self._stats['duplicates_ignored'] += 1
                return Admission.DUPLICATE

            if len(self._transactions) >= self.max_size:
                self._stats['transactions_rejected'] += 1
                self._stats['rejected_full'] += 1
                logger.warning("Mempool full (%d), rejected transaction %s",
                               self.max_size, transaction.hash()[:8])
                return Admission.FULL

            self._transactions[transaction.signature] = transaction
            self._stats['transactions_added'] += 1

        logger.debug("Transaction %s added to mempool", transaction.hash()[:8])
        return Admission.ADDED

    def drain(self) -> List[Transaction]:
        """Remove and return every pending transaction in arrival order."""
        with self._lock:
            drained = list(self._transactions.values())
            self._transactions.clear()
            self._stats['transactions_drained'] += len(drained)
            self._stats['drains'] += 1
        return drained

    def restore(self, transactions: Iterable[Transaction]) -> int:
        """
        Put back a drained batch whose block could not be persisted.

        Returns:
            Number of transactions re-admitted
        """
        restored = 0
        with self._lock:
            for transaction in transactions:
                if transaction.signature not in self._transactions:
                    self._transactions[transaction.signature] = transaction
                    restored += 1
            self._stats['transactions_drained'] -= restored
        return restored

    def clear(self) -> None:
        with self._lock:
            self._transactions.clear()

    def get_transaction(self, signature: str) -> Optional[Transaction]:
        with self._lock:
            return self._transactions.get(signature)

    def get_pending_count(self) -> int:
        with self._lock:
            return len(self._transactions)

    def get_statistics(self) -> Dict:
        with self._lock:
            stats = self._stats.copy()
            stats['pending_transactions'] = len(self._transactions)
        return stats

    def __len__(self) -> int:
        return self.get_pending_count()

    def __contains__(self, signature: str) -> bool:
        with self._lock:
            return signature in self._transactions
