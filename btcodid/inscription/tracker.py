# btcodid/inscription/tracker.py
"""
Transaction status tracking for display and polling.

Independent of the orchestrator: anything that builds or broadcasts a
transaction can record it here, and a UI can poll the tracker for the
current status, progress messages and explorer links.

Lifecycle:
    pending -> broadcasting -> confirming -> completed
    broadcasting or confirming -> failed
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from ..satoshi import Network

logger = logging.getLogger(__name__)

DEFAULT_REQUIRED_CONFIRMATIONS = 6

_EXPLORER_BASES = {
    Network.MAINNET: "https://mempool.space",
    Network.TESTNET: "https://mempool.space/testnet",
    Network.SIGNET: "https://mempool.space/signet",
}


class TransactionStatus(Enum):
    """Lifecycle of a tracked transaction."""
    PENDING = "pending"
    BROADCASTING = "broadcasting"
    CONFIRMING = "confirming"
    COMPLETED = "completed"
    FAILED = "failed"


class TransactionType(Enum):
    COMMIT = "commit"
    REVEAL = "reveal"


@dataclass
class ProgressEvent:
    """A human readable progress message for one transaction."""
    transaction_id: str
    message: str
    timestamp: float = field(default_factory=time.time)
    data: Optional[Dict[str, Any]] = None


@dataclass
class TrackedTransaction:
    """A transaction the tracker knows about."""
    id: str
    type: TransactionType
    status: TransactionStatus = TransactionStatus.PENDING
    txid: str = ""
    parent_id: Optional[str] = None
    confirmations: int = 0
    block_height: Optional[int] = None
    error: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "status": self.status.value,
            "txid": self.txid,
            "parent_id": self.parent_id,
            "confirmations": self.confirmations,
            "block_height": self.block_height,
            "error": self.error,
            "metadata": self.metadata,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def explorer_url(txid: str, network: Union[Network, str, None] = None) -> Optional[str]:
    """mempool.space link for a transaction, or None on regtest."""
    base = _EXPLORER_BASES.get(Network.from_value(network))
    return f"{base}/tx/{txid}" if base else None


class TransactionStatusTracker:
    """
    In-process registry of transactions and their status.

    Instances are created by the caller and passed where needed; there
    is no shared global tracker.
    """

    def __init__(self, network: Union[Network, str, None] = None,
                 required_confirmations: int = DEFAULT_REQUIRED_CONFIRMATIONS):
        self.network = Network.from_value(network)
        self.required_confirmations = required_confirmations
        self._transactions: Dict[str, TrackedTransaction] = {}
        self._progress: Dict[str, List[ProgressEvent]] = {}
        self._lock = threading.Lock()

    def add_transaction(self, tx_type: TransactionType, txid: str = "",
                        parent_id: Optional[str] = None,
                        metadata: Optional[Dict[str, Any]] = None,
                        transaction_id: Optional[str] = None) -> TrackedTransaction:
        """Start tracking a transaction in the pending state."""
        record = TrackedTransaction(
            id=transaction_id or f"{tx_type.value}-{uuid.uuid4().hex[:12]}",
            type=tx_type,
            txid=txid,
            parent_id=parent_id,
            metadata=metadata or {},
        )
        with self._lock:
            self._transactions[record.id] = record
            self._progress.setdefault(record.id, [])
        self.add_progress(record.id, f"Tracking {tx_type.value} transaction")
        return record

    def get(self, transaction_id: str) -> Optional[TrackedTransaction]:
        return self._transactions.get(transaction_id)

    def find_by_txid(self, txid: str) -> Optional[TrackedTransaction]:
        for record in list(self._transactions.values()):
            if record.txid == txid:
                return record
        return None

    def all(self) -> List[TrackedTransaction]:
        return sorted(self._transactions.values(), key=lambda r: r.created_at)

    def children(self, parent_id: str) -> List[TrackedTransaction]:
        """Transactions linked to a parent (reveals of a commit)."""
        return [r for r in self.all() if r.parent_id == parent_id]

    def _update(self, transaction_id: str, **changes) -> Optional[TrackedTransaction]:
        with self._lock:
            record = self._transactions.get(transaction_id)
            if record is None:
                return None
            for key, value in changes.items():
                setattr(record, key, value)
            record.updated_at = time.time()
            return record

    def set_status(self, transaction_id: str, status: TransactionStatus) -> Optional[TrackedTransaction]:
        record = self._update(transaction_id, status=status)
        if record:
            logger.debug(f"Transaction {transaction_id} -> {status.value}")
            self.add_progress(transaction_id, f"Status changed to {status.value}")
        return record

    def set_txid(self, transaction_id: str, txid: str) -> Optional[TrackedTransaction]:
        return self._update(transaction_id, txid=txid)

    def mark_failed(self, transaction_id: str, message: str, code: Optional[str] = None):
        self._update(transaction_id, status=TransactionStatus.FAILED,
                     error={"message": message, "code": code})
        self.add_progress(transaction_id, f"Failed: {message}")

    def update_confirmations(self, transaction_id: str, confirmations: int,
                             block_height: Optional[int] = None) -> Optional[TrackedTransaction]:
        """
        Record a confirmation count.

        One confirmation moves a pending/broadcasting transaction to
        confirming; required_confirmations moves it to completed.
        """
        record = self._update(transaction_id, confirmations=confirmations, block_height=block_height)
        if record is None:
            return None
        if confirmations >= 1 and record.status in (TransactionStatus.PENDING, TransactionStatus.BROADCASTING):
            self.set_status(transaction_id, TransactionStatus.CONFIRMING)
        if confirmations >= self.required_confirmations and record.status == TransactionStatus.CONFIRMING:
            self.set_status(transaction_id, TransactionStatus.COMPLETED)
        return record

    def update_from_confirmations(self, txid: str, confirmations: int,
                                  block_height: Optional[int] = None) -> Optional[TrackedTransaction]:
        """update_confirmations() keyed by ledger txid instead of tracker id."""
        record = self.find_by_txid(txid)
        if record is None:
            return None
        return self.update_confirmations(record.id, confirmations, block_height)

    def add_progress(self, transaction_id: str, message: str, data: Optional[Dict[str, Any]] = None):
        with self._lock:
            self._progress.setdefault(transaction_id, []).append(
                ProgressEvent(transaction_id=transaction_id, message=message, data=data)
            )

    def progress(self, transaction_id: str) -> List[ProgressEvent]:
        return list(self._progress.get(transaction_id, []))

    def explorer_url(self, transaction_id: str) -> Optional[str]:
        record = self.get(transaction_id)
        if record is None or not record.txid:
            return None
        return explorer_url(record.txid, self.network)

    def remove(self, transaction_id: str) -> bool:
        with self._lock:
            self._progress.pop(transaction_id, None)
            return self._transactions.pop(transaction_id, None) is not None

    def clear(self):
        with self._lock:
            self._transactions.clear()
            self._progress.clear()
