# btcodid/inscription/orchestrator.py
"""
Inscription orchestrator.

Sequences one inscription through the commit/reveal protocol as an
explicit state machine:

    idle -> content-prepared -> utxo-selected -> fees-calculated
         -> commit-sent -> reveal-sent -> confirmed
                   (any provider failure) -> failed

Every transition puts an InscriptionEvent on an asyncio.Queue. Consumers
await next_event() or drain pending_events(); nothing registers
callbacks on the orchestrator.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

from ..addresses import validate_address
from ..content import Content, InscriptionContent, prepare_content
from ..errors import BtcoError, InvalidInputError, OrchestratorStateError
from ..providers import FeeOracle, OrdinalsProvider
from ..satoshi import Network
from .tracker import TransactionStatus, TransactionStatusTracker, TransactionType
from .transaction import (
    DUST_LIMIT_SATS,
    CommitTransaction,
    PreparedInscription,
    RevealTransaction,
    Transaction,
    Utxo,
    build_commit_transaction,
    build_reveal_transaction,
    ensure_dust,
    estimate_reveal_fee,
    prepare_inscription,
    select_utxos,
    validate_fee_rate,
)

logger = logging.getLogger(__name__)


class InscriptionState(Enum):
    IDLE = "idle"
    CONTENT_PREPARED = "content-prepared"
    UTXO_SELECTED = "utxo-selected"
    FEES_CALCULATED = "fees-calculated"
    COMMIT_SENT = "commit-sent"
    REVEAL_SENT = "reveal-sent"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class InscriptionEvent:
    """One state transition, as seen by consumers."""
    name: str
    state: InscriptionState
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class InscriptionOrchestrator:
    """
    Drive a single inscription from content to confirmation.

    Instances are independent; run one per inscription (or reset() in
    between). The commit transaction is built unsigned; pass the
    wallet-signed hex to execute_commit_transaction().

    Args:
        provider: Ledger provider used for broadcast, fees and status
        network: Network for addresses
        fee_oracle: Optional fee source consulted before the provider
        tracker: Optional status tracker to record transactions in
        required_confirmations: Reveal confirmations that count as confirmed
        postage: Value of the inscription output
    """

    def __init__(
        self,
        provider: OrdinalsProvider,
        network: Union[Network, str, None] = None,
        fee_oracle: Optional[FeeOracle] = None,
        tracker: Optional[TransactionStatusTracker] = None,
        required_confirmations: int = 1,
        postage: int = DUST_LIMIT_SATS,
    ):
        self.provider = provider
        self.network = Network.from_value(network)
        self.fee_oracle = fee_oracle
        self.tracker = tracker
        self.required_confirmations = required_confirmations
        self.postage = ensure_dust(postage)
        self._events: asyncio.Queue = asyncio.Queue()
        self._clear()

    def _clear(self):
        self.pending_events()
        self._state = InscriptionState.IDLE
        self.inscription: Optional[InscriptionContent] = None
        self.prepared: Optional[PreparedInscription] = None
        self.utxos: List[Utxo] = []
        self.change_address: Optional[str] = None
        self.destination_address: Optional[str] = None
        self.fee_rate: Optional[float] = None
        self.commit: Optional[CommitTransaction] = None
        self.reveal: Optional[RevealTransaction] = None
        self.commit_txid: Optional[str] = None
        self.reveal_txid: Optional[str] = None
        self._commit_record: Optional[str] = None
        self._reveal_record: Optional[str] = None

    @property
    def state(self) -> InscriptionState:
        return self._state

    @property
    def fees(self) -> Optional[Dict[str, int]]:
        if self.commit is None or self.fee_rate is None:
            return None
        reveal_fee = self.reveal.fee if self.reveal else estimate_reveal_fee(self.prepared.commitment, self.fee_rate)[1]
        return {"commit": self.commit.fee, "reveal": reveal_fee, "total": self.commit.fee + reveal_fee}

    @property
    def inscription_id(self) -> Optional[str]:
        return f"{self.reveal_txid}i0" if self.reveal_txid else None

    # -- events ---------------------------------------------------------

    def _emit(self, name: str, payload: Optional[Dict[str, Any]] = None):
        self._events.put_nowait(InscriptionEvent(name=name, state=self._state, payload=payload or {}))

    async def next_event(self) -> InscriptionEvent:
        """Wait for the next transition event."""
        return await self._events.get()

    def pending_events(self) -> List[InscriptionEvent]:
        """Drain every event emitted so far without waiting."""
        events = []
        while True:
            try:
                events.append(self._events.get_nowait())
            except asyncio.QueueEmpty:
                return events

    # -- transitions ----------------------------------------------------

    def _require(self, operation: str, *allowed: InscriptionState):
        if self._state not in allowed:
            raise OrchestratorStateError(
                f"Cannot {operation} in state '{self._state.value}'",
                state=self._state.value,
                expected=tuple(s.value for s in allowed),
            )

    def _transition(self, state: InscriptionState, event: str, payload: Optional[Dict[str, Any]] = None):
        logger.info(f"Inscription {self._state.value} -> {state.value}")
        self._state = state
        self._emit(event, payload)

    def _report(self, error: Exception):
        details = error.to_dict() if isinstance(error, BtcoError) else {"message": str(error)}
        self._emit("error", details)

    def _fail(self, error: Exception, record_id: Optional[str] = None):
        logger.error(f"Inscription failed in state {self._state.value}: {error}")
        if self.tracker is not None and record_id is not None:
            self.tracker.mark_failed(record_id, str(error), getattr(error, "code", None))
        self._state = InscriptionState.FAILED
        self._report(error)

    async def prepare_content(
        self,
        content: Content,
        content_type: str,
        metadata: Optional[Dict[str, Any]] = None,
        pointer: Optional[int] = None,
        recovery_public_key: Optional[bytes] = None,
    ) -> PreparedInscription:
        """
        Validate content and derive the reveal key and commit address.

        Invalid content emits an error event and raises; the state is left
        unchanged so the caller can try again.
        """
        self._require("prepare content", InscriptionState.IDLE, InscriptionState.CONTENT_PREPARED)
        try:
            inscription = prepare_content(content, content_type, metadata=metadata, pointer=pointer)
            prepared = prepare_inscription(inscription, self.network, recovery_public_key=recovery_public_key)
        except BtcoError as e:
            self._report(e)
            raise
        self.inscription = inscription
        self.prepared = prepared
        self._transition(InscriptionState.CONTENT_PREPARED, "contentPrepared", {
            "contentType": inscription.content_type,
            "size": inscription.size,
            "commitAddress": prepared.commit_address,
        })
        return prepared

    async def select_utxo(
        self,
        utxos: Union[Utxo, Sequence[Utxo]],
        change_address: str,
        destination_address: Optional[str] = None,
    ) -> List[Utxo]:
        """
        Choose the funding UTXOs and the change/destination addresses.

        The destination defaults to the change address. Candidates are
        checked against the postage plus the cheapest possible reveal;
        the final selection happens in calculate_fees() once the fee rate
        is known.
        """
        self._require("select UTXOs", InscriptionState.CONTENT_PREPARED, InscriptionState.UTXO_SELECTED)
        candidates = [utxos] if isinstance(utxos, Utxo) else list(utxos)
        try:
            validate_address(change_address, self.network)
            if destination_address:
                validate_address(destination_address, self.network)
            spendable = [u for u in candidates if u.is_spendable()]
            if not spendable:
                raise InvalidInputError("No spendable UTXOs provided")
            _, minimum_reveal_fee = estimate_reveal_fee(self.prepared.commitment, 1)
            selected, total = select_utxos(spendable, self.postage + minimum_reveal_fee)
        except BtcoError as e:
            self._report(e)
            raise
        self.utxos = spendable
        self.change_address = change_address
        self.destination_address = destination_address or change_address
        self._transition(InscriptionState.UTXO_SELECTED, "utxoSelected", {
            "utxos": [u.to_dict() for u in selected],
            "total": total,
        })
        return selected

    async def _resolve_fee_rate(self, fee_rate: Optional[float]) -> float:
        if fee_rate is not None:
            return validate_fee_rate(fee_rate)
        if self.fee_oracle is not None:
            return validate_fee_rate(await self.fee_oracle.estimate_fee_rate(1))
        return validate_fee_rate(await self.provider.estimate_fee(1))

    async def calculate_fees(self, fee_rate: Optional[float] = None) -> Dict[str, int]:
        """
        Fix the fee rate and build the unsigned commit transaction.

        Returns:
            {"commit": sats, "reveal": sats, "total": sats}
        """
        self._require("calculate fees", InscriptionState.UTXO_SELECTED, InscriptionState.FEES_CALCULATED)
        try:
            rate = await self._resolve_fee_rate(fee_rate)
        except BtcoError as e:
            self._report(e)
            raise
        except Exception as e:
            self._fail(e)
            raise
        try:
            _, reveal_fee = estimate_reveal_fee(self.prepared.commitment, rate)
            commit = build_commit_transaction(
                self.utxos,
                self.prepared.commitment.script_pubkey,
                reveal_fee + self.postage,
                self.change_address,
                rate,
                self.network,
            )
        except BtcoError as e:
            self._report(e)
            raise
        self.fee_rate = rate
        self.commit = commit
        fees = {"commit": commit.fee, "reveal": reveal_fee, "total": commit.fee + reveal_fee}
        self._transition(InscriptionState.FEES_CALCULATED, "feesCalculated", dict(fees, feeRate=rate))
        return fees

    def unsigned_commit_transaction(self) -> Transaction:
        """The commit transaction for the wallet to sign."""
        self._require("read the commit transaction", InscriptionState.FEES_CALCULATED)
        return self.commit.tx

    def _check_signed_commit(self, signed_hex: str) -> str:
        signed = Transaction.from_hex(signed_hex)
        expected = self.commit.tx.outputs[0]
        if not signed.outputs or signed.outputs[0].value != expected.value \
                or signed.outputs[0].script_pubkey != expected.script_pubkey:
            raise InvalidInputError("Signed commit transaction does not pay the commit output")
        return signed_hex

    async def execute_commit_transaction(self, signed_commit_hex: Optional[str] = None) -> str:
        """
        Broadcast the commit transaction.

        Args:
            signed_commit_hex: Wallet-signed commit; the unsigned build is
                broadcast when omitted (only useful against test providers)

        Returns:
            The commit txid reported by the provider
        """
        self._require("execute the commit transaction", InscriptionState.FEES_CALCULATED)
        raw = self._check_signed_commit(signed_commit_hex) if signed_commit_hex else self.commit.tx.hex()
        record_id = None
        if self.tracker is not None:
            record_id = self.tracker.add_transaction(TransactionType.COMMIT, metadata={
                "commitAddress": self.prepared.commit_address,
                "amount": self.commit.commit_amount,
            }).id
            self.tracker.set_status(record_id, TransactionStatus.BROADCASTING)
        try:
            txid = await self.provider.broadcast_transaction(raw)
        except Exception as e:
            self._fail(e, record_id)
            raise
        self.commit_txid = txid
        self._commit_record = record_id
        if record_id is not None:
            self.tracker.set_txid(record_id, txid)
        self._transition(InscriptionState.COMMIT_SENT, "commitTransactionSent", {"txid": txid})
        return txid

    async def execute_reveal_transaction(self) -> str:
        """
        Sign and broadcast the reveal transaction.

        Only available once the provider has assigned the commit a txid.
        """
        self._require("execute the reveal transaction", InscriptionState.COMMIT_SENT)
        if not self.commit_txid:
            raise OrchestratorStateError(
                "Commit transaction has no txid yet",
                state=self._state.value,
                expected=(InscriptionState.COMMIT_SENT.value,),
            )
        try:
            reveal = build_reveal_transaction(
                self.commit_txid,
                0,
                self.commit.commit_amount,
                self.prepared.commitment,
                self.prepared.reveal_private_key,
                self.destination_address,
                self.fee_rate,
                self.network,
            )
        except BtcoError as e:
            self._fail(e)
            raise
        record_id = None
        if self.tracker is not None:
            record_id = self.tracker.add_transaction(
                TransactionType.REVEAL, parent_id=self._commit_record,
                metadata={"contentType": self.inscription.content_type},
            ).id
            self.tracker.set_status(record_id, TransactionStatus.BROADCASTING)
        try:
            txid = await self.provider.broadcast_transaction(reveal.tx.hex())
        except Exception as e:
            self._fail(e, record_id)
            raise
        self.reveal = reveal
        self.reveal_txid = txid
        self._reveal_record = record_id
        if record_id is not None:
            self.tracker.set_txid(record_id, txid)
        self._transition(InscriptionState.REVEAL_SENT, "revealTransactionSent", {
            "txid": txid,
            "inscriptionId": self.inscription_id,
            "fee": reveal.fee,
        })
        return txid

    async def check_confirmation(self) -> bool:
        """
        Poll the provider once for the reveal's confirmation count.

        Returns:
            True once the reveal has required_confirmations
        """
        self._require("check confirmation", InscriptionState.REVEAL_SENT, InscriptionState.CONFIRMED)
        if self._state == InscriptionState.CONFIRMED:
            return True
        try:
            commit_status = await self.provider.get_transaction_status(self.commit_txid)
            reveal_status = await self.provider.get_transaction_status(self.reveal_txid)
        except Exception as e:
            self._fail(e, self._reveal_record)
            raise
        if self.tracker is not None:
            self.tracker.update_from_confirmations(
                self.commit_txid, commit_status.confirmations, commit_status.block_height)
            self.tracker.update_from_confirmations(
                self.reveal_txid, reveal_status.confirmations, reveal_status.block_height)
        if reveal_status.confirmed and reveal_status.confirmations >= self.required_confirmations:
            self._transition(InscriptionState.CONFIRMED, "inscriptionConfirmed", {
                "txid": self.reveal_txid,
                "inscriptionId": self.inscription_id,
                "confirmations": reveal_status.confirmations,
                "blockHeight": reveal_status.block_height,
            })
            return True
        return False

    def reset(self):
        """Discard all in-flight state and return to idle."""
        self._clear()
        self._emit("reset")

    def get_state(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "contentType": self.inscription.content_type if self.inscription else None,
            "commitAddress": self.prepared.commit_address if self.prepared else None,
            "feeRate": self.fee_rate,
            "fees": self.fees,
            "commitTxid": self.commit_txid,
            "revealTxid": self.reveal_txid,
            "inscriptionId": self.inscription_id,
        }
