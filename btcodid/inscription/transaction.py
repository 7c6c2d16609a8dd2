# btcodid/inscription/transaction.py
"""
Commit/reveal transaction construction.

An inscription takes two transactions:

    commit: wallet UTXOs -> P2TR output committing to the reveal script
            (+ change back to the wallet)
    reveal: commit output -> postage output at the destination address,
            spent through the script path so the witness exposes the
            inscription

Every output is kept at or above DUST_LIMIT_SATS. When fee arithmetic
would push an output below the floor the output is raised to the floor
and the fee absorbs the difference; only a true shortfall of funds fails.
"""

import hashlib
import logging
import math
import secrets
import struct
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from coincurve import PrivateKey

from ..addresses import address_to_script_pubkey
from ..content import Content, InscriptionContent, prepare_content
from ..errors import DustLimitError, InsufficientFundsError, InvalidInputError
from ..satoshi import Network
from .script import build_reveal_script
from .taproot import (
    TaprootCommitment,
    commit_to_script,
    compact_size,
    generate_reveal_keypair,
    tagged_hash,
)

logger = logging.getLogger(__name__)

DUST_LIMIT_SATS = 546
MAX_SELECTION_ITERATIONS = 5
MAX_REASONABLE_FEE_RATE = 10_000  # sat/vB
SIGHASH_DEFAULT = 0x00
DEFAULT_SEQUENCE = 0xFFFFFFFD


def _sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def _hash256(data: bytes) -> bytes:
    return _sha256(_sha256(data))


class _Reader:
    """Cursor over serialized transaction bytes."""

    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def read(self, n: int) -> bytes:
        if self.pos + n > len(self.data):
            raise InvalidInputError("Unexpected end of transaction data")
        chunk = self.data[self.pos:self.pos + n]
        self.pos += n
        return chunk

    def read_compact_size(self) -> int:
        first = self.read(1)[0]
        if first < 0xFD:
            return first
        size = {0xFD: 2, 0xFE: 4, 0xFF: 8}[first]
        return int.from_bytes(self.read(size), "little")

    def at_end(self) -> bool:
        return self.pos == len(self.data)


@dataclass
class Utxo:
    """A spendable output owned by the funding wallet."""
    txid: str
    vout: int
    value: int
    script_pubkey: str = ""
    confirmations: int = 0

    def is_spendable(self) -> bool:
        return bool(self.txid) and isinstance(self.vout, int) and self.value > 0 and bool(self.script_pubkey)

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "txid": self.txid,
            "vout": self.vout,
            "value": self.value,
            "script_pubkey": self.script_pubkey,
            "confirmations": self.confirmations,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Utxo":
        return cls(
            txid=data["txid"],
            vout=int(data["vout"]),
            value=int(data["value"]),
            script_pubkey=data.get("script_pubkey") or data.get("scriptPubKey") or "",
            confirmations=data.get("confirmations", 0),
        )


@dataclass
class TxIn:
    txid: str
    vout: int
    sequence: int = DEFAULT_SEQUENCE
    script_sig: bytes = b""
    witness: List[bytes] = field(default_factory=list)

    def serialize(self) -> bytes:
        return (
            bytes.fromhex(self.txid)[::-1]
            + struct.pack("<I", self.vout)
            + compact_size(len(self.script_sig)) + self.script_sig
            + struct.pack("<I", self.sequence)
        )

    def serialize_witness(self) -> bytes:
        out = compact_size(len(self.witness))
        for item in self.witness:
            out += compact_size(len(item)) + item
        return out


@dataclass
class TxOut:
    value: int
    script_pubkey: bytes

    def serialize(self) -> bytes:
        return struct.pack("<q", self.value) + compact_size(len(self.script_pubkey)) + self.script_pubkey

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "script_pubkey": self.script_pubkey.hex()}


@dataclass
class Transaction:
    """A version 2 transaction with BIP144 witness serialization."""
    inputs: List[TxIn] = field(default_factory=list)
    outputs: List[TxOut] = field(default_factory=list)
    version: int = 2
    locktime: int = 0

    @property
    def has_witness(self) -> bool:
        return any(i.witness for i in self.inputs)

    def serialize(self, include_witness: bool = True) -> bytes:
        witness = include_witness and self.has_witness
        out = struct.pack("<i", self.version)
        if witness:
            out += b"\x00\x01"
        out += compact_size(len(self.inputs)) + b"".join(i.serialize() for i in self.inputs)
        out += compact_size(len(self.outputs)) + b"".join(o.serialize() for o in self.outputs)
        if witness:
            out += b"".join(i.serialize_witness() for i in self.inputs)
        out += struct.pack("<I", self.locktime)
        return out

    def txid(self) -> str:
        return _hash256(self.serialize(include_witness=False))[::-1].hex()

    @property
    def weight(self) -> int:
        return len(self.serialize(include_witness=False)) * 3 + len(self.serialize())

    @property
    def vsize(self) -> int:
        return math.ceil(self.weight / 4)

    def hex(self) -> str:
        return self.serialize().hex()

    def output_total(self) -> int:
        return sum(o.value for o in self.outputs)

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Transaction":
        """
        Parse a serialized transaction (with or without witness data).

        Raises:
            InvalidInputError: On truncated or malformed input
        """
        reader = _Reader(raw)
        version = struct.unpack("<i", reader.read(4))[0]
        segwit = raw[4:6] == b"\x00\x01"
        if segwit:
            reader.read(2)
        inputs = []
        for _ in range(reader.read_compact_size()):
            txid = reader.read(32)[::-1].hex()
            vout = struct.unpack("<I", reader.read(4))[0]
            script_sig = reader.read(reader.read_compact_size())
            sequence = struct.unpack("<I", reader.read(4))[0]
            inputs.append(TxIn(txid=txid, vout=vout, sequence=sequence, script_sig=script_sig))
        outputs = []
        for _ in range(reader.read_compact_size()):
            value = struct.unpack("<q", reader.read(8))[0]
            outputs.append(TxOut(value, reader.read(reader.read_compact_size())))
        if segwit:
            for txin in inputs:
                txin.witness = [reader.read(reader.read_compact_size())
                                for _ in range(reader.read_compact_size())]
        locktime = struct.unpack("<I", reader.read(4))[0]
        if not reader.at_end():
            raise InvalidInputError("Trailing bytes after transaction")
        return cls(inputs=inputs, outputs=outputs, version=version, locktime=locktime)

    @classmethod
    def from_hex(cls, raw_hex: str) -> "Transaction":
        try:
            raw = bytes.fromhex(raw_hex)
        except ValueError:
            raise InvalidInputError("Transaction hex is not valid hexadecimal")
        return cls.from_bytes(raw)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "txid": self.txid(),
            "hex": self.hex(),
            "vsize": self.vsize,
            "inputs": [{"txid": i.txid, "vout": i.vout} for i in self.inputs],
            "outputs": [o.to_dict() for o in self.outputs],
        }


def calculate_fee(vsize: int, fee_rate: float) -> int:
    """Fee in satoshis for a transaction of vsize vbytes at fee_rate sat/vB."""
    return math.ceil(vsize * fee_rate)


def validate_fee_rate(fee_rate: float) -> float:
    if not isinstance(fee_rate, (int, float)) or isinstance(fee_rate, bool) or not math.isfinite(fee_rate) or fee_rate <= 0:
        raise InvalidInputError(f"Fee rate must be a positive number: {fee_rate!r}")
    if fee_rate > MAX_REASONABLE_FEE_RATE:
        raise InvalidInputError(
            f"Fee rate {fee_rate} exceeds maximum reasonable fee rate of {MAX_REASONABLE_FEE_RATE} sat/vB"
        )
    return fee_rate


def ensure_dust(value: int) -> int:
    """Raise an output value to the dust floor."""
    return max(value, DUST_LIMIT_SATS)


def estimate_commit_vsize(input_count: int, output_count: int) -> int:
    """
    Estimated vsize of a commit transaction.

    Assumes P2WPKH inputs (68 vB), one P2TR commit output (43 vB) and
    P2WPKH change outputs (31 vB) on top of 10.5 vB of overhead.
    """
    change_outputs = max(output_count - 1, 0)
    return math.ceil(10.5 + 68 * input_count + 43 + 31 * change_outputs)


def select_utxos(utxos: Sequence[Utxo], target: int) -> Tuple[List[Utxo], int]:
    """
    Pick UTXOs, largest first, until their value reaches target.

    Returns:
        (selected utxos, their total value)

    Raises:
        InsufficientFundsError: If all UTXOs together fall short
    """
    if not utxos:
        raise InsufficientFundsError("No UTXOs provided for selection", required=target)
    if target <= 0:
        raise InvalidInputError(f"Invalid target amount: {target}")

    selected: List[Utxo] = []
    total = 0
    for utxo in sorted(utxos, key=lambda u: u.value, reverse=True):
        selected.append(utxo)
        total += utxo.value
        if total >= target:
            return selected, total
    raise InsufficientFundsError(
        f"Insufficient funds. Required: {target}, Available: {total} from {len(utxos)} UTXOs",
        required=target,
        available=total,
    )


@dataclass
class CommitTransaction:
    """Unsigned commit transaction and its funding details."""
    tx: Transaction
    selected_utxos: List[Utxo]
    commit_amount: int
    fee: int
    change: int = 0

    @property
    def txid(self) -> str:
        return self.tx.txid()


def build_commit_transaction(
    utxos: Sequence[Utxo],
    commit_script_pubkey: bytes,
    commit_amount: int,
    change_address: str,
    fee_rate: float,
    network: Union[Network, str, None] = None,
) -> CommitTransaction:
    """
    Fund the taproot commit output.

    UTXOs without a scriptPubKey are skipped. Selection is repeated as
    the input count (and with it the fee) grows. Change below the dust
    limit is left to the fee.

    Raises:
        InvalidInputError: No spendable UTXOs or bad fee rate
        InsufficientFundsError: Inputs cannot cover commit output plus fee
    """
    validate_fee_rate(fee_rate)
    if not utxos:
        raise InvalidInputError("No UTXOs provided to fund the transaction")
    valid = [u for u in utxos if u.is_spendable()]
    if not valid:
        raise InvalidInputError(
            f"No valid spendable UTXOs available; {len(utxos)} UTXO(s) provided but all are invalid"
        )
    if len(valid) < len(utxos):
        logger.warning(f"Filtered out {len(utxos) - len(valid)} invalid UTXO(s)")
    change_script = address_to_script_pubkey(change_address, network)

    commit_value = ensure_dust(commit_amount)
    target = commit_value + calculate_fee(estimate_commit_vsize(1, 2), fee_rate)
    selected: List[Utxo] = []
    total = fee = 0
    for _ in range(MAX_SELECTION_ITERATIONS):
        selected, total = select_utxos(valid, target)
        fee = calculate_fee(estimate_commit_vsize(len(selected), 2), fee_rate)
        if total - commit_value - fee < DUST_LIMIT_SATS:
            fee = calculate_fee(estimate_commit_vsize(len(selected), 1), fee_rate)
        required = commit_value + fee
        if total >= required:
            break
        target = required
    else:
        raise InsufficientFundsError(
            f"Unable to select sufficient UTXOs after {MAX_SELECTION_ITERATIONS} iterations",
            required=commit_value + fee,
            available=sum(u.value for u in valid),
        )

    tx = Transaction(inputs=[TxIn(txid=u.txid, vout=u.vout) for u in selected])
    tx.outputs.append(TxOut(commit_value, commit_script_pubkey))

    change = total - commit_value - fee
    if change >= DUST_LIMIT_SATS:
        tx.outputs.append(TxOut(change, change_script))
    else:
        if change > 0:
            logger.debug(f"Change of {change} sats is below dust, adding to fee")
        fee += change
        change = 0

    logger.info(
        f"Commit transaction {tx.txid()}: {len(selected)} input(s), "
        f"commit {commit_value} sats, fee {fee} sats, change {change} sats"
    )
    return CommitTransaction(tx=tx, selected_utxos=selected, commit_amount=commit_value, fee=fee, change=change)


def taproot_script_sighash(
    tx: Transaction,
    input_index: int,
    spent_amounts: Sequence[int],
    spent_scripts: Sequence[bytes],
    leaf_hash: bytes,
    hash_type: int = SIGHASH_DEFAULT,
) -> bytes:
    """
    BIP341 signature hash for a tapscript (script path) spend.

    Only SIGHASH_DEFAULT / SIGHASH_ALL without annex is supported.
    """
    if hash_type not in (0x00, 0x01):
        raise InvalidInputError(f"Unsupported sighash type: {hash_type}")
    sha_prevouts = _sha256(b"".join(bytes.fromhex(i.txid)[::-1] + struct.pack("<I", i.vout) for i in tx.inputs))
    sha_amounts = _sha256(b"".join(struct.pack("<q", a) for a in spent_amounts))
    sha_scripts = _sha256(b"".join(compact_size(len(s)) + s for s in spent_scripts))
    sha_sequences = _sha256(b"".join(struct.pack("<I", i.sequence) for i in tx.inputs))
    sha_outputs = _sha256(b"".join(o.serialize() for o in tx.outputs))

    msg = bytes([0x00, hash_type])
    msg += struct.pack("<i", tx.version) + struct.pack("<I", tx.locktime)
    msg += sha_prevouts + sha_amounts + sha_scripts + sha_sequences + sha_outputs
    msg += bytes([0x02])  # ext_flag = 1 (tapscript), no annex
    msg += struct.pack("<I", input_index)
    msg += leaf_hash + b"\x00" + b"\xff\xff\xff\xff"
    return tagged_hash("TapSighash", msg)


@dataclass
class RevealTransaction:
    """Signed reveal transaction."""
    tx: Transaction
    fee: int
    vsize: int
    output_value: int

    @property
    def txid(self) -> str:
        return self.tx.txid()


def build_reveal_transaction(
    commit_txid: str,
    commit_vout: int,
    commit_value: int,
    commitment: TaprootCommitment,
    reveal_private_key: bytes,
    destination_address: str,
    fee_rate: float,
    network: Union[Network, str, None] = None,
) -> RevealTransaction:
    """
    Spend the commit output through the inscription leaf.

    The fee is computed from the exact vsize of the signed transaction.
    If the remaining postage would fall below dust it is raised to the
    dust floor and the fee shrinks accordingly.

    Raises:
        DustLimitError: If the commit output itself is below dust
    """
    validate_fee_rate(fee_rate)
    if not commit_txid:
        raise InvalidInputError("Reveal transaction requires the commit transaction id")
    if commit_value < DUST_LIMIT_SATS:
        raise DustLimitError(
            f"Commit output of {commit_value} sats is below the dust limit ({DUST_LIMIT_SATS})"
        )
    destination = address_to_script_pubkey(destination_address, network)

    tx = Transaction(
        inputs=[TxIn(txid=commit_txid, vout=commit_vout)],
        outputs=[TxOut(commit_value, destination)],
    )
    # Schnorr signatures with SIGHASH_DEFAULT are always 64 bytes
    tx.inputs[0].witness = [bytes(64), commitment.leaf_script, commitment.control_block]
    vsize = tx.vsize
    fee = calculate_fee(vsize, fee_rate)

    output_value = commit_value - fee
    if output_value < DUST_LIMIT_SATS:
        logger.warning(
            f"Reveal output of {output_value} sats raised to dust limit; fee reduced to "
            f"{commit_value - DUST_LIMIT_SATS} sats"
        )
        output_value = DUST_LIMIT_SATS
        fee = commit_value - DUST_LIMIT_SATS
    tx.outputs[0].value = output_value

    sighash = taproot_script_sighash(
        tx, 0, [commit_value], [commitment.script_pubkey], commitment.leaf_hash
    )
    signature = PrivateKey(reveal_private_key).sign_schnorr(sighash, secrets.token_bytes(32))
    tx.inputs[0].witness = [signature, commitment.leaf_script, commitment.control_block]

    logger.info(f"Reveal transaction {tx.txid()}: postage {output_value} sats, fee {fee} sats ({vsize} vB)")
    return RevealTransaction(tx=tx, fee=fee, vsize=vsize, output_value=output_value)


def estimate_reveal_fee(commitment: TaprootCommitment, fee_rate: float) -> Tuple[int, int]:
    """(vsize, fee) of the reveal transaction for a commitment."""
    tx = Transaction(
        inputs=[TxIn(txid="00" * 32, vout=0, witness=[bytes(64), commitment.leaf_script, commitment.control_block])],
        outputs=[TxOut(DUST_LIMIT_SATS, commitment.script_pubkey)],
    )
    return tx.vsize, calculate_fee(tx.vsize, fee_rate)


@dataclass
class PreparedInscription:
    """
    Everything needed to commit and reveal one inscription.

    The reveal private key is ephemeral; it must be kept until the
    reveal transaction is signed.
    """
    inscription: InscriptionContent
    reveal_private_key: bytes
    reveal_public_key: bytes
    commitment: TaprootCommitment
    network: Network

    @property
    def commit_address(self) -> str:
        return self.commitment.address

    @property
    def reveal_script(self) -> bytes:
        return self.commitment.leaf_script

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inscription": self.inscription.to_dict(),
            "reveal_public_key": self.reveal_public_key.hex(),
            "commitment": self.commitment.to_dict(),
            "network": self.network.value,
        }


def prepare_inscription(
    inscription: InscriptionContent,
    network: Union[Network, str, None] = None,
    recovery_public_key: Optional[bytes] = None,
    reveal_private_key: Optional[bytes] = None,
) -> PreparedInscription:
    """
    Generate the reveal key and taproot commitment for prepared content.

    Args:
        inscription: Output of content.prepare_content()
        network: Network for the commit address
        recovery_public_key: Optional x-only key used as the internal key
            so the commit output can also be spent through the key path
        reveal_private_key: Optional fixed reveal key (random if omitted)
    """
    net = Network.from_value(network)
    if reveal_private_key is None:
        reveal_private_key, reveal_public_key = generate_reveal_keypair()
    else:
        reveal_public_key = PrivateKey(reveal_private_key).public_key.format(compressed=True)[1:]
    if recovery_public_key is not None and len(recovery_public_key) != 32:
        raise InvalidInputError("Recovery public key must be 32 bytes (x-only)")

    leaf_script = build_reveal_script(reveal_public_key, inscription)
    internal_key = recovery_public_key or reveal_public_key
    commitment = commit_to_script(internal_key, leaf_script, net)
    logger.debug(f"Prepared inscription commit address {commitment.address}")
    return PreparedInscription(
        inscription=inscription,
        reveal_private_key=reveal_private_key,
        reveal_public_key=reveal_public_key,
        commitment=commitment,
        network=net,
    )


def create_inscription(
    content: Content,
    content_type: str,
    network: Union[Network, str, None] = None,
    metadata: Optional[Dict[str, Any]] = None,
    pointer: Optional[int] = None,
    recovery_public_key: Optional[bytes] = None,
) -> PreparedInscription:
    """Prepare content and derive its commit address in one step."""
    inscription = prepare_content(content, content_type, metadata=metadata, pointer=pointer)
    return prepare_inscription(inscription, network, recovery_public_key=recovery_public_key)


@dataclass
class CommitRevealPair:
    """Linked commit and reveal transactions for one inscription."""
    internal_key: bytes
    output_key: bytes
    taproot_address: str
    commit: CommitTransaction
    reveal: RevealTransaction

    @property
    def commit_tx(self) -> Transaction:
        return self.commit.tx

    @property
    def reveal_tx(self) -> Transaction:
        return self.reveal.tx

    @property
    def fees(self) -> Dict[str, int]:
        return {
            "commit": self.commit.fee,
            "reveal": self.reveal.fee,
            "total": self.commit.fee + self.reveal.fee,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "internal_key": self.internal_key.hex(),
            "output_key": self.output_key.hex(),
            "taproot_address": self.taproot_address,
            "commit_tx": self.commit.tx.to_dict(),
            "reveal_tx": self.reveal.tx.to_dict(),
            "fees": self.fees,
        }


def build_commit_reveal_pair(
    prepared: PreparedInscription,
    utxos: Sequence[Utxo],
    change_address: str,
    destination_address: str,
    fee_rate: float,
    postage: int = DUST_LIMIT_SATS,
) -> CommitRevealPair:
    """
    Build both transactions offline.

    The commit output is sized to pay the reveal fee plus postage. The
    reveal spends the commit by its locally computed txid, which is
    stable because the commit only has segwit inputs.
    """
    _, reveal_fee = estimate_reveal_fee(prepared.commitment, fee_rate)
    commit = build_commit_transaction(
        utxos,
        prepared.commitment.script_pubkey,
        reveal_fee + ensure_dust(postage),
        change_address,
        fee_rate,
        prepared.network,
    )
    reveal = build_reveal_transaction(
        commit.txid,
        0,
        commit.commit_amount,
        prepared.commitment,
        prepared.reveal_private_key,
        destination_address,
        fee_rate,
        prepared.network,
    )
    return CommitRevealPair(
        internal_key=prepared.commitment.internal_key,
        output_key=prepared.commitment.output_key,
        taproot_address=prepared.commitment.address,
        commit=commit,
        reveal=reveal,
    )
