# btcodid/providers.py
"""
Ledger-indexing providers.

A provider answers questions about inscriptions and satoshis and relays
transactions to the network. Everything ledger-facing goes through the
OrdinalsProvider interface so the rest of the package never talks to a
node directly.

Implementations:
    InMemoryOrdinalsProvider - deterministic, for development and tests
    OrdHttpProvider          - an ord server plus an Esplora-style API
"""

import asyncio
import hashlib
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

import cbor2

from .content import Content, detect_content_type
from .errors import InscriptionNotFoundError, ProviderError
from .inscription.script import parse_envelope
from .inscription.transaction import Transaction
from .satoshi import validate_satoshi_number

logger = logging.getLogger(__name__)


@dataclass
class Inscription:
    """An inscription as reported by a provider."""
    inscription_id: str
    satoshi: int
    content: bytes
    content_type: str
    txid: str
    vout: int = 0
    block_height: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None
    content_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inscriptionId": self.inscription_id,
            "satoshi": str(self.satoshi),
            "contentType": self.content_type,
            "txid": self.txid,
            "vout": self.vout,
            "blockHeight": self.block_height,
            "metadata": self.metadata,
            "contentUrl": self.content_url,
        }


@dataclass
class CreatedInscription:
    """Result of asking a provider to create an inscription."""
    inscription_id: str
    commit_txid: str
    reveal_txid: str
    satoshi: Optional[int]
    txid: str
    vout: int = 0
    block_height: Optional[int] = None
    fee_rate: Optional[float] = None
    content: Optional[bytes] = None
    content_type: Optional[str] = None


@dataclass
class TransactionStatusInfo:
    confirmed: bool
    confirmations: int = 0
    block_height: Optional[int] = None


@dataclass
class TransferResult:
    txid: str
    satoshi: Optional[int] = None
    fee: Optional[int] = None
    vin: List[Dict[str, Any]] = field(default_factory=list)
    vout: List[Dict[str, Any]] = field(default_factory=list)


class FeeOracle(ABC):
    """Source of fee rate estimates."""

    @abstractmethod
    async def estimate_fee_rate(self, target_blocks: int = 1) -> float:
        """Fee rate in sat/vB to confirm within target_blocks."""
        pass


class StaticFeeOracle(FeeOracle):
    """Fee oracle that always answers with the same rate."""

    def __init__(self, fee_rate: float):
        self.fee_rate = fee_rate

    async def estimate_fee_rate(self, target_blocks: int = 1) -> float:
        return self.fee_rate


class OrdinalsProvider(ABC):
    """
    Interface to a ledger indexer.

    All methods are coroutines; callers own retries and timeouts.
    """

    @abstractmethod
    async def get_inscription_by_id(self, inscription_id: str) -> Optional[Inscription]:
        pass

    @abstractmethod
    async def get_sat_info(self, satoshi: int) -> List[str]:
        """Inscription ids on a satoshi, in the indexer's creation order."""
        pass

    @abstractmethod
    async def get_inscription_content(self, inscription_id: str) -> bytes:
        pass

    @abstractmethod
    async def get_metadata(self, inscription_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def broadcast_transaction(self, raw_hex: str) -> str:
        """Relay a signed transaction; returns its txid."""
        pass

    @abstractmethod
    async def get_transaction_status(self, txid: str) -> TransactionStatusInfo:
        pass

    @abstractmethod
    async def estimate_fee(self, target_blocks: int = 1) -> float:
        pass

    async def get_inscriptions_by_satoshi(self, satoshi: int) -> List[Inscription]:
        """All inscriptions on a satoshi, in creation order."""
        inscriptions = []
        for inscription_id in await self.get_sat_info(satoshi):
            inscription = await self.get_inscription_by_id(inscription_id)
            if inscription is not None:
                inscriptions.append(inscription)
        return inscriptions

    async def create_inscription(self, data: Content, content_type: str,
                                 fee_rate: Optional[float] = None) -> CreatedInscription:
        raise ProviderError(f"{type(self).__name__} does not support inscription creation")

    async def transfer_inscription(self, inscription_id: str, to_address: str,
                                   fee_rate: Optional[float] = None) -> TransferResult:
        raise ProviderError(f"{type(self).__name__} does not support inscription transfers")


def _encode_data(data: Content) -> bytes:
    if isinstance(data, (dict, list)):
        return json.dumps(data, separators=(",", ":")).encode("utf-8")
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


class InMemoryOrdinalsProvider(OrdinalsProvider):
    """
    Deterministic provider backed by dictionaries.

    Broadcast reveal transactions are indexed: the ord envelope in the
    witness becomes an inscription on the next free satoshi (or on the
    satoshi reserved with assign_next_satoshi()).
    """

    def __init__(self, fee_rate: float = 5.0, first_satoshi: int = 1_000_000):
        self.fee_rate = fee_rate
        self._inscriptions: Dict[str, Inscription] = {}
        self._by_sat: Dict[int, List[str]] = {}
        self._transactions: Dict[str, Dict[str, Any]] = {}
        self._next_sat = first_satoshi
        self._reserved_sat: Optional[int] = None
        self._counter = 0
        self.broadcasts: List[str] = []

    def _fake_txid(self, *parts: bytes) -> str:
        self._counter += 1
        digest = hashlib.sha256(b"".join(parts) + self._counter.to_bytes(8, "big")).digest()
        return digest[::-1].hex()

    def _take_satoshi(self, satoshi: Optional[int] = None) -> int:
        if satoshi is not None:
            return validate_satoshi_number(satoshi)
        if self._reserved_sat is not None:
            sat, self._reserved_sat = self._reserved_sat, None
            return sat
        sat = self._next_sat
        self._next_sat += 1
        return sat

    def assign_next_satoshi(self, satoshi: int):
        """Index the next inscription on a specific satoshi."""
        self._reserved_sat = validate_satoshi_number(satoshi)

    def add_inscription(self, satoshi: int, content: Content, content_type: Optional[str] = None,
                        metadata: Optional[Dict[str, Any]] = None, txid: Optional[str] = None,
                        block_height: Optional[int] = None) -> Inscription:
        """Index an inscription directly (test and development helper)."""
        sat = validate_satoshi_number(satoshi)
        body = _encode_data(content)
        txid = txid or self._fake_txid(body)
        index = len([i for i in self._inscriptions if i.startswith(txid)])
        inscription = Inscription(
            inscription_id=f"{txid}i{index}",
            satoshi=sat,
            content=body,
            content_type=content_type or detect_content_type(content=content),
            txid=txid,
            block_height=block_height,
            metadata=metadata,
            content_url=f"memory://content/{txid}i{index}",
        )
        self._inscriptions[inscription.inscription_id] = inscription
        self._by_sat.setdefault(sat, []).append(inscription.inscription_id)
        logger.debug(f"Indexed inscription {inscription.inscription_id} on sat {sat}")
        return inscription

    def set_confirmations(self, txid: str, confirmations: int, block_height: Optional[int] = None):
        record = self._transactions.setdefault(txid, {"raw": None, "confirmations": 0})
        record["confirmations"] = confirmations
        record["block_height"] = block_height

    def mine(self, blocks: int = 1):
        """Add confirmations to every known transaction."""
        for record in self._transactions.values():
            record["confirmations"] += blocks

    async def get_inscription_by_id(self, inscription_id: str) -> Optional[Inscription]:
        return self._inscriptions.get(inscription_id)

    async def get_sat_info(self, satoshi: int) -> List[str]:
        return list(self._by_sat.get(int(satoshi), []))

    async def get_inscription_content(self, inscription_id: str) -> bytes:
        inscription = self._inscriptions.get(inscription_id)
        if inscription is None:
            raise InscriptionNotFoundError(f"Inscription not found: {inscription_id}")
        return inscription.content

    async def get_metadata(self, inscription_id: str) -> Optional[Dict[str, Any]]:
        inscription = self._inscriptions.get(inscription_id)
        return inscription.metadata if inscription else None

    async def broadcast_transaction(self, raw_hex: str) -> str:
        tx = Transaction.from_hex(raw_hex)
        txid = tx.txid()
        self._transactions[txid] = {"raw": raw_hex, "confirmations": 0, "block_height": None}
        self.broadcasts.append(txid)
        for txin in tx.inputs:
            if len(txin.witness) < 3:
                continue
            envelope = parse_envelope(txin.witness[-2])
            if envelope is not None:
                self.add_inscription(
                    self._take_satoshi(), envelope.body, envelope.content_type,
                    metadata=envelope.metadata, txid=txid,
                )
        logger.info(f"Broadcast transaction {txid}")
        return txid

    async def get_transaction_status(self, txid: str) -> TransactionStatusInfo:
        record = self._transactions.get(txid)
        if record is None:
            return TransactionStatusInfo(confirmed=False)
        confirmations = record["confirmations"]
        return TransactionStatusInfo(
            confirmed=confirmations > 0,
            confirmations=confirmations,
            block_height=record.get("block_height"),
        )

    async def estimate_fee(self, target_blocks: int = 1) -> float:
        return self.fee_rate

    async def create_inscription(self, data: Content, content_type: str,
                                 fee_rate: Optional[float] = None,
                                 satoshi: Optional[int] = None) -> CreatedInscription:
        body = _encode_data(data)
        commit_txid = self._fake_txid(b"commit", body)
        reveal_txid = self._fake_txid(b"reveal", body)
        for txid in (commit_txid, reveal_txid):
            self._transactions[txid] = {"raw": None, "confirmations": 0, "block_height": None}
        inscription = self.add_inscription(
            self._take_satoshi(satoshi), body, content_type, txid=reveal_txid
        )
        return CreatedInscription(
            inscription_id=inscription.inscription_id,
            commit_txid=commit_txid,
            reveal_txid=reveal_txid,
            satoshi=inscription.satoshi,
            txid=reveal_txid,
            vout=0,
            fee_rate=fee_rate or self.fee_rate,
            content=body,
            content_type=content_type,
        )

    async def transfer_inscription(self, inscription_id: str, to_address: str,
                                   fee_rate: Optional[float] = None) -> TransferResult:
        inscription = self._inscriptions.get(inscription_id)
        if inscription is None:
            raise InscriptionNotFoundError(f"Inscription not found: {inscription_id}")
        txid = self._fake_txid(b"transfer", inscription_id.encode(), to_address.encode())
        self._transactions[txid] = {"raw": None, "confirmations": 0, "block_height": None}
        spent = {"txid": inscription.txid, "vout": inscription.vout}
        inscription.txid = txid
        inscription.vout = 0
        return TransferResult(
            txid=txid,
            satoshi=inscription.satoshi,
            vin=[spent],
            vout=[{"address": to_address}],
        )


class OrdHttpProvider(OrdinalsProvider):
    """
    Provider backed by an ord server and an Esplora-compatible API.

    Args:
        ord_url: ord server URL (e.g., "http://localhost:80")
        esplora_url: Esplora API URL for broadcast/status/fees
            (e.g., "https://mempool.space/testnet/api")
        timeout: Request timeout in seconds
    """

    def __init__(self, ord_url: str, esplora_url: Optional[str] = None, timeout: float = 30):
        self.ord_url = ord_url.rstrip("/")
        self.esplora_url = esplora_url.rstrip("/") if esplora_url else None
        self.timeout = timeout

    def _request(self, url: str, method: str = "GET", body: Optional[bytes] = None,
                 headers: Optional[Dict[str, str]] = None) -> Optional[bytes]:
        """Make an HTTP request; returns None on 404."""
        req = Request(url, data=body, headers=headers or {}, method=method)
        try:
            with urlopen(req, timeout=self.timeout) as response:
                return response.read()
        except HTTPError as e:
            if e.code == 404:
                return None
            error_body = e.read().decode(errors="replace")
            raise ProviderError(f"HTTP {e.code} from {url}: {error_body}", {"status": e.code})
        except URLError as e:
            raise ProviderError(f"Failed to connect to {url}: {e}")

    def _get_json(self, url: str) -> Optional[Any]:
        raw = self._request(url, headers={"Accept": "application/json"})
        if raw is None:
            return None
        try:
            return json.loads(raw.decode())
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ProviderError(f"Invalid JSON from {url}: {e}")

    def _esplora(self, path: str) -> str:
        if not self.esplora_url:
            raise ProviderError("No Esplora URL configured for transaction operations")
        return f"{self.esplora_url}{path}"

    async def get_sat_info(self, satoshi: int) -> List[str]:
        data = await asyncio.to_thread(self._get_json, f"{self.ord_url}/sat/{int(satoshi)}")
        if not data:
            return []
        return list(data.get("inscriptions") or data.get("inscription_ids") or [])

    async def get_inscription_by_id(self, inscription_id: str) -> Optional[Inscription]:
        data = None
        for path in (f"/r/inscription/{inscription_id}", f"/inscription/{inscription_id}"):
            data = await asyncio.to_thread(self._get_json, f"{self.ord_url}{path}")
            if data:
                break
        if not data:
            return None
        content = await self.get_inscription_content(inscription_id)
        txid = inscription_id.rsplit("i", 1)[0]
        return Inscription(
            inscription_id=data.get("id", inscription_id),
            satoshi=int(data.get("sat") or 0),
            content=content,
            content_type=data.get("content_type") or "application/octet-stream",
            txid=txid,
            vout=0,
            block_height=data.get("height"),
            content_url=f"{self.ord_url}/content/{inscription_id}",
        )

    async def get_inscription_content(self, inscription_id: str) -> bytes:
        raw = await asyncio.to_thread(self._request, f"{self.ord_url}/content/{inscription_id}")
        if raw is None:
            raise InscriptionNotFoundError(f"Inscription not found: {inscription_id}")
        return raw

    async def get_metadata(self, inscription_id: str) -> Optional[Dict[str, Any]]:
        data = await asyncio.to_thread(self._get_json, f"{self.ord_url}/r/metadata/{inscription_id}")
        if not data:
            return None
        try:
            return cbor2.loads(bytes.fromhex(data))
        except (ValueError, TypeError, cbor2.CBORDecodeError) as e:
            logger.warning(f"Undecodable metadata on {inscription_id}: {e}")
            return None

    async def broadcast_transaction(self, raw_hex: str) -> str:
        raw = await asyncio.to_thread(
            self._request, self._esplora("/tx"), "POST", raw_hex.encode(), {"Content-Type": "text/plain"}
        )
        if not raw:
            raise ProviderError("Broadcast returned no transaction id")
        return raw.decode().strip()

    async def get_transaction_status(self, txid: str) -> TransactionStatusInfo:
        status = await asyncio.to_thread(self._get_json, self._esplora(f"/tx/{txid}/status"))
        if not status or not status.get("confirmed"):
            return TransactionStatusInfo(confirmed=False)
        height = status.get("block_height")
        tip = await asyncio.to_thread(self._request, self._esplora("/blocks/tip/height"))
        confirmations = 1
        if tip and height is not None:
            confirmations = int(tip.decode().strip()) - int(height) + 1
        return TransactionStatusInfo(confirmed=True, confirmations=confirmations, block_height=height)

    async def estimate_fee(self, target_blocks: int = 1) -> float:
        estimates = await asyncio.to_thread(self._get_json, self._esplora("/fee-estimates"))
        if not estimates:
            raise ProviderError("No fee estimates available")
        for target in sorted(int(k) for k in estimates):
            if target >= target_blocks:
                return float(estimates[str(target)])
        return float(estimates[max(estimates, key=int)])
