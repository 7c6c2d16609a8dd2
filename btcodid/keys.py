# btcodid/keys.py
"""
Key management for the three supported curves.

Keys are generated, imported, stored and used through KeyManager:

    Ed25519    - signing DID documents, logs and credentials; did:key
    secp256k1  - ECDSA signatures; P2WPKH addresses
    schnorr    - BIP340 signatures on secp256k1; P2TR addresses

Private key bytes stay inside the KeyStore. Callers get key ids, public
keys, signatures and addresses back, never the secret itself.
"""

import hashlib
import json
import logging
import secrets
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from coincurve import PrivateKey as SchnorrPrivateKey
from coincurve import PublicKeyXOnly
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from .addresses import p2wpkh_address
from .errors import (
    InvalidInputError,
    InvalidKeyTypeError,
    InvalidPrivateKeyLengthError,
    KeyNotFoundError,
)
from .inscription.taproot import CURVE_ORDER, key_path_address
from .multikey import ed25519_did_key
from .satoshi import Network

logger = logging.getLogger(__name__)


class KeyType(Enum):
    """Supported key types."""
    ED25519 = "Ed25519"
    SECP256K1 = "secp256k1"
    SCHNORR = "schnorr"

    @classmethod
    def from_value(cls, value: Union["KeyType", str]) -> "KeyType":
        if isinstance(value, cls):
            return value
        for key_type in cls:
            if key_type.value.lower() == str(value).lower():
                return key_type
        raise InvalidKeyTypeError(f"Unsupported key type: {value}")


@dataclass
class KeyRecord:
    """
    A stored key pair.

    public_key is 32 bytes for Ed25519, 33 bytes (compressed) for
    secp256k1 and 32 bytes (x-only) for schnorr.
    """
    id: str
    type: KeyType
    private_key: bytes
    public_key: bytes
    alias: Optional[str] = None
    network: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def revoked(self) -> bool:
        return bool(self.metadata.get("revoked"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "private_key": self.private_key.hex(),
            "public_key": self.public_key.hex(),
            "alias": self.alias,
            "network": self.network,
            "created_at": self.created_at,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeyRecord":
        return cls(
            id=data["id"],
            type=KeyType.from_value(data["type"]),
            private_key=bytes.fromhex(data["private_key"]),
            public_key=bytes.fromhex(data["public_key"]),
            alias=data.get("alias"),
            network=data.get("network"),
            created_at=data.get("created_at", 0.0),
            metadata=data.get("metadata", {}),
        )

    def public_info(self) -> Dict[str, Any]:
        """Record without the private key, safe to hand to callers."""
        data = self.to_dict()
        del data["private_key"]
        return data


class KeyStore:
    """
    Key storage, optionally persisted to a directory.

    Structure:
        store_dir/
            <key_id>.json    # One file per key

    With no store_dir the store is purely in memory. Writes are
    serialized per key id; reads never block.
    """

    def __init__(self, store_dir: Optional[Union[Path, str]] = None):
        self.store_dir = Path(store_dir) if store_dir is not None else None
        self._keys: Dict[str, KeyRecord] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        if self.store_dir is not None:
            self.store_dir.mkdir(parents=True, exist_ok=True)
            self._load()

    def _load(self):
        """Load all key files from disk."""
        for path in sorted(self.store_dir.glob("*.json")):
            try:
                with open(path) as f:
                    record = KeyRecord.from_dict(json.load(f))
                self._keys[record.id] = record
            except (json.JSONDecodeError, KeyError, ValueError) as e:
                logger.warning(f"Failed to load key file {path.name}: {e}")

    def _key_path(self, key_id: str) -> Path:
        return self.store_dir / f"{key_id}.json"

    def lock_for(self, key_id: str) -> threading.Lock:
        """Per-key write lock."""
        with self._locks_guard:
            lock = self._locks.get(key_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[key_id] = lock
            return lock

    def put(self, record: KeyRecord) -> str:
        """Insert or replace a key."""
        with self.lock_for(record.id):
            if self.store_dir is not None:
                with open(self._key_path(record.id), "w") as f:
                    json.dump(record.to_dict(), f, indent=2)
            self._keys[record.id] = record
        return record.id

    def get(self, key_id: str) -> Optional[KeyRecord]:
        return self._keys.get(key_id)

    def get_by_alias(self, alias: str) -> Optional[KeyRecord]:
        for record in list(self._keys.values()):
            if record.alias == alias:
                return record
        return None

    def delete(self, key_id: str) -> bool:
        with self.lock_for(key_id):
            if key_id not in self._keys:
                return False
            if self.store_dir is not None:
                self._key_path(key_id).unlink(missing_ok=True)
            del self._keys[key_id]
        with self._locks_guard:
            self._locks.pop(key_id, None)
        return True

    def query(self, field_name: str, value: Any) -> List[KeyRecord]:
        """Find keys whose to_dict() field equals value."""
        return [r for r in list(self._keys.values()) if r.to_dict().get(field_name) == value]

    def list(self) -> List[KeyRecord]:
        return sorted(self._keys.values(), key=lambda r: r.created_at)

    def __len__(self) -> int:
        return len(self._keys)


def _ed25519_public(private_key: bytes) -> bytes:
    return Ed25519PrivateKey.from_private_bytes(private_key).public_key().public_bytes(
        serialization.Encoding.Raw, serialization.PublicFormat.Raw
    )


def _secp256k1_private(private_key: bytes) -> ec.EllipticCurvePrivateKey:
    scalar = int.from_bytes(private_key, "big")
    if not 0 < scalar < CURVE_ORDER:
        raise InvalidInputError("secp256k1 private key is out of range")
    return ec.derive_private_key(scalar, ec.SECP256K1())


def _secp256k1_public(private_key: bytes) -> bytes:
    return _secp256k1_private(private_key).public_key().public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.CompressedPoint
    )


def _schnorr_public(private_key: bytes) -> bytes:
    _secp256k1_private(private_key)
    return SchnorrPrivateKey(private_key).public_key.format(compressed=True)[1:]


def derive_public_key(private_key: bytes, key_type: KeyType) -> bytes:
    """Public key for a raw 32 byte private key of the given type."""
    if len(private_key) != 32:
        raise InvalidPrivateKeyLengthError(
            f"{key_type.value} private key must be 32 bytes, got {len(private_key)}"
        )
    if key_type == KeyType.ED25519:
        return _ed25519_public(private_key)
    if key_type == KeyType.SECP256K1:
        return _secp256k1_public(private_key)
    return _schnorr_public(private_key)


def _generate_private_key(key_type: KeyType) -> bytes:
    if key_type == KeyType.ED25519:
        return Ed25519PrivateKey.generate().private_bytes(
            serialization.Encoding.Raw,
            serialization.PrivateFormat.Raw,
            serialization.NoEncryption(),
        )
    while True:
        candidate = secrets.token_bytes(32)
        if 0 < int.from_bytes(candidate, "big") < CURVE_ORDER:
            return candidate


def sign_message(key_type: KeyType, private_key: bytes, message: bytes) -> bytes:
    """
    Sign a message with a raw private key.

    Ed25519 signs the message itself, secp256k1 produces a DER ECDSA
    signature over SHA-256, and schnorr produces a 64 byte BIP340
    signature over SHA-256 of the message.
    """
    if key_type == KeyType.ED25519:
        return Ed25519PrivateKey.from_private_bytes(private_key).sign(message)
    if key_type == KeyType.SECP256K1:
        return _secp256k1_private(private_key).sign(message, ec.ECDSA(hashes.SHA256()))
    digest = hashlib.sha256(message).digest()
    return SchnorrPrivateKey(private_key).sign_schnorr(digest, secrets.token_bytes(32))


def verify_message(key_type: KeyType, public_key: bytes, message: bytes, signature: bytes) -> bool:
    """Verify a signature produced by sign_message()."""
    try:
        if key_type == KeyType.ED25519:
            Ed25519PublicKey.from_public_bytes(public_key).verify(signature, message)
            return True
        if key_type == KeyType.SECP256K1:
            pub = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), public_key)
            pub.verify(signature, message, ec.ECDSA(hashes.SHA256()))
            return True
        if len(signature) != 64:
            return False
        digest = hashlib.sha256(message).digest()
        return PublicKeyXOnly(public_key).verify(signature, digest)
    except (InvalidSignature, ValueError, TypeError):
        return False


class KeyManager:
    """
    Creates, imports, stores and uses keys.

    Usage:
        manager = KeyManager(KeyStore("/path/to/keys"))
        key_id = manager.create_key("schnorr", network="testnet")
        address = manager.derive_address(key_id)
        signature = manager.sign(key_id, b"message")
    """

    def __init__(self, store: Optional[KeyStore] = None, network: Union[Network, str, None] = None):
        self.store = store if store is not None else KeyStore()
        self.network = Network.from_value(network)

    def _record(self, id_or_alias: str) -> KeyRecord:
        record = self.store.get(id_or_alias) or self.store.get_by_alias(id_or_alias)
        if record is None:
            raise KeyNotFoundError(f"Key not found: {id_or_alias}")
        return record

    def _check_alias(self, alias: Optional[str], key_id: Optional[str] = None):
        if alias is None:
            return
        existing = self.store.get_by_alias(alias)
        if existing is not None and existing.id != key_id:
            raise InvalidInputError(f"Alias already in use: {alias}")

    def _store(self, key_type: KeyType, private_key: bytes, alias: Optional[str],
               network: Union[Network, str, None], metadata: Optional[Dict[str, Any]] = None) -> str:
        self._check_alias(alias)
        net = Network.from_value(network) if network is not None else self.network
        record = KeyRecord(
            id=str(uuid.uuid4()),
            type=key_type,
            private_key=private_key,
            public_key=derive_public_key(private_key, key_type),
            alias=alias,
            network=net.value,
            metadata=metadata or {},
        )
        self.store.put(record)
        logger.info(f"Stored {key_type.value} key {record.id}" + (f" ({alias})" if alias else ""))
        return record.id

    def create_key(self, key_type: Union[KeyType, str] = KeyType.ED25519,
                   network: Union[Network, str, None] = None, alias: Optional[str] = None) -> str:
        """
        Generate and store a new key.

        Args:
            key_type: Ed25519, secp256k1 or schnorr
            network: Network for address derivation (defaults to the manager's)
            alias: Optional unique human readable name

        Returns:
            The new key id
        """
        kt = KeyType.from_value(key_type)
        return self._store(kt, _generate_private_key(kt), alias, network)

    def import_key(self, private_key: bytes, key_type: Union[KeyType, str],
                   alias: Optional[str] = None, network: Union[Network, str, None] = None) -> str:
        """
        Import a raw private key.

        Raises:
            InvalidPrivateKeyLengthError: If the key is not 32 bytes
        """
        kt = KeyType.from_value(key_type)
        if not isinstance(private_key, (bytes, bytearray)) or len(private_key) != 32:
            length = len(private_key) if isinstance(private_key, (bytes, bytearray)) else "non-bytes"
            raise InvalidPrivateKeyLengthError(
                f"{kt.value} private key must be 32 bytes, got {length}"
            )
        return self._store(kt, bytes(private_key), alias, network)

    def get_key(self, id_or_alias: str) -> Optional[Dict[str, Any]]:
        """Public view of a key (no private material), or None."""
        record = self.store.get(id_or_alias) or self.store.get_by_alias(id_or_alias)
        return record.public_info() if record else None

    def public_key(self, id_or_alias: str) -> bytes:
        return self._record(id_or_alias).public_key

    def key_type(self, id_or_alias: str) -> KeyType:
        return self._record(id_or_alias).type

    def delete_key(self, id_or_alias: str) -> bool:
        record = self.store.get(id_or_alias) or self.store.get_by_alias(id_or_alias)
        if record is None:
            return False
        deleted = self.store.delete(record.id)
        if deleted:
            logger.info(f"Deleted key {record.id}")
        return deleted

    def list_keys(self) -> List[Dict[str, Any]]:
        return [r.public_info() for r in self.store.list()]

    def list_active_keys(self) -> List[Dict[str, Any]]:
        return [r.public_info() for r in self.store.list() if not r.revoked]

    def sign(self, id_or_alias: str, message: bytes) -> bytes:
        """
        Sign a message with a stored key.

        Raises:
            KeyNotFoundError: If the key does not exist
            InvalidKeyTypeError: If the key has been revoked
        """
        record = self._record(id_or_alias)
        if record.revoked:
            raise InvalidKeyTypeError(f"Cannot sign with revoked key: {record.id}")
        return sign_message(record.type, record.private_key, message)

    def verify(self, id_or_alias: str, message: bytes, signature: bytes) -> bool:
        record = self._record(id_or_alias)
        return verify_message(record.type, record.public_key, message, signature)

    def derive_address(self, id_or_alias: str) -> Optional[str]:
        """
        Address for a key on its network.

        Returns None for Ed25519 keys, a P2WPKH address for secp256k1 and
        a key-path P2TR address for schnorr keys.
        """
        record = self._record(id_or_alias)
        network = record.network or self.network
        if record.type == KeyType.ED25519:
            return None
        if record.type == KeyType.SECP256K1:
            return p2wpkh_address(record.public_key, network)
        return key_path_address(record.public_key, network)

    def to_did(self, id_or_alias: str) -> str:
        """
        did:key identifier for an Ed25519 key.

        Raises:
            InvalidKeyTypeError: For non Ed25519 keys
        """
        record = self._record(id_or_alias)
        if record.type != KeyType.ED25519:
            raise InvalidKeyTypeError(
                f"did:key is only supported for Ed25519 keys, not {record.type.value}"
            )
        return ed25519_did_key(record.public_key)

    def rotate_key(self, id_or_alias: str, archive_old: bool = False,
                   metadata: Optional[Dict[str, Any]] = None) -> str:
        """
        Replace a key with a fresh one of the same type and network.

        The alias moves to the new key. The old key is deleted, or kept
        under an ``<alias>-archived-<ms>`` alias when archive_old is set.

        Returns:
            The new key id
        """
        old = self._record(id_or_alias)
        now = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
        alias = old.alias

        if archive_old:
            old.metadata = {**old.metadata, "archived": True, "archivedAt": now}
            old.alias = f"{alias}-archived-{int(time.time() * 1000)}" if alias else None
            self.store.put(old)
        else:
            self.store.delete(old.id)

        new_metadata = {**(metadata or {}), "rotatedFrom": old.id, "rotatedAt": now}
        new_id = self._store(old.type, _generate_private_key(old.type), alias, old.network, new_metadata)

        if archive_old:
            old.metadata["replacedBy"] = new_id
            self.store.put(old)
        logger.info(f"Rotated key {old.id} -> {new_id}")
        return new_id

    def revoke_key(self, id_or_alias: str, reason: Optional[str] = None) -> bool:
        """Mark a key as revoked; revoked keys can verify but not sign."""
        record = self._record(id_or_alias)
        record.metadata = {
            **record.metadata,
            "revoked": True,
            "revokedAt": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "revocationReason": reason or "No reason provided",
        }
        self.store.put(record)
        logger.info(f"Revoked key {record.id}")
        return True

    def is_key_revoked(self, id_or_alias: str) -> bool:
        return self._record(id_or_alias).revoked
