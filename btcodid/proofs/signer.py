# btcodid/proofs/signer.py
"""
Signers produce proofValues without handing out private keys.

A signer receives the unsecured document and the proof configuration
and returns ``{"proofValue": ...}``; custodial key services implement
the same interface.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Union

from ..errors import InvalidKeyTypeError
from ..keys import KeyManager, KeyType, derive_public_key, verify_message
from ..multikey import encode_multibase, ed25519_did_key
from .eddsa import PrivateKeyInput, hash_data, normalize_private_key, sign_hash
from .loader import DocumentLoader, StaticDocumentLoader


class Signer(ABC):
    """Signing interface used by create_proof."""

    @abstractmethod
    def sign(self, request: Dict[str, Any]) -> Dict[str, str]:
        """
        Sign a proof request.

        Args:
            request: {"document": <unsecured document>, "proof": <proof config>}

        Returns:
            {"proofValue": <multibase signature>}
        """
        pass

    @abstractmethod
    def get_verification_method_id(self) -> str:
        pass

    def verify(self, signature: bytes, message: bytes, public_key: bytes) -> bool:
        """Check a raw Ed25519 signature."""
        return verify_message(KeyType.ED25519, public_key, message, signature)


class Ed25519Signer(Signer):
    """
    Signer over a raw Ed25519 private key.

    Args:
        private_key: 32/64-byte key or Ed25519 private multikey
        verification_method_id: Method id for proofs; defaults to the
            key's did:key method
        document_loader: Loader used to canonicalize documents
    """

    def __init__(self, private_key: Union[bytes, str, PrivateKeyInput],
                 verification_method_id: Optional[str] = None,
                 document_loader: Optional[DocumentLoader] = None):
        self._seed = normalize_private_key(private_key)
        self.public_key = derive_public_key(self._seed, KeyType.ED25519)
        self.document_loader = document_loader or StaticDocumentLoader()
        if verification_method_id is None:
            did = ed25519_did_key(self.public_key)
            verification_method_id = f"{did}#{did[len('did:key:'):]}"
        self._verification_method_id = verification_method_id

    def get_verification_method_id(self) -> str:
        return self._verification_method_id

    def sign(self, request: Dict[str, Any]) -> Dict[str, str]:
        data = hash_data(request["document"], request["proof"], self.document_loader)
        return {"proofValue": sign_hash(data, self._seed)}


class KeyManagerSigner(Signer):
    """
    Signer over an Ed25519 key held by a KeyManager.

    The private key never leaves the manager.
    """

    def __init__(self, key_manager: KeyManager, key_id: str,
                 verification_method_id: Optional[str] = None,
                 document_loader: Optional[DocumentLoader] = None):
        if key_manager.key_type(key_id) != KeyType.ED25519:
            raise InvalidKeyTypeError(f"Key {key_id} is not an Ed25519 key")
        self.key_manager = key_manager
        self.key_id = key_id
        self.document_loader = document_loader or StaticDocumentLoader()
        if verification_method_id is None:
            did = key_manager.to_did(key_id)
            verification_method_id = f"{did}#{did[len('did:key:'):]}"
        self._verification_method_id = verification_method_id

    def get_verification_method_id(self) -> str:
        return self._verification_method_id

    def sign(self, request: Dict[str, Any]) -> Dict[str, str]:
        data = hash_data(request["document"], request["proof"], self.document_loader)
        return {"proofValue": encode_multibase(self.key_manager.sign(self.key_id, data))}
