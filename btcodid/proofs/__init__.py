# btcodid/proofs/__init__.py
"""
Data Integrity proofs with the eddsa-rdfc-2022 cryptosuite.

- loader: JSON-LD contexts and verification methods, offline
- eddsa:  canonicalize, hash, sign and verify
- signer: Signer interface for keys held elsewhere
"""

from .eddsa import (
    CRYPTOSUITE,
    PROOF_TYPE,
    EncodedMultikey,
    PrivateKeyInput,
    ProofOptions,
    ProofVerificationResult,
    RawKey32,
    RawKey64,
    add_proof,
    canonicalize,
    create_proof,
    get_proofs,
    normalize_private_key,
    verify_document,
    verify_proof,
)
from .loader import DocumentLoader, RemoteDocument, StaticDocumentLoader
from .signer import Ed25519Signer, KeyManagerSigner, Signer

__all__ = [
    "CRYPTOSUITE",
    "PROOF_TYPE",
    "EncodedMultikey",
    "PrivateKeyInput",
    "ProofOptions",
    "ProofVerificationResult",
    "RawKey32",
    "RawKey64",
    "add_proof",
    "canonicalize",
    "create_proof",
    "get_proofs",
    "normalize_private_key",
    "verify_document",
    "verify_proof",
    "DocumentLoader",
    "RemoteDocument",
    "StaticDocumentLoader",
    "Ed25519Signer",
    "KeyManagerSigner",
    "Signer",
]
