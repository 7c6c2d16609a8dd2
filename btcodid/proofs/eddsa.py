# btcodid/proofs/eddsa.py
"""
The eddsa-rdfc-2022 Data Integrity cryptosuite.

Signing input is the concatenation of two SHA-256 hashes, taken over
the URDNA2015 canonical N-Quads of

1. the proof configuration (the proof minus proofValue, under the
   document's @context), and
2. the document without its proof.

The signature is an Ed25519 signature, stored in proofValue as
multibase base58btc. Emitted proofs carry no @context of their own.
"""

import copy
import hashlib
import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from pyld import jsonld

from ..did.document import iso_timestamp
from ..errors import (
    InvalidInputError,
    InvalidKeyTypeError,
    InvalidPrivateKeyLengthError,
)
from ..keys import KeyType, derive_public_key
from ..multikey import MultikeyType, decode_multibase, decode_private_key, decode_public_key, encode_multibase
from .loader import CREDENTIALS_V2, DATA_INTEGRITY_V2, DocumentLoader, StaticDocumentLoader

if TYPE_CHECKING:
    from .signer import Signer

logger = logging.getLogger(__name__)

PROOF_TYPE = "DataIntegrityProof"
CRYPTOSUITE = "eddsa-rdfc-2022"
DEFAULT_PROOF_PURPOSE = "assertionMethod"


# -- private key input ----------------------------------------------------

@dataclass(frozen=True)
class RawKey32:
    """An Ed25519 seed."""
    value: bytes


@dataclass(frozen=True)
class RawKey64:
    """Seed followed by its public key, as produced by libsodium."""
    value: bytes


@dataclass(frozen=True)
class EncodedMultikey:
    """A private multikey string (z3u2... for Ed25519)."""
    value: str


PrivateKeyInput = Union[RawKey32, RawKey64, EncodedMultikey]


def to_private_key_input(value: Union[bytes, str, PrivateKeyInput]) -> PrivateKeyInput:
    """
    Tag an untyped private key.

    Raises:
        InvalidPrivateKeyLengthError: bytes that are neither 32 nor 64 long
        InvalidKeyTypeError: anything that is not bytes or a string
    """
    if isinstance(value, (RawKey32, RawKey64, EncodedMultikey)):
        return value
    if isinstance(value, (bytes, bytearray)):
        if len(value) == 32:
            return RawKey32(bytes(value))
        if len(value) == 64:
            return RawKey64(bytes(value))
        raise InvalidPrivateKeyLengthError(
            f"Ed25519 private key must be 32 or 64 bytes, got {len(value)}"
        )
    if isinstance(value, str):
        return EncodedMultikey(value)
    raise InvalidKeyTypeError(f"Unsupported private key type: {type(value).__name__}")


def normalize_private_key(value: Union[bytes, str, PrivateKeyInput]) -> bytes:
    """
    Reduce any accepted private key form to the 32-byte Ed25519 seed.

    A 64-byte key must end with the public key derived from its first
    32 bytes.

    Raises:
        InvalidPrivateKeyLengthError: Wrong length
        InvalidKeyTypeError: A multikey for another curve, or a public key
        InvalidInputError: A 64-byte key whose halves do not belong together
    """
    key = to_private_key_input(value)
    if isinstance(key, RawKey32):
        if len(key.value) != 32:
            raise InvalidPrivateKeyLengthError(f"Expected 32 bytes, got {len(key.value)}")
        return key.value
    if isinstance(key, RawKey64):
        if len(key.value) != 64:
            raise InvalidPrivateKeyLengthError(f"Expected 64 bytes, got {len(key.value)}")
        seed, public = key.value[:32], key.value[32:]
        if derive_public_key(seed, KeyType.ED25519) != public:
            raise InvalidInputError("64-byte private key does not end with its public key")
        return seed
    decoded = decode_private_key(key.value)
    if decoded.key_type != MultikeyType.ED25519:
        raise InvalidKeyTypeError(
            f"{CRYPTOSUITE} signs with Ed25519 keys only, got {decoded.key_type.value}"
        )
    return decoded.key


# -- canonicalization -----------------------------------------------------

def _context_list(document: Dict[str, Any]) -> List[Any]:
    context = document.get("@context")
    if context is None:
        return []
    return list(context) if isinstance(context, list) else [context]


def canonicalize(document: Dict[str, Any], loader: DocumentLoader) -> str:
    """URDNA2015 canonical N-Quads of a JSON-LD document."""
    return jsonld.normalize(document, {
        "algorithm": "URDNA2015",
        "format": "application/n-quads",
        "documentLoader": loader,
    })


def proof_configuration(document: Dict[str, Any], proof: Dict[str, Any]) -> Dict[str, Any]:
    """
    The proof as it is hashed: no proofValue, under the document's
    contexts plus data-integrity v2 when they do not define its terms.
    """
    context = _context_list(document)
    if DATA_INTEGRITY_V2 not in context and CREDENTIALS_V2 not in context:
        context.append(DATA_INTEGRITY_V2)
    config = {k: v for k, v in proof.items() if k not in ("proofValue", "@context")}
    config["@context"] = context
    return config


def unsecured_document(document: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in document.items() if k != "proof"}


def hash_data(document: Dict[str, Any], proof: Dict[str, Any], loader: DocumentLoader) -> bytes:
    """
    sha256(canon(proof config)) + sha256(canon(document)).

    Raises:
        InvalidInputError: The document has no @context
    """
    if not _context_list(document):
        raise InvalidInputError("Document must have an @context to be canonicalized")
    unsecured = unsecured_document(document)
    config_hash = hashlib.sha256(canonicalize(proof_configuration(unsecured, proof), loader).encode("utf-8")).digest()
    document_hash = hashlib.sha256(canonicalize(unsecured, loader).encode("utf-8")).digest()
    return config_hash + document_hash


# -- proofs ---------------------------------------------------------------

@dataclass
class ProofOptions:
    """
    Options for creating a proof.

    Exactly one of private_key and signer is used; with a signer the
    verification method defaults to the signer's.
    """
    verification_method: Optional[str] = None
    private_key: Optional[Union[bytes, str, PrivateKeyInput]] = None
    signer: Optional["Signer"] = None
    proof_purpose: str = DEFAULT_PROOF_PURPOSE
    created: Optional[str] = None
    challenge: Optional[str] = None
    domain: Optional[str] = None
    previous_proof: Optional[str] = None
    proof_id: Optional[str] = None
    document_loader: Optional[DocumentLoader] = None


@dataclass
class ProofVerificationResult:
    verified: bool
    errors: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.verified

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"verified": self.verified}
        if self.errors:
            data["errors"] = list(self.errors)
        return data


def _proof_base(options: ProofOptions, verification_method: str) -> Dict[str, Any]:
    proof: Dict[str, Any] = {}
    if options.proof_id:
        proof["id"] = options.proof_id
    proof.update({
        "type": PROOF_TYPE,
        "cryptosuite": CRYPTOSUITE,
        "created": options.created or iso_timestamp(),
        "verificationMethod": verification_method,
        "proofPurpose": options.proof_purpose or DEFAULT_PROOF_PURPOSE,
    })
    if options.challenge is not None:
        proof["challenge"] = options.challenge
    if options.domain is not None:
        proof["domain"] = options.domain
    if options.previous_proof is not None:
        proof["previousProof"] = options.previous_proof
    return proof


def sign_hash(data: bytes, private_key: Union[bytes, str, PrivateKeyInput]) -> str:
    """Sign with Ed25519 and encode the signature as multibase."""
    seed = normalize_private_key(private_key)
    signature = Ed25519PrivateKey.from_private_bytes(seed).sign(data)
    return encode_multibase(signature)


def create_proof(document: Dict[str, Any], options: ProofOptions) -> Dict[str, Any]:
    """
    Create a DataIntegrityProof over a document.

    Args:
        document: JSON-LD document; an existing proof is ignored
        options: Key or signer, verification method and proof fields

    Returns:
        The proof dict (not attached to the document)

    Raises:
        InvalidInputError: Missing key/signer or verification method,
            or a document without @context
        InvalidPrivateKeyLengthError, InvalidKeyTypeError: Unusable key
    """
    loader = options.document_loader or StaticDocumentLoader()
    if options.signer is not None:
        verification_method = options.verification_method or options.signer.get_verification_method_id()
        proof = _proof_base(options, verification_method)
        signed = options.signer.sign({"document": unsecured_document(document), "proof": dict(proof)})
        proof["proofValue"] = signed["proofValue"]
    else:
        if options.private_key is None:
            raise InvalidInputError("A private key or signer is required to create a proof")
        if not options.verification_method:
            raise InvalidInputError("verification_method is required to create a proof")
        seed = normalize_private_key(options.private_key)
        proof = _proof_base(options, options.verification_method)
        proof["proofValue"] = sign_hash(hash_data(document, proof, loader), RawKey32(seed))

    logger.info(f"Created {CRYPTOSUITE} proof by {proof['verificationMethod']}")
    return proof


def _check_proof_shape(proof: Any) -> List[str]:
    if not isinstance(proof, dict):
        return ["Proof must be an object"]
    errors = []
    if proof.get("type") != PROOF_TYPE:
        errors.append(f"Unsupported proof type: {proof.get('type')}")
    if proof.get("cryptosuite") != CRYPTOSUITE:
        errors.append(f"Unsupported cryptosuite: {proof.get('cryptosuite')}")
    for name in ("verificationMethod", "proofPurpose", "proofValue"):
        if not proof.get(name):
            errors.append(f"Proof is missing {name}")
    return errors


def verify_proof(
    document: Dict[str, Any],
    proof: Dict[str, Any],
    document_loader: Optional[DocumentLoader] = None,
    expected_purpose: Optional[str] = None,
    challenge: Optional[str] = None,
    domain: Optional[str] = None,
) -> ProofVerificationResult:
    """
    Verify one proof against a document.

    The verification method is loaded through document_loader and must
    carry an Ed25519 publicKeyMultibase. Never raises; every failure
    comes back in ProofVerificationResult.errors.
    """
    try:
        errors = _check_proof_shape(proof)
        if errors:
            return ProofVerificationResult(False, errors)
        if expected_purpose and proof["proofPurpose"] != expected_purpose:
            return ProofVerificationResult(False, [
                f"Proof purpose {proof['proofPurpose']} does not match {expected_purpose}"
            ])
        if challenge is not None and proof.get("challenge") != challenge:
            return ProofVerificationResult(False, ["Proof challenge does not match"])
        if domain is not None and proof.get("domain") != domain:
            return ProofVerificationResult(False, ["Proof domain does not match"])

        loader = document_loader or StaticDocumentLoader()
        method = loader.resolve(proof["verificationMethod"]).document
        multibase = method.get("publicKeyMultibase")
        if not multibase:
            return ProofVerificationResult(False, [
                f"Verification method {proof['verificationMethod']} has no publicKeyMultibase"
            ])
        if method.get("revoked"):
            return ProofVerificationResult(False, [
                f"Verification method {proof['verificationMethod']} is revoked"
            ])
        public_key = decode_public_key(multibase)
        if public_key.key_type != MultikeyType.ED25519:
            return ProofVerificationResult(False, [
                f"Invalid key type for EdDSA: {public_key.key_type.value}"
            ])

        signature = decode_multibase(proof["proofValue"])
        data = hash_data(document, proof, loader)
        Ed25519PublicKey.from_public_bytes(public_key.key).verify(signature, data)
        return ProofVerificationResult(True)
    except InvalidSignature:
        return ProofVerificationResult(False, ["Signature verification failed"])
    except Exception as e:
        logger.debug(f"Proof verification error: {e}")
        return ProofVerificationResult(False, [str(e) or "Unknown verification error"])


def get_proofs(document: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Proofs attached to a document, as a list."""
    proof = document.get("proof")
    if proof is None:
        return []
    return list(proof) if isinstance(proof, list) else [proof]


def add_proof(document: Dict[str, Any], options: ProofOptions) -> Dict[str, Any]:
    """
    Return a copy of the document with a new proof appended.

    Existing proofs are kept unchanged. Every appended proof gets an id;
    when the document already has proofs and options.previous_proof is
    unset, the new proof points at the last one.
    """
    existing = get_proofs(document)
    opts = copy.copy(options)
    opts.proof_id = opts.proof_id or f"urn:uuid:{uuid.uuid4()}"
    if existing and opts.previous_proof is None and existing[-1].get("id"):
        opts.previous_proof = existing[-1]["id"]

    proof = create_proof(unsecured_document(document), opts)
    secured = copy.deepcopy(document)
    proofs = existing + [proof]
    secured["proof"] = copy.deepcopy(proofs if len(proofs) > 1 else proofs[0])
    return secured


def verify_document(
    document: Dict[str, Any],
    document_loader: Optional[DocumentLoader] = None,
    expected_purpose: Optional[str] = None,
) -> ProofVerificationResult:
    """
    Verify every proof attached to a document.

    A previousProof must name another proof in the same set.
    """
    proofs = get_proofs(document)
    if not proofs:
        return ProofVerificationResult(False, ["Document has no proof"])
    ids = {p.get("id") for p in proofs if isinstance(p, dict) and p.get("id")}
    errors: List[str] = []
    for index, proof in enumerate(proofs):
        previous = proof.get("previousProof") if isinstance(proof, dict) else None
        if previous and previous not in ids:
            errors.append(f"proof[{index}]: previousProof {previous} not found")
            continue
        result = verify_proof(document, proof, document_loader, expected_purpose)
        errors.extend(f"proof[{index}]: {e}" for e in result.errors)
    return ProofVerificationResult(not errors, errors)
