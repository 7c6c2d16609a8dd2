# btcodid/did/document.py
"""
DID documents for did:btco identifiers.

Documents are plain JSON-LD dicts. Every function that changes a
document returns a new dict and leaves its argument untouched.

    {
      "@context": ["https://www.w3.org/ns/did/v1",
                   "https://w3id.org/security/suites/ed25519-2020/v1"],
      "id": "did:btco:12345",
      "verificationMethod": [{
        "id": "did:btco:12345#key-1",
        "type": "Ed25519VerificationKey2020",
        "controller": "did:btco:12345",
        "publicKeyMultibase": "z6Mk..."
      }],
      "authentication": ["did:btco:12345#key-1"]
    }
"""

import copy
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from ..errors import BtcoError, InvalidInputError, KeyNotFoundError
from ..keys import KeyType
from ..multikey import MultikeyType, decode_public_key, encode_public_key
from ..satoshi import Network, build_did

logger = logging.getLogger(__name__)

DID_CONTEXT_V1 = "https://www.w3.org/ns/did/v1"
LEGACY_DID_CONTEXT = "https://w3id.org/did/v1"
ED25519_2020_CONTEXT = "https://w3id.org/security/suites/ed25519-2020/v1"
DEFAULT_CONTEXTS = [DID_CONTEXT_V1, ED25519_2020_CONTEXT]

VERIFICATION_RELATIONSHIPS = (
    "authentication",
    "assertionMethod",
    "keyAgreement",
    "capabilityInvocation",
    "capabilityDelegation",
)

# Verification method type for each key type
METHOD_TYPES = {
    KeyType.ED25519: "Ed25519VerificationKey2020",
    KeyType.SECP256K1: "EcdsaSecp256k1VerificationKey2019",
    KeyType.SCHNORR: "SchnorrSecp256k1VerificationKey2019",
}

# Curve each method type must carry; Multikey accepts any curve
_METHOD_CURVES = {
    "Ed25519VerificationKey2020": MultikeyType.ED25519,
    "Ed25519VerificationKey2018": MultikeyType.ED25519,
    "EcdsaSecp256k1VerificationKey2019": MultikeyType.SECP256K1,
    "SchnorrSecp256k1VerificationKey2019": MultikeyType.SECP256K1,
}


def iso_timestamp(ts: Optional[float] = None) -> str:
    """UTC timestamp in the form 2024-01-01T00:00:00.000Z."""
    moment = datetime.fromtimestamp(ts if ts is not None else time.time(), tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class CreatedDidDocument:
    """A new DID document together with its Ed25519 key pair."""
    document: Dict[str, Any]
    public_key: bytes
    secret_key: bytes


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.is_valid

    def to_dict(self) -> Dict[str, Any]:
        return {"isValid": self.is_valid, "errors": list(self.errors)}


def _generate_ed25519() -> tuple:
    private = Ed25519PrivateKey.generate()
    secret = private.private_bytes(
        serialization.Encoding.Raw,
        serialization.PrivateFormat.Raw,
        serialization.NoEncryption(),
    )
    public = private.public_key().public_bytes(serialization.Encoding.Raw, serialization.PublicFormat.Raw)
    return public, secret


def _multibase_for(public_key: bytes, key_type: KeyType) -> str:
    if key_type == KeyType.ED25519:
        return encode_public_key(public_key, MultikeyType.ED25519)
    if key_type == KeyType.SCHNORR and len(public_key) == 32:
        # x-only keys are encoded with the implicit even-y prefix
        public_key = b"\x02" + public_key
    return encode_public_key(public_key, MultikeyType.SECP256K1)


def verification_method(
    did: str,
    fragment: str,
    public_key: bytes,
    key_type: Union[KeyType, str] = KeyType.ED25519,
    controller: Optional[str] = None,
    method_type: Optional[str] = None,
) -> Dict[str, Any]:
    """Build one verification method entry."""
    kt = KeyType.from_value(key_type)
    return {
        "id": f"{did}#{fragment}",
        "type": method_type or METHOD_TYPES[kt],
        "controller": controller or did,
        "publicKeyMultibase": _multibase_for(public_key, kt),
    }


def create_did_document(
    satoshi: Union[int, str],
    network: Union[Network, str, None] = Network.MAINNET,
    controller: Optional[str] = None,
    services: Optional[Sequence[Dict[str, Any]]] = None,
    deactivated: bool = False,
) -> CreatedDidDocument:
    """
    Create a DID document with a fresh Ed25519 key as #key-1.

    Args:
        satoshi: Satoshi number the DID is bound to
        network: mainnet, testnet, signet or regtest
        controller: Optional controller DID (also used on the method)
        services: Optional service entries
        deactivated: Mark the document deactivated

    Returns:
        CreatedDidDocument with the document and key pair
    """
    did = build_did(satoshi, network)
    public_key, secret_key = _generate_ed25519()
    method = verification_method(did, "key-1", public_key, KeyType.ED25519, controller)

    document: Dict[str, Any] = {
        "@context": list(DEFAULT_CONTEXTS),
        "id": did,
        "verificationMethod": [method],
        "authentication": [method["id"]],
    }
    if controller:
        document["controller"] = controller
    if services:
        document["service"] = [dict(s) for s in services]
    if deactivated:
        document["deactivated"] = True

    logger.info(f"Created DID document {did}")
    return CreatedDidDocument(document=document, public_key=public_key, secret_key=secret_key)


def _check_key_material(method: Dict[str, Any], index: int, errors: List[str]):
    value = method.get("publicKeyMultibase")
    if not value:
        errors.append(f"verificationMethod[{index}] is missing publicKeyMultibase")
        return
    try:
        decoded = decode_public_key(value)
    except BtcoError as e:
        errors.append(f"verificationMethod[{index}] has an invalid publicKeyMultibase: {e}")
        return
    expected = _METHOD_CURVES.get(method.get("type"))
    if expected is not None and decoded.key_type != expected:
        errors.append(
            f"verificationMethod[{index}] key is {decoded.key_type.value} but type "
            f"{method.get('type')} requires {expected.value}"
        )


def validate_did_document(document: Any) -> ValidationResult:
    """
    Check a DID document's structure, collecting every problem found.

    Key material is decoded and its length checked against the declared
    method type (32 bytes for Ed25519, 33 for compressed secp256k1).
    """
    if not isinstance(document, dict):
        return ValidationResult(False, ["DID document must be a JSON object"])
    errors: List[str] = []

    context = document.get("@context")
    if not context:
        errors.append("Missing required field: @context")
    elif not isinstance(context, (str, list)):
        errors.append("@context must be a string or array of strings")

    did = document.get("id")
    if not did:
        errors.append("Missing required field: id")
    elif not isinstance(did, str):
        errors.append("id must be a string")

    methods = document.get("verificationMethod")
    if methods is not None:
        if not isinstance(methods, list):
            errors.append("verificationMethod must be an array")
        else:
            for i, method in enumerate(methods):
                if not isinstance(method, dict):
                    errors.append(f"verificationMethod[{i}] must be an object")
                    continue
                for name in ("id", "type", "controller"):
                    if not method.get(name):
                        errors.append(f"verificationMethod[{i}] is missing {name}")
                _check_key_material(method, i, errors)

    authentication = document.get("authentication")
    if authentication is not None:
        if not isinstance(authentication, list):
            errors.append("authentication must be an array")
        else:
            for i, entry in enumerate(authentication):
                if not isinstance(entry, (str, dict)):
                    errors.append(f"authentication[{i}] must be a string or object")

    services = document.get("service")
    if services is not None:
        if not isinstance(services, list):
            errors.append("service must be an array")
        else:
            for i, service in enumerate(services):
                if not isinstance(service, dict):
                    errors.append(f"service[{i}] must be an object")
                    continue
                for name in ("id", "type", "serviceEndpoint"):
                    if not service.get(name):
                        errors.append(f"service[{i}] is missing {name}")

    return ValidationResult(is_valid=not errors, errors=errors)


def serialize_did_document(document: Dict[str, Any]) -> str:
    return json.dumps(document, indent=2, ensure_ascii=False)


def deserialize_did_document(text: Union[str, bytes]) -> Optional[Dict[str, Any]]:
    """
    Parse and validate a DID document.

    Returns None for malformed JSON and for JSON that is not a valid
    DID document.
    """
    try:
        document = json.loads(text)
    except (TypeError, ValueError) as e:
        logger.warning(f"DID document is not valid JSON: {e}")
        return None
    result = validate_did_document(document)
    if not result.is_valid:
        doc_id = document.get("id", "unknown") if isinstance(document, dict) else "unknown"
        logger.warning(f"Invalid DID document {doc_id}: {'; '.join(result.errors)}")
        return None
    return document


def find_verification_method(document: Dict[str, Any], method_id: str) -> Optional[Dict[str, Any]]:
    """
    Look up a verification method by full id or by fragment.

    Methods embedded in relationship arrays are searched too.
    """
    did = document.get("id", "")
    wanted = method_id if not method_id.startswith("#") else f"{did}{method_id}"
    candidates = list(document.get("verificationMethod") or [])
    for rel in VERIFICATION_RELATIONSHIPS:
        candidates.extend(e for e in document.get(rel) or [] if isinstance(e, dict))
    for method in candidates:
        mid = method.get("id", "")
        if mid == wanted or (mid.startswith("#") and f"{did}{mid}" == wanted):
            return method
    return None


def _require_active(document: Dict[str, Any], action: str):
    if document.get("deactivated"):
        raise InvalidInputError(f"Cannot {action} a deactivated DID document")


def _method_index(document: Dict[str, Any], method_id: str) -> int:
    for i, method in enumerate(document.get("verificationMethod") or []):
        if method.get("id") == method_id:
            return i
    raise KeyNotFoundError(f"Key not found: {method_id}")


def add_key(
    document: Dict[str, Any],
    public_key: bytes,
    key_type: Union[KeyType, str] = KeyType.ED25519,
    fragment: Optional[str] = None,
    relationships: Sequence[str] = (),
    controller: Optional[str] = None,
    method_type: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Add a verification method, optionally referenced from relationships.

    The fragment defaults to key-<n+1> where n is the current method count.

    Raises:
        InvalidInputError: Deactivated document or unknown relationship
    """
    _require_active(document, "add a key to")
    unknown = [r for r in relationships if r not in VERIFICATION_RELATIONSHIPS]
    if unknown:
        raise InvalidInputError(f"Unknown verification relationship(s): {', '.join(unknown)}")

    updated = copy.deepcopy(document)
    methods = updated.setdefault("verificationMethod", [])
    fragment = fragment or f"key-{len(methods) + 1}"
    method = verification_method(updated["id"], fragment, public_key, key_type, controller, method_type)
    methods.append(method)
    for rel in relationships:
        updated.setdefault(rel, []).append(method["id"])
    logger.info(f"Added {method['type']} {method['id']}")
    return updated


def rotate_key(
    document: Dict[str, Any],
    old_method_id: str,
    public_key: bytes,
    key_type: Union[KeyType, str] = KeyType.ED25519,
    mark_as_revoked: bool = False,
    fragment: Optional[str] = None,
    controller: Optional[str] = None,
    method_type: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Replace a verification method with a new key.

    With mark_as_revoked the old method stays in the document with a
    ``revoked`` timestamp; otherwise it is replaced in place. Every
    relationship reference to the old method is repointed to the new one.

    Raises:
        InvalidInputError: Deactivated document
        KeyNotFoundError: old_method_id is not in the document
    """
    _require_active(document, "rotate keys in")
    updated = copy.deepcopy(document)
    index = _method_index(updated, old_method_id)
    methods = updated["verificationMethod"]
    old = methods[index]

    fragment = fragment or f"key-{int(time.time() * 1000)}"
    new = verification_method(
        updated["id"], fragment, public_key, key_type,
        controller or old.get("controller"), method_type,
    )
    if mark_as_revoked:
        methods[index] = dict(old, revoked=iso_timestamp())
        methods.append(new)
    else:
        methods[index] = new

    for rel in VERIFICATION_RELATIONSHIPS:
        entries = updated.get(rel)
        if not isinstance(entries, list):
            continue
        for i, entry in enumerate(entries):
            if entry == old_method_id:
                entries[i] = new["id"]
            elif isinstance(entry, dict) and entry.get("id") == old_method_id:
                entries[i] = dict(entry, id=new["id"], type=new["type"])

    logger.info(f"Rotated {old_method_id} -> {new['id']}")
    return updated


def revoke_key(document: Dict[str, Any], method_id: str) -> Dict[str, Any]:
    """Mark a method revoked and drop it from every relationship."""
    _require_active(document, "revoke keys in")
    updated = copy.deepcopy(document)
    index = _method_index(updated, method_id)
    updated["verificationMethod"][index]["revoked"] = iso_timestamp()
    for rel in VERIFICATION_RELATIONSHIPS:
        entries = updated.get(rel)
        if isinstance(entries, list):
            updated[rel] = [
                e for e in entries
                if e != method_id and not (isinstance(e, dict) and e.get("id") == method_id)
            ]
    logger.info(f"Revoked {method_id}")
    return updated


def deactivate(document: Dict[str, Any]) -> Dict[str, Any]:
    updated = copy.deepcopy(document)
    updated["deactivated"] = True
    updated["deactivatedAt"] = iso_timestamp()
    logger.info(f"Deactivated {updated.get('id')}")
    return updated


def active_key_ids(document: Dict[str, Any]) -> List[str]:
    """Ids of verification methods that have not been revoked."""
    return [m["id"] for m in document.get("verificationMethod") or [] if not m.get("revoked")]
