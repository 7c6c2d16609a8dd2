# btcodid/vc.py
"""
Verifiable credentials for inscribed content.

A credential states that an issuer vouches for the content anchored to
a did:btco subject:

    {
      "@context": ["https://www.w3.org/2018/credentials/v1", "https://ordinals.plus/v1"],
      "type": ["VerifiableCredential", "VerifiableCollectible"],
      "issuer": {"id": "did:btco:..."},
      "issuanceDate": "2024-01-01T00:00:00.000Z",
      "credentialSubject": {
        "id": "did:btco:...",
        "type": "Collectible",
        "title": "...",
        "contentInfo": {"mimeType": "image/png", "hash": "<sha256 hex>", "size": 1234}
      }
    }

Signing and verification use the eddsa-rdfc-2022 cryptosuite.
"""

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .content import ContentInfo
from .did.document import ValidationResult, iso_timestamp
from .errors import InvalidInputError
from .proofs.eddsa import ProofOptions, ProofVerificationResult, add_proof, get_proofs, verify_document
from .proofs.loader import CREDENTIALS_V1, CREDENTIALS_V2, ORDINALS_PLUS_V1, DocumentLoader
from .proofs.signer import Signer

logger = logging.getLogger(__name__)

VC_CONTEXTS = [CREDENTIALS_V1, ORDINALS_PLUS_V1]
VC_TYPES = ["VerifiableCredential", "VerifiableCollectible"]
SUBJECT_TYPE = "Collectible"


def format_credential(
    subject_did: str,
    issuer_did: str,
    content_info: ContentInfo,
    title: Optional[str] = None,
    description: Optional[str] = None,
    creator: Optional[str] = None,
    expiration: Optional[str] = None,
    credential_id: Optional[str] = None,
    properties: Optional[Dict[str, Any]] = None,
    issuance_date: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build an unsigned credential about content on subject_did.

    The creator defaults to the issuer.
    """
    subject: Dict[str, Any] = {"id": subject_did, "type": SUBJECT_TYPE}
    if title:
        subject["title"] = title
    if description:
        subject["description"] = description
    subject["creator"] = creator or issuer_did
    subject["contentInfo"] = content_info.to_dict()
    subject["properties"] = {"medium": "Digital", **(properties or {})}
    subject["properties"].update(format=content_info.mime_type, contentHash=content_info.hash)

    credential: Dict[str, Any] = {"@context": list(VC_CONTEXTS)}
    if credential_id:
        credential["id"] = credential_id
    credential.update({
        "type": list(VC_TYPES),
        "issuer": {"id": issuer_did},
        "issuanceDate": issuance_date or iso_timestamp(),
        "credentialSubject": subject,
    })
    if expiration:
        credential["expirationDate"] = expiration
    return credential


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO 8601 timestamp; naive values are taken as UTC.

    Raises:
        ValueError: Not a timestamp
    """
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def issuer_id(credential: Dict[str, Any]) -> Optional[str]:
    issuer = credential.get("issuer")
    if isinstance(issuer, dict):
        return issuer.get("id")
    return issuer if isinstance(issuer, str) else None


def validate_credential(credential: Any) -> ValidationResult:
    """
    Structural checks from the W3C data model; every problem is reported.
    """
    if not isinstance(credential, dict):
        return ValidationResult(False, ["Credential must be a JSON object"])
    errors: List[str] = []

    context = credential.get("@context")
    if not isinstance(context, list) or not context:
        errors.append("@context must be a non-empty array")
    elif context[0] not in (CREDENTIALS_V1, CREDENTIALS_V2):
        errors.append(f"First @context must be {CREDENTIALS_V1} or {CREDENTIALS_V2}")

    types = credential.get("type")
    if not isinstance(types, list) or "VerifiableCredential" not in types:
        errors.append("type must be an array including VerifiableCredential")

    if not issuer_id(credential):
        errors.append("issuer must be a DID or an object with an id")

    issued = None
    if not credential.get("issuanceDate"):
        errors.append("Missing required field: issuanceDate")
    else:
        try:
            issued = parse_timestamp(credential["issuanceDate"])
        except (TypeError, ValueError, AttributeError):
            errors.append(f"issuanceDate is not a valid timestamp: {credential['issuanceDate']}")

    if credential.get("expirationDate") is not None:
        try:
            expires = parse_timestamp(credential["expirationDate"])
            if issued is not None and expires < issued:
                errors.append("expirationDate is before issuanceDate")
        except (TypeError, ValueError, AttributeError):
            errors.append(f"expirationDate is not a valid timestamp: {credential['expirationDate']}")

    subject = credential.get("credentialSubject")
    if not isinstance(subject, (dict, list)) or not subject:
        errors.append("credentialSubject must be an object")
    elif isinstance(subject, dict) and isinstance(subject.get("contentInfo"), dict):
        missing = [k for k in ("mimeType", "hash", "size") if k not in subject["contentInfo"]]
        if missing:
            errors.append(f"credentialSubject.contentInfo is missing {', '.join(missing)}")

    return ValidationResult(is_valid=not errors, errors=errors)


def is_expired(credential: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    expiration = credential.get("expirationDate")
    if not expiration:
        return False
    return parse_timestamp(expiration) <= (now or datetime.now(timezone.utc))


def issue_credential(
    credential: Dict[str, Any],
    signer: Signer,
    document_loader: Optional[DocumentLoader] = None,
    proof_purpose: str = "assertionMethod",
) -> Dict[str, Any]:
    """
    Sign a credential, returning a copy with the proof attached.

    Raises:
        InvalidInputError: The credential fails validate_credential
    """
    result = validate_credential(credential)
    if not result.is_valid:
        raise InvalidInputError(f"Invalid credential: {'; '.join(result.errors)}")
    signed = add_proof(copy.deepcopy(credential), ProofOptions(
        signer=signer,
        proof_purpose=proof_purpose,
        document_loader=document_loader,
    ))
    logger.info(f"Issued credential for {credential['credentialSubject'].get('id')} "
                f"by {issuer_id(credential)}")
    return signed


def verify_credential(
    credential: Dict[str, Any],
    document_loader: Optional[DocumentLoader] = None,
    now: Optional[datetime] = None,
) -> ProofVerificationResult:
    """
    Verify structure, expiry, issuer binding and every proof.

    Each proof's verification method must belong to the issuer DID.
    Never raises.
    """
    result = validate_credential(credential)
    if not result.is_valid:
        return ProofVerificationResult(False, list(result.errors))
    if is_expired(credential, now):
        return ProofVerificationResult(False, [f"Credential expired at {credential['expirationDate']}"])

    proofs = get_proofs(credential)
    if not proofs:
        return ProofVerificationResult(False, ["Credential has no proof"])
    issuer = issuer_id(credential)
    for proof in proofs:
        method = proof.get("verificationMethod", "") if isinstance(proof, dict) else ""
        if method.split("#", 1)[0] != issuer:
            return ProofVerificationResult(False, [
                f"Verification method {method} does not belong to issuer {issuer}"
            ])
    return verify_document(credential, document_loader, expected_purpose="assertionMethod")
