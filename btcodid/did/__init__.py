# btcodid/did - did:btco documents, resolution and resources
#
# 1. document  - build, validate, serialize and update DID documents
# 2. resolver  - DID -> document through an ordinals provider
# 3. resources - DID URL -> inscription content or metadata
# 4. cache     - TTL cache for resolution results
#
# Signed update logs live in btcodid.did.log, which depends on
# btcodid.proofs and is not imported here.

from .cache import CacheStats, ResolutionCache
from .document import (
    DEFAULT_CONTEXTS,
    DID_CONTEXT_V1,
    CreatedDidDocument,
    ValidationResult,
    active_key_ids,
    add_key,
    create_did_document,
    deactivate,
    deserialize_did_document,
    find_verification_method,
    revoke_key,
    rotate_key,
    serialize_did_document,
    validate_did_document,
)
from .resolver import BtcoDidResolver, InscriptionData, ResolutionResult
from .resources import DidUrl, ResourceResolver, parse_did_url

__all__ = [
    "CacheStats",
    "ResolutionCache",
    "DEFAULT_CONTEXTS",
    "DID_CONTEXT_V1",
    "CreatedDidDocument",
    "ValidationResult",
    "active_key_ids",
    "add_key",
    "create_did_document",
    "deactivate",
    "deserialize_did_document",
    "find_verification_method",
    "revoke_key",
    "rotate_key",
    "serialize_did_document",
    "validate_did_document",
    "BtcoDidResolver",
    "InscriptionData",
    "ResolutionResult",
    "DidUrl",
    "ResourceResolver",
    "parse_did_url",
]
