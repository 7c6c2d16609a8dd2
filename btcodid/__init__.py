# btcodid - did:btco identifiers and credentials anchored to satoshis
#
# A DID names one satoshi; its document and linked resources are
# inscriptions on that satoshi, written with a Taproot commit/reveal
# pair and signed with eddsa-rdfc-2022 Data Integrity proofs.
#
# Core concepts:
# - KeyManager: Ed25519, secp256k1 and schnorr keys, addresses, did:key
# - Content: MIME detection, validation and inscription payloads
# - InscriptionOrchestrator: commit/reveal state machine over a provider
# - BtcoDidResolver / ResourceResolver: DID and DID URL resolution
# - Proofs: canonicalize, hash and sign JSON-LD documents
# - Credentials: W3C credentials about inscribed content

from .errors import BtcoError
from .satoshi import Network, build_did, parse_did, is_btco_did
from .keys import KeyManager, KeyStore, KeyType
from .content import Content, detect_content_type, validate_content, prepare_content, chunk_content
from .providers import InMemoryOrdinalsProvider, OrdHttpProvider, OrdinalsProvider
from .bitcoin import BitcoinManager
from .config import Config
from .inscription.orchestrator import InscriptionOrchestrator, InscriptionState
from .did import BtcoDidResolver, ResourceResolver, create_did_document, validate_did_document
from .did.log import DidStore, create_log, update_log, verify_log
from .proofs import (
    Ed25519Signer,
    KeyManagerSigner,
    ProofOptions,
    StaticDocumentLoader,
    create_proof,
    verify_proof,
)
from .vc import format_credential, issue_credential, validate_credential, verify_credential

__all__ = [
    "BtcoError",
    "Network",
    "build_did",
    "parse_did",
    "is_btco_did",
    "KeyManager",
    "KeyStore",
    "KeyType",
    "Content",
    "detect_content_type",
    "validate_content",
    "prepare_content",
    "chunk_content",
    "InMemoryOrdinalsProvider",
    "OrdHttpProvider",
    "OrdinalsProvider",
    "BitcoinManager",
    "Config",
    "InscriptionOrchestrator",
    "InscriptionState",
    "BtcoDidResolver",
    "ResourceResolver",
    "create_did_document",
    "validate_did_document",
    "DidStore",
    "create_log",
    "update_log",
    "verify_log",
    "Ed25519Signer",
    "KeyManagerSigner",
    "ProofOptions",
    "StaticDocumentLoader",
    "create_proof",
    "verify_proof",
    "format_credential",
    "issue_credential",
    "validate_credential",
    "verify_credential",
]

__version__ = "0.1.0"
