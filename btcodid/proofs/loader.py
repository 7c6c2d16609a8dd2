# btcodid/proofs/loader.py
"""
JSON-LD document loading for canonicalization and key lookup.

Canonicalization never reaches the network: every context a proof may
reference is bundled under ``contexts/``. Verification methods are
looked up the same way:

    did:key:z6Mk...#z6Mk...   decoded from the identifier itself
    did:btco:123#key-1        registered document, else a DID resolver
    anything registered       returned as-is
"""

import asyncio
import copy
import json
import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from ..did.document import ED25519_2020_CONTEXT, find_verification_method
from ..errors import ResourceNotFoundError
from ..multikey import MultikeyType, public_key_from_did_key

logger = logging.getLogger(__name__)

CONTEXTS_DIR = Path(__file__).parent / "contexts"

DATA_INTEGRITY_V2 = "https://w3id.org/security/data-integrity/v2"
CREDENTIALS_V1 = "https://www.w3.org/2018/credentials/v1"
CREDENTIALS_V2 = "https://www.w3.org/ns/credentials/v2"
ORDINALS_PLUS_V1 = "https://ordinals.plus/v1"

# Context URL -> bundled file
BUNDLED_CONTEXTS = {
    "https://www.w3.org/ns/did/v1": "did-v1.json",
    "https://w3id.org/did/v1": "did-v1.json",
    ED25519_2020_CONTEXT: "ed25519-2020-v1.json",
    "https://w3id.org/security/multikey/v1": "multikey-v1.json",
    DATA_INTEGRITY_V2: "data-integrity-v2.json",
    "https://w3id.org/security/data-integrity/v1": "data-integrity-v2.json",
    CREDENTIALS_V1: "credentials-v1.json",
    CREDENTIALS_V2: "credentials-v2.json",
    ORDINALS_PLUS_V1: "ordinals-plus-v1.json",
}


@dataclass
class RemoteDocument:
    """A loaded document and the URL it was loaded for."""
    document: Dict[str, Any]
    document_url: str
    context_url: Optional[str] = None

    def to_pyld(self) -> Dict[str, Any]:
        return {
            "contextUrl": self.context_url,
            "documentUrl": self.document_url,
            "document": self.document,
        }


class DocumentLoader(ABC):
    """
    Resolves IRIs to JSON-LD documents.

    Instances are callable with PyLD's loader signature, so they can be
    passed as ``documentLoader`` to ``jsonld.normalize``.
    """

    timeout: Optional[float] = None

    @abstractmethod
    def resolve(self, iri: str, timeout: Optional[float] = None) -> RemoteDocument:
        """
        Load the document for an IRI.

        Raises:
            ResourceNotFoundError: Nothing is known for the IRI
        """
        pass

    def __call__(self, url: str, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.resolve(url).to_pyld()


def load_bundled_context(url: str) -> Dict[str, Any]:
    """Read a bundled context file by its context URL."""
    filename = BUNDLED_CONTEXTS.get(url)
    if filename is None:
        raise ResourceNotFoundError(f"No bundled context for {url}")
    with open(CONTEXTS_DIR / filename) as f:
        return json.load(f)


def did_key_verification_method(iri: str) -> Dict[str, Any]:
    """
    Expand a did:key IRI into an Ed25519 verification method.

    ``did:key:z6Mk...`` and ``did:key:z6Mk...#z6Mk...`` both work.
    """
    did, _, fragment = iri.partition("#")
    decoded = public_key_from_did_key(did)
    if decoded.key_type != MultikeyType.ED25519:
        raise ResourceNotFoundError(f"Unsupported did:key type for {iri}")
    multibase = did[len("did:key:"):]
    return {
        "@context": [ED25519_2020_CONTEXT],
        "id": f"{did}#{fragment or multibase}",
        "type": "Ed25519VerificationKey2020",
        "controller": did,
        "publicKeyMultibase": multibase,
    }


class StaticDocumentLoader(DocumentLoader):
    """
    Loader over bundled contexts, registered documents and DID lookups.

    Args:
        documents: Initial IRI -> document registrations
        resolver: Optional BtcoDidResolver for did:btco IRIs that are
            not registered
        timeout: Seconds to wait for a DID resolution
    """

    def __init__(self, documents: Optional[Dict[str, Dict[str, Any]]] = None,
                 resolver=None, timeout: Optional[float] = 10.0):
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._contexts: Dict[str, Dict[str, Any]] = {}
        self.resolver = resolver
        self.timeout = timeout
        for iri, document in (documents or {}).items():
            self.register(iri, document)

    def register(self, iri: str, document: Dict[str, Any]):
        """Serve ``document`` for ``iri`` (overrides bundled contexts)."""
        self._documents[iri] = copy.deepcopy(document)

    def unregister(self, iri: str) -> bool:
        return self._documents.pop(iri, None) is not None

    def register_did_document(self, document: Dict[str, Any]):
        """Register a DID document under its id."""
        self.register(document["id"], document)

    def resolve(self, iri: str, timeout: Optional[float] = None) -> RemoteDocument:
        if iri in self._documents:
            return RemoteDocument(copy.deepcopy(self._documents[iri]), iri)
        if iri in BUNDLED_CONTEXTS:
            if iri not in self._contexts:
                self._contexts[iri] = load_bundled_context(iri)
            return RemoteDocument(copy.deepcopy(self._contexts[iri]), iri)
        if iri.startswith("did:key:"):
            return RemoteDocument(did_key_verification_method(iri), iri)

        did, _, fragment = iri.partition("#")
        if fragment and did in self._documents:
            method = find_verification_method(self._documents[did], iri)
            if method is not None:
                return RemoteDocument(self._with_context(method), iri)
        if did.startswith("did:btco:") and self.resolver is not None:
            document = self._resolve_did(did, timeout if timeout is not None else self.timeout)
            if not fragment:
                return RemoteDocument(document, iri)
            method = find_verification_method(document, iri)
            if method is not None:
                return RemoteDocument(self._with_context(method), iri)
            raise ResourceNotFoundError(f"Verification method {iri} not found in {did}")

        raise ResourceNotFoundError(f"Document not found: {iri}")

    @staticmethod
    def _with_context(method: Dict[str, Any]) -> Dict[str, Any]:
        return dict(copy.deepcopy(method), **{"@context": [ED25519_2020_CONTEXT]})

    def _resolve_did(self, did: str, timeout: Optional[float]) -> Dict[str, Any]:
        # Loading is synchronous; the resolver runs on its own event loop
        # so this works with or without a loop running in this thread.
        pool = ThreadPoolExecutor(max_workers=1)
        try:
            future = pool.submit(asyncio.run, self.resolver.resolve(did))
            result = future.result(timeout=timeout)
        except FutureTimeoutError:
            raise ResourceNotFoundError(f"Timed out resolving {did}")
        finally:
            pool.shutdown(wait=False)
        if result.did_document is None:
            message = result.did_resolution_metadata.get("message", result.error or "not found")
            raise ResourceNotFoundError(f"Could not resolve {did}: {message}")
        logger.debug(f"Loaded {did} through the DID resolver")
        return result.did_document
