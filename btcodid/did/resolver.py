# btcodid/did/resolver.py
"""
did:btco resolution.

A DID names a satoshi. Resolution walks every inscription on that
satoshi in the provider's order:

1. The content must start with the DID, optionally prefixed "BTCO DID: ".
2. The CBOR metadata of such an inscription is the candidate document;
   it must be a valid DID document whose id equals the DID.
3. Content containing the fire emoji marks the DID deactivated.
4. The last candidate wins.

Failures never raise; they come back in didResolutionMetadata.error as
invalidDid, notFound, representationNotSupported or internalError.
"""

import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..errors import BtcoError
from ..providers import OrdinalsProvider
from ..satoshi import parse_did
from .cache import ResolutionCache
from .document import DID_CONTEXT_V1, LEGACY_DID_CONTEXT, validate_did_document

logger = logging.getLogger(__name__)

DEACTIVATION_MARKER = "\U0001F525"

DID_LD_JSON = "application/did+ld+json"
SUPPORTED_REPRESENTATIONS = (DID_LD_JSON, "application/did+json", "application/json", "application/ld+json")


@dataclass
class InscriptionData:
    """What the resolver learned about one inscription on the satoshi."""
    inscription_id: str
    content: str = ""
    metadata: Optional[Any] = None
    content_type: Optional[str] = None
    content_url: Optional[str] = None
    is_valid_did: bool = False
    did_document: Optional[Dict[str, Any]] = None
    deactivated: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inscriptionId": self.inscription_id,
            "content": self.content,
            "metadata": self.metadata,
            "contentType": self.content_type,
            "contentUrl": self.content_url,
            "isValidDid": self.is_valid_did,
            "didDocument": self.did_document,
            "error": self.error,
        }


@dataclass
class ResolutionResult:
    did_document: Optional[Dict[str, Any]]
    did_document_metadata: Dict[str, Any] = field(default_factory=dict)
    did_resolution_metadata: Dict[str, Any] = field(default_factory=dict)
    inscriptions: List[InscriptionData] = field(default_factory=list)

    @property
    def error(self) -> Optional[str]:
        return self.did_resolution_metadata.get("error")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "didDocument": self.did_document,
            "didDocumentMetadata": self.did_document_metadata,
            "didResolutionMetadata": self.did_resolution_metadata,
            "inscriptions": [i.to_dict() for i in self.inscriptions],
        }


def _error_result(error: str, message: str) -> ResolutionResult:
    return ResolutionResult(
        did_document=None,
        did_resolution_metadata={"error": error, "message": message},
    )


def _has_did_context(document: Dict[str, Any]) -> bool:
    context = document.get("@context")
    contexts = context if isinstance(context, list) else [context]
    return DID_CONTEXT_V1 in contexts or LEGACY_DID_CONTEXT in contexts


def _decode_text(content: bytes) -> str:
    return content.decode("utf-8", errors="replace")


class BtcoDidResolver:
    """
    Resolve did:btco DIDs through an ordinals provider.

    Args:
        provider: Provider answering sat and inscription lookups
        cache: Optional ResolutionCache for repeated resolutions
    """

    def __init__(self, provider: OrdinalsProvider, cache: Optional[ResolutionCache] = None):
        self.provider = provider
        self.cache = cache

    async def resolve(self, did: str, accept: Optional[str] = None,
                      no_cache: bool = False) -> ResolutionResult:
        """
        Resolve a DID to its current document.

        Args:
            did: did:btco identifier
            accept: Optional requested representation
            no_cache: Skip the cache for this call
        """
        if accept and accept not in SUPPORTED_REPRESENTATIONS:
            return _error_result("representationNotSupported",
                                 f"Representation {accept} is not supported")
        try:
            parsed = parse_did(did)
        except BtcoError as e:
            return _error_result("invalidDid", f"Invalid BTCO DID format: {did} ({e})")
        if parsed.path:
            return _error_result("invalidDid", f"DID must not carry a path: {did}")

        if self.cache is not None and not no_cache:
            cached = self.cache.get(parsed.did)
            if cached is not None:
                return copy.deepcopy(cached)

        try:
            result = await self._resolve(parsed.did, parsed.satoshi, parsed.network.value)
        except Exception as e:
            logger.error(f"Resolution of {did} failed: {e}")
            return _error_result("internalError", str(e) or "Unknown error during resolution")

        if self.cache is not None and not no_cache and result.error is None:
            self.cache.put(parsed.did, copy.deepcopy(result))
        return result

    async def _resolve(self, did: str, satoshi: int, network: str) -> ResolutionResult:
        try:
            inscription_ids = await self.provider.get_sat_info(satoshi)
        except BtcoError as e:
            return _error_result("notFound", f"Failed to retrieve inscriptions for satoshi {satoshi}: {e}")
        if not inscription_ids:
            return _error_result("notFound", f"No inscriptions found on satoshi {satoshi}")

        pattern = re.compile(r"^(?:BTCO DID: )?" + re.escape(did) + r"(?![0-9])", re.IGNORECASE)
        inscriptions = []
        for inscription_id in inscription_ids:
            inscriptions.append(await self._inspect(inscription_id, did, pattern))

        latest: Optional[InscriptionData] = None
        for data in reversed(inscriptions):
            if data.is_valid_did and (data.deactivated or data.did_document is not None):
                latest = data
                break

        resolution_metadata: Dict[str, Any] = {
            "contentType": DID_LD_JSON,
            "satNumber": str(satoshi),
            "network": network,
            "totalInscriptions": len(inscriptions),
        }
        document_metadata: Dict[str, Any] = {"network": network}
        if latest is None:
            resolution_metadata.update(error="notFound", message=f"No valid DID document on satoshi {satoshi}")
            return ResolutionResult(None, document_metadata, resolution_metadata, inscriptions)

        resolution_metadata["inscriptionId"] = latest.inscription_id
        document_metadata["inscriptionId"] = latest.inscription_id
        if latest.deactivated:
            document_metadata["deactivated"] = True
            resolution_metadata["deactivated"] = True
            logger.info(f"{did} is deactivated by {latest.inscription_id}")
            return ResolutionResult(None, document_metadata, resolution_metadata, inscriptions)

        logger.debug(f"Resolved {did} from {latest.inscription_id}")
        return ResolutionResult(latest.did_document, document_metadata, resolution_metadata, inscriptions)

    async def _inspect(self, inscription_id: str, did: str, pattern: re.Pattern) -> InscriptionData:
        data = InscriptionData(inscription_id=inscription_id)
        try:
            inscription = await self.provider.get_inscription_by_id(inscription_id)
            if inscription is None:
                data.error = f"Inscription {inscription_id} not found"
                return data
            data.content_type = inscription.content_type
            data.content_url = inscription.content_url
            data.content = _decode_text(inscription.content)

            metadata = inscription.metadata
            if metadata is None:
                try:
                    metadata = await self.provider.get_metadata(inscription_id)
                except BtcoError as e:
                    logger.warning(f"Could not read metadata of {inscription_id}: {e}")
            data.metadata = metadata

            data.is_valid_did = bool(pattern.match(data.content))
            if data.is_valid_did and isinstance(metadata, dict):
                if _has_did_context(metadata) and metadata.get("id") == did \
                        and validate_did_document(metadata).is_valid:
                    data.did_document = metadata
                else:
                    data.error = "Invalid DID document structure or mismatched ID"

            if DEACTIVATION_MARKER in data.content:
                data.did_document = None
                data.deactivated = True
                data.error = data.error or "DID has been deactivated"
        except BtcoError as e:
            data.error = f"Failed to process inscription: {e}"
        return data
