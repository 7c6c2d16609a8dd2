# btcodid/did/resources.py
"""
Resources linked to a did:btco DID.

Every inscription on a DID's satoshi is a resource, addressed by its
position in the provider's inscription list:

    did:btco:1908770696977240/0                current form
    did:btco:1908770696977240/resources/0      legacy form, still accepted
    did:btco:1908770696977240/0/info           resource metadata as JSON
    did:btco:1908770696977240/0?format=json    same, via the query

A DID URL without a resource path resolves to the DID document.
"""

import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs

from ..errors import BtcoError, InvalidInputError, ResourceNotFoundError
from ..providers import Inscription, OrdinalsProvider
from ..satoshi import ParsedDid, parse_did
from .cache import ResolutionCache
from .resolver import BtcoDidResolver

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"

_RESOURCE_PATH = re.compile(r"^(?:resources/)?([0-9]+)(/info)?/?$")


@dataclass
class DidUrl:
    """A parsed DID URL."""
    did: str
    satoshi: int
    resource_path: Optional[str] = None
    resource_index: Optional[int] = None
    query: Dict[str, str] = field(default_factory=dict)
    info: bool = False

    @property
    def resource_id(self) -> Optional[str]:
        if self.resource_index is None:
            return None
        return f"{self.did}/{self.resource_index}"

    @property
    def wants_json(self) -> bool:
        return self.info or "format" in self.query


def parse_did_url(url: str) -> DidUrl:
    """
    Split a DID URL into DID, resource index and query.

    Raises:
        InvalidInputError: Not a did:btco URL or an unknown path
        InvalidSatoshiError: Satoshi out of range
    """
    if not isinstance(url, str) or not url:
        raise InvalidInputError("DID URL must be a non-empty string")
    base, _, query_string = url.partition("?")
    base = base.split("#", 1)[0]
    parsed: ParsedDid = parse_did(base)
    query = {k: v[0] for k, v in parse_qs(query_string, keep_blank_values=True).items()}

    if not parsed.path:
        return DidUrl(did=parsed.did, satoshi=parsed.satoshi, query=query)
    match = _RESOURCE_PATH.match(parsed.path)
    if not match:
        raise InvalidInputError(f"Unsupported DID URL path: {parsed.path}")
    return DidUrl(
        did=parsed.did,
        satoshi=parsed.satoshi,
        resource_path=parsed.path,
        resource_index=int(match.group(1)),
        query=query,
        info=bool(match.group(2)),
    )


def resource_info(did: str, index: int, inscription: Inscription) -> Dict[str, Any]:
    """Metadata describing one resource."""
    return {
        "id": f"{did}/{index}",
        "index": index,
        "type": inscription.content_type,
        "contentType": inscription.content_type,
        "inscriptionId": inscription.inscription_id,
        "didReference": did,
        "sat": inscription.satoshi,
        "size": len(inscription.content),
        "contentUrl": inscription.content_url,
        "blockHeight": inscription.block_height,
    }


def _not_found(message: str) -> Dict[str, Any]:
    return {
        "didResolutionMetadata": {"error": ResourceNotFoundError.code, "message": message},
        "didDocument": None,
        "content": None,
    }


class ResourceResolver:
    """
    Dereference DID URLs to resources or documents.

    Args:
        provider: Ordinals provider for sat/inscription lookups
        cache: Optional ResolutionCache for successful lookups
        did_resolver: Resolver for DID URLs without a resource path
            (one over the same provider by default)
    """

    def __init__(self, provider: OrdinalsProvider, cache: Optional[ResolutionCache] = None,
                 did_resolver: Optional[BtcoDidResolver] = None):
        self.provider = provider
        self.cache = cache
        self.did_resolver = did_resolver or BtcoDidResolver(provider, cache)

    async def _inscription_at(self, did_url: DidUrl) -> Optional[Inscription]:
        ids = await self.provider.get_sat_info(did_url.satoshi)
        if did_url.resource_index >= len(ids):
            return None
        return await self.provider.get_inscription_by_id(ids[did_url.resource_index])

    async def resolve(self, url: str, no_cache: bool = False) -> Dict[str, Any]:
        """
        Dereference a DID URL.

        Resource results look like::

            {"didResolutionMetadata": {"contentType": ..., "resourceInfo": {...}},
             "didDocument": None,
             "content": <bytes, or the resourceInfo for JSON requests>}

        Misses set didResolutionMetadata.error to RESOURCE_NOT_FOUND.
        """
        try:
            did_url = parse_did_url(url)
        except BtcoError as e:
            return {
                "didResolutionMetadata": {"error": e.code, "message": str(e)},
                "didDocument": None,
                "content": None,
            }

        if did_url.resource_index is None:
            result = await self.did_resolver.resolve(did_url.did, no_cache=no_cache)
            return {
                "didResolutionMetadata": result.did_resolution_metadata,
                "didDocumentMetadata": result.did_document_metadata,
                "didDocument": result.did_document,
                "content": None,
            }

        cache_key = f"{did_url.resource_id}{'#info' if did_url.wants_json else ''}"
        if self.cache is not None and not no_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return copy.deepcopy(cached)

        try:
            inscription = await self._inscription_at(did_url)
        except Exception as e:
            logger.warning(f"Resource lookup for {url} failed: {e}")
            return _not_found(f"Failed to resolve {did_url.resource_id}: {e}")
        if inscription is None:
            return _not_found(
                f"No inscription found at index {did_url.resource_index} for sat {did_url.satoshi}"
            )

        info = resource_info(did_url.did, did_url.resource_index, inscription)
        content_type = JSON_CONTENT_TYPE if did_url.wants_json else inscription.content_type
        result = {
            "didResolutionMetadata": {"contentType": content_type, "resourceInfo": info},
            "didDocument": None,
            "content": info if did_url.wants_json else inscription.content,
        }
        if self.cache is not None and not no_cache:
            self.cache.put(cache_key, copy.deepcopy(result))
        return result

    async def resolve_info(self, resource_id: str) -> Dict[str, Any]:
        """
        Resource metadata for a resource id.

        Raises:
            ResourceNotFoundError: Nothing at that index
        """
        base = resource_id.split("?", 1)[0].rstrip("/")
        if not base.endswith("/info"):
            base += "/info"
        result = await self.resolve(base)
        error = result["didResolutionMetadata"].get("error")
        if error:
            raise ResourceNotFoundError(result["didResolutionMetadata"].get("message", error))
        return result["didResolutionMetadata"]["resourceInfo"]

    async def resolve_collection(self, did: str, content_type: Optional[str] = None,
                                 limit: Optional[int] = None, offset: int = 0) -> List[Dict[str, Any]]:
        """
        Resource metadata for every inscription on a DID's satoshi.

        Args:
            did: did:btco identifier
            content_type: Optional filter; "image" matches "image/png" etc.
            limit: Maximum number of results
            offset: Results to skip (after filtering)
        """
        parsed = parse_did(did)
        ids = await self.provider.get_sat_info(parsed.satoshi)
        resources = []
        for index, inscription_id in enumerate(ids):
            inscription = await self.provider.get_inscription_by_id(inscription_id)
            if inscription is None:
                continue
            if content_type and not (inscription.content_type == content_type
                                     or inscription.content_type.startswith(content_type.rstrip("/") + "/")):
                continue
            resources.append(resource_info(parsed.did, index, inscription))
        end = offset + limit if limit is not None else None
        return resources[offset:end]
