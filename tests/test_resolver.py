# tests/test_resolver.py
"""Tests for did:btco resolution."""

import asyncio

from btcodid.did.cache import ResolutionCache
from btcodid.did.document import create_did_document
from btcodid.did.resolver import BtcoDidResolver
from btcodid.providers import InMemoryOrdinalsProvider

SAT = 1908770696977240
DID = f"did:btco:{SAT}"


def inscribe_document(provider, document, prefix="BTCO DID: ", satoshi=SAT):
    return provider.add_inscription(satoshi, f"{prefix}{document['id']}", "text/plain", metadata=document)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestResolve:
    """Test resolution outcomes."""

    def test_resolves_document(self):
        """Test a single inscription resolves to its document."""
        provider = InMemoryOrdinalsProvider()
        document = create_did_document(SAT).document
        inscription = inscribe_document(provider, document)
        result = asyncio.run(BtcoDidResolver(provider).resolve(DID))
        assert result.error is None
        assert result.did_document == document
        assert result.did_resolution_metadata["inscriptionId"] == inscription.inscription_id
        assert result.did_resolution_metadata["totalInscriptions"] == 1
        assert result.did_resolution_metadata["contentType"] == "application/did+ld+json"

    def test_bare_did_content(self):
        """Test content without the BTCO DID prefix."""
        provider = InMemoryOrdinalsProvider()
        document = create_did_document(SAT).document
        inscribe_document(provider, document, prefix="")
        assert asyncio.run(BtcoDidResolver(provider).resolve(DID)).did_document == document

    def test_latest_wins(self):
        """Test the last valid document on the satoshi is returned."""
        provider = InMemoryOrdinalsProvider()
        first = create_did_document(SAT).document
        second = create_did_document(SAT).document
        inscribe_document(provider, first)
        provider.add_inscription(SAT, "unrelated content")
        latest = inscribe_document(provider, second)
        result = asyncio.run(BtcoDidResolver(provider).resolve(DID))
        assert result.did_document == second
        assert result.did_document_metadata["inscriptionId"] == latest.inscription_id
        assert len(result.inscriptions) == 3
        assert not result.inscriptions[1].is_valid_did

    def test_deactivated(self):
        """Test a fire emoji inscription deactivates the DID."""
        provider = InMemoryOrdinalsProvider()
        inscribe_document(provider, create_did_document(SAT).document)
        provider.add_inscription(SAT, f"BTCO DID: {DID} \U0001F525")
        result = asyncio.run(BtcoDidResolver(provider).resolve(DID))
        assert result.did_document is None
        assert result.did_document_metadata["deactivated"] is True
        assert result.error is None

    def test_mismatched_id_ignored(self):
        """Test documents naming another DID are not candidates."""
        provider = InMemoryOrdinalsProvider()
        other = create_did_document(SAT + 1).document
        provider.add_inscription(SAT, f"BTCO DID: {DID}", "text/plain", metadata=other)
        result = asyncio.run(BtcoDidResolver(provider).resolve(DID))
        assert result.error == "notFound"
        assert result.inscriptions[0].error == "Invalid DID document structure or mismatched ID"

    def test_longer_satoshi_not_matched(self):
        """Test content for a longer satoshi number does not match."""
        provider = InMemoryOrdinalsProvider()
        provider.add_inscription(12, "BTCO DID: did:btco:123", "text/plain",
                                 metadata=create_did_document(12).document)
        assert asyncio.run(BtcoDidResolver(provider).resolve("did:btco:12")).error == "notFound"

    def test_testnet(self):
        """Test testnet DIDs resolve on their own network."""
        provider = InMemoryOrdinalsProvider()
        document = create_did_document(55, "testnet").document
        inscribe_document(provider, document, satoshi=55)
        result = asyncio.run(BtcoDidResolver(provider).resolve("did:btco:test:55"))
        assert result.did_document == document
        assert result.did_resolution_metadata["network"] == "testnet"


class TestResolveErrors:
    """Test resolution failures."""

    def test_invalid_did(self):
        """Test malformed DIDs."""
        resolver = BtcoDidResolver(InMemoryOrdinalsProvider())
        assert asyncio.run(resolver.resolve("did:web:example.com")).error == "invalidDid"
        assert asyncio.run(resolver.resolve(f"{DID}/0")).error == "invalidDid"
        assert asyncio.run(resolver.resolve("did:btco:99999999999999999999")).error == "invalidDid"

    def test_not_found(self):
        """Test an empty satoshi."""
        result = asyncio.run(BtcoDidResolver(InMemoryOrdinalsProvider()).resolve(DID))
        assert result.error == "notFound"
        assert result.did_document is None

    def test_representation_not_supported(self):
        """Test unsupported accept types."""
        resolver = BtcoDidResolver(InMemoryOrdinalsProvider())
        assert asyncio.run(resolver.resolve(DID, accept="text/html")).error == "representationNotSupported"

    def test_internal_error(self):
        """Test unexpected provider failures become internalError."""
        class BrokenProvider(InMemoryOrdinalsProvider):
            async def get_sat_info(self, satoshi):
                raise RuntimeError("index offline")

        result = asyncio.run(BtcoDidResolver(BrokenProvider()).resolve(DID))
        assert result.error == "internalError"
        assert result.did_resolution_metadata["message"] == "index offline"


class TestResolutionCache:
    """Test cached resolution."""

    def test_cache_hit_and_expiry(self):
        """Test results are served from the cache until they expire."""
        provider = InMemoryOrdinalsProvider()
        first = create_did_document(SAT).document
        inscribe_document(provider, first)
        clock = FakeClock()
        cache = ResolutionCache(ttl=60, clock=clock)
        resolver = BtcoDidResolver(provider, cache)

        assert asyncio.run(resolver.resolve(DID)).did_document == first
        second = create_did_document(SAT).document
        inscribe_document(provider, second)
        assert asyncio.run(resolver.resolve(DID)).did_document == first
        assert asyncio.run(resolver.resolve(DID, no_cache=True)).did_document == second

        clock.now = 61
        assert asyncio.run(resolver.resolve(DID)).did_document == second
        assert cache.stats.hits == 1

    def test_errors_not_cached(self):
        """Test failed resolutions are retried."""
        provider = InMemoryOrdinalsProvider()
        cache = ResolutionCache()
        resolver = BtcoDidResolver(provider, cache)
        assert asyncio.run(resolver.resolve(DID)).error == "notFound"
        document = create_did_document(SAT).document
        inscribe_document(provider, document)
        assert asyncio.run(resolver.resolve(DID)).did_document == document

    def test_cache_returns_copies(self):
        """Test mutating a result does not touch the cache."""
        provider = InMemoryOrdinalsProvider()
        inscribe_document(provider, create_did_document(SAT).document)
        resolver = BtcoDidResolver(provider, ResolutionCache())
        asyncio.run(resolver.resolve(DID)).did_document["id"] = "changed"
        assert asyncio.run(resolver.resolve(DID)).did_document["id"] == DID

    def test_put_prunes_expired(self):
        """Test expired entries for other keys are dropped on put."""
        clock = FakeClock()
        cache = ResolutionCache(ttl=60, clock=clock)
        cache.put("did:btco:1", "one")
        cache.put("did:btco:2", "two")
        clock.now = 61
        cache.put("did:btco:3", "three")
        assert len(cache) == 1
        assert cache.get("did:btco:3") == "three"

    def test_max_entries(self):
        """Test the oldest entry is evicted at capacity."""
        cache = ResolutionCache(max_entries=2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("c", 3)
        assert len(cache) == 2
        assert cache.get("a") is None
        assert cache.get("c") == 3
