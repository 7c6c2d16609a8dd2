# tests/test_providers.py
"""Tests for ledger providers."""

import asyncio
import json

import pytest

from btcodid.errors import InscriptionNotFoundError, ProviderError
from btcodid.providers import InMemoryOrdinalsProvider, OrdHttpProvider


class TestInMemoryProvider:
    """Test the in-memory provider."""

    def test_creation_order_per_satoshi(self):
        """Test sat info lists inscriptions in creation order."""
        provider = InMemoryOrdinalsProvider()
        first = provider.add_inscription(42, {"id": "did:btco:42"})
        second = provider.add_inscription(42, "second")
        assert asyncio.run(provider.get_sat_info(42)) == [first.inscription_id, second.inscription_id]
        assert asyncio.run(provider.get_sat_info(43)) == []
        assert first.content_type == "application/json"
        assert second.content_type == "text/plain"

    def test_inscriptions_by_satoshi(self):
        """Test the default get_inscriptions_by_satoshi."""
        provider = InMemoryOrdinalsProvider()
        provider.add_inscription(7, "a", metadata={"k": "v"})
        inscriptions = asyncio.run(provider.get_inscriptions_by_satoshi(7))
        assert len(inscriptions) == 1
        assert inscriptions[0].satoshi == 7
        assert asyncio.run(provider.get_metadata(inscriptions[0].inscription_id)) == {"k": "v"}

    def test_missing_content(self):
        """Test content lookups of unknown inscriptions."""
        provider = InMemoryOrdinalsProvider()
        assert asyncio.run(provider.get_inscription_by_id("nope")) is None
        with pytest.raises(InscriptionNotFoundError):
            asyncio.run(provider.get_inscription_content("nope"))

    def test_create_on_reserved_satoshi(self):
        """Test create_inscription honours a reserved satoshi."""
        provider = InMemoryOrdinalsProvider(fee_rate=3)
        provider.assign_next_satoshi(99)
        created = asyncio.run(provider.create_inscription("hello", "text/plain"))
        assert created.satoshi == 99
        assert created.fee_rate == 3
        assert created.inscription_id == f"{created.reveal_txid}i0"
        again = asyncio.run(provider.create_inscription("again", "text/plain"))
        assert again.satoshi != 99

    def test_transaction_status(self):
        """Test confirmations accumulate when mining."""
        provider = InMemoryOrdinalsProvider()
        created = asyncio.run(provider.create_inscription("hello", "text/plain"))
        assert not asyncio.run(provider.get_transaction_status(created.reveal_txid)).confirmed
        provider.mine(3)
        status = asyncio.run(provider.get_transaction_status(created.reveal_txid))
        assert status.confirmed
        assert status.confirmations == 3
        assert not asyncio.run(provider.get_transaction_status("ff" * 32)).confirmed

    def test_transfer(self):
        """Test a transfer moves the inscription to a new output."""
        provider = InMemoryOrdinalsProvider()
        inscription = provider.add_inscription(5, "x")
        old_txid = inscription.txid
        result = asyncio.run(provider.transfer_inscription(inscription.inscription_id, "tb1qdest"))
        assert result.vin == [{"txid": old_txid, "vout": 0}]
        assert inscription.txid == result.txid
        with pytest.raises(InscriptionNotFoundError):
            asyncio.run(provider.transfer_inscription("nope", "tb1qdest"))


class TestOrdHttpProvider:
    """Test response handling of the HTTP provider."""

    def make_provider(self, monkeypatch, responses):
        provider = OrdHttpProvider("http://ord.local/", "http://esplora.local/api/")

        def fake_request(url, method="GET", body=None, headers=None):
            value = responses.get(url)
            if value is None or isinstance(value, bytes):
                return value
            return json.dumps(value).encode()

        monkeypatch.setattr(provider, "_request", fake_request)
        return provider

    def test_urls_normalized(self):
        """Test trailing slashes are dropped."""
        provider = OrdHttpProvider("http://ord.local/", "http://esplora.local/api/")
        assert provider.ord_url == "http://ord.local"
        assert provider.esplora_url == "http://esplora.local/api"

    def test_sat_info(self, monkeypatch):
        """Test inscription ids from the sat endpoint."""
        provider = self.make_provider(monkeypatch, {
            "http://ord.local/sat/42": {"inscriptions": ["ai0", "bi0"]},
        })
        assert asyncio.run(provider.get_sat_info(42)) == ["ai0", "bi0"]
        assert asyncio.run(provider.get_sat_info(43)) == []

    def test_inscription(self, monkeypatch):
        """Test inscription details and content."""
        provider = self.make_provider(monkeypatch, {
            "http://ord.local/r/inscription/abci0": {"id": "abci0", "sat": 42, "content_type": "text/plain"},
            "http://ord.local/content/abci0": b"hello",
        })
        inscription = asyncio.run(provider.get_inscription_by_id("abci0"))
        assert inscription.satoshi == 42
        assert inscription.content == b"hello"
        assert inscription.txid == "abc"
        assert asyncio.run(provider.get_inscription_by_id("zzzi0")) is None

    def test_status_confirmations(self, monkeypatch):
        """Test confirmations from block height and tip."""
        provider = self.make_provider(monkeypatch, {
            "http://esplora.local/api/tx/aa/status": {"confirmed": True, "block_height": 100},
            "http://esplora.local/api/blocks/tip/height": b"102",
        })
        status = asyncio.run(provider.get_transaction_status("aa"))
        assert status.confirmed
        assert status.confirmations == 3

    def test_fee_estimate_target(self, monkeypatch):
        """Test the closest target at or above the request is used."""
        provider = self.make_provider(monkeypatch, {
            "http://esplora.local/api/fee-estimates": {"1": 20.0, "3": 10.0, "6": 5.0},
        })
        assert asyncio.run(provider.estimate_fee(2)) == 10.0
        assert asyncio.run(provider.estimate_fee(50)) == 5.0

    def test_no_esplora(self):
        """Test transaction operations need an Esplora URL."""
        provider = OrdHttpProvider("http://ord.local")
        with pytest.raises(ProviderError):
            asyncio.run(provider.broadcast_transaction("00"))
