# tests/test_bitcoin.py
"""Tests for BitcoinManager."""

import asyncio

import pytest

from btcodid.bitcoin import BitcoinManager
from btcodid.errors import (
    FrontRunningError,
    InscriptionNotFoundError,
    InvalidAddressError,
    InvalidInputError,
    ProviderRequiredError,
)
from btcodid.providers import FeeOracle, InMemoryOrdinalsProvider, StaticFeeOracle

TESTNET_ADDRESS = "tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx"
MAINNET_ADDRESS = "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"


class BrokenFeeOracle(FeeOracle):
    async def estimate_fee_rate(self, target_blocks=1):
        raise RuntimeError("oracle offline")


class TestInscribe:
    """Test inscribe_data."""

    def test_inscribe(self):
        """Test inscribing through the in-memory provider."""
        provider = InMemoryOrdinalsProvider(fee_rate=4)
        manager = BitcoinManager(provider, "testnet")
        result = asyncio.run(manager.inscribe_data("hello", "text/plain"))
        assert result.satoshi is not None
        assert result.content == b"hello"
        assert result.fee_rate == 4
        assert result.reveal_txid == result.txid
        assert result.to_dict()["satoshi"] == str(result.satoshi)

    def test_explicit_fee_rate_recorded(self):
        """Test a caller fee rate is recorded without an oracle."""
        manager = BitcoinManager(InMemoryOrdinalsProvider(fee_rate=4), "testnet")
        assert asyncio.run(manager.inscribe_data("hello", "text/plain", fee_rate=9)).fee_rate == 9

    def test_oracle_rate_recorded(self):
        """Test the oracle rate wins when an oracle is configured."""
        manager = BitcoinManager(InMemoryOrdinalsProvider(fee_rate=4), "testnet", StaticFeeOracle(12))
        assert asyncio.run(manager.inscribe_data("hello", "text/plain", fee_rate=9)).fee_rate == 12

    def test_broken_oracle_falls_back(self):
        """Test estimation failures fall through to the provider."""
        manager = BitcoinManager(InMemoryOrdinalsProvider(fee_rate=4), "testnet", BrokenFeeOracle())
        assert asyncio.run(manager.resolve_fee_rate()) == 4

    def test_no_provider(self):
        """Test inscribing needs a provider."""
        with pytest.raises(ProviderRequiredError) as exc:
            asyncio.run(BitcoinManager().inscribe_data("hello", "text/plain"))
        assert exc.value.code == "ORD_PROVIDER_REQUIRED"

    @pytest.mark.parametrize("data,content_type,fee_rate", [
        ("", "text/plain", None),
        ("hello", "", None),
        ("hello", "text plain", None),
        ("hello", "text/plain", -1),
        ("hello", "text/plain", 20_000),
    ])
    def test_invalid_input(self, data, content_type, fee_rate):
        """Test argument validation."""
        manager = BitcoinManager(InMemoryOrdinalsProvider(), "testnet")
        with pytest.raises(InvalidInputError):
            asyncio.run(manager.inscribe_data(data, content_type, fee_rate=fee_rate))


class TestFrontRunning:
    """Test satoshi binding checks."""

    def test_single_inscription_is_safe(self):
        """Test one inscription on a sat passes."""
        provider = InMemoryOrdinalsProvider()
        provider.add_inscription(100, "a")
        manager = BitcoinManager(provider)
        assert asyncio.run(manager.prevent_front_running(100)) is True
        assert asyncio.run(manager.assert_unique_binding("100")).satoshi == 100

    def test_two_inscriptions_detected(self):
        """Test a second inscription on a sat is reported."""
        provider = InMemoryOrdinalsProvider()
        provider.add_inscription(100, "a")
        provider.add_inscription(100, "b")
        manager = BitcoinManager(provider)
        assert asyncio.run(manager.prevent_front_running(100)) is False
        with pytest.raises(FrontRunningError) as exc:
            asyncio.run(manager.assert_unique_binding(100))
        assert exc.value.inscription_count == 2
        assert exc.value.satoshi == 100

    def test_empty_satoshi(self):
        """Test an uninscribed satoshi."""
        manager = BitcoinManager(InMemoryOrdinalsProvider())
        assert asyncio.run(manager.prevent_front_running(5)) is True
        with pytest.raises(InscriptionNotFoundError):
            asyncio.run(manager.assert_unique_binding(5))

    def test_without_provider(self):
        """Test there is nothing to check without a provider."""
        assert asyncio.run(BitcoinManager().prevent_front_running(5)) is True
        with pytest.raises(InvalidInputError):
            asyncio.run(BitcoinManager().prevent_front_running(""))


class TestTransferAndLookup:
    """Test transfers and lookups."""

    def test_transfer(self):
        """Test a transfer on the manager's network."""
        provider = InMemoryOrdinalsProvider()
        manager = BitcoinManager(provider, "testnet")
        result = asyncio.run(manager.inscribe_data("hello", "text/plain"))
        transfer = asyncio.run(manager.transfer_inscription(result, TESTNET_ADDRESS))
        assert transfer.txid
        assert transfer.satoshi == result.satoshi

    def test_transfer_wrong_network(self):
        """Test mainnet addresses are refused on testnet."""
        provider = InMemoryOrdinalsProvider()
        manager = BitcoinManager(provider, "testnet")
        result = asyncio.run(manager.inscribe_data("hello", "text/plain"))
        with pytest.raises(InvalidAddressError):
            asyncio.run(manager.transfer_inscription(result, MAINNET_ADDRESS))

    def test_satoshi_lookup_and_did_check(self):
        """Test satoshi lookups and DID existence checks."""
        provider = InMemoryOrdinalsProvider()
        inscription = provider.add_inscription(777, "x")
        manager = BitcoinManager(provider)
        assert asyncio.run(manager.get_satoshi_from_inscription(inscription.inscription_id)) == 777
        assert asyncio.run(manager.get_satoshi_from_inscription("nope")) is None
        assert asyncio.run(manager.validate_btco_did("did:btco:777")) is True
        assert asyncio.run(manager.validate_btco_did("did:btco:778")) is False
        assert asyncio.run(manager.validate_btco_did("did:web:example.com")) is False
        assert asyncio.run(manager.track_inscription(inscription.inscription_id)) is inscription
