# tests/test_orchestrator.py
"""Tests for the inscription state machine."""

import asyncio

import pytest

from btcodid.errors import InvalidInputError, OrchestratorStateError, ProviderError
from btcodid.inscription.orchestrator import InscriptionOrchestrator, InscriptionState
from btcodid.inscription.tracker import TransactionStatus, TransactionStatusTracker
from btcodid.inscription.transaction import Utxo
from btcodid.providers import InMemoryOrdinalsProvider, StaticFeeOracle

CHANGE_ADDRESS = "tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx"
CHANGE_SCRIPT = "0014751e76e8199196d454941c45d1b3a323f1433bd6"


def funding_utxo(value=100_000):
    return Utxo(txid="11" * 32, vout=0, value=value, script_pubkey=CHANGE_SCRIPT)


class FailingBroadcastProvider(InMemoryOrdinalsProvider):
    async def broadcast_transaction(self, raw_hex):
        raise ProviderError("node rejected transaction")


async def prepared_orchestrator(provider, **kwargs):
    orchestrator = InscriptionOrchestrator(provider, "testnet", **kwargs)
    await orchestrator.prepare_content("hello", "text/plain;charset=utf-8")
    await orchestrator.select_utxo(funding_utxo(), CHANGE_ADDRESS)
    return orchestrator


class TestFullFlow:
    """Test a complete inscription."""

    def test_inscribe_and_confirm(self):
        """Test every state in order ending in a confirmed inscription."""
        provider = InMemoryOrdinalsProvider(fee_rate=2)
        provider.assign_next_satoshi(5000)
        tracker = TransactionStatusTracker("testnet")

        async def run():
            orchestrator = await prepared_orchestrator(provider, tracker=tracker)
            fees = await orchestrator.calculate_fees()
            commit_txid = await orchestrator.execute_commit_transaction()
            reveal_txid = await orchestrator.execute_reveal_transaction()
            before = await orchestrator.check_confirmation()
            provider.mine()
            after = await orchestrator.check_confirmation()
            ids = await provider.get_sat_info(5000)
            content = await provider.get_inscription_content(ids[0])
            return orchestrator, fees, commit_txid, reveal_txid, before, after, ids, content

        orchestrator, fees, commit_txid, reveal_txid, before, after, ids, content = asyncio.run(run())

        assert fees["total"] == fees["commit"] + fees["reveal"]
        assert orchestrator.fee_rate == 2
        assert commit_txid == orchestrator.commit.txid
        assert before is False
        assert after is True
        assert orchestrator.state == InscriptionState.CONFIRMED
        assert ids == [f"{reveal_txid}i0"] == [orchestrator.inscription_id]
        assert content == b"hello"
        assert orchestrator.reveal.output_value >= 546

        names = [e.name for e in orchestrator.pending_events()]
        assert names == [
            "contentPrepared",
            "utxoSelected",
            "feesCalculated",
            "commitTransactionSent",
            "revealTransactionSent",
            "inscriptionConfirmed",
        ]

        commit_record, reveal_record = tracker.all()
        assert reveal_record.parent_id == commit_record.id
        assert reveal_record.txid == reveal_txid
        assert reveal_record.status == TransactionStatus.CONFIRMING

    def test_fee_oracle_preferred(self):
        """Test the fee oracle wins over the provider estimate."""
        async def run():
            orchestrator = await prepared_orchestrator(
                InMemoryOrdinalsProvider(fee_rate=2), fee_oracle=StaticFeeOracle(7))
            await orchestrator.calculate_fees()
            return orchestrator.fee_rate

        assert asyncio.run(run()) == 7

    def test_next_event(self):
        """Test events can be awaited one at a time."""
        async def run():
            orchestrator = InscriptionOrchestrator(InMemoryOrdinalsProvider(), "testnet")
            await orchestrator.prepare_content("hello", "text/plain")
            return await orchestrator.next_event()

        event = asyncio.run(run())
        assert event.name == "contentPrepared"
        assert event.state == InscriptionState.CONTENT_PREPARED
        assert event.payload["commitAddress"].startswith("tb1p")


class TestStateErrors:
    """Test out of order operations."""

    def test_commit_before_fees(self):
        """Test the commit cannot be sent from idle."""
        async def run():
            orchestrator = InscriptionOrchestrator(InMemoryOrdinalsProvider(), "testnet")
            with pytest.raises(OrchestratorStateError) as exc:
                await orchestrator.execute_commit_transaction()
            return orchestrator, exc.value

        orchestrator, error = asyncio.run(run())
        assert orchestrator.state == InscriptionState.IDLE
        assert error.code == "INVALID_STATE"

    def test_fees_before_utxo(self):
        """Test fees need a UTXO selection."""
        async def run():
            orchestrator = InscriptionOrchestrator(InMemoryOrdinalsProvider(), "testnet")
            await orchestrator.prepare_content("hello", "text/plain")
            with pytest.raises(OrchestratorStateError):
                await orchestrator.calculate_fees(2)
            return orchestrator.state

        assert asyncio.run(run()) == InscriptionState.CONTENT_PREPARED

    def test_reveal_before_commit(self):
        """Test the reveal needs a sent commit."""
        async def run():
            orchestrator = await prepared_orchestrator(InMemoryOrdinalsProvider())
            await orchestrator.calculate_fees(2)
            with pytest.raises(OrchestratorStateError):
                await orchestrator.execute_reveal_transaction()

        asyncio.run(run())

    def test_invalid_content_keeps_state(self):
        """Test invalid content reports an error without changing state."""
        async def run():
            orchestrator = InscriptionOrchestrator(InMemoryOrdinalsProvider(), "testnet")
            with pytest.raises(InvalidInputError):
                await orchestrator.prepare_content("", "text/plain")
            return orchestrator

        orchestrator = asyncio.run(run())
        assert orchestrator.state == InscriptionState.IDLE
        assert [e.name for e in orchestrator.pending_events()] == ["error"]

    def test_unspendable_utxo(self):
        """Test UTXO selection rejects unspendable outputs."""
        async def run():
            orchestrator = InscriptionOrchestrator(InMemoryOrdinalsProvider(), "testnet")
            await orchestrator.prepare_content("hello", "text/plain")
            with pytest.raises(InvalidInputError):
                await orchestrator.select_utxo(Utxo(txid="22" * 32, vout=0, value=5000), CHANGE_ADDRESS)
            return orchestrator.state

        assert asyncio.run(run()) == InscriptionState.CONTENT_PREPARED

    def test_signed_commit_must_match(self):
        """Test a signed commit paying elsewhere is refused."""
        async def run():
            orchestrator = await prepared_orchestrator(InMemoryOrdinalsProvider())
            await orchestrator.calculate_fees(2)
            other = await prepared_orchestrator(InMemoryOrdinalsProvider())
            await other.calculate_fees(2)
            with pytest.raises(InvalidInputError):
                await orchestrator.execute_commit_transaction(other.unsigned_commit_transaction().hex())
            return orchestrator.state

        assert asyncio.run(run()) == InscriptionState.FEES_CALCULATED


class TestFailureAndReset:
    """Test provider failures and reset."""

    def test_broadcast_failure(self):
        """Test a rejected broadcast moves to failed."""
        tracker = TransactionStatusTracker("testnet")

        async def run():
            orchestrator = await prepared_orchestrator(FailingBroadcastProvider(), tracker=tracker)
            await orchestrator.calculate_fees(2)
            with pytest.raises(ProviderError):
                await orchestrator.execute_commit_transaction()
            return orchestrator

        orchestrator = asyncio.run(run())
        assert orchestrator.state == InscriptionState.FAILED
        events = orchestrator.pending_events()
        assert events[-1].name == "error"
        assert events[-1].payload["code"] == "ORD_PROVIDER_INVALID_RESPONSE"
        assert tracker.all()[0].status == TransactionStatus.FAILED

    def test_reset(self):
        """Test reset returns to idle and clears state."""
        async def run():
            orchestrator = await prepared_orchestrator(InMemoryOrdinalsProvider())
            await orchestrator.calculate_fees(2)
            orchestrator.reset()
            return orchestrator

        orchestrator = asyncio.run(run())
        assert orchestrator.state == InscriptionState.IDLE
        assert orchestrator.get_state()["fees"] is None
        assert orchestrator.get_state()["commitAddress"] is None
        assert orchestrator.pending_events()[-1].name == "reset"

    def test_reset_discards_earlier_events(self):
        """Test events from before a reset are not delivered after it."""
        async def run():
            orchestrator = await prepared_orchestrator(InMemoryOrdinalsProvider())
            await orchestrator.calculate_fees(2)
            orchestrator.reset()
            return await orchestrator.next_event(), orchestrator.pending_events()

        event, rest = asyncio.run(run())
        assert event.name == "reset"
        assert event.state == InscriptionState.IDLE
        assert rest == []

    def test_state_values(self):
        """Test exposed state names use hyphens."""
        orchestrator = InscriptionOrchestrator(InMemoryOrdinalsProvider(), "testnet")
        assert orchestrator.get_state()["state"] == "idle"
        assert InscriptionState.CONTENT_PREPARED.value == "content-prepared"
        assert InscriptionState.COMMIT_SENT.value == "commit-sent"
