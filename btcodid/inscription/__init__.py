# btcodid/inscription - Taproot commit/reveal inscriptions
#
# 1. script      - ord envelope inside a tapscript leaf
# 2. taproot     - output key tweak, control block, commit address
# 3. transaction - commit/reveal construction, fees, dust floor
# 4. tracker     - transaction status for display and polling
#
# The orchestrator lives in btcodid.inscription.orchestrator and is not
# imported here because it depends on btcodid.providers.

from .script import build_reveal_script, parse_envelope, ParsedEnvelope
from .taproot import TaprootCommitment, commit_to_script, generate_reveal_keypair
from .transaction import (
    DUST_LIMIT_SATS,
    CommitRevealPair,
    PreparedInscription,
    Transaction,
    Utxo,
    build_commit_reveal_pair,
    build_commit_transaction,
    build_reveal_transaction,
    create_inscription,
    prepare_inscription,
)
from .tracker import TransactionStatus, TransactionStatusTracker, TransactionType

__all__ = [
    "build_reveal_script",
    "parse_envelope",
    "ParsedEnvelope",
    "TaprootCommitment",
    "commit_to_script",
    "generate_reveal_keypair",
    "DUST_LIMIT_SATS",
    "CommitRevealPair",
    "PreparedInscription",
    "Transaction",
    "Utxo",
    "build_commit_reveal_pair",
    "build_commit_transaction",
    "build_reveal_transaction",
    "create_inscription",
    "prepare_inscription",
    "TransactionStatus",
    "TransactionStatusTracker",
    "TransactionType",
]
