# btcodid/bitcoin.py
"""
High level ledger operations on top of an OrdinalsProvider.

BitcoinManager is the entry point for code that wants to inscribe,
transfer and look up inscriptions without driving the commit/reveal
state machine itself.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from .addresses import validate_address
from .content import Content, is_valid_mime_type
from .errors import (
    BtcoError,
    FrontRunningError,
    InscriptionNotFoundError,
    InvalidInputError,
    InvalidSatoshiError,
    ProviderError,
    ProviderRequiredError,
)
from .inscription.transaction import DUST_LIMIT_SATS, MAX_REASONABLE_FEE_RATE
from .providers import FeeOracle, Inscription, OrdinalsProvider, TransferResult
from .satoshi import Network, extract_satoshi, validate_satoshi_number

logger = logging.getLogger(__name__)


@dataclass
class InscriptionResult:
    """An inscription created through BitcoinManager.inscribe_data()."""
    inscription_id: str
    satoshi: Optional[int]
    content: bytes
    content_type: str
    txid: str
    vout: int = 0
    block_height: Optional[int] = None
    commit_txid: Optional[str] = None
    reveal_txid: Optional[str] = None
    fee_rate: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inscriptionId": self.inscription_id,
            "satoshi": str(self.satoshi) if self.satoshi is not None else "",
            "contentType": self.content_type,
            "txid": self.txid,
            "vout": self.vout,
            "blockHeight": self.block_height,
            "commitTxId": self.commit_txid,
            "revealTxId": self.reveal_txid,
            "feeRate": self.fee_rate,
        }


def _positive(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) \
        and math.isfinite(value) and value > 0


class BitcoinManager:
    """
    Inscribe, transfer and inspect inscriptions through a provider.

    Args:
        provider: Ledger provider; operations that need it raise
            ProviderRequiredError when it is missing
        network: Network that destination addresses must belong to
        fee_oracle: Optional fee source preferred over the provider
    """

    def __init__(self, provider: Optional[OrdinalsProvider] = None,
                 network: Union[Network, str, None] = None,
                 fee_oracle: Optional[FeeOracle] = None):
        self.provider = provider
        self.network = Network.from_value(network)
        self.fee_oracle = fee_oracle

    def _require_provider(self, action: str) -> OrdinalsProvider:
        if self.provider is None:
            raise ProviderRequiredError(
                f"An ordinals provider must be configured to {action}. "
                f"For testing, use InMemoryOrdinalsProvider."
            )
        return self.provider

    async def resolve_fee_rate(self, target_blocks: int = 1,
                               provided: Optional[float] = None) -> Optional[float]:
        """
        Pick a fee rate: fee oracle, then provider, then the caller's value.

        Estimation failures are logged and the next source is tried.
        """
        if self.fee_oracle is not None:
            try:
                estimated = await self.fee_oracle.estimate_fee_rate(target_blocks)
                if _positive(estimated):
                    logger.debug(f"Fee rate {estimated} sat/vB from fee oracle")
                    return estimated
            except Exception as e:
                logger.warning(f"Fee oracle estimate failed: {e}")
        if self.provider is not None:
            try:
                estimated = await self.provider.estimate_fee(target_blocks)
                if _positive(estimated):
                    logger.debug(f"Fee rate {estimated} sat/vB from provider")
                    return estimated
            except Exception as e:
                logger.warning(f"Provider fee estimate failed: {e}")
        if _positive(provided):
            return provided
        return None

    async def inscribe_data(self, data: Content, content_type: str,
                            fee_rate: Optional[float] = None) -> InscriptionResult:
        """
        Inscribe data through the provider.

        Raises:
            InvalidInputError: Empty data, malformed MIME type or bad fee rate
            ProviderRequiredError: No provider configured
            ProviderError: Provider response lacks an id or txid
            InvalidSatoshiError: Provider reported an invalid satoshi
        """
        if data is None or (isinstance(data, (str, bytes, bytearray, dict, list)) and len(data) == 0):
            raise InvalidInputError("Data to inscribe cannot be empty")
        if not content_type or not isinstance(content_type, str):
            raise InvalidInputError("Content type must be a non-empty string")
        if not is_valid_mime_type(content_type):
            raise InvalidInputError(f"Invalid MIME type format: {content_type}")
        if fee_rate is not None and not _positive(fee_rate):
            raise InvalidInputError("Fee rate must be a positive number")
        if fee_rate is not None and fee_rate > MAX_REASONABLE_FEE_RATE:
            raise InvalidInputError(
                f"Fee rate {fee_rate} exceeds maximum reasonable fee rate of "
                f"{MAX_REASONABLE_FEE_RATE} sat/vB"
            )

        effective_rate = await self.resolve_fee_rate(1, fee_rate)
        provider = self._require_provider("inscribe data")

        creation = await provider.create_inscription(data, content_type, fee_rate=effective_rate)
        txid = creation.txid or creation.reveal_txid
        if not creation.inscription_id or not txid:
            raise ProviderError("Provider did not return a valid inscription id or transaction id")

        satoshi = creation.satoshi
        if satoshi is None:
            satoshi = await self.get_satoshi_from_inscription(creation.inscription_id)
        if satoshi is not None:
            try:
                satoshi = validate_satoshi_number(satoshi)
            except InvalidSatoshiError as e:
                raise InvalidSatoshiError(f"Provider returned an invalid satoshi: {e}")

        if self.fee_oracle is not None:
            recorded_rate = effective_rate
        elif fee_rate is not None:
            recorded_rate = fee_rate
        else:
            recorded_rate = creation.fee_rate or effective_rate

        result = InscriptionResult(
            inscription_id=creation.inscription_id,
            satoshi=satoshi,
            content=creation.content if creation.content is not None else data,
            content_type=creation.content_type or content_type,
            txid=txid,
            vout=creation.vout,
            block_height=creation.block_height,
            commit_txid=creation.commit_txid,
            reveal_txid=creation.reveal_txid,
            fee_rate=recorded_rate,
        )
        logger.info(f"Inscribed {result.inscription_id} on sat {satoshi}")
        return result

    async def track_inscription(self, inscription_id: str) -> Optional[Inscription]:
        """Current state of an inscription, or None if unknown."""
        if self.provider is None:
            return None
        return await self.provider.get_inscription_by_id(inscription_id)

    async def transfer_inscription(self, inscription: Union[Inscription, InscriptionResult],
                                   to_address: str) -> TransferResult:
        """
        Send an inscription to an address on this manager's network.

        Raises:
            InvalidInputError: Missing inscription id or address
            InvalidAddressError: Address fails the network check
            ProviderRequiredError: No provider configured
        """
        if inscription is None or not getattr(inscription, "inscription_id", None):
            raise InvalidInputError("Inscription must have a valid inscription id")
        if not to_address or not isinstance(to_address, str):
            raise InvalidInputError("Destination address must be a non-empty string")
        validate_address(to_address, self.network)

        effective_rate = await self.resolve_fee_rate(1)
        provider = self._require_provider("transfer inscriptions")
        response = await provider.transfer_inscription(
            inscription.inscription_id, to_address, fee_rate=effective_rate
        )
        if response is None or not response.txid:
            raise ProviderError("Provider did not return a valid transfer transaction")
        if response.satoshi is not None:
            inscription.satoshi = response.satoshi
        if not response.vin:
            response.vin = [{"txid": inscription.txid, "vout": inscription.vout}]
        if not response.vout:
            response.vout = [{"value": DUST_LIMIT_SATS, "address": to_address}]
        logger.info(f"Transferred {inscription.inscription_id} to {to_address} in {response.txid}")
        return response

    async def prevent_front_running(self, satoshi: Union[int, str]) -> bool:
        """
        True when at most one inscription sits on the satoshi.

        Without a provider there is nothing to check and the answer is True.
        """
        if satoshi is None or satoshi == "":
            raise InvalidInputError("Satoshi identifier is required")
        sat = validate_satoshi_number(satoshi)
        if self.provider is None:
            return True
        inscriptions = await self.provider.get_inscriptions_by_satoshi(sat)
        return len(inscriptions) <= 1

    async def assert_unique_binding(self, satoshi: Union[int, str]) -> Inscription:
        """
        Return the single inscription bound to a satoshi.

        Raises:
            ProviderRequiredError: No provider configured
            FrontRunningError: More than one inscription on the satoshi
            InscriptionNotFoundError: None at all
        """
        sat = validate_satoshi_number(satoshi)
        provider = self._require_provider("check satoshi bindings")
        inscriptions = await provider.get_inscriptions_by_satoshi(sat)
        if len(inscriptions) > 1:
            raise FrontRunningError(
                f"Satoshi {sat} carries {len(inscriptions)} inscriptions; cannot proceed",
                satoshi=sat,
                inscription_count=len(inscriptions),
            )
        if not inscriptions:
            raise InscriptionNotFoundError(f"No inscription on satoshi {sat}")
        return inscriptions[0]

    async def get_satoshi_from_inscription(self, inscription_id: str) -> Optional[int]:
        """Satoshi carrying an inscription; None if unknown or invalid."""
        if self.provider is None:
            return None
        info = await self.provider.get_inscription_by_id(inscription_id)
        if info is None or info.satoshi is None:
            return None
        try:
            return validate_satoshi_number(info.satoshi)
        except BtcoError:
            return None

    async def validate_btco_did(self, did: str) -> bool:
        """True when the DID is well formed and its satoshi carries an inscription."""
        satoshi = extract_satoshi(did) if isinstance(did, str) else None
        if satoshi is None or self.provider is None:
            return False
        return len(await self.provider.get_sat_info(satoshi)) > 0
