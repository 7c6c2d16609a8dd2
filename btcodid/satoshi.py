# btcodid/satoshi.py
"""
Satoshi numbers, networks and did:btco identifiers.

A did:btco identifier names one satoshi:

    did:btco:<sat>            mainnet
    did:btco:test:<sat>       testnet
    did:btco:sig:<sat>        signet
    did:btco:reg:<sat>        regtest

Anything after the satoshi number (``/0``, ``/resources/0/info``) is a
DID URL path and is returned separately by parse_did().
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .errors import InvalidInputError, InvalidSatoshiError

DID_METHOD = "btco"
MAX_SATOSHI_SUPPLY = 2_100_000_000_000_000

_DID_PATTERN = re.compile(r"^did:btco(?::(test|sig|reg))?:([0-9]+)(?:/(.+))?$")


class Network(Enum):
    """Bitcoin networks a satoshi can live on."""
    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"

    @property
    def did_prefix(self) -> str:
        return _DID_PREFIXES[self]

    @property
    def hrp(self) -> str:
        """Bech32 human readable prefix for addresses on this network."""
        return _HRPS[self]

    @classmethod
    def from_value(cls, value: Union["Network", str, None]) -> "Network":
        """Accept a Network, its name, or None (mainnet)."""
        if value is None:
            return cls.MAINNET
        if isinstance(value, cls):
            return value
        name = str(value).lower()
        aliases = {"bitcoin": "mainnet", "main": "mainnet", "test": "testnet",
                   "sig": "signet", "reg": "regtest"}
        name = aliases.get(name, name)
        try:
            return cls(name)
        except ValueError:
            raise InvalidInputError(f"Unknown network: {value}")

    @classmethod
    def from_did_prefix(cls, prefix: Optional[str]) -> "Network":
        for network, candidate in _DID_PREFIXES.items():
            if candidate == (prefix or ""):
                return network
        raise InvalidInputError(f"Unknown did:btco network prefix: {prefix}")


_DID_PREFIXES = {
    Network.MAINNET: "",
    Network.TESTNET: "test",
    Network.SIGNET: "sig",
    Network.REGTEST: "reg",
}

_HRPS = {
    Network.MAINNET: "bc",
    Network.TESTNET: "tb",
    Network.SIGNET: "tb",
    Network.REGTEST: "bcrt",
}


@dataclass(frozen=True)
class ParsedDid:
    """A did:btco identifier split into its parts."""
    did: str
    satoshi: int
    network: Network
    path: Optional[str] = None


def validate_satoshi_number(value: Union[int, str]) -> int:
    """
    Validate a satoshi identifier and return it as an int.

    Args:
        value: Integer or string of decimal digits

    Returns:
        The satoshi number

    Raises:
        InvalidSatoshiError: If the value is not a whole number in
            [0, MAX_SATOSHI_SUPPLY]
    """
    if isinstance(value, bool):
        raise InvalidSatoshiError(f"Satoshi number must be an integer, got {value!r}")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise InvalidSatoshiError("Satoshi number cannot be empty")
        if not text.isdigit() or not text.isascii():
            raise InvalidSatoshiError(f"Satoshi number must contain only digits: {value!r}")
        number = int(text)
    else:
        raise InvalidSatoshiError(f"Satoshi number must be an integer, got {type(value).__name__}")

    if number < 0:
        raise InvalidSatoshiError(f"Satoshi number cannot be negative: {number}")
    if number > MAX_SATOSHI_SUPPLY:
        raise InvalidSatoshiError(
            f"Satoshi number {number} exceeds maximum supply {MAX_SATOSHI_SUPPLY}"
        )
    return number


def build_did(satoshi: Union[int, str], network: Union[Network, str, None] = None) -> str:
    """Build the did:btco identifier for a satoshi on a network."""
    number = validate_satoshi_number(satoshi)
    prefix = Network.from_value(network).did_prefix
    if prefix:
        return f"did:{DID_METHOD}:{prefix}:{number}"
    return f"did:{DID_METHOD}:{number}"


def parse_did(did: str) -> ParsedDid:
    """
    Parse a did:btco identifier or DID URL.

    Raises:
        InvalidInputError: If the string is not a did:btco identifier
        InvalidSatoshiError: If the satoshi part is out of range
    """
    if not isinstance(did, str):
        raise InvalidInputError("DID must be a string")
    match = _DID_PATTERN.match(did.strip())
    if not match:
        raise InvalidInputError(f"Not a did:btco identifier: {did}")
    prefix, sat_text, path = match.groups()
    satoshi = validate_satoshi_number(sat_text)
    network = Network.from_did_prefix(prefix)
    base = build_did(satoshi, network)
    return ParsedDid(did=base, satoshi=satoshi, network=network, path=path)


def is_btco_did(value: str) -> bool:
    """Check whether a string is a well-formed did:btco identifier (no path)."""
    try:
        return parse_did(value).path is None
    except (InvalidInputError, InvalidSatoshiError):
        return False


def extract_satoshi(did_or_url: str) -> Optional[int]:
    """Return the satoshi number of a did:btco DID or DID URL, or None."""
    try:
        return parse_did(did_or_url).satoshi
    except (InvalidInputError, InvalidSatoshiError):
        return None
