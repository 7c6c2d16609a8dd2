# btcodid/addresses.py
"""
Bitcoin address encoding and validation.

Segwit addresses (P2WPKH v0, P2TR v1) use bech32/bech32m from embit;
legacy P2PKH/P2SH addresses are base58check. Every address is bound to a
network through its prefix, and decoding an address for the wrong network
fails with InvalidAddressError.
"""

from typing import Union

import base58
from embit import bech32
from embit.hashes import hash160

from .errors import InvalidAddressError
from .satoshi import Network

# Legacy base58check version bytes: (p2pkh, p2sh)
_BASE58_VERSIONS = {
    Network.MAINNET: (0x00, 0x05),
    Network.TESTNET: (0x6F, 0xC4),
    Network.SIGNET: (0x6F, 0xC4),
    Network.REGTEST: (0x6F, 0xC4),
}


def segwit_address(witness_version: int, program: bytes, network: Union[Network, str, None] = None) -> str:
    """Encode a witness program as a bech32 (v0) or bech32m (v1+) address."""
    hrp = Network.from_value(network).hrp
    address = bech32.encode(hrp, witness_version, list(program))
    if address is None:
        raise InvalidAddressError(
            f"Cannot encode witness v{witness_version} program of {len(program)} bytes"
        )
    return address


def p2wpkh_address(public_key: bytes, network: Union[Network, str, None] = None) -> str:
    """Native segwit address for a 33 byte compressed public key."""
    if len(public_key) != 33:
        raise InvalidAddressError("P2WPKH requires a 33 byte compressed public key")
    return segwit_address(0, hash160(public_key), network)


def p2tr_address(output_key: bytes, network: Union[Network, str, None] = None) -> str:
    """Taproot address for a 32 byte x-only output key."""
    if len(output_key) != 32:
        raise InvalidAddressError("P2TR requires a 32 byte x-only output key")
    return segwit_address(1, output_key, network)


def p2tr_script(output_key: bytes) -> bytes:
    """scriptPubKey for a taproot output: OP_1 <32 bytes>."""
    return b"\x51\x20" + output_key


def p2wpkh_script(public_key: bytes) -> bytes:
    """scriptPubKey for a P2WPKH output: OP_0 <20 byte hash>."""
    return b"\x00\x14" + hash160(public_key)


def address_to_script_pubkey(address: str, network: Union[Network, str, None] = None) -> bytes:
    """
    Decode an address into its scriptPubKey, checking its network.

    Args:
        address: bech32/bech32m or base58check address
        network: Network the address must belong to

    Returns:
        The output script the address pays to

    Raises:
        InvalidAddressError: On a malformed address or a network mismatch
    """
    if not address or not isinstance(address, str):
        raise InvalidAddressError("Address must be a non-empty string")
    net = Network.from_value(network)

    hrp = net.hrp
    if address.lower().startswith(hrp + "1"):
        version, program = bech32.decode(hrp, address)
        if version is None:
            raise InvalidAddressError(f"Invalid bech32 address: {address}")
        program = bytes(program)
        op_version = 0x50 + version if version > 0 else 0x00
        return bytes([op_version, len(program)]) + program

    try:
        payload = base58.b58decode_check(address)
    except ValueError:
        raise InvalidAddressError(f"Invalid address for {net.value}: {address}")
    if len(payload) != 21:
        raise InvalidAddressError(f"Invalid base58 address length: {address}")
    p2pkh_version, p2sh_version = _BASE58_VERSIONS[net]
    version, body = payload[0], payload[1:]
    if version == p2pkh_version:
        return b"\x76\xa9\x14" + body + b"\x88\xac"
    if version == p2sh_version:
        return b"\xa9\x14" + body + b"\x87"
    raise InvalidAddressError(f"Address {address} does not belong to {net.value}")


def validate_address(address: str, network: Union[Network, str, None] = None) -> str:
    """Return the address unchanged if it is valid for the network."""
    address_to_script_pubkey(address, network)
    return address
