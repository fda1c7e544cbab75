"""
Bitcoin primitives used by the sync engine.

Only what wallet sync needs:
- SHA256 helpers and the Esplora scripthash key
- CompactSize (varint) encoding
- Transaction models with legacy and BIP144 serialization
- Standard output templates and address <-> scriptPubKey conversion

Address codecs come from the bech32 (BIP173/BIP350) and base58 libraries.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field
from enum import Enum

import base58
import bech32 as bech32_lib


class NetworkType(str, Enum):
    """Bitcoin network types."""

    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"


# Segwit human-readable parts
HRP_MAP = {
    NetworkType.MAINNET: "bc",
    NetworkType.TESTNET: "tb",
    NetworkType.SIGNET: "tb",
    NetworkType.REGTEST: "bcrt",
}

# Base58check version bytes; the three test networks share theirs
P2PKH_VERSION = {
    NetworkType.MAINNET: 0x00,
    NetworkType.TESTNET: 0x6F,
    NetworkType.SIGNET: 0x6F,
    NetworkType.REGTEST: 0x6F,
}

P2SH_VERSION = {
    NetworkType.MAINNET: 0x05,
    NetworkType.TESTNET: 0xC4,
    NetworkType.SIGNET: 0xC4,
    NetworkType.REGTEST: 0xC4,
}


# =============================================================================
# Hashing
# =============================================================================


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def hash256(data: bytes) -> bytes:
    """Double SHA256, as used for txids."""
    return sha256(sha256(data))


def script_to_scripthash(script: bytes) -> str:
    """
    Compute the Esplora scripthash of a scriptPubKey.

    Esplora keys script history by the plain SHA256 of the script in
    forward byte order (unlike the Electrum protocol, it is not reversed).
    """
    return sha256(script).hex()


# =============================================================================
# CompactSize
# =============================================================================

# Marker byte -> little-endian width of the multi-byte forms
_VARINT_FORMATS = {0xFD: "<H", 0xFE: "<I", 0xFF: "<Q"}


def encode_varint(n: int) -> bytes:
    """CompactSize encoding of a non-negative integer."""
    if n < 0xFD:
        return bytes([n])
    for marker, fmt in _VARINT_FORMATS.items():
        if n < 1 << (8 * struct.calcsize(fmt)):
            return bytes([marker]) + struct.pack(fmt, n)
    raise ValueError(f"Value too large for a varint: {n}")


# =============================================================================
# Transaction Models
# =============================================================================


@dataclass(frozen=True)
class OutPoint:
    """Reference to a transaction output."""

    txid: str  # display (big-endian) hex
    vout: int

    def __str__(self) -> str:
        return f"{self.txid}:{self.vout}"

    def serialize(self) -> bytes:
        """36 bytes: internal-order txid, then vout."""
        return bytes.fromhex(self.txid)[::-1] + struct.pack("<I", self.vout)


# Previous output referenced by coinbase inputs
NULL_OUTPOINT = OutPoint(txid="00" * 32, vout=0xFFFFFFFF)


@dataclass(frozen=True)
class TxOut:
    value: int  # satoshis
    script_pubkey: bytes

    def serialize(self) -> bytes:
        script = self.script_pubkey
        return struct.pack("<Q", self.value) + encode_varint(len(script)) + script


@dataclass(frozen=True)
class TxIn:
    previous_output: OutPoint
    script_sig: bytes = b""
    sequence: int = 0xFFFFFFFF
    witness: tuple[bytes, ...] = field(default_factory=tuple)

    def serialize(self) -> bytes:
        """Input without its witness stack."""
        return (
            self.previous_output.serialize()
            + encode_varint(len(self.script_sig))
            + self.script_sig
            + struct.pack("<I", self.sequence)
        )


@dataclass(frozen=True)
class Transaction:
    """A fully materialized Bitcoin transaction."""

    version: int
    inputs: tuple[TxIn, ...]
    outputs: tuple[TxOut, ...]
    locktime: int

    @property
    def has_witness(self) -> bool:
        return any(inp.witness for inp in self.inputs)

    def serialize(self, include_witness: bool = True) -> bytes:
        """
        Serialize the transaction.

        Uses the BIP144 layout (marker, flag, witness stacks) when
        ``include_witness`` is set and at least one input carries a witness.
        """
        segwit = include_witness and self.has_witness

        parts = [struct.pack("<i", self.version)]
        if segwit:
            parts.append(b"\x00\x01")
        parts.append(encode_varint(len(self.inputs)))
        parts.extend(inp.serialize() for inp in self.inputs)
        parts.append(encode_varint(len(self.outputs)))
        parts.extend(out.serialize() for out in self.outputs)
        if segwit:
            for inp in self.inputs:
                parts.append(encode_varint(len(inp.witness)))
                parts.extend(encode_varint(len(item)) + item for item in inp.witness)
        parts.append(struct.pack("<I", self.locktime))
        return b"".join(parts)

    def to_hex(self) -> str:
        return self.serialize().hex()

    @property
    def txid(self) -> str:
        """Reversed double SHA256 of the witness-stripped serialization."""
        return hash256(self.serialize(include_witness=False))[::-1].hex()

    @property
    def is_coinbase(self) -> bool:
        return len(self.inputs) == 1 and self.inputs[0].previous_output == NULL_OUTPOINT


# =============================================================================
# Output Templates and Addresses
# =============================================================================


class ScriptType(str, Enum):
    """Standard output templates that have an address form."""

    P2PKH = "p2pkh"
    P2SH = "p2sh"
    P2WPKH = "p2wpkh"
    P2WSH = "p2wsh"
    P2TR = "p2tr"


_SEGWIT_TYPES = (ScriptType.P2WPKH, ScriptType.P2WSH, ScriptType.P2TR)


def script_type(script: bytes) -> ScriptType | None:
    """Template of a scriptPubKey, None when it is non-standard."""
    size = len(script)
    if size == 22 and script[:2] == b"\x00\x14":
        return ScriptType.P2WPKH
    if size == 34 and script[:2] == b"\x00\x20":
        return ScriptType.P2WSH
    if size == 34 and script[:2] == b"\x51\x20":
        return ScriptType.P2TR
    if size == 25 and script[:3] == b"\x76\xa9\x14" and script[23:] == b"\x88\xac":
        return ScriptType.P2PKH
    if size == 23 and script[:2] == b"\xa9\x14" and script[22] == 0x87:
        return ScriptType.P2SH
    return None


def _witness_script(version: int, program: bytes) -> bytes:
    # OP_0 for v0, OP_1..OP_16 (0x51..0x60) after that
    opcode = 0x00 if version == 0 else 0x50 + version
    return bytes([opcode, len(program)]) + program


def get_hrp(network: str | NetworkType) -> str:
    """Segwit human-readable part (bc, tb, bcrt) of a network."""
    return HRP_MAP[NetworkType(network)]


def address_to_scriptpubkey(address: str, network: str | NetworkType | None = None) -> bytes:
    """
    Decode an address into the scriptPubKey Esplora indexes history by.

    Accepts segwit v0 and v1 addresses (P2WPKH, P2WSH, P2TR) and base58check
    P2PKH / P2SH addresses. Bech32 addresses must be all lower or all upper
    case (BIP173). When ``network`` is given the address must belong to it.

    Raises:
        ValueError: If the address cannot be decoded, has no standard
            template or belongs to another network
    """
    expected = NetworkType(network) if network is not None else None
    lowered = address.lower()
    if lowered.startswith(tuple(f"{hrp}1" for hrp in set(HRP_MAP.values()))):
        if address not in (lowered, address.upper()):
            raise ValueError(f"Mixed-case segwit address: {address}")
        hrp = lowered[: lowered.rfind("1")]
        if expected is not None and hrp != get_hrp(expected):
            raise ValueError(f"Address {address} is not a {expected.value} address")
        witver, program = bech32_lib.decode(hrp, lowered)
        if witver is None or program is None:
            raise ValueError(f"Invalid segwit address: {address}")
        script = _witness_script(witver, bytes(program))
        if script_type(script) not in _SEGWIT_TYPES:
            raise ValueError(f"Unsupported witness program v{witver}: {address}")
        return script

    try:
        decoded = base58.b58decode_check(address)
    except ValueError as e:
        raise ValueError(f"Invalid base58 address: {address}") from e
    if len(decoded) != 21:
        raise ValueError(f"Unexpected base58 payload length {len(decoded)}: {address}")

    version, payload = decoded[0], decoded[1:]
    if expected is not None and version not in (P2PKH_VERSION[expected], P2SH_VERSION[expected]):
        raise ValueError(f"Address {address} is not a {expected.value} address")
    if version in P2PKH_VERSION.values():
        return b"\x76\xa9\x14" + payload + b"\x88\xac"
    if version in P2SH_VERSION.values():
        return b"\xa9\x14" + payload + b"\x87"
    raise ValueError(f"Unknown base58 version byte {version:#04x}: {address}")



def scriptpubkey_to_address(
    scriptpubkey: bytes, network: str | NetworkType = NetworkType.MAINNET
) -> str:
    """
    Encode a standard scriptPubKey as an address on ``network``.

    Raises:
        ValueError: For non-standard scripts
    """
    network = NetworkType(network)
    kind = script_type(scriptpubkey)

    if kind in _SEGWIT_TYPES:
        witver = 0 if scriptpubkey[0] == 0x00 else scriptpubkey[0] - 0x50
        address = bech32_lib.encode(get_hrp(network), witver, scriptpubkey[2:])
        if address is None:
            raise ValueError(f"Cannot encode segwit script {scriptpubkey.hex()}")
        return address

    if kind is ScriptType.P2PKH:
        payload = bytes([P2PKH_VERSION[network]]) + scriptpubkey[3:23]
    elif kind is ScriptType.P2SH:
        payload = bytes([P2SH_VERSION[network]]) + scriptpubkey[2:22]
    else:
        raise ValueError(f"Unsupported scriptPubKey: {scriptpubkey.hex()}")
    return base58.b58encode_check(payload).decode("ascii")
