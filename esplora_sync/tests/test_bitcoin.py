"""
Tests for Bitcoin primitives.
"""

from __future__ import annotations

import hashlib

import pytest

from esplora_sync.bitcoin import (
    NULL_OUTPOINT,
    NetworkType,
    OutPoint,
    ScriptType,
    Transaction,
    TxIn,
    TxOut,
    address_to_scriptpubkey,
    encode_varint,
    get_hrp,
    script_to_scripthash,
    script_type,
    scriptpubkey_to_address,
)

# Genesis block coinbase
GENESIS_COINBASE_HEX = (
    "01000000010000000000000000000000000000000000000000000000000000000000000000ffffffff"
    "4d04ffff001d0104455468652054696d65732030332f4a616e2f32303039204368616e63656c6c6f72"
    "206f6e206272696e6b206f66207365636f6e64206261696c6f757420666f722062616e6b73ffffffff"
    "0100f2052a01000000434104678afdb0fe5548271967f1a67130b7105cd6a828e03909a67962e0ea1f"
    "61deb649f6bc3f4cef38c4f35504e51ec112de5c384df7ba0b8d578a4c702b6bf11d5fac00000000"
)
GENESIS_COINBASE_TXID = "4a5e1e4baab89f3a32518a88c31bc87f618f76673e2cc77ab2127b7afdeda33b"


def _genesis_coinbase() -> Transaction:
    raw = bytes.fromhex(GENESIS_COINBASE_HEX)
    # Fixed layout: 4 version, 1 input count, 36 outpoint, 1 script length
    script_sig = raw[42 : 42 + 0x4D]
    output_script = raw[-4 - 0x43 : -4]
    return Transaction(
        version=1,
        inputs=(TxIn(previous_output=NULL_OUTPOINT, script_sig=script_sig),),
        outputs=(TxOut(value=50 * 100_000_000, script_pubkey=output_script),),
        locktime=0,
    )


class TestScripthash:
    def test_is_forward_sha256(self) -> None:
        script = bytes.fromhex("0014" + "aa" * 20)
        assert script_to_scripthash(script) == hashlib.sha256(script).hexdigest()


class TestVarint:
    @pytest.mark.parametrize(
        ("value", "encoded"),
        [
            (0, "00"),
            (0xFC, "fc"),
            (0xFD, "fdfd00"),
            (0xFFFF, "fdffff"),
            (0x10000, "fe00000100"),
            (0x100000000, "ff0000000001000000"),
        ],
    )
    def test_encode(self, value: int, encoded: str) -> None:
        assert encode_varint(value).hex() == encoded

    @pytest.mark.parametrize("value", [-1, 1 << 64])
    def test_out_of_range(self, value: int) -> None:
        with pytest.raises(ValueError):
            encode_varint(value)


class TestTransaction:
    def test_genesis_coinbase_serialization(self) -> None:
        tx = _genesis_coinbase()
        assert tx.to_hex() == GENESIS_COINBASE_HEX
        assert tx.txid == GENESIS_COINBASE_TXID
        assert tx.is_coinbase
        assert not tx.has_witness

    def test_witness_layout(self) -> None:
        tx = Transaction(
            version=2,
            inputs=(
                TxIn(
                    previous_output=OutPoint(txid="11" * 32, vout=1),
                    sequence=0xFFFFFFFD,
                    witness=(b"\x01\x02", b"\x03"),
                ),
            ),
            outputs=(TxOut(value=1_000, script_pubkey=bytes.fromhex("0014" + "22" * 20)),),
            locktime=0,
        )
        full = tx.serialize()
        stripped = tx.serialize(include_witness=False)

        assert full[4:6] == b"\x00\x01"
        assert stripped[4] == 1  # input count right after version
        # Witness: 2 items, then each length-prefixed
        assert full[-4 - 6 : -4] == bytes.fromhex("0202010201" + "03")
        assert len(full) == len(stripped) + 2 + 6
        # txid commits to the non-witness serialization only
        assert tx.txid == hashlib.sha256(hashlib.sha256(stripped).digest()).digest()[::-1].hex()

    def test_outpoint(self) -> None:
        outpoint = OutPoint(txid="ab" * 31 + "cd", vout=2)
        assert str(outpoint) == "ab" * 31 + "cd:2"
        assert outpoint.serialize() == bytes.fromhex("cd" + "ab" * 31) + b"\x02\x00\x00\x00"


class TestScriptType:
    @pytest.mark.parametrize(
        ("script_hex", "expected"),
        [
            ("0014" + "ab" * 20, ScriptType.P2WPKH),
            ("0020" + "cd" * 32, ScriptType.P2WSH),
            ("5120" + "ef" * 32, ScriptType.P2TR),
            ("a914" + "12" * 20 + "87", ScriptType.P2SH),
            ("76a914" + "34" * 20 + "88ac", ScriptType.P2PKH),
            ("6a04deadbeef", None),
            ("0014" + "ab" * 19, None),
        ],
    )
    def test_templates(self, script_hex: str, expected: ScriptType | None) -> None:
        assert script_type(bytes.fromhex(script_hex)) == expected


class TestAddresses:
    def test_hrp(self) -> None:
        assert get_hrp("mainnet") == "bc"
        assert get_hrp(NetworkType.SIGNET) == "tb"
        assert get_hrp(NetworkType.REGTEST) == "bcrt"

    def test_p2pkh_burn_address(self) -> None:
        script = bytes.fromhex("76a914" + "00" * 20 + "88ac")
        assert scriptpubkey_to_address(script) == "1111111111111111111114oLvT2"
        assert address_to_scriptpubkey("1111111111111111111114oLvT2") == script

    @pytest.mark.parametrize(
        ("script_hex", "network"),
        [
            ("0014" + "ab" * 20, NetworkType.MAINNET),
            ("0020" + "cd" * 32, NetworkType.TESTNET),
            ("5120" + "ef" * 32, NetworkType.REGTEST),
            ("a914" + "12" * 20 + "87", NetworkType.MAINNET),
            ("76a914" + "34" * 20 + "88ac", NetworkType.SIGNET),
        ],
    )
    def test_script_address_script(self, script_hex: str, network: NetworkType) -> None:
        script = bytes.fromhex(script_hex)
        address = scriptpubkey_to_address(script, network)
        assert address_to_scriptpubkey(address) == script
        assert address_to_scriptpubkey(address, network) == script

    def test_segwit_prefixes(self) -> None:
        script = bytes.fromhex("0014" + "ab" * 20)
        assert scriptpubkey_to_address(script, "mainnet").startswith("bc1q")
        assert scriptpubkey_to_address(script, "testnet").startswith("tb1q")
        assert scriptpubkey_to_address(script, "regtest").startswith("bcrt1q")

    def test_uppercase_bech32_accepted(self) -> None:
        script = bytes.fromhex("0014" + "ab" * 20)
        address = scriptpubkey_to_address(script)
        assert address_to_scriptpubkey(address.upper()) == script

    def test_mixed_case_bech32_rejected(self) -> None:
        address = scriptpubkey_to_address(bytes.fromhex("0014" + "ab" * 20))
        mixed = address[:6] + address[6:].upper()
        with pytest.raises(ValueError, match="Mixed-case"):
            address_to_scriptpubkey(mixed)

    @pytest.mark.parametrize(
        ("script_hex", "encoded_for", "decoded_for"),
        [
            ("0014" + "ab" * 20, NetworkType.MAINNET, NetworkType.TESTNET),
            ("0014" + "ab" * 20, NetworkType.TESTNET, NetworkType.REGTEST),
            ("76a914" + "34" * 20 + "88ac", NetworkType.MAINNET, NetworkType.SIGNET),
            ("a914" + "12" * 20 + "87", NetworkType.TESTNET, NetworkType.MAINNET),
        ],
    )
    def test_wrong_network_rejected(
        self, script_hex: str, encoded_for: NetworkType, decoded_for: NetworkType
    ) -> None:
        address = scriptpubkey_to_address(bytes.fromhex(script_hex), encoded_for)
        with pytest.raises(ValueError, match=f"not a {decoded_for.value} address"):
            address_to_scriptpubkey(address, decoded_for)

    def test_signet_accepts_testnet_address(self) -> None:
        script = bytes.fromhex("0014" + "ab" * 20)
        address = scriptpubkey_to_address(script, NetworkType.TESTNET)
        assert address_to_scriptpubkey(address, "signet") == script

    @pytest.mark.parametrize("address", ["bc1qinvalid", "1BoatSLRHtKNngkdXEeobR76b53LETtpyX", ""])
    def test_invalid_address(self, address: str) -> None:
        with pytest.raises(ValueError):
            address_to_scriptpubkey(address)

    def test_non_standard_script(self) -> None:
        with pytest.raises(ValueError, match="Unsupported scriptPubKey"):
            scriptpubkey_to_address(b"\x6a\x04test")
