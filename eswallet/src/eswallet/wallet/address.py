"""
Output script and address helpers for segwit wallets.
"""

from __future__ import annotations

import hashlib

BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
BECH32_CONST = 1
BECH32M_CONST = 0x2BC830A3

NETWORK_HRP = {"mainnet": "bc", "testnet": "tb", "signet": "tb", "regtest": "bcrt"}


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    h = hashlib.new("ripemd160")
    h.update(hashlib.sha256(data).digest())
    return h.digest()


def bech32_polymod(values: list[int]) -> int:
    gen = [0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3]
    chk = 1
    for v in values:
        b = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ v
        for i in range(5):
            chk ^= gen[i] if ((b >> i) & 1) else 0
    return chk


def bech32_hrp_expand(hrp: str) -> list[int]:
    return [ord(x) >> 5 for x in hrp] + [0] + [ord(x) & 31 for x in hrp]


def bech32_encode(hrp: str, data: list[int], const: int = BECH32_CONST) -> str:
    values = bech32_hrp_expand(hrp) + data
    polymod = bech32_polymod(values + [0, 0, 0, 0, 0, 0]) ^ const
    checksum = [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]
    return hrp + "1" + "".join(BECH32_CHARSET[d] for d in data + checksum)


def convertbits(data: bytes, frombits: int, tobits: int) -> list[int]:
    """Regroup bits, padding the final group (encoding direction only)."""
    acc = 0
    bits = 0
    ret = []
    maxv = (1 << tobits) - 1
    max_acc = (1 << (frombits + tobits - 1)) - 1

    for value in data:
        acc = ((acc << frombits) | value) & max_acc
        bits += frombits
        while bits >= tobits:
            bits -= tobits
            ret.append((acc >> bits) & maxv)
    if bits:
        ret.append((acc << (tobits - bits)) & maxv)
    return ret


def encode_segwit_address(network: str, witness_version: int, program: bytes) -> str:
    """BIP173 (v0) / BIP350 (v1+) address for a witness program."""
    const = BECH32_CONST if witness_version == 0 else BECH32M_CONST
    data = [witness_version] + convertbits(program, 8, 5)
    return bech32_encode(NETWORK_HRP[network], data, const)


def pubkey_to_p2wpkh_script(pubkey: bytes) -> bytes:
    """P2WPKH scriptPubKey (OP_0 <20-byte-hash>)"""
    if len(pubkey) != 33:
        raise ValueError(f"Invalid compressed pubkey length: {len(pubkey)}")
    return bytes([0x00, 0x14]) + hash160(pubkey)


def script_to_address(script: bytes, network: str = "mainnet") -> str | None:
    """
    Address for a segwit output script, None for script types without one
    (bare multisig, OP_RETURN, legacy scripts are not rendered here).
    """
    if len(script) == 22 and script[0] == 0x00 and script[1] == 0x14:
        return encode_segwit_address(network, 0, script[2:])
    if len(script) == 34 and script[0] == 0x00 and script[1] == 0x20:
        return encode_segwit_address(network, 0, script[2:])
    if len(script) == 34 and script[0] == 0x51 and script[1] == 0x20:
        return encode_segwit_address(network, 1, script[2:])
    return None
