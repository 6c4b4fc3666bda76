"""
BIP32 HD key derivation for Esplora-synced wallets.
Implements BIP84 (Native SegWit) derivation paths.
"""

from __future__ import annotations

import hashlib
import hmac
import unicodedata

from coincurve import PrivateKey, PublicKey

# secp256k1 curve order
SECP256K1_N = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)

HARDENED = 0x80000000


def parse_path(path: str) -> list[int]:
    """
    Parse "m/84'/0'/0'/0/5" into child indexes (hardened ones offset by 2^31).
    Both ' and h mark hardened steps.
    """
    if not path.startswith("m"):
        raise ValueError("Path must start with 'm'")

    indexes: list[int] = []
    for part in path.split("/")[1:]:
        if not part:
            continue
        hardened = part.endswith(("'", "h"))
        index = int(part.rstrip("'h"))
        if not 0 <= index < HARDENED:
            raise ValueError(f"Path component out of range: {part}")
        indexes.append(index + HARDENED if hardened else index)
    return indexes


class HDKey:
    """
    Hierarchical Deterministic private key.
    Implements BIP32 private derivation.
    """

    def __init__(self, private_key: PrivateKey, chain_code: bytes, depth: int = 0):
        self._private_key = private_key
        self._public_key = private_key.public_key
        self.chain_code = chain_code
        self.depth = depth

    @property
    def public_key(self) -> PublicKey:
        return self._public_key

    @classmethod
    def from_seed(cls, seed: bytes) -> HDKey:
        """Create master HD key from seed"""
        hmac_result = hmac.new(b"Bitcoin seed", seed, hashlib.sha512).digest()
        return cls(PrivateKey(hmac_result[:32]), hmac_result[32:], depth=0)

    def derive(self, path: str) -> HDKey:
        """Derive child key from path notation (e.g., "m/84'/0'/0'/0/0")"""
        key = self
        for index in parse_path(path):
            key = key.derive_child(index)
        return key

    def derive_child(self, index: int) -> HDKey:
        if index >= HARDENED:
            data = b"\x00" + self._private_key.secret + index.to_bytes(4, "big")
        else:
            data = self.get_public_key_bytes() + index.to_bytes(4, "big")

        hmac_result = hmac.new(self.chain_code, data, hashlib.sha512).digest()
        offset_int = int.from_bytes(hmac_result[:32], "big")
        if offset_int >= SECP256K1_N:
            raise ValueError("Invalid child key")

        parent_key_int = int.from_bytes(self._private_key.secret, "big")
        child_key_int = (parent_key_int + offset_int) % SECP256K1_N
        if child_key_int == 0:
            raise ValueError("Invalid child key")

        child_private_key = PrivateKey(child_key_int.to_bytes(32, "big"))
        return HDKey(child_private_key, hmac_result[32:], depth=self.depth + 1)

    def get_public_key_bytes(self, compressed: bool = True) -> bytes:
        return self._public_key.format(compressed=compressed)


def mnemonic_to_seed(mnemonic: str, passphrase: str = "") -> bytes:
    """
    Convert BIP39 mnemonic to seed (PBKDF2-HMAC-SHA512, 2048 rounds).
    The word list checksum is not validated.
    """
    normalized = unicodedata.normalize("NFKD", " ".join(mnemonic.split()))
    salt = unicodedata.normalize("NFKD", "mnemonic" + passphrase)
    return hashlib.pbkdf2_hmac("sha512", normalized.encode("utf-8"), salt.encode("utf-8"), 2048)
