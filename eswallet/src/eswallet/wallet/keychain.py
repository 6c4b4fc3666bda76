"""
Script derivation for the two wallet branches.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from eswallet.wallet.address import pubkey_to_p2wpkh_script, script_to_address
from eswallet.wallet.bip32 import HDKey, mnemonic_to_seed
from eswallet.wallet.models import KeychainKind, ScriptInfo

# BIP44 coin type per network
COIN_TYPE = {"mainnet": 0, "testnet": 1, "signet": 1, "regtest": 1}


class Keychain(ABC):
    """Deterministic source of output scripts, addressed by branch and index."""

    network: str = "mainnet"

    @abstractmethod
    def script_at(self, kind: KeychainKind, index: int) -> ScriptInfo | None:
        """Script at (kind, index); None when the branch is exhausted."""

    def scripts(self, kind: KeychainKind, start: int, count: int) -> list[ScriptInfo]:
        """Up to count consecutive scripts starting at start."""
        result = []
        for index in range(start, start + count):
            info = self.script_at(kind, index)
            if info is None:
                break
            result.append(info)
        return result


class Bip84Keychain(Keychain):
    """
    BIP84 P2WPKH keychain: m/84'/coin'/account'/change/index.

    Account-level keys are derived once, child keys are cached per index.
    """

    def __init__(self, master_key: HDKey, network: str = "mainnet", account: int = 0):
        self.network = network
        self.account = account
        self.coin_type = COIN_TYPE[network]
        account_key = master_key.derive(self.account_path)
        self._branch_keys = {kind: account_key.derive_child(int(kind)) for kind in KeychainKind}
        self._cache: dict[tuple[KeychainKind, int], ScriptInfo] = {}

    @classmethod
    def from_mnemonic(
        cls,
        mnemonic: str,
        passphrase: str = "",
        network: str = "mainnet",
        account: int = 0,
    ) -> Bip84Keychain:
        seed = mnemonic_to_seed(mnemonic, passphrase)
        return cls(HDKey.from_seed(seed), network=network, account=account)

    @property
    def account_path(self) -> str:
        return f"m/84'/{self.coin_type}'/{self.account}'"

    def script_at(self, kind: KeychainKind, index: int) -> ScriptInfo | None:
        cached = self._cache.get((kind, index))
        if cached is not None:
            return cached

        child = self._branch_keys[kind].derive_child(index)
        script = pubkey_to_p2wpkh_script(child.get_public_key_bytes())
        info = ScriptInfo(
            keychain=kind,
            index=index,
            script=script,
            address=script_to_address(script, self.network),
            path=f"{self.account_path}/{int(kind)}/{index}",
        )
        self._cache[(kind, index)] = info
        return info


class ScriptListKeychain(Keychain):
    """Watch-only keychain over explicit script lists."""

    def __init__(
        self,
        external: Sequence[bytes],
        internal: Sequence[bytes] = (),
        network: str = "mainnet",
    ):
        self.network = network
        self._scripts = {
            KeychainKind.EXTERNAL: list(external),
            KeychainKind.INTERNAL: list(internal),
        }

    def script_at(self, kind: KeychainKind, index: int) -> ScriptInfo | None:
        scripts = self._scripts[kind]
        if index >= len(scripts):
            return None
        script = scripts[index]
        return ScriptInfo(
            keychain=kind,
            index=index,
            script=script,
            address=script_to_address(script, self.network),
        )
