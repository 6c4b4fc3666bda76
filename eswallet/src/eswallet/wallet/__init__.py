from eswallet.wallet.keychain import Bip84Keychain, Keychain, ScriptListKeychain
from eswallet.wallet.models import (
    BranchProgress,
    BranchState,
    KeychainKind,
    LocalUtxo,
    ScriptInfo,
    SyncBatch,
    SyncResult,
    TransactionDetails,
)
from eswallet.wallet.store import MemoryWalletStore, WalletStore
from eswallet.wallet.sync import WalletSync

__all__ = [
    "Bip84Keychain",
    "BranchProgress",
    "BranchState",
    "Keychain",
    "KeychainKind",
    "LocalUtxo",
    "MemoryWalletStore",
    "ScriptInfo",
    "ScriptListKeychain",
    "SyncBatch",
    "SyncResult",
    "TransactionDetails",
    "WalletStore",
    "WalletSync",
]
