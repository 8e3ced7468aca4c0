from .constants import DBErrors, RecordType
from .model import MemoryWallet
from .walletdb import WalletBatch, WalletDatabase
