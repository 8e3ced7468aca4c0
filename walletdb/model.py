from __future__ import annotations
from typing import Protocol, TYPE_CHECKING

from bitcoinx import hash_to_hex_str

from .constants import DBErrors, has_unknown_critical_flags, UNORDERED_POSITION, WalletFlag
from .logs import logs
from .types import (AddressBookEntry, HDChain, KeyMetadata, KeyPool, MasterKey, WalletTx)

if TYPE_CHECKING:
    from .walletdb import WalletBatch, WalletDatabase


logger = logs.get_logger("wallet-model")

# Redeem scripts larger than this are not spendable, and are skipped rather than loaded.
MAX_SCRIPT_ELEMENT_SIZE = 520


class ChainView(Protocol):
    def get_transaction_height(self, tx_hash: bytes) -> int|None:
        """The height of the block the given transaction was mined in, if known."""
        ...


class NullChainView:
    def get_transaction_height(self, tx_hash: bytes) -> int|None:
        return None


class WalletModelProtocol(Protocol):
    """
    The load callbacks the wallet load pipeline delivers decoded records through.

    The wallet model owns its own invariants. Those returning `bool` report a failure to
    accept the given record, which the pipeline treats as a corrupt record.
    """

    def load_address_book_name(self, address: str, name: str) -> None:
        ...

    def load_address_book_purpose(self, address: str, purpose: str) -> None:
        ...

    def load_to_wallet(self, wtx: WalletTx) -> None:
        ...

    def get_wallet_tx(self, tx_hash: bytes) -> WalletTx|None:
        ...

    def load_watch_only(self, script: bytes) -> None:
        ...

    def load_key(self, public_key: bytes, private_key: bytes) -> bool:
        ...

    def has_master_key(self, master_key_id: int) -> bool:
        ...

    def load_master_key(self, master_key_id: int, master_key: MasterKey) -> None:
        ...

    def set_master_key_max_id(self, master_key_id: int) -> None:
        ...

    def load_crypted_key(self, public_key: bytes, crypted_secret: bytes) -> bool:
        ...

    def load_key_metadata(self, key_id: bytes, metadata: KeyMetadata) -> None:
        ...

    def load_script_metadata(self, script_id: bytes, metadata: KeyMetadata) -> None:
        ...

    def load_key_pool(self, index: int, keypool: KeyPool) -> None:
        ...

    def load_cscript(self, script_hash: bytes, script: bytes) -> bool:
        ...

    def load_dest_data(self, address: str, key: str, value: str) -> None:
        ...

    def set_hd_chain(self, chain: HDChain) -> None:
        ...

    def set_wallet_flags(self, flags: int) -> bool:
        ...

    def set_order_pos_next(self, order_pos_next: int) -> None:
        ...

    def load_min_version(self, version: int) -> None:
        ...

    def set_wallet_version(self, version: int) -> None:
        ...

    def update_time_first_key(self, time_first_key: int) -> None:
        ...

    def reorder_transactions(self) -> DBErrors:
        ...

    def is_locked(self) -> bool:
        ...

    def get_key_pool_size(self) -> int:
        ...

    def set_keys_left_since_auto_backup(self, count: int) -> None:
        ...


class MemoryWallet:
    """
    A plain in-memory wallet model.

    This is the disposable wallet the keys-only recovery decodes records into, and it is
    also what a caller with no richer wallet model can load a wallet database into.
    """

    def __init__(self, name: str="", batch: WalletBatch|None=None,
            database: WalletDatabase|None=None) -> None:
        self.name = name
        self.batch = batch
        self.database = database

        self.address_book: dict[str, AddressBookEntry] = {}
        self.transactions: dict[bytes, WalletTx] = {}
        self.watch_only: set[bytes] = set()
        self.keys: dict[bytes, bytes] = {}
        self.crypted_keys: dict[bytes, bytes] = {}
        self.master_keys: dict[int, MasterKey] = {}
        self.master_key_max_id = 0
        self.key_metadata: dict[bytes, KeyMetadata] = {}
        self.script_metadata: dict[bytes, KeyMetadata] = {}
        self.key_pool: dict[int, KeyPool] = {}
        self.cscripts: dict[bytes, bytes] = {}
        self.dest_data: dict[str, dict[str, str]] = {}
        self.hd_chain: HDChain|None = None
        self.wallet_flags = WalletFlag.NONE
        self.order_pos_next = 0
        self.min_version = 0
        self.wallet_version = 0
        self.time_first_key: int|None = None
        self.locked = False
        self.keys_left_since_auto_backup = 0
        self.reorder_count = 0

    def load_address_book_name(self, address: str, name: str) -> None:
        entry = self.address_book.get(address, AddressBookEntry())
        self.address_book[address] = entry._replace(name=name)

    def load_address_book_purpose(self, address: str, purpose: str) -> None:
        entry = self.address_book.get(address, AddressBookEntry())
        self.address_book[address] = entry._replace(purpose=purpose)

    def load_to_wallet(self, wtx: WalletTx) -> None:
        self.transactions[wtx.hash()] = wtx

    def get_wallet_tx(self, tx_hash: bytes) -> WalletTx|None:
        return self.transactions.get(tx_hash)

    def load_watch_only(self, script: bytes) -> None:
        self.watch_only.add(script)

    def load_key(self, public_key: bytes, private_key: bytes) -> bool:
        # A wallet is either encrypted or it is not, it can not mix plaintext keys in.
        if self.crypted_keys:
            return False
        self.keys[public_key] = private_key
        return True

    def has_master_key(self, master_key_id: int) -> bool:
        return master_key_id in self.master_keys

    def load_master_key(self, master_key_id: int, master_key: MasterKey) -> None:
        self.master_keys[master_key_id] = master_key

    def set_master_key_max_id(self, master_key_id: int) -> None:
        self.master_key_max_id = max(self.master_key_max_id, master_key_id)

    def load_crypted_key(self, public_key: bytes, crypted_secret: bytes) -> bool:
        if self.keys:
            return False
        self.crypted_keys[public_key] = crypted_secret
        return True

    def is_crypted(self) -> bool:
        return len(self.crypted_keys) > 0 or len(self.master_keys) > 0

    def load_key_metadata(self, key_id: bytes, metadata: KeyMetadata) -> None:
        self.key_metadata[key_id] = metadata
        self.update_time_first_key(metadata.create_time)

    def load_script_metadata(self, script_id: bytes, metadata: KeyMetadata) -> None:
        self.script_metadata[script_id] = metadata
        self.update_time_first_key(metadata.create_time)

    def load_key_pool(self, index: int, keypool: KeyPool) -> None:
        self.key_pool[index] = keypool

    def load_cscript(self, script_hash: bytes, script: bytes) -> bool:
        if len(script) > MAX_SCRIPT_ELEMENT_SIZE:
            logger.warning("Skipping redeem script of %d bytes for %s, it exceeds the size "
                "limit of %d bytes", len(script), script_hash.hex(), MAX_SCRIPT_ELEMENT_SIZE)
            return True
        self.cscripts[script_hash] = script
        return True

    def load_dest_data(self, address: str, key: str, value: str) -> None:
        self.dest_data.setdefault(address, {})[key] = value

    def set_hd_chain(self, chain: HDChain) -> None:
        self.hd_chain = chain

    def set_wallet_flags(self, flags: int) -> bool:
        if has_unknown_critical_flags(flags):
            return False
        self.wallet_flags = WalletFlag(flags)
        return True

    def set_order_pos_next(self, order_pos_next: int) -> None:
        self.order_pos_next = order_pos_next

    def load_min_version(self, version: int) -> None:
        self.min_version = version

    def set_wallet_version(self, version: int) -> None:
        self.wallet_version = version

    def update_time_first_key(self, time_first_key: int) -> None:
        # A create time of zero is unknown, and one means the wallet is older than any block.
        if time_first_key == 0:
            return
        if self.time_first_key is None or time_first_key < self.time_first_key:
            self.time_first_key = time_first_key

    def reorder_transactions(self) -> DBErrors:
        """
        Give every transaction without an order position one, after those that have one.

        Unordered transactions are ordered by the time they were received.
        """
        self.reorder_count += 1
        ordered_positions = [ wtx.order_pos for wtx in self.transactions.values()
            if wtx.order_pos != UNORDERED_POSITION ]
        next_position = max(ordered_positions + [ self.order_pos_next - 1 ]) + 1
        unordered = sorted((wtx for wtx in self.transactions.values()
            if wtx.order_pos == UNORDERED_POSITION), key=lambda wtx: wtx.time_received)
        for wtx in unordered:
            wtx.order_pos = next_position
            next_position += 1
            if self.batch is not None and not self.batch.write_tx(wtx):
                logger.error("Unable to write reordered transaction %s",
                    hash_to_hex_str(wtx.hash()))
                return DBErrors.CORRUPT
        self.order_pos_next = next_position
        if self.batch is not None and not self.batch.write_order_pos_next(next_position):
            return DBErrors.CORRUPT
        return DBErrors.OK

    def is_locked(self) -> bool:
        return self.is_crypted() and self.locked

    def get_key_pool_size(self) -> int:
        return len(self.key_pool)

    def set_keys_left_since_auto_backup(self, count: int) -> None:
        self.keys_left_since_auto_backup = count
