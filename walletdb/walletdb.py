# walletdb - wallet record storage and recovery
# Copyright (C) 2019-2020 The ElectrumSV Developers
#
# Permission is hereby granted, free of charge, to any person
# obtaining a copy of this software and associated documentation files
# (the "Software"), to deal in the Software without restriction,
# including without limitation the rights to use, copy, modify, merge,
# publish, distribute, sublicense, and/or sell copies of the Software,
# and to permit persons to whom the Software is furnished to do so,
# subject to the following conditions:
#
# The above copyright notice and this permission notice shall be
# included in all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND,
# EXPRESS OR IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF
# MERCHANTABILITY, FITNESS FOR A PARTICULAR PURPOSE AND
# NONINFRINGEMENT. IN NO EVENT SHALL THE AUTHORS OR COPYRIGHT HOLDERS
# BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER LIABILITY, WHETHER IN AN
# ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM, OUT OF OR IN
# CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""
The wallet database, and the batch of operations on it.

A `WalletBatch` is the only way records are read from or written to a wallet database. Writes
are committed individually unless a transaction has been started on the batch. The full load
of a wallet, which reads every record into a wallet model and applies any migrations that are
due, is `WalletBatch.load_wallet`.
"""

from __future__ import annotations
import os
import threading
import time
from typing import Any, Iterator, TYPE_CHECKING

from bitcoinx import hash_to_hex_str

from .constants import (CLIENT_VERSION, DBErrors, FEATURE_LATEST, KEY_RECORD_TYPES,
    RecordType, REWRITE_ENCRYPTED_VERSIONS, worst_result)
from .exceptions import StoreError, WalletDatabaseError
from .kvstore import KeyValueStore, SqliteKeyValueStore
from .logs import logs
from .model import ChainView, WalletModelProtocol
from .records import (decode_record, encode_key, encode_value, key_integrity_hash,
    read_key_value, WATCH_ONLY_MARKER)
from .scan_state import WalletScanState
from .serialization import DataStream
from .types import (BlockLocator, DecodedRecord, DecodeError, HDChain, KeyMetadata, KeyPool,
    MasterKey, OpaqueValue, PrivateKeyValue, WalletTx)

if TYPE_CHECKING:
    from .simple_config import SimpleConfig


logger = logs.get_logger("walletdb")


class WalletDatabase:
    """
    An open wallet database file, with the counters the maintenance sweep uses to decide when
    it has been idle long enough to flush.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store
        self._lock = threading.Lock()
        self.update_counter = 0
        self.last_seen = 0
        self.last_flushed = 0
        self.last_wallet_update = 0

    @classmethod
    def open(cls, path: str, create: bool=True) -> WalletDatabase:
        return cls(SqliteKeyValueStore(path, create))

    def get_path(self) -> str:
        return self.store.get_path()

    def get_filename(self) -> str:
        return os.path.basename(self.get_path())

    def increment_update_counter(self) -> None:
        with self._lock:
            self.update_counter += 1

    def periodic_flush(self) -> bool:
        start_time = time.time()
        try:
            self.store.flush()
        except StoreError:
            logger.exception("Flushing wallet database '%s' failed", self.get_path())
            return False
        logger.debug("Flushed wallet database '%s' in %d ms", self.get_path(),
            (time.time() - start_time) * 1000)
        return True

    def close(self) -> None:
        self.store.close()


class WalletBatch:
    def __init__(self, database: WalletDatabase, config: SimpleConfig|None=None) -> None:
        self._database = database
        self._store = database.store
        self._config = config

    # Raw access.

    def _write_ic(self, key: bytes, value: bytes, overwrite: bool=True) -> bool:
        try:
            if not self._store.write(key, value, overwrite):
                return False
        except StoreError:
            logger.exception("Unable to write record to '%s'", self._database.get_path())
            return False
        self._database.increment_update_counter()
        return True

    def _erase_ic(self, key: bytes) -> bool:
        try:
            if not self._store.erase(key):
                return False
        except StoreError:
            logger.exception("Unable to erase record from '%s'", self._database.get_path())
            return False
        self._database.increment_update_counter()
        return True

    def _write_record(self, tag: str, key: Any, value: Any, overwrite: bool=True) -> bool:
        return self._write_ic(encode_key(tag, key), encode_value(tag, value), overwrite)

    def _erase_record(self, tag: str, key: Any=None) -> bool:
        return self._erase_ic(encode_key(tag, key))

    def _read_record(self, tag: str, key: Any=None) -> Any|None:
        """The decoded value of the given record, or `None` if it is absent or malformed."""
        key_bytes = encode_key(tag, key)
        value_bytes = self._store.read(key_bytes)
        if value_bytes is None:
            return None
        record = decode_record(key_bytes, value_bytes)
        if isinstance(record, DecodeError):
            logger.warning("Unable to read '%s' record: %s", tag, record.message)
            return None
        return record.value

    def _iterate_records(self, tag: str) -> Iterator[DecodedRecord|DecodeError]:
        # Keys of a given type share the type prefix, and are contiguous in key order.
        stream = DataStream()
        stream.write_string(tag)
        prefix = stream.getvalue()
        for key_bytes, value_bytes in self._store.cursor(prefix):
            if not key_bytes.startswith(prefix):
                break
            yield decode_record(key_bytes, value_bytes)

    def _list_records(self, tag: str) -> list[tuple[Any, Any]]:
        results: list[tuple[Any, Any]] = []
        try:
            for record in self._iterate_records(tag):
                if isinstance(record, DecodeError):
                    raise WalletDatabaseError(
                        f"Error scanning '{tag}' records: {record.message}")
                results.append((record.key, record.value))
        except StoreError as e:
            raise WalletDatabaseError(f"Error scanning '{tag}' records: {e}") from e
        return results

    # Address book.

    def write_name(self, address: str, name: str) -> bool:
        return self._write_record(RecordType.NAME, address, name)

    def erase_name(self, address: str) -> bool:
        # This should only be used for sending addresses, never for receiving addresses,
        # receiving addresses must always have an address book entry if they're not change.
        return self._erase_record(RecordType.NAME, address)

    def write_purpose(self, address: str, purpose: str) -> bool:
        return self._write_record(RecordType.PURPOSE, address, purpose)

    def erase_purpose(self, address: str) -> bool:
        return self._erase_record(RecordType.PURPOSE, address)

    def write_dest_data(self, address: str, key: str, value: str) -> bool:
        return self._write_record(RecordType.DESTDATA, (address, key), value)

    def erase_dest_data(self, address: str, key: str) -> bool:
        return self._erase_record(RecordType.DESTDATA, (address, key))

    # Transactions.

    def write_tx(self, wtx: WalletTx) -> bool:
        return self._write_record(RecordType.TX, wtx.hash(), wtx)

    def erase_tx(self, tx_hash: bytes) -> bool:
        return self._erase_record(RecordType.TX, tx_hash)

    def write_order_pos_next(self, order_pos_next: int) -> bool:
        return self._write_record(RecordType.ORDERPOSNEXT, None, order_pos_next)

    # Keys.

    def write_key(self, public_key: bytes, private_key: bytes, metadata: KeyMetadata) -> bool:
        if not self._write_record(RecordType.KEYMETA, public_key, metadata, overwrite=False):
            return False

        # The hash of the public and private key lets loading skip rederiving the public key.
        value = PrivateKeyValue(private_key, key_integrity_hash(public_key, private_key))
        return self._write_record(RecordType.KEY, public_key, value, overwrite=False)

    def write_crypted_key(self, public_key: bytes, crypted_secret: bytes,
            metadata: KeyMetadata) -> bool:
        if not self._write_record(RecordType.KEYMETA, public_key, metadata):
            return False
        if not self._write_record(RecordType.CKEY, public_key, crypted_secret,
                overwrite=False):
            return False
        self._erase_record(RecordType.KEY, public_key)
        self._erase_record(RecordType.WKEY, public_key)
        return True

    def write_master_key(self, master_key_id: int, master_key: MasterKey) -> bool:
        return self._write_record(RecordType.MKEY, master_key_id, master_key)

    def read_pool(self, index: int) -> KeyPool|None:
        return self._read_record(RecordType.POOL, index)

    def write_pool(self, index: int, keypool: KeyPool) -> bool:
        return self._write_record(RecordType.POOL, index, keypool)

    def erase_pool(self, index: int) -> bool:
        return self._erase_record(RecordType.POOL, index)

    def write_hd_chain(self, chain: HDChain) -> bool:
        return self._write_record(RecordType.HDCHAIN, None, chain)

    # Scripts.

    def write_cscript(self, script_hash: bytes, script: bytes) -> bool:
        return self._write_record(RecordType.CSCRIPT, script_hash, script, overwrite=False)

    def write_watch_only(self, script: bytes, metadata: KeyMetadata) -> bool:
        if not self._write_record(RecordType.WATCHMETA, script, metadata):
            return False
        return self._write_record(RecordType.WATCHS, script, WATCH_ONLY_MARKER)

    def erase_watch_only(self, script: bytes) -> bool:
        if not self._erase_record(RecordType.WATCHMETA, script):
            return False
        return self._erase_record(RecordType.WATCHS, script)

    # Global records.

    def write_best_block(self, locator: BlockLocator) -> bool:
        # An empty locator under the old key makes releases that need merkle branches rescan.
        self._write_record(RecordType.BESTBLOCK, None, BlockLocator([]))
        return self._write_record(RecordType.BESTBLOCK_NOMERKLE, None, locator)

    def read_best_block(self) -> BlockLocator|None:
        locator: BlockLocator|None = self._read_record(RecordType.BESTBLOCK)
        if locator is not None and not locator.is_null():
            return locator
        return self._read_record(RecordType.BESTBLOCK_NOMERKLE)

    def write_min_version(self, version: int) -> bool:
        return self._write_record(RecordType.MINVERSION, None, version)

    def read_min_version(self) -> int|None:
        return self._read_record(RecordType.MINVERSION)

    def write_wallet_flags(self, flags: int) -> bool:
        return self._write_record(RecordType.FLAGS, None, flags)

    def read_version(self) -> int|None:
        return self._store.read_version()

    def write_version(self, version: int) -> bool:
        try:
            result = self._store.write_version(version)
        except StoreError:
            logger.exception("Unable to write the wallet version")
            return False
        if result:
            self._database.increment_update_counter()
        return result

    # Coin-protocol records. These are opaque to the wallet database.

    def write_coin_spend_serial_entry(self, serial: bytes, entry: OpaqueValue) -> bool:
        return self._write_record(RecordType.ZCSERIAL, serial, entry)

    def erase_coin_spend_serial_entry(self, serial: bytes) -> bool:
        return self._erase_record(RecordType.ZCSERIAL, serial)

    def write_zerocoin_accumulator(self, accumulator: OpaqueValue, denomination: int,
            pubcoin_id: int) -> bool:
        return self._write_record(RecordType.ZCACCUMULATOR, (denomination, pubcoin_id),
            accumulator)

    def read_zerocoin_accumulator(self, denomination: int,
            pubcoin_id: int) -> OpaqueValue|None:
        return self._read_record(RecordType.ZCACCUMULATOR, (denomination, pubcoin_id))

    def write_zerocoin_entry(self, pubcoin: bytes, entry: OpaqueValue) -> bool:
        return self._write_record(RecordType.ZEROCOIN, pubcoin, entry)

    def erase_zerocoin_entry(self, pubcoin: bytes) -> bool:
        return self._erase_record(RecordType.ZEROCOIN, pubcoin)

    def write_unloaded_zc_entry(self, pubcoin: bytes, entry: OpaqueValue) -> bool:
        return self._write_record(RecordType.UNLOADEDZEROCOIN, pubcoin, entry)

    def erase_unloaded_zc_entry(self, pubcoin: bytes) -> bool:
        return self._erase_record(RecordType.UNLOADEDZEROCOIN, pubcoin)

    def read_calculated_zc_block(self) -> int|None:
        return self._read_record(RecordType.CALCULATEDZCBLOCK)

    def write_calculated_zc_block(self, height: int) -> bool:
        return self._write_record(RecordType.CALCULATEDZCBLOCK, None, height)

    def list_pub_coin(self) -> list[tuple[bytes, OpaqueValue]]:
        return self._list_records(RecordType.ZEROCOIN)

    def list_unloaded_pub_coin(self) -> list[tuple[bytes, OpaqueValue]]:
        return self._list_records(RecordType.UNLOADEDZEROCOIN)

    def list_coin_spend_serial(self) -> list[tuple[bytes, OpaqueValue]]:
        return self._list_records(RecordType.ZCSERIAL)

    # Transactions on the store.

    def txn_begin(self) -> bool:
        return self._store.txn_begin()

    def txn_commit(self) -> bool:
        return self._store.txn_commit()

    def txn_abort(self) -> bool:
        return self._store.txn_abort()

    # Loading.

    def _check_min_version(self, wallet: WalletModelProtocol|None) -> DBErrors:
        try:
            min_version = self.read_min_version()
        except StoreError:
            logger.exception("Unable to read the minimum wallet version")
            return DBErrors.CORRUPT
        if min_version is not None:
            if min_version > FEATURE_LATEST:
                logger.error("Wallet requires newer version %d, this version supports %d",
                    min_version, FEATURE_LATEST)
                return DBErrors.TOO_NEW
            if wallet is not None:
                wallet.load_min_version(min_version)
        return DBErrors.OK

    def _request_rescan(self, scan_state: WalletScanState) -> None:
        scan_state.rescan_requested = True
        if self._config is not None:
            self._config.soft_set_key("rescan", True)

    def load_wallet(self, wallet: WalletModelProtocol, chain: ChainView|None=None) -> DBErrors:
        scan_state = WalletScanState()
        noncritical_errors = False

        result = self._check_min_version(wallet)
        if result != DBErrors.OK:
            return result

        try:
            for key_bytes, value_bytes in self._store.cursor():
                read_result = read_key_value(wallet, key_bytes, value_bytes, scan_state, chain)
                if not read_result.success:
                    # Losing keys is unacceptable, the load must not carry on without them.
                    if read_result.tag in KEY_RECORD_TYPES or \
                            read_result.tag == RecordType.DEFAULTKEY:
                        result = worst_result(result, DBErrors.CORRUPT)
                    elif read_result.tag == RecordType.FLAGS:
                        # Unknown flags that we can not safely ignore.
                        result = worst_result(result, DBErrors.TOO_NEW)
                    else:
                        # Leave other errors alone, if we try to fix them we might make
                        # things worse. But do warn the user there is something wrong.
                        noncritical_errors = True
                        if read_result.tag == RecordType.TX:
                            # A rescan might be able to recover the lost transaction.
                            self._request_rescan(scan_state)
                if read_result.message:
                    logger.warning("%s", read_result.message)
        except StoreError:
            logger.exception("Error scanning wallet database '%s'", self._database.get_path())
            return DBErrors.CORRUPT

        if result.is_fatal():
            return result

        return self._finalize_load(wallet, scan_state, noncritical_errors)

    def _finalize_load(self, wallet: WalletModelProtocol, scan_state: WalletScanState,
            noncritical_errors: bool) -> DBErrors:
        result = DBErrors.NONCRITICAL_ERROR if noncritical_errors else DBErrors.OK

        logger.info("Wallet file version = %d", scan_state.file_version)
        logger.info("Keys: %d plaintext, %d encrypted, %d w/ metadata, %d total. "
            "Unknown wallet records: %d", scan_state.plaintext_keys, scan_state.encrypted_keys,
            scan_state.key_meta, scan_state.total_keys(), scan_state.unknown_records)

        wallet.set_wallet_version(scan_state.file_version)
        wallet.set_master_key_max_id(scan_state.master_key_max_id)

        # Keys without metadata make the earliest key time unknown, this is the earliest time.
        if not scan_state.is_time_first_key_reliable():
            wallet.update_time_first_key(1)

        for tx_hash in scan_state.upgrade_tx_hashes:
            wtx = wallet.get_wallet_tx(tx_hash)
            if wtx is None or not self.write_tx(wtx):
                logger.error("Unable to rewrite upgraded transaction %s",
                    hash_to_hex_str(tx_hash))

        # Rewrite encrypted wallets of versions 0.4.0 and 0.5.0rc.
        if scan_state.is_encrypted and scan_state.file_version in REWRITE_ENCRYPTED_VERSIONS:
            return DBErrors.NEED_REWRITE

        if scan_state.file_version < CLIENT_VERSION:
            self.write_version(CLIENT_VERSION)

        if scan_state.has_unordered_tx:
            result = worst_result(result, wallet.reorder_transactions())

        return result

    def find_wallet_tx(self) -> tuple[DBErrors, list[bytes], list[WalletTx]]:
        """
        Read every transaction in the wallet database, without loading any of them into a
        wallet model.
        """
        tx_hashes: list[bytes] = []
        wallet_txs: list[WalletTx] = []

        result = self._check_min_version(None)
        if result != DBErrors.OK:
            return result, tx_hashes, wallet_txs

        try:
            for record in self._iterate_records(RecordType.TX):
                if isinstance(record, DecodeError):
                    logger.error("Error reading wallet transaction: %s", record.message)
                    return DBErrors.CORRUPT, tx_hashes, wallet_txs
                tx_hashes.append(record.key)
                wallet_txs.append(record.value)
        except StoreError:
            logger.exception("Error scanning wallet database '%s'", self._database.get_path())
            return DBErrors.CORRUPT, tx_hashes, wallet_txs
        return DBErrors.OK, tx_hashes, wallet_txs

    def zap_select_tx(self, tx_hashes_in: list[bytes]) -> tuple[DBErrors, list[bytes]]:
        """
        Erase the given transactions, where they are present. Returns the hashes of those
        that were erased.
        """
        result, tx_hashes, _wallet_txs = self.find_wallet_tx()
        if result != DBErrors.OK:
            return result, []

        tx_hashes_out: list[bytes] = []
        wanted = sorted(tx_hashes_in)
        found = sorted(tx_hashes)

        delete_failed = False
        wanted_index = 0
        for tx_hash in found:
            while wanted_index < len(wanted) and wanted[wanted_index] < tx_hash:
                wanted_index += 1
            if wanted_index == len(wanted):
                break
            if wanted[wanted_index] == tx_hash:
                if not self.erase_tx(tx_hash):
                    logger.error("Unable to erase transaction %s", hash_to_hex_str(tx_hash))
                    delete_failed = True
                tx_hashes_out.append(tx_hash)

        if delete_failed:
            return DBErrors.CORRUPT, tx_hashes_out
        return DBErrors.OK, tx_hashes_out

    def zap_wallet_tx(self) -> tuple[DBErrors, list[WalletTx]]:
        result, tx_hashes, wallet_txs = self.find_wallet_tx()
        if result != DBErrors.OK:
            return result, wallet_txs

        for tx_hash in tx_hashes:
            if not self.erase_tx(tx_hash):
                return DBErrors.CORRUPT, wallet_txs
        return DBErrors.OK, wallet_txs
