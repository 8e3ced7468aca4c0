import os
from unittest.mock import MagicMock, patch

from bitcoinx import pack_varbytes
import pytest

from walletdb.constants import DBErrors, RecordType
from walletdb.kvstore import SqliteKeyValueStore
from walletdb.model import MemoryWallet
from walletdb.records import encode_key, encode_value, key_integrity_hash
from walletdb.recovery import (AcceptAllFilter, recover, recover_keys_only, RecoveryResult,
    RecoverKeysOnlyFilter, verify_database_file, verify_environment)
from walletdb.types import HDChain, KeyMetadata, PrivateKeyValue
from walletdb.walletdb import WalletBatch, WalletDatabase

from .util import make_key_pair, make_wallet_tx


PUBLIC_KEY, PRIVATE_KEY = make_key_pair(1)


def _key_record(public_key, private_key, integrity_hash=None):
    if integrity_hash is None:
        integrity_hash = key_integrity_hash(public_key, private_key)
    return encode_key(RecordType.KEY, public_key), encode_value(RecordType.KEY,
        PrivateKeyValue(private_key, integrity_hash))


def _write_records(path, records) -> None:
    store = SqliteKeyValueStore(path)
    try:
        for key, value in records:
            store.write(key, value)
    finally:
        store.close()


def _read_records(path):
    store = SqliteKeyValueStore(path, create=False)
    try:
        return list(store.cursor())
    finally:
        store.close()


def _write_garbage(path) -> None:
    with open(path, "wb") as f:
        f.write(b"this is not a database" * 100)


def test_accept_all_filter() -> None:
    assert AcceptAllFilter().accept(b"anything", b"")


def test_keys_only_filter() -> None:
    record_filter = RecoverKeysOnlyFilter()
    assert record_filter.accept(*_key_record(PUBLIC_KEY, PRIVATE_KEY))
    assert record_filter.accept(encode_key(RecordType.HDCHAIN),
        encode_value(RecordType.HDCHAIN, HDChain(b"\x01" * 20)))
    assert not record_filter.accept(encode_key(RecordType.NAME, "address"),
        encode_value(RecordType.NAME, "Alice"))
    assert not record_filter.accept(encode_key(RecordType.KEY, PUBLIC_KEY), b"\xff")
    assert not record_filter.accept(encode_key(RecordType.KEY, PUBLIC_KEY), b"\xff" * 9)
    public_key, private_key = make_key_pair(2)
    assert not record_filter.accept(*_key_record(public_key, private_key, b"\x01" * 32))
    assert not record_filter.accept(pack_varbytes(b"nosuchtag"), b"")


def test_recover_accept_all(wallet_path) -> None:
    database = WalletDatabase.open(wallet_path)
    batch = WalletBatch(database)
    batch.write_name("address", "Alice")
    batch.write_key(PUBLIC_KEY, PRIVATE_KEY, KeyMetadata(1500000000))
    batch.write_tx(make_wallet_tx(1, order_pos=0))
    records = list(database.store.cursor())
    database.close()

    result = recover(wallet_path)
    assert result.success
    assert result.backup_filename.startswith(os.path.basename(wallet_path) + ".")
    assert result.backup_filename.endswith(".bak")
    backup_path = os.path.join(os.path.dirname(wallet_path), result.backup_filename)
    assert _read_records(backup_path) == records
    assert _read_records(wallet_path) == records

    database = WalletDatabase.open(wallet_path, create=False)
    try:
        wallet = MemoryWallet()
        assert WalletBatch(database).load_wallet(wallet) == DBErrors.OK
        assert wallet.keys == { PUBLIC_KEY: PRIVATE_KEY }
    finally:
        database.close()


def test_recover_restores_original_when_replace_fails(wallet_path) -> None:
    records = [ (encode_key(RecordType.NAME, "address"), encode_value(RecordType.NAME, "Alice")) ]
    _write_records(wallet_path, records)

    with patch("walletdb.recovery.os.replace", side_effect=OSError("busy")):
        result = recover(wallet_path)
    assert not result.success
    assert result.backup_filename.endswith(".bak")
    assert _read_records(wallet_path) == records
    assert not os.path.exists(os.path.join(os.path.dirname(wallet_path),
        result.backup_filename))


def test_recover_keys_only(wallet_path) -> None:
    valid_key = _key_record(PUBLIC_KEY, PRIVATE_KEY)
    public_key, private_key = make_key_pair(2)
    mismatched_key = _key_record(public_key, private_key, b"\x01" * 32)
    corrupt_key = (encode_key(RecordType.KEY, make_key_pair(3)[0]), b"\xff")
    hd_chain = (encode_key(RecordType.HDCHAIN),
        encode_value(RecordType.HDCHAIN, HDChain(b"\x01" * 20, 5, 2)))
    name = (encode_key(RecordType.NAME, "address"), encode_value(RecordType.NAME, "Alice"))
    _write_records(wallet_path, [ valid_key, mismatched_key, corrupt_key, hd_chain, name ])

    result = recover_keys_only(wallet_path)
    assert result.success
    assert sorted(_read_records(wallet_path)) == sorted([ valid_key, hd_chain ])


def test_recover_nothing_salvaged(wallet_path) -> None:
    _write_garbage(wallet_path)
    assert recover(wallet_path) == RecoveryResult(False)
    # The damaged file is left where it was.
    assert os.path.exists(wallet_path)
    assert os.listdir(os.path.dirname(wallet_path)) == [ os.path.basename(wallet_path) ]


def test_recover_custom_filter(wallet_path) -> None:
    _write_records(wallet_path, [ (b"a", b"1"), (b"b", b"2") ])
    record_filter = MagicMock()
    record_filter.accept.side_effect = lambda key, value: key == b"b"
    assert recover(wallet_path, record_filter).success
    assert _read_records(wallet_path) == [ (b"b", b"2") ]
    assert record_filter.accept.call_count == 2


def test_verify_environment(wallet_path, tmp_path) -> None:
    assert verify_environment(wallet_path) == (True, "")

    ok, error = verify_environment(os.path.join(tmp_path, "missing", "wallet.dat"))
    assert not ok
    assert "does not exist" in error

    ok, error = verify_environment(str(tmp_path))
    assert not ok


def test_verify_database_file_missing(wallet_path) -> None:
    recover_func = MagicMock()
    assert verify_database_file(wallet_path, recover_func).ok
    recover_func.assert_not_called()


def test_verify_database_file_sound(wallet_path) -> None:
    _write_records(wallet_path, [ (b"a", b"1") ])
    recover_func = MagicMock()
    result = verify_database_file(wallet_path, recover_func)
    assert result.ok
    assert result.warning == ""
    recover_func.assert_not_called()


def test_verify_database_file_salvaged(wallet_path) -> None:
    _write_garbage(wallet_path)
    recover_func = MagicMock(return_value=RecoveryResult(True, "wallet.dat.1.bak"))
    result = verify_database_file(wallet_path, recover_func)
    assert result.ok
    assert "wallet.dat.1.bak" in result.warning
    assert result.error == ""
    recover_func.assert_called_once_with(wallet_path)


@pytest.mark.parametrize("recover_func", (MagicMock(return_value=RecoveryResult(False)), None))
def test_verify_database_file_salvage_failed(wallet_path, recover_func) -> None:
    _write_garbage(wallet_path)
    result = verify_database_file(wallet_path, recover_func)
    assert not result.ok
    assert "salvage failed" in result.error
