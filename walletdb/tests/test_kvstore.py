import os

import pytest

from walletdb.exceptions import StoreClosedError, StoreError
from walletdb.kvstore import (salvage_store_file, SqliteKeyValueStore, VERSION_KEY,
    verify_store_file)


@pytest.fixture
def store(wallet_path):
    store = SqliteKeyValueStore(wallet_path)
    try:
        yield store
    finally:
        store.close()


def test_open_missing_without_create(wallet_path) -> None:
    with pytest.raises(StoreError):
        SqliteKeyValueStore(wallet_path, create=False)
    assert not os.path.exists(wallet_path)


def test_read_write(store) -> None:
    assert store.read(b"key") is None
    assert not store.exists(b"key")
    assert store.write(b"key", b"value")
    assert store.read(b"key") == b"value"
    assert store.exists(b"key")


def test_write_overwrite(store) -> None:
    assert store.write(b"key", b"first")
    assert not store.write(b"key", b"second", overwrite=False)
    assert store.read(b"key") == b"first"
    assert store.write(b"key", b"second")
    assert store.read(b"key") == b"second"


def test_erase(store) -> None:
    store.write(b"key", b"value")
    assert store.erase(b"key")
    assert store.read(b"key") is None
    # Erasing an absent key is not a failure.
    assert store.erase(b"key")


def test_cursor_order(store) -> None:
    for key in (b"\x02b", b"\x01z", b"\x02a", b"\x03"):
        store.write(key, key + b"!")
    assert [ key for key, _value in store.cursor() ] == [ b"\x01z", b"\x02a", b"\x02b", b"\x03" ]
    assert list(store.cursor(b"\x02")) == [ (b"\x02a", b"\x02a!"), (b"\x02b", b"\x02b!"),
        (b"\x03", b"\x03!") ]


def test_cursor_batches(store) -> None:
    count = SqliteKeyValueStore.CURSOR_BATCH_SIZE * 2 + 3
    for i in range(count):
        store.write(i.to_bytes(4, "big"), b"")
    assert len(list(store.cursor())) == count


def test_transactions(store) -> None:
    assert store.txn_begin()
    assert not store.txn_begin()
    store.write(b"kept", b"")
    assert store.txn_commit()
    assert not store.txn_commit()

    assert store.txn_begin()
    store.write(b"discarded", b"")
    assert store.txn_abort()
    assert store.exists(b"kept")
    assert not store.exists(b"discarded")


def test_version(store) -> None:
    assert store.read_version() is None
    assert store.write_version(170100)
    assert store.read_version() == 170100
    store.write(VERSION_KEY, b"\x01")
    assert store.read_version() is None


def test_closed(wallet_path) -> None:
    store = SqliteKeyValueStore(wallet_path)
    store.close()
    assert store.is_closed()
    with pytest.raises(StoreClosedError):
        store.read(b"key")
    # Closing twice is harmless.
    store.close()


def test_persists(wallet_path) -> None:
    store = SqliteKeyValueStore(wallet_path)
    store.write(b"key", b"value")
    store.close()

    store = SqliteKeyValueStore(wallet_path, create=False)
    try:
        assert store.read(b"key") == b"value"
    finally:
        store.close()


def test_backup_to(store, tmp_path) -> None:
    store.write(b"key", b"value")
    backup_path = os.path.join(tmp_path, "copy")
    store.backup_to(backup_path)

    backup_store = SqliteKeyValueStore(backup_path, create=False)
    try:
        assert list(backup_store.cursor()) == [ (b"key", b"value") ]
    finally:
        backup_store.close()


def test_verify_store_file(store, wallet_path, tmp_path) -> None:
    store.write(b"key", b"value")
    assert verify_store_file(wallet_path)

    garbage_path = os.path.join(tmp_path, "garbage")
    with open(garbage_path, "wb") as f:
        f.write(b"this is not a database" * 100)
    assert not verify_store_file(garbage_path)


def test_salvage_store_file(store, wallet_path) -> None:
    store.write(b"b", b"2")
    store.write(b"a", b"1")
    store.write(b"c", b"3")
    store.erase(b"c")
    success, records = salvage_store_file(wallet_path)
    assert success
    assert sorted(records) == [ (b"a", b"1"), (b"b", b"2") ]


def test_salvage_garbage_file(tmp_path) -> None:
    garbage_path = os.path.join(tmp_path, "garbage")
    with open(garbage_path, "wb") as f:
        f.write(b"this is not a database" * 100)
    assert salvage_store_file(garbage_path) == (False, [])
