import os
from unittest.mock import patch

import pytest

from walletdb.backup import (auto_backup_wallet, BackupSettings, get_backup_filename,
    maybe_compact_wallet_dbs, prune_backups)
from walletdb import backup
from walletdb.constants import (BACKUPS_DISABLED_ERROR, BACKUPS_DISABLED_LOCKED,
    DEFAULT_WALLET_FILENAME)
from walletdb.kvstore import SqliteKeyValueStore
from walletdb.model import MemoryWallet
from walletdb.simple_config import SimpleConfig
from walletdb.types import KeyPool, MasterKey
from walletdb.util import get_time
from walletdb.walletdb import WalletBatch


WALLET_FILENAME = DEFAULT_WALLET_FILENAME


@pytest.fixture
def settings(tmp_path) -> BackupSettings:
    data_dir = os.path.join(tmp_path, "data")
    os.mkdir(data_dir)
    with open(os.path.join(data_dir, WALLET_FILENAME), "wb") as f:
        f.write(b"wallet")
    return BackupSettings(10, os.path.join(tmp_path, "backups"), data_dir)


def _make_backups(backups_dir: str, count: int) -> list[str]:
    os.makedirs(backups_dir, exist_ok=True)
    paths = []
    for i in range(count):
        path = os.path.join(backups_dir, f"{WALLET_FILENAME}.2020-01-01-00-{i:02d}")
        with open(path, "wb") as f:
            f.write(b"backup")
        # Oldest first.
        os.utime(path, (1000000 + i, 1000000 + i))
        paths.append(path)
    return paths


def test_get_backup_filename() -> None:
    assert get_backup_filename("wallet.dat", 0) == "wallet.dat.1970-01-01-00-00"
    assert get_backup_filename("wallet.dat", 1600000000) == "wallet.dat.2020-09-13-12-26"


@pytest.mark.parametrize("existing,retention", (
    (0, 1), (0, 3), (2, 3), (3, 3), (5, 3), (9, 10), (12, 10), (4, 1),
))
def test_auto_backup_retention(settings, existing, retention) -> None:
    old_paths = _make_backups(settings.backups_dir, existing)
    settings.wallet_backups = retention

    now = get_time()
    with patch("walletdb.backup.get_time", return_value=now):
        result = auto_backup_wallet(settings, WALLET_FILENAME)
    assert result.success

    remaining = sorted(os.listdir(settings.backups_dir))
    assert len(remaining) == min(existing + 1, retention)
    new_filename = get_backup_filename(WALLET_FILENAME, now)
    assert new_filename in remaining
    kept_old = [ os.path.basename(path) for path in old_paths[::-1][:retention - 1] ]
    assert sorted(kept_old + [ new_filename ]) == remaining


def test_auto_backup_copies_file(settings) -> None:
    now = get_time()
    with patch("walletdb.backup.get_time", return_value=now):
        assert auto_backup_wallet(settings, WALLET_FILENAME).success
    backup_path = os.path.join(settings.backups_dir, get_backup_filename(WALLET_FILENAME, now))
    with open(backup_path, "rb") as f:
        assert f.read() == b"wallet"


def test_auto_backup_ignores_other_wallets(settings) -> None:
    _make_backups(settings.backups_dir, 3)
    other_path = os.path.join(settings.backups_dir, "other.dat.2020-01-01-00-00")
    with open(other_path, "wb") as f:
        f.write(b"other")
    os.utime(other_path, (1, 1))
    settings.wallet_backups = 1

    assert auto_backup_wallet(settings, WALLET_FILENAME).success
    assert os.path.exists(other_path)
    assert len(os.listdir(settings.backups_dir)) == 2


def test_auto_backup_disabled(settings) -> None:
    settings.wallet_backups = BACKUPS_DISABLED_LOCKED
    result = auto_backup_wallet(settings, WALLET_FILENAME)
    assert not result.success
    assert not os.path.exists(settings.backups_dir)


def test_auto_backup_name_collision(settings) -> None:
    with patch("walletdb.backup.get_time", return_value=1600000000):
        filename = get_backup_filename(WALLET_FILENAME)
        _make_backups(settings.backups_dir, 0)
        with open(os.path.join(settings.backups_dir, filename), "wb") as f:
            f.write(b"earlier")

        result = auto_backup_wallet(settings, WALLET_FILENAME)
    assert not result.success
    assert "already exists" in result.warning
    assert result.error == ""
    assert settings.wallet_backups == 10
    with open(os.path.join(settings.backups_dir, filename), "rb") as f:
        assert f.read() == b"earlier"


def test_auto_backup_directory_failure(settings) -> None:
    with patch("walletdb.backup.make_dir", side_effect=OSError("denied")):
        result = auto_backup_wallet(settings, WALLET_FILENAME)
    assert not result.success
    assert settings.backups_dir in result.error
    assert result.warning == ""
    assert settings.wallet_backups == BACKUPS_DISABLED_ERROR


def test_auto_backup_copy_failure(settings) -> None:
    with patch("shutil.copyfile", side_effect=OSError("disk full")):
        result = auto_backup_wallet(settings, WALLET_FILENAME)
    assert not result.success
    assert "disk full" in result.warning
    assert settings.wallet_backups == BACKUPS_DISABLED_ERROR


def test_auto_backup_live_wallet(settings, database) -> None:
    batch = WalletBatch(database)
    batch.write_name("address", "Alice")
    wallet = MemoryWallet(database.get_filename(), batch, database)
    wallet.load_key_pool(1, KeyPool(1, b""))
    wallet.load_key_pool(2, KeyPool(1, b""))

    now = get_time()
    with patch("walletdb.backup.get_time", return_value=now):
        result = auto_backup_wallet(settings, database.get_filename(), wallet, database)
    assert result.success
    assert wallet.keys_left_since_auto_backup == 2

    backup_path = os.path.join(settings.backups_dir,
        get_backup_filename(database.get_filename(), now))
    store = SqliteKeyValueStore(backup_path, create=False)
    try:
        assert list(store.cursor()) == list(database.store.cursor())
    finally:
        store.close()


def test_auto_backup_live_wallet_locked(settings, database) -> None:
    wallet = MemoryWallet(database.get_filename(), None, database)
    wallet.load_master_key(1, MasterKey(b"", b"", 0, 1))
    wallet.locked = True

    with patch.object(database.store, "backup_to") as backup_to:
        result = auto_backup_wallet(settings, database.get_filename(), wallet, database)
    assert not result.success
    assert "locked" in result.warning
    assert settings.wallet_backups == BACKUPS_DISABLED_LOCKED
    backup_to.assert_not_called()


def test_auto_backup_live_wallet_name_collision(settings, database) -> None:
    wallet = MemoryWallet(database.get_filename(), None, database)
    with patch("walletdb.backup.get_time", return_value=1600000000):
        assert auto_backup_wallet(settings, database.get_filename(), wallet, database).success
        with patch.object(database.store, "backup_to") as backup_to:
            result = auto_backup_wallet(settings, database.get_filename(), wallet, database)
    assert not result.success
    assert "already exists" in result.warning
    assert settings.wallet_backups == 10
    backup_to.assert_not_called()


def test_prune_backups_disabled(tmp_path) -> None:
    _make_backups(str(tmp_path), 3)
    assert not prune_backups(str(tmp_path), WALLET_FILENAME, 0).success
    assert len(os.listdir(tmp_path)) == 3


def test_prune_backups_continues_past_failures(tmp_path) -> None:
    _make_backups(str(tmp_path), 5)
    with patch("os.remove", side_effect=[ OSError("first"), None, OSError("last") ]) \
            as mock_remove:
        result = prune_backups(str(tmp_path), WALLET_FILENAME, 2)
    assert not result.success
    assert "last" in result.warning
    assert mock_remove.call_count == 3


class FakeDatabase:
    def __init__(self, update_counter: int) -> None:
        self.update_counter = update_counter
        self.last_seen = 0
        self.last_flushed = 0
        self.last_wallet_update = 0
        self.flush_count = 0

    def periodic_flush(self) -> bool:
        self.flush_count += 1
        return True


def test_maybe_compact_flushes_once_stable() -> None:
    database = FakeDatabase(3)
    assert maybe_compact_wallet_dbs([ database ])
    assert database.last_seen == 3
    assert database.flush_count == 0

    database.last_wallet_update = get_time() - 10
    assert maybe_compact_wallet_dbs([ database ])
    assert database.flush_count == 1
    assert database.last_flushed == 3

    assert maybe_compact_wallet_dbs([ database ])
    assert database.flush_count == 1


def test_maybe_compact_unchanged_database_is_not_flushed() -> None:
    database = FakeDatabase(0)
    assert maybe_compact_wallet_dbs([ database ])
    assert database.flush_count == 0


def test_maybe_compact_already_running() -> None:
    database = FakeDatabase(3)
    database.last_seen = 3
    assert backup._compact_lock.acquire(blocking=False)
    try:
        assert not maybe_compact_wallet_dbs([ database ])
    finally:
        backup._compact_lock.release()
    assert database.flush_count == 0
    assert maybe_compact_wallet_dbs([ database ])


def test_maybe_compact_flush_disabled(tmp_path) -> None:
    config = SimpleConfig({ "data_dir": str(tmp_path), "flushwallet": False })
    database = FakeDatabase(3)
    assert not maybe_compact_wallet_dbs([ database ], config)
    assert database.last_seen == 0


def test_maybe_compact_real_database(database) -> None:
    WalletBatch(database).write_name("address", "Alice")
    maybe_compact_wallet_dbs([ database ])
    database.last_wallet_update -= 10
    with patch.object(database, "periodic_flush", wraps=database.periodic_flush) as flush:
        assert maybe_compact_wallet_dbs([ database ])
    flush.assert_called_once_with()
    assert database.last_flushed == database.update_counter
