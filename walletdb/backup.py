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

from __future__ import annotations
import dataclasses
import os
import shutil
import threading
from typing import Iterable, NamedTuple, TYPE_CHECKING

from .constants import (BACKUP_TIME_FORMAT, BACKUPS_DISABLED_ERROR, BACKUPS_DISABLED_LOCKED,
    DEFAULT_WALLET_BACKUPS, FLUSH_STABLE_SECONDS)
from .exceptions import StoreError
from .i18n import _
from .logs import logs
from .util import format_time, get_time, make_dir

if TYPE_CHECKING:
    from .model import WalletModelProtocol
    from .simple_config import SimpleConfig
    from .walletdb import WalletDatabase


logger = logs.get_logger("backup")


@dataclasses.dataclass
class BackupSettings:
    # The number of backups to keep, or one of the disabled sentinels.
    wallet_backups: int = DEFAULT_WALLET_BACKUPS
    backups_dir: str = ""
    data_dir: str = ""

    def is_enabled(self) -> bool:
        return self.wallet_backups > 0


class BackupResult(NamedTuple):
    success: bool
    warning: str = ""
    error: str = ""


def get_backup_filename(wallet_filename: str, timestamp: int|None=None) -> str:
    if timestamp is None:
        timestamp = get_time()
    return wallet_filename + format_time(timestamp, BACKUP_TIME_FORMAT)


def _list_backups(backups_dir: str, wallet_filename: str) -> list[tuple[float, str]]:
    backups: list[tuple[float, str]] = []
    for entry in os.scandir(backups_dir):
        # Only the backups for this wallet, e.g. wallet.dat.*
        if entry.is_file() and os.path.splitext(entry.name)[0] == wallet_filename:
            backups.append((entry.stat().st_mtime, entry.path))
    backups.sort(reverse=True)
    return backups


def prune_backups(backups_dir: str, wallet_filename: str, count: int) -> BackupResult:
    """
    Delete all but the `count` newest backups of the given wallet.

    A failure to delete one backup does not stop the others from being deleted, the last
    failure is returned as the warning.
    """
    if count <= 0:
        logger.info("Automatic wallet backups are disabled")
        return BackupResult(False)

    warning = ""
    for _mtime, path in _list_backups(backups_dir, wallet_filename)[count:]:
        try:
            os.remove(path)
        except OSError as e:
            warning = _("Failed to delete backup, error: {}").format(e)
            logger.warning("%s", warning)
            continue
        logger.info("Old backup deleted: %s", path)
    return BackupResult(not warning, warning)


def _check_backup_collision(backup_path: str) -> BackupResult|None:
    if os.path.exists(backup_path):
        warning = _("Failed to create backup, file already exists! This could happen if you "
            "restarted the wallet in less than 60 seconds. You can continue if you are ok "
            "with this.")
        logger.warning("%s", warning)
        return BackupResult(False, warning)
    return None


def _backup_live_wallet(settings: BackupSettings, backup_path: str,
        wallet: WalletModelProtocol, database: WalletDatabase) -> BackupResult|None:
    keys_left = wallet.get_key_pool_size()
    wallet.set_keys_left_since_auto_backup(keys_left)
    logger.debug("Keys left since automatic backup: %d", keys_left)
    # A backup of a locked wallet can not replenish its keypool once restored.
    if wallet.is_locked():
        warning = _("Wallet is locked, can't replenish keypool! Automatic backups are "
            "disabled, please unlock your wallet to replenish keypool.")
        logger.warning("%s", warning)
        settings.wallet_backups = BACKUPS_DISABLED_LOCKED
        return BackupResult(False, warning)

    collision = _check_backup_collision(backup_path)
    if collision is not None:
        return collision

    try:
        database.store.backup_to(backup_path)
    except StoreError:
        logger.exception("Backup of '%s' failed", database.get_path())
        warning = _("Failed to create backup {}!").format(backup_path)
        settings.wallet_backups = BACKUPS_DISABLED_ERROR
        return BackupResult(False, warning)
    logger.info("Created backup %s", backup_path)
    return None


def _backup_wallet_file(settings: BackupSettings, source_path: str,
        backup_path: str) -> BackupResult|None:
    collision = _check_backup_collision(backup_path)
    if collision is not None:
        return collision

    if os.path.exists(source_path):
        try:
            shutil.copyfile(source_path, backup_path)
        except OSError as e:
            warning = _("Failed to create backup, error: {}").format(e)
            logger.warning("%s", warning)
            settings.wallet_backups = BACKUPS_DISABLED_ERROR
            return BackupResult(False, warning)
        logger.info("Creating backup of %s -> %s", source_path, backup_path)
    return None


def auto_backup_wallet(settings: BackupSettings, wallet_filename: str,
        wallet: WalletModelProtocol|None=None,
        database: WalletDatabase|None=None) -> BackupResult:
    """
    Back up the given wallet into the backups directory, then prune the older backups.

    With an open wallet and its database, the backup is taken from the open database. Without
    them, the wallet file in the data directory is copied.
    """
    if not settings.is_enabled():
        logger.info("Automatic wallet backups are disabled")
        return BackupResult(False)

    if not os.path.exists(settings.backups_dir):
        # Always create the backup folder, even before there is a backup to put in it.
        logger.info("Creating backup folder %s", settings.backups_dir)
        try:
            make_dir(settings.backups_dir)
        except Exception:
            error = _("Wasn't able to create wallet backup folder {}!").format(
                settings.backups_dir)
            logger.exception("%s", error)
            settings.wallet_backups = BACKUPS_DISABLED_ERROR
            return BackupResult(False, error=error)

    backup_path = os.path.join(settings.backups_dir, get_backup_filename(wallet_filename))
    if wallet is not None and database is not None:
        failure = _backup_live_wallet(settings, backup_path, wallet, database)
    else:
        source_path = os.path.join(settings.data_dir, wallet_filename)
        failure = _backup_wallet_file(settings, source_path, backup_path)
    if failure is not None:
        return failure

    return prune_backups(settings.backups_dir, wallet_filename, settings.wallet_backups)


_compact_lock = threading.Lock()

def maybe_compact_wallet_dbs(databases: Iterable[WalletDatabase],
        config: SimpleConfig|None=None) -> bool:
    """
    Flush each wallet database that has had no writes for a while.

    Only one sweep runs at a time, a sweep started while another is running returns `False`
    having done nothing.
    """
    if not _compact_lock.acquire(blocking=False):
        return False
    try:
        if config is not None and not config.is_flush_enabled():
            return False

        for database in databases:
            update_counter = database.update_counter
            if database.last_seen != update_counter:
                database.last_seen = update_counter
                database.last_wallet_update = get_time()

            if database.last_flushed != update_counter and \
                    get_time() - database.last_wallet_update >= FLUSH_STABLE_SECONDS:
                if database.periodic_flush():
                    database.last_flushed = update_counter
        return True
    finally:
        _compact_lock.release()
