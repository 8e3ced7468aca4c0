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
Rebuilding a wallet database that can not be loaded normally.

Recovery reads every record that can still be read out of the damaged file, keeps those the
given filter accepts, and writes them to a new file which then replaces the damaged one. The
damaged file is kept alongside under a timestamped backup name.
"""

from __future__ import annotations
import os
import time
from typing import Callable, NamedTuple

from .constants import RECOVERABLE_KEY_RECORD_TYPES, VerifyState
from .exceptions import StoreError
from .i18n import _
from .kvstore import salvage_store_file, SqliteKeyValueStore, verify_store_file
from .logs import logs
from .model import MemoryWallet
from .records import read_key_value
from .scan_state import WalletScanState


logger = logs.get_logger("recovery")


class RecoveryResult(NamedTuple):
    success: bool
    backup_filename: str = ""


class VerifyResult(NamedTuple):
    ok: bool
    warning: str = ""
    error: str = ""


class RecordFilter:
    def accept(self, key: bytes, value: bytes) -> bool:
        raise NotImplementedError


class AcceptAllFilter(RecordFilter):
    def accept(self, key: bytes, value: bytes) -> bool:
        return True


class RecoverKeysOnlyFilter(RecordFilter):
    """
    Keep only the key material, and only where it can be decoded.

    Each record is loaded into a throwaway wallet so that the same validation is applied as
    a normal load would apply.
    """

    def __init__(self) -> None:
        self._wallet = MemoryWallet("recovery")

    def accept(self, key: bytes, value: bytes) -> bool:
        read_result = read_key_value(self._wallet, key, value, WalletScanState())
        if read_result.tag not in RECOVERABLE_KEY_RECORD_TYPES:
            return False
        if not read_result.success:
            logger.warning("Recovery skipping %s: %s", read_result.tag, read_result.message)
            return False
        return True


def recover(path: str, record_filter: RecordFilter|None=None) -> RecoveryResult:
    if record_filter is None:
        record_filter = AcceptAllFilter()

    wallet_dir, filename = os.path.split(os.path.abspath(path))
    now = int(time.time())
    backup_filename = f"{filename}.{now}.bak"
    backup_path = os.path.join(wallet_dir, backup_filename)
    rebuild_path = os.path.join(wallet_dir, f"{filename}.{now}.rebuild")

    success, records = salvage_store_file(path)
    if not records:
        logger.error("Salvage found no records in %s", path)
        return RecoveryResult(False)
    logger.info("Salvage found %d records", len(records))

    if os.path.exists(rebuild_path):
        os.remove(rebuild_path)
    try:
        store = SqliteKeyValueStore(rebuild_path)
    except StoreError:
        logger.exception("Cannot create database file %s", rebuild_path)
        return RecoveryResult(False)

    kept_count = 0
    try:
        store.txn_begin()
        for key, value in records:
            if not record_filter.accept(key, value):
                continue
            try:
                if not store.write(key, value, overwrite=False):
                    logger.error("Recovery found a duplicate record, the first was kept")
                    success = False
                    continue
            except StoreError:
                logger.exception("Recovery unable to write a salvaged record")
                success = False
                continue
            kept_count += 1
        if not store.txn_commit():
            success = False
    finally:
        store.close()
    logger.info("Recovery kept %d of %d salvaged records", kept_count, len(records))

    try:
        os.rename(path, backup_path)
    except OSError:
        logger.exception("Failed to rename %s to %s", filename, backup_filename)
        os.remove(rebuild_path)
        return RecoveryResult(False)
    logger.info("Renamed %s to %s", filename, backup_filename)

    try:
        os.replace(rebuild_path, path)
    except OSError:
        logger.exception("Failed to move the rebuilt database to %s", filename)
        try:
            os.rename(backup_path, path)
        except OSError:
            logger.exception("Failed to restore %s from %s", filename, backup_filename)
        else:
            logger.info("Restored %s from %s", filename, backup_filename)
        return RecoveryResult(False, backup_filename)
    return RecoveryResult(success, backup_filename)


def recover_keys_only(path: str) -> RecoveryResult:
    return recover(path, RecoverKeysOnlyFilter())


def verify_environment(path: str) -> tuple[bool, str]:
    """Check that the directory the given wallet file lives in can be used."""
    wallet_dir = os.path.dirname(os.path.abspath(path))
    logger.debug("Using wallet directory %s", wallet_dir)
    if not os.path.isdir(wallet_dir):
        return False, _("Wallet directory {} does not exist").format(wallet_dir)
    if not os.access(wallet_dir, os.R_OK | os.W_OK | os.X_OK):
        return False, _("Wallet directory {} is not writable").format(wallet_dir)
    if os.path.isdir(path):
        return False, _("Wallet file {} is a directory").format(path)
    return True, ""


def _verify_file(path: str,
        recover_func: Callable[[str], RecoveryResult]|None) -> tuple[VerifyState, str]:
    if verify_store_file(path):
        return VerifyState.VERIFY_OK, ""
    if recover_func is None:
        return VerifyState.RECOVER_FAIL, ""
    logger.warning("Wallet file %s failed verification, attempting recovery", path)
    result = recover_func(path)
    if result.success:
        return VerifyState.RECOVER_OK, result.backup_filename
    return VerifyState.RECOVER_FAIL, result.backup_filename


def verify_database_file(path: str,
        recover_func: Callable[[str], RecoveryResult]|None=recover) -> VerifyResult:
    """
    Check the wallet file is sound, and try to salvage it if it is not.

    A file that does not exist is fine, it will be created.
    """
    if not os.path.exists(path):
        return VerifyResult(True)

    wallet_dir, filename = os.path.split(os.path.abspath(path))
    state, backup_filename = _verify_file(path, recover_func)
    if state == VerifyState.RECOVER_OK:
        return VerifyResult(True, warning=_("Warning: Wallet file corrupt, data salvaged! "
            "Original {} saved as {} in {}; if your balance or transactions are incorrect you "
            "should restore from a backup.").format(filename, backup_filename, wallet_dir))
    if state == VerifyState.RECOVER_FAIL:
        return VerifyResult(False, error=_("{} corrupt, salvage failed").format(filename))
    return VerifyResult(True)
