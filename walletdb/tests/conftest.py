# Pytest looks here for fixtures
import os

import pytest

from walletdb.constants import DEFAULT_WALLET_FILENAME
from walletdb.simple_config import SimpleConfig
from walletdb.walletdb import WalletBatch, WalletDatabase


@pytest.fixture
def wallet_path(tmp_path) -> str:
    return os.path.join(tmp_path, DEFAULT_WALLET_FILENAME)


@pytest.fixture
def database(wallet_path):
    database = WalletDatabase.open(wallet_path)
    try:
        yield database
    finally:
        database.close()


@pytest.fixture
def batch(database) -> WalletBatch:
    return WalletBatch(database)


@pytest.fixture
def config(tmp_path) -> SimpleConfig:
    return SimpleConfig({ "data_dir": str(tmp_path) })
