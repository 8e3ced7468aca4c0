import json
import os
import tempfile
import unittest

import pytest

from walletdb.backup import BackupSettings
from walletdb.simple_config import read_user_config, SimpleConfig


class TestSimpleConfig(unittest.TestCase):

    def setUp(self):
        super().setUp()
        self._temp_dir = tempfile.TemporaryDirectory()
        self.data_dir = self._temp_dir.name

    def tearDown(self):
        super().tearDown()
        self._temp_dir.cleanup()

    def test_options_override_user_config(self):
        config = SimpleConfig({ "data_dir": self.data_dir, "walletbackups": 4 },
            read_user_config_function=lambda path: { "walletbackups": 7, "flushwallet": False })
        self.assertEqual(4, config.get("walletbackups"))
        self.assertFalse(config.is_flush_enabled())
        self.assertEqual(self.data_dir, config.path)

    def test_user_dir_is_used_without_data_dir(self):
        config = SimpleConfig({}, read_user_config_function=lambda path: {},
            read_user_dir_function=lambda: self.data_dir)
        self.assertEqual(os.path.abspath(self.data_dir), config.path)

    def test_set_key_persists(self):
        config = SimpleConfig({ "data_dir": self.data_dir })
        config.set_key("walletbackups", 3)
        with open(os.path.join(self.data_dir, "config"), "r") as f:
            self.assertEqual(3, json.loads(f.read())["walletbackups"])

        config = SimpleConfig({ "data_dir": self.data_dir })
        self.assertEqual(3, config.get("walletbackups"))

    def test_set_key_on_command_line_option_is_ignored(self):
        config = SimpleConfig({ "data_dir": self.data_dir, "walletbackups": 4 })
        self.assertFalse(config.is_modifiable("walletbackups"))
        config.set_key("walletbackups", 3)
        self.assertEqual(4, config.get("walletbackups"))

    def test_soft_set_key(self):
        config = SimpleConfig({ "data_dir": self.data_dir, "flushwallet": False })
        self.assertTrue(config.soft_set_key("rescan", True))
        self.assertTrue(config.get("rescan"))
        self.assertFalse(config.soft_set_key("rescan", False))
        self.assertTrue(config.get("rescan"))
        self.assertFalse(config.soft_set_key("flushwallet", True))
        self.assertFalse(config.get("flushwallet"))

    def test_backup_settings_defaults(self):
        config = SimpleConfig({ "data_dir": self.data_dir })
        self.assertEqual(BackupSettings(10, os.path.join(self.data_dir, "backups"),
            self.data_dir), config.get_backup_settings())

    def test_backup_settings_backups_dir(self):
        backups_dir = os.path.join(self.data_dir, "elsewhere")
        config = SimpleConfig({ "data_dir": self.data_dir, "backupsdir": backups_dir })
        self.assertEqual(backups_dir, config.get_backup_settings().backups_dir)


@pytest.mark.parametrize("configured,expected", ((50, 10), (10, 10), (3, 3), (1, 1), (0, 1),
    (-5, 1)))
def test_wallet_backups_are_bounded(tmp_path, configured, expected) -> None:
    config = SimpleConfig({ "data_dir": str(tmp_path), "walletbackups": configured })
    assert config.get_wallet_backups() == expected


def test_read_user_config_missing(tmp_path) -> None:
    assert read_user_config(str(tmp_path)) == {}
    assert read_user_config("") == {}


@pytest.mark.parametrize("contents", ("{ not json", "[1, 2, 3]"))
def test_read_user_config_invalid(tmp_path, contents) -> None:
    with open(os.path.join(tmp_path, "config"), "w") as f:
        f.write(contents)
    assert read_user_config(str(tmp_path)) == {}
