from __future__ import annotations
from copy import deepcopy
import json
import os
import stat
import threading
from typing import Any, Callable, cast, Type, TypeVar, TYPE_CHECKING

from .constants import BACKUPS_DIRNAME, DEFAULT_WALLET_BACKUPS, MAX_WALLET_BACKUPS
from .logs import logs
from .util import make_dir

if TYPE_CHECKING:
    from .backup import BackupSettings


logger = logs.get_logger("config")


FINAL_CONFIG_VERSION = 1

T = TypeVar('T')


def default_user_dir() -> str:
    return os.path.join(os.path.expanduser("~"), ".walletdb")


class SimpleConfig:
    """
    The SimpleConfig class is responsible for handling operations involving
    configuration files.

    There are two different sources of possible configuration values:
        1. Command line options.
        2. User configuration (in the data directory)
    They are taken in order (1. overrides config options set in 2.)
    """

    def __init__(self, options: dict[str, Any]|None=None,
            read_user_config_function: Callable[[str], dict[str, Any]]|None=None,
            read_user_dir_function: Callable[[], str]|None=None) -> None:

        if options is None:
            options = {}

        # This lock needs to be acquired for updating and reading the config in
        # a thread-safe way.
        self.lock = threading.RLock()

        # The following two functions are there for dependency injection when
        # testing.
        if read_user_config_function is None:
            read_user_config_function = read_user_config
        if read_user_dir_function is None:
            self.user_dir = default_user_dir
        else:
            self.user_dir = read_user_dir_function

        # The command line options
        self.cmdline_options = deepcopy(options)
        # don't allow to be set on CLI:
        self.cmdline_options.pop('config_version', None)

        # Set self.path and read the user config
        self.user_config: dict[str, Any] = {}  # for self.get in data_path()
        self.path = self.data_path()
        self.user_config = read_user_config_function(self.path)
        if not self.user_config:
            # avoid new config getting upgraded
            self.user_config = {'config_version': FINAL_CONFIG_VERSION}

    def data_path(self) -> str:
        # Read data_dir from command line
        # Otherwise use the user's default data directory.
        path = cast(str, self.get('data_dir'))
        if path is None:
            path = self.user_dir()

        make_dir(path)
        logger.debug("walletdb directory '%s'", path)
        return os.path.abspath(path)

    def set_key(self, key: str, value: Any, save: bool=True) -> None:
        if not self.is_modifiable(key):
            logger.warning("Not changing config key '%s' set on the command line", key)
            return
        self._set_key_in_user_config(key, value, save)

    def soft_set_key(self, key: str, value: Any) -> bool:
        """Set the value only if it has not already been given one. Not persisted."""
        with self.lock:
            if self.get(key) is not None:
                return False
            self.cmdline_options[key] = value
        return True

    def _set_key_in_user_config(self, key: str, value: Any, save: bool=True) -> None:
        with self.lock:
            if value is not None:
                self.user_config[key] = value
            else:
                self.user_config.pop(key, None)
            if save:
                self.save_user_config()

    def get(self, key: str, default: Any=None) -> Any|None:
        with self.lock:
            out = self.cmdline_options.get(key)
            if out is None:
                out = self.user_config.get(key, default)
        return out

    def get_explicit_type(self, return_type: Type[T], key: str, default: T) -> T:
        with self.lock:
            value: T|None = self.cmdline_options.get(key)
            if value is None:
                value = cast(T, self.user_config.get(key, default))
        assert isinstance(value, return_type)
        return value

    def is_modifiable(self, key: str) -> bool:
        return key not in self.cmdline_options

    def save_user_config(self) -> None:
        if not self.path:
            return
        path = os.path.join(self.path, "config")
        s = json.dumps(self.user_config, indent=4, sort_keys=True)
        with open(path, "w", encoding='utf-8') as f:
            f.write(s)
        os.chmod(path, stat.S_IREAD | stat.S_IWRITE)

    def get_wallet_backups(self) -> int:
        """The number of automatic backups to keep for each wallet, between 1 and 10."""
        count = self.get_explicit_type(int, 'walletbackups', DEFAULT_WALLET_BACKUPS)
        return max(1, min(MAX_WALLET_BACKUPS, count))

    def get_backups_path(self) -> str:
        path = self.get('backupsdir')
        if path is None:
            return os.path.join(self.path, BACKUPS_DIRNAME)
        return os.path.abspath(cast(str, path))

    def is_flush_enabled(self) -> bool:
        return bool(self.get('flushwallet', True))

    def get_backup_settings(self) -> BackupSettings:
        from .backup import BackupSettings
        return BackupSettings(self.get_wallet_backups(), self.get_backups_path(), self.path)


def read_user_config(path: str) -> dict[str, Any]:
    """Parse and return the user config settings as a dictionary."""
    if not path:
        return {}
    config_path = os.path.join(path, "config")
    if not os.path.exists(config_path):
        return {}
    try:
        with open(config_path, "r", encoding='utf-8') as f:
            data = f.read()
        result = json.loads(data)
    except Exception:
        logger.exception("Cannot read config file %s.", config_path)
        return {}
    if not type(result) is dict:
        return {}
    return result
