from enum import IntEnum, IntFlag


## Record types

class RecordType:
    NAME                = "name"
    PURPOSE             = "purpose"
    TX                  = "tx"
    KEY                 = "key"
    WKEY                = "wkey"
    CKEY                = "ckey"
    MKEY                = "mkey"
    CSCRIPT             = "cscript"
    WATCHS              = "watchs"
    WATCHMETA           = "watchmeta"
    KEYMETA             = "keymeta"
    DEFAULTKEY          = "defaultkey"
    POOL                = "pool"
    VERSION             = "version"
    ORDERPOSNEXT        = "orderposnext"
    DESTDATA            = "destdata"
    HDCHAIN             = "hdchain"
    FLAGS               = "flags"
    BESTBLOCK           = "bestblock"
    BESTBLOCK_NOMERKLE  = "bestblock_nomerkle"
    MINVERSION          = "minversion"
    ACENTRY             = "acentry"
    ZCSERIAL            = "zcserial"
    ZCACCUMULATOR       = "zcaccumulator"
    ZEROCOIN            = "zerocoin"
    UNLOADEDZEROCOIN    = "unloadedzerocoin"
    CALCULATEDZCBLOCK   = "calculatedzcblock"

# Losing any of these is a catastrophic error, the load must not continue.
KEY_RECORD_TYPES = frozenset({ RecordType.KEY, RecordType.WKEY, RecordType.MKEY,
    RecordType.CKEY })

# Bookkeeping records that are read elsewhere, and are not unknown to a load pass.
IGNORED_RECORD_TYPES = frozenset({ RecordType.BESTBLOCK, RecordType.BESTBLOCK_NOMERKLE,
    RecordType.MINVERSION, RecordType.ACENTRY })

# Records that the keys-only recovery keeps, when they decode.
RECOVERABLE_KEY_RECORD_TYPES = KEY_RECORD_TYPES | { RecordType.HDCHAIN }


## Load outcomes

class DBErrors(IntEnum):
    # Ordered by severity, the greater value wins when two outcomes compete.
    OK = 0
    NONCRITICAL_ERROR = 1
    NEED_REWRITE = 2
    TOO_NEW = 3
    CORRUPT = 4

    def is_fatal(self) -> bool:
        return self in (DBErrors.TOO_NEW, DBErrors.CORRUPT)


def worst_result(a: DBErrors, b: DBErrors) -> DBErrors:
    return a if a >= b else b


## Wallet versions

class WalletFeature(IntEnum):
    BASE = 10500
    WALLETCRYPT = 40000
    COMPRPUBKEY = 60000
    HD = 130000
    HD_SPLIT = 139900
    NO_DEFAULT_KEY = 159900
    PRE_SPLIT_KEYPOOL = 169900

FEATURE_LATEST = WalletFeature.PRE_SPLIT_KEYPOOL
CLIENT_VERSION = 170100

# Historical migration rules. These are literal values from old wallet releases.
LEGACY_VERSION_SENTINEL = 10300
LEGACY_VERSION_REMAPPED = 300
LEGACY_TX_TIME_MIN = 31404
LEGACY_TX_TIME_MAX = 31703
# Encrypted wallets written by 0.4.0 and 0.5.0rc need a full rewrite.
REWRITE_ENCRYPTED_VERSIONS = (40000, 50000)


## Wallet flags

class WalletFlag(IntFlag):
    NONE = 0
    # Unknown flags in the lower 32 bits are tolerated, in the upper 32 bits they are not.
    DISABLE_PRIVATE_KEYS = 1 << 32

KNOWN_WALLET_FLAGS = int(WalletFlag.DISABLE_PRIVATE_KEYS)


def has_unknown_critical_flags(flags: int) -> bool:
    return ((flags & ~KNOWN_WALLET_FLAGS) >> 32) != 0


## Key metadata

class KeyMetadataVersion(IntEnum):
    BASIC = 1
    WITH_HDDATA = 10

class HDChainVersion(IntEnum):
    HD_BASE = 1
    HD_CHAIN_SPLIT = 2


## Transactions

COIN = 100000000
MAX_MONEY = 21000000 * COIN
INT32_MAX = 0x7fffffff
NULL_HASH = bytes(32)
UNORDERED_POSITION = -1


## Backups

DEFAULT_WALLET_BACKUPS = 10
MAX_WALLET_BACKUPS = 10
# Sentinel retention counts, anything below one means automatic backups are disabled.
BACKUPS_DISABLED_ERROR = -1
BACKUPS_DISABLED_LOCKED = -2
BACKUP_TIME_FORMAT = ".%Y-%m-%d-%H-%M"
BACKUPS_DIRNAME = "backups"
DEFAULT_WALLET_FILENAME = "wallet.dat"

# The wallet database is flushed once its update counter has been stable for this long.
FLUSH_STABLE_SECONDS = 2


## Recovery

class VerifyState(IntEnum):
    VERIFY_OK = 0
    RECOVER_OK = 1
    RECOVER_FAIL = 2
