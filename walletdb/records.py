"""
The wallet record schema.

Every record key starts with its type tag, as a var-length string, and is followed by the
key fields for that type. There is one codec class per type tag, registered by tag, with the
encoding for both the key fields and the value and the rules for loading a decoded record into
a wallet model.
"""

from __future__ import annotations
import dataclasses
from enum import IntEnum
import struct
from typing import Any, Type, TypeVar

from bitcoinx import double_sha256, hash160, hash_to_hex_str, PrivateKey, PublicKey, Tx

from .constants import (has_unknown_critical_flags, HDChainVersion, IGNORED_RECORD_TYPES,
    INT32_MAX, KeyMetadataVersion, LEGACY_TX_TIME_MAX, LEGACY_TX_TIME_MIN,
    LEGACY_VERSION_REMAPPED, LEGACY_VERSION_SENTINEL, NULL_HASH, RecordType, UNORDERED_POSITION)
from .exceptions import RecordDecodeError
from .model import ChainView, NullChainView, WalletModelProtocol
from .scan_state import WalletScanState
from .serialization import DataStream
from .transaction import check_transaction
from .types import (BlockLocator, DecodedRecord, DecodeError, HDChain, KeyMetadata, KeyPool,
    MasterKey, MerkleTx, OpaqueValue, PrivateKeyValue, ReadResult, WalletKey, WalletKeyValue,
    WalletTx)


class LoadAction(IntEnum):
    # Decoded and delivered to the wallet model.
    LOAD = 1
    # Read elsewhere, a load pass skips these without counting them.
    IGNORE = 2
    # Decoded by dedicated listing operations, a load pass counts them as unknown.
    UNKNOWN = 3


@dataclasses.dataclass
class LoadContext:
    wallet: WalletModelProtocol
    scan_state: WalletScanState
    chain: ChainView
    # Diagnostic message for the log, set by records that succeed with something to report.
    message: str = ""


class RecordCodec:
    tag: str
    load_action = LoadAction.LOAD

    def encode_key(self, stream: DataStream, key: Any) -> None:
        # Global records have no key fields beyond the type tag.
        if key is not None:
            raise ValueError(f"{self.tag} records have no key fields")

    def decode_key(self, stream: DataStream) -> Any:
        return None

    def encode_value(self, stream: DataStream, value: Any) -> None:
        raise NotImplementedError

    def decode_value(self, stream: DataStream) -> Any:
        raise NotImplementedError

    def load(self, context: LoadContext, key: Any, value: Any) -> None:
        """Apply a decoded record to the wallet model, raising `RecordDecodeError` if invalid."""
        pass


CODECS: dict[str, RecordCodec] = {}

CodecType = TypeVar("CodecType", bound=Type[RecordCodec])

def register_codec(cls: CodecType) -> CodecType:
    assert cls.tag not in CODECS, f"duplicate codec for '{cls.tag}'"
    CODECS[cls.tag] = cls()
    return cls


def get_codec(tag: str) -> RecordCodec|None:
    return CODECS.get(tag)


def validate_public_key(public_key_bytes: bytes, message: str) -> None:
    try:
        PublicKey.from_bytes(public_key_bytes)
    except (TypeError, ValueError):
        raise RecordDecodeError(message)


def key_integrity_hash(public_key: bytes, private_key: bytes) -> bytes:
    return double_sha256(public_key + private_key)


## Shared field encodings.

def write_key_metadata(stream: DataStream, metadata: KeyMetadata) -> None:
    stream.write_int32(metadata.version)
    stream.write_int64(metadata.create_time)
    if metadata.version >= KeyMetadataVersion.WITH_HDDATA:
        stream.write_string(metadata.hd_keypath)
        stream.write_hash160(metadata.hd_master_key_id)

def read_key_metadata(stream: DataStream) -> KeyMetadata:
    version = stream.read_int32()
    create_time = stream.read_int64()
    if version >= KeyMetadataVersion.WITH_HDDATA:
        return KeyMetadata(create_time, version, stream.read_string(), stream.read_hash160())
    return KeyMetadata(create_time, version)


def write_tx(stream: DataStream, tx: Tx) -> None:
    stream.write(tx.to_bytes())

def read_tx(stream: DataStream) -> Tx:
    try:
        return Tx.read(stream.read)
    except (struct.error, ValueError) as e:
        raise RecordDecodeError(f"Malformed transaction: {e}") from e


def write_merkle_tx(stream: DataStream, mtx: MerkleTx) -> None:
    write_tx(stream, mtx.tx)
    stream.write_hash256(mtx.block_hash)
    stream.write_list(mtx.merkle_branch, stream.write_hash256)
    stream.write_int32(mtx.index)

def read_merkle_tx(stream: DataStream) -> MerkleTx:
    tx = read_tx(stream)
    block_hash = stream.read_hash256()
    merkle_branch = stream.read_list(stream.read_hash256)
    return MerkleTx(tx, block_hash, merkle_branch, stream.read_int32())


## Address book.

@register_codec
class NameCodec(RecordCodec):
    tag = RecordType.NAME

    def encode_key(self, stream: DataStream, key: str) -> None:
        stream.write_string(key)

    def decode_key(self, stream: DataStream) -> str:
        return stream.read_string()

    def encode_value(self, stream: DataStream, value: str) -> None:
        stream.write_string(value)

    def decode_value(self, stream: DataStream) -> str:
        return stream.read_string()

    def load(self, context: LoadContext, key: str, value: str) -> None:
        context.wallet.load_address_book_name(key, value)


@register_codec
class PurposeCodec(NameCodec):
    tag = RecordType.PURPOSE

    def load(self, context: LoadContext, key: str, value: str) -> None:
        context.wallet.load_address_book_purpose(key, value)


@register_codec
class DestDataCodec(RecordCodec):
    tag = RecordType.DESTDATA

    def encode_key(self, stream: DataStream, key: tuple[str, str]) -> None:
        stream.write_string(key[0])
        stream.write_string(key[1])

    def decode_key(self, stream: DataStream) -> tuple[str, str]:
        address = stream.read_string()
        return address, stream.read_string()

    def encode_value(self, stream: DataStream, value: str) -> None:
        stream.write_string(value)

    def decode_value(self, stream: DataStream) -> str:
        return stream.read_string()

    def load(self, context: LoadContext, key: tuple[str, str], value: str) -> None:
        context.wallet.load_dest_data(key[0], key[1], value)


## Transactions.

@register_codec
class TxCodec(RecordCodec):
    tag = RecordType.TX

    def encode_key(self, stream: DataStream, key: bytes) -> None:
        stream.write_hash256(key)

    def decode_key(self, stream: DataStream) -> bytes:
        return stream.read_hash256()

    def encode_value(self, stream: DataStream, value: WalletTx) -> None:
        map_value = dict(value.map_value)
        map_value.pop("n", None)
        map_value.pop("timesmart", None)
        if value.order_pos != UNORDERED_POSITION:
            map_value["n"] = str(value.order_pos)
        if value.time_smart:
            map_value["timesmart"] = str(value.time_smart)

        write_merkle_tx(stream, value)
        stream.write_list(value.previous_txs, lambda mtx: write_merkle_tx(stream, mtx))
        stream.write_string_map(map_value)
        stream.write_string_pairs(value.order_form)
        stream.write_uint32(value.time_received_is_tx_time)
        stream.write_uint32(value.time_received)
        stream.write_bool(value.from_me)
        stream.write_bool(value.spent)

    def decode_value(self, stream: DataStream) -> WalletTx:
        mtx = read_merkle_tx(stream)
        previous_txs = stream.read_list(lambda: read_merkle_tx(stream))
        map_value = stream.read_string_map()
        order_form = stream.read_string_pairs()
        time_received_is_tx_time = stream.read_uint32()
        time_received = stream.read_uint32()
        from_me = stream.read_bool()
        spent = stream.read_bool()

        try:
            order_pos = int(map_value.pop("n", UNORDERED_POSITION))
            time_smart = int(map_value.pop("timesmart", 0))
        except ValueError as e:
            raise RecordDecodeError(f"Malformed transaction ordering: {e}") from e

        return WalletTx(mtx.tx, mtx.block_hash, mtx.merkle_branch, mtx.index, previous_txs,
            map_value, order_form, time_received_is_tx_time, time_received, from_me, spent,
            order_pos, time_smart, stream.read_remaining())

    def load(self, context: LoadContext, key: bytes, value: WalletTx) -> None:
        height = INT32_MAX
        if value.tx.inputs:
            found_height = context.chain.get_transaction_height(value.tx.inputs[0].prev_hash)
            if found_height is not None:
                height = found_height

        result = check_transaction(value.tx, height)
        if not result.is_valid:
            raise RecordDecodeError(f"Error reading wallet database: transaction "
                f"{hash_to_hex_str(key)} failed checks ({result.reason})")
        if value.hash() != key:
            raise RecordDecodeError(f"Error reading wallet database: transaction "
                f"{hash_to_hex_str(key)} has hash {hash_to_hex_str(value.hash())}")

        # Rows written by versions 31404 to 31703 have a different field layout.
        if LEGACY_TX_TIME_MIN <= value.time_received_is_tx_time <= LEGACY_TX_TIME_MAX:
            legacy_version = value.time_received_is_tx_time
            if value.legacy_tail:
                tail = DataStream(value.legacy_tail)
                time_received_is_tx_time = tail.read_byte()
                tail.read_byte()
                tail.read_string()
                context.message = f"Upgrading transaction {hash_to_hex_str(key)} from " \
                    f"version {legacy_version} ({time_received_is_tx_time})"
                value.time_received_is_tx_time = time_received_is_tx_time
            else:
                context.message = f"Repairing transaction {hash_to_hex_str(key)} from " \
                    f"version {legacy_version}"
                value.time_received_is_tx_time = 0
            value.legacy_tail = b""
            context.scan_state.upgrade_tx_hashes.append(key)

        if value.order_pos == UNORDERED_POSITION:
            context.scan_state.has_unordered_tx = True

        context.wallet.load_to_wallet(value)


## Keys.

class PublicKeyRecordCodec(RecordCodec):
    def encode_key(self, stream: DataStream, key: bytes) -> None:
        stream.write_varbytes(key)

    def decode_key(self, stream: DataStream) -> bytes:
        return stream.read_varbytes()


class PrivateKeyRecordCodec(PublicKeyRecordCodec):
    def _load_private_key(self, context: LoadContext, public_key: bytes, private_key: bytes,
            integrity_hash: bytes|None) -> None:
        validate_public_key(public_key, "Error reading wallet database: public key corrupt")

        # Old wallets store keys without the hash, newer wallets append a hash of the public and
        # private keys so that loading does not need to rederive the public key to check them.
        # A null hash is also a missing hash.
        if integrity_hash is not None and integrity_hash != NULL_HASH:
            if key_integrity_hash(public_key, private_key) != integrity_hash:
                raise RecordDecodeError(
                    "Error reading wallet database: public and private key mismatch")

        try:
            PrivateKey(private_key)
        except (TypeError, ValueError):
            raise RecordDecodeError("Error reading wallet database: private key corrupt")

        if not context.wallet.load_key(public_key, private_key):
            raise RecordDecodeError("Error reading wallet database: key rejected")


@register_codec
class KeyCodec(PrivateKeyRecordCodec):
    tag = RecordType.KEY

    def encode_value(self, stream: DataStream, value: PrivateKeyValue) -> None:
        stream.write_varbytes(value.private_key)
        if value.integrity_hash is not None:
            stream.write_hash256(value.integrity_hash)

    def decode_value(self, stream: DataStream) -> PrivateKeyValue:
        private_key = stream.read_varbytes()
        return PrivateKeyValue(private_key, stream.read_optional_hash256())

    def load(self, context: LoadContext, key: bytes, value: PrivateKeyValue) -> None:
        context.scan_state.plaintext_keys += 1
        self._load_private_key(context, key, value.private_key, value.integrity_hash)


@register_codec
class WalletKeyCodec(PrivateKeyRecordCodec):
    tag = RecordType.WKEY

    def encode_value(self, stream: DataStream, value: WalletKeyValue) -> None:
        stream.write_varbytes(value.wallet_key.private_key)
        stream.write_int64(value.wallet_key.time_created)
        stream.write_int64(value.wallet_key.time_expires)
        stream.write_string(value.wallet_key.comment)
        if value.integrity_hash is not None:
            stream.write_hash256(value.integrity_hash)

    def decode_value(self, stream: DataStream) -> WalletKeyValue:
        wallet_key = WalletKey(stream.read_varbytes(), stream.read_int64(), stream.read_int64(),
            stream.read_string())
        return WalletKeyValue(wallet_key, stream.read_optional_hash256())

    def load(self, context: LoadContext, key: bytes, value: WalletKeyValue) -> None:
        self._load_private_key(context, key, value.wallet_key.private_key,
            value.integrity_hash)


@register_codec
class CryptedKeyCodec(PublicKeyRecordCodec):
    tag = RecordType.CKEY

    def encode_value(self, stream: DataStream, value: bytes) -> None:
        stream.write_varbytes(value)

    def decode_value(self, stream: DataStream) -> bytes:
        return stream.read_varbytes()

    def load(self, context: LoadContext, key: bytes, value: bytes) -> None:
        validate_public_key(key, "Error reading wallet database: public key corrupt")
        context.scan_state.encrypted_keys += 1
        if not context.wallet.load_crypted_key(key, value):
            raise RecordDecodeError("Error reading wallet database: encrypted key rejected")
        context.scan_state.is_encrypted = True


@register_codec
class MasterKeyCodec(RecordCodec):
    tag = RecordType.MKEY

    def encode_key(self, stream: DataStream, key: int) -> None:
        stream.write_uint32(key)

    def decode_key(self, stream: DataStream) -> int:
        return stream.read_uint32()

    def encode_value(self, stream: DataStream, value: MasterKey) -> None:
        stream.write_varbytes(value.crypted_key)
        stream.write_varbytes(value.salt)
        stream.write_uint32(value.derivation_method)
        stream.write_uint32(value.derive_iterations)
        stream.write_varbytes(value.other_derivation_parameters)

    def decode_value(self, stream: DataStream) -> MasterKey:
        return MasterKey(stream.read_varbytes(), stream.read_varbytes(), stream.read_uint32(),
            stream.read_uint32(), stream.read_varbytes())

    def load(self, context: LoadContext, key: int, value: MasterKey) -> None:
        if context.wallet.has_master_key(key):
            raise RecordDecodeError(
                f"Error reading wallet database: duplicate master key id {key}")
        context.wallet.load_master_key(key, value)
        if context.scan_state.master_key_max_id < key:
            context.scan_state.master_key_max_id = key


@register_codec
class DefaultKeyCodec(RecordCodec):
    tag = RecordType.DEFAULTKEY

    def encode_value(self, stream: DataStream, value: bytes) -> None:
        stream.write_varbytes(value)

    def decode_value(self, stream: DataStream) -> bytes:
        return stream.read_varbytes()

    def load(self, context: LoadContext, key: None, value: bytes) -> None:
        # The default key is not used, but a corrupt one is a sign of wider corruption.
        validate_public_key(value, "Error reading wallet database: default key corrupt")


@register_codec
class KeyMetadataCodec(PublicKeyRecordCodec):
    tag = RecordType.KEYMETA

    def encode_value(self, stream: DataStream, value: KeyMetadata) -> None:
        write_key_metadata(stream, value)

    def decode_value(self, stream: DataStream) -> KeyMetadata:
        return read_key_metadata(stream)

    def load(self, context: LoadContext, key: bytes, value: KeyMetadata) -> None:
        context.scan_state.key_meta += 1
        context.wallet.load_key_metadata(hash160(key), value)


@register_codec
class KeyPoolCodec(RecordCodec):
    tag = RecordType.POOL

    def encode_key(self, stream: DataStream, key: int) -> None:
        stream.write_int64(key)

    def decode_key(self, stream: DataStream) -> int:
        return stream.read_int64()

    def encode_value(self, stream: DataStream, value: KeyPool) -> None:
        stream.write_int32(value.version)
        stream.write_int64(value.time)
        stream.write_varbytes(value.public_key)
        stream.write_bool(value.internal)

    def decode_value(self, stream: DataStream) -> KeyPool:
        version = stream.read_int32()
        time = stream.read_int64()
        public_key = stream.read_varbytes()
        # Pools written before the keypool split have no internal flag.
        internal = stream.read_bool() if not stream.is_empty() else False
        return KeyPool(time, public_key, internal, version)

    def load(self, context: LoadContext, key: int, value: KeyPool) -> None:
        context.wallet.load_key_pool(key, value)


@register_codec
class HDChainCodec(RecordCodec):
    tag = RecordType.HDCHAIN

    def encode_value(self, stream: DataStream, value: HDChain) -> None:
        stream.write_int32(value.version)
        stream.write_uint32(value.external_chain_counter)
        stream.write_hash160(value.seed_id)
        if value.version >= HDChainVersion.HD_CHAIN_SPLIT:
            stream.write_uint32(value.internal_chain_counter)

    def decode_value(self, stream: DataStream) -> HDChain:
        version = stream.read_int32()
        external_chain_counter = stream.read_uint32()
        seed_id = stream.read_hash160()
        internal_chain_counter = 0
        if version >= HDChainVersion.HD_CHAIN_SPLIT:
            internal_chain_counter = stream.read_uint32()
        return HDChain(seed_id, external_chain_counter, internal_chain_counter, version)

    def load(self, context: LoadContext, key: None, value: HDChain) -> None:
        context.wallet.set_hd_chain(value)


## Scripts.

@register_codec
class CScriptCodec(RecordCodec):
    tag = RecordType.CSCRIPT

    def encode_key(self, stream: DataStream, key: bytes) -> None:
        stream.write_hash160(key)

    def decode_key(self, stream: DataStream) -> bytes:
        return stream.read_hash160()

    def encode_value(self, stream: DataStream, value: bytes) -> None:
        stream.write_varbytes(value)

    def decode_value(self, stream: DataStream) -> bytes:
        return stream.read_varbytes()

    def load(self, context: LoadContext, key: bytes, value: bytes) -> None:
        if not context.wallet.load_cscript(key, value):
            raise RecordDecodeError("Error reading wallet database: redeem script rejected")


WATCH_ONLY_MARKER = ord("1")

@register_codec
class WatchOnlyCodec(RecordCodec):
    tag = RecordType.WATCHS

    def encode_key(self, stream: DataStream, key: bytes) -> None:
        stream.write_varbytes(key)

    def decode_key(self, stream: DataStream) -> bytes:
        return stream.read_varbytes()

    def encode_value(self, stream: DataStream, value: int) -> None:
        stream.write_byte(value)

    def decode_value(self, stream: DataStream) -> int:
        return stream.read_byte()

    def load(self, context: LoadContext, key: bytes, value: int) -> None:
        context.scan_state.watch_keys += 1
        if value == WATCH_ONLY_MARKER:
            context.wallet.load_watch_only(key)


@register_codec
class WatchMetadataCodec(WatchOnlyCodec):
    tag = RecordType.WATCHMETA

    def encode_value(self, stream: DataStream, value: KeyMetadata) -> None:
        write_key_metadata(stream, value)

    def decode_value(self, stream: DataStream) -> KeyMetadata:
        return read_key_metadata(stream)

    def load(self, context: LoadContext, key: bytes, value: KeyMetadata) -> None:
        context.scan_state.key_meta += 1
        context.wallet.load_script_metadata(hash160(key), value)


## Global records.

class IntegerCodec(RecordCodec):
    def encode_value(self, stream: DataStream, value: int) -> None:
        stream.write_int32(value)

    def decode_value(self, stream: DataStream) -> int:
        return stream.read_int32()


@register_codec
class VersionCodec(IntegerCodec):
    tag = RecordType.VERSION

    def load(self, context: LoadContext, key: None, value: int) -> None:
        if value == LEGACY_VERSION_SENTINEL:
            value = LEGACY_VERSION_REMAPPED
        context.scan_state.file_version = value


@register_codec
class MinVersionCodec(IntegerCodec):
    tag = RecordType.MINVERSION
    load_action = LoadAction.IGNORE


@register_codec
class OrderPosNextCodec(RecordCodec):
    tag = RecordType.ORDERPOSNEXT

    def encode_value(self, stream: DataStream, value: int) -> None:
        stream.write_int64(value)

    def decode_value(self, stream: DataStream) -> int:
        return stream.read_int64()

    def load(self, context: LoadContext, key: None, value: int) -> None:
        context.wallet.set_order_pos_next(value)


@register_codec
class FlagsCodec(RecordCodec):
    tag = RecordType.FLAGS

    def encode_value(self, stream: DataStream, value: int) -> None:
        stream.write_uint64(value)

    def decode_value(self, stream: DataStream) -> int:
        return stream.read_uint64()

    def load(self, context: LoadContext, key: None, value: int) -> None:
        # Unknown flags in the upper 32 bits would change how the wallet must be handled.
        if has_unknown_critical_flags(value) or not context.wallet.set_wallet_flags(value):
            raise RecordDecodeError(
                "Error reading wallet database: Unknown non-tolerable wallet flags found")


@register_codec
class BestBlockCodec(RecordCodec):
    tag = RecordType.BESTBLOCK
    load_action = LoadAction.IGNORE

    def encode_value(self, stream: DataStream, value: BlockLocator) -> None:
        stream.write_int32(value.version)
        stream.write_list(value.have, stream.write_hash256)

    def decode_value(self, stream: DataStream) -> BlockLocator:
        version = stream.read_int32()
        return BlockLocator(stream.read_list(stream.read_hash256), version)


@register_codec
class BestBlockNoMerkleCodec(BestBlockCodec):
    tag = RecordType.BESTBLOCK_NOMERKLE


## Opaque records.

class OpaqueValueCodec(RecordCodec):
    def encode_value(self, stream: DataStream, value: OpaqueValue) -> None:
        stream.write(value.payload)

    def decode_value(self, stream: DataStream) -> OpaqueValue:
        return OpaqueValue(stream.read_remaining())


@register_codec
class AccountingEntryCodec(OpaqueValueCodec):
    tag = RecordType.ACENTRY
    load_action = LoadAction.IGNORE

    def encode_key(self, stream: DataStream, key: bytes) -> None:
        stream.write(key)

    def decode_key(self, stream: DataStream) -> bytes:
        return stream.read_remaining()


@register_codec
class ZerocoinEntryCodec(OpaqueValueCodec):
    tag = RecordType.ZEROCOIN
    load_action = LoadAction.UNKNOWN

    # The key is the serialized big number public coin value.
    def encode_key(self, stream: DataStream, key: bytes) -> None:
        stream.write_varbytes(key)

    def decode_key(self, stream: DataStream) -> bytes:
        return stream.read_varbytes()


@register_codec
class UnloadedZerocoinEntryCodec(ZerocoinEntryCodec):
    tag = RecordType.UNLOADEDZEROCOIN


@register_codec
class ZerocoinSpendSerialCodec(ZerocoinEntryCodec):
    tag = RecordType.ZCSERIAL


@register_codec
class ZerocoinAccumulatorCodec(OpaqueValueCodec):
    tag = RecordType.ZCACCUMULATOR
    load_action = LoadAction.UNKNOWN

    def encode_key(self, stream: DataStream, key: tuple[int, int]) -> None:
        stream.write_uint32(key[0])
        stream.write_int32(key[1])

    def decode_key(self, stream: DataStream) -> tuple[int, int]:
        denomination = stream.read_uint32()
        return denomination, stream.read_int32()


@register_codec
class CalculatedZerocoinBlockCodec(IntegerCodec):
    tag = RecordType.CALCULATEDZCBLOCK
    load_action = LoadAction.UNKNOWN


## Record level encoding.

def encode_key(tag: str, key: Any=None) -> bytes:
    codec = CODECS[tag]
    stream = DataStream()
    stream.write_string(tag)
    codec.encode_key(stream, key)
    return stream.getvalue()


def encode_value(tag: str, value: Any) -> bytes:
    stream = DataStream()
    CODECS[tag].encode_value(stream, value)
    return stream.getvalue()


def encode_record(record: DecodedRecord) -> tuple[bytes, bytes]:
    return encode_key(record.tag, record.key), encode_value(record.tag, record.value)


def read_record_type(key_stream: DataStream) -> str:
    return key_stream.read_string()


def _decode(tag: str, codec: RecordCodec, key_stream: DataStream,
        value_bytes: bytes) -> DecodedRecord:
    key = codec.decode_key(key_stream)
    value = codec.decode_value(DataStream(value_bytes))
    return DecodedRecord(tag, key, value)


def decode_record(key_bytes: bytes, value_bytes: bytes) -> DecodedRecord|DecodeError:
    """
    Decode a raw record. Malformed records are returned as a `DecodeError`, not raised.
    """
    key_stream = DataStream(key_bytes)
    try:
        tag = read_record_type(key_stream)
    except RecordDecodeError as e:
        return DecodeError("", f"Unreadable record type: {e}")

    codec = CODECS.get(tag)
    if codec is None:
        return DecodeError(tag, f"Unknown record type '{tag}'")
    try:
        return _decode(tag, codec, key_stream, value_bytes)
    except RecordDecodeError as e:
        return DecodeError(tag, str(e))


def read_key_value(wallet: WalletModelProtocol, key_bytes: bytes, value_bytes: bytes,
        scan_state: WalletScanState, chain: ChainView|None=None) -> ReadResult:
    """
    Decode one raw record and load it into the wallet model.

    Any failure to decode or validate the record is returned in the result, along with the
    record type so the caller can decide how serious it is.
    """
    key_stream = DataStream(key_bytes)
    try:
        tag = read_record_type(key_stream)
    except RecordDecodeError as e:
        return ReadResult("", False, f"Unreadable record type: {e}")

    codec = CODECS.get(tag)
    if codec is None or codec.load_action == LoadAction.UNKNOWN:
        if tag not in IGNORED_RECORD_TYPES:
            scan_state.unknown_records += 1
        return ReadResult(tag, True)
    if codec.load_action == LoadAction.IGNORE:
        return ReadResult(tag, True)

    context = LoadContext(wallet, scan_state, chain if chain is not None else NullChainView())
    try:
        record = _decode(tag, codec, key_stream, value_bytes)
        codec.load(context, record.key, record.value)
    except RecordDecodeError as e:
        return ReadResult(tag, False, str(e))
    return ReadResult(tag, True, context.message)
