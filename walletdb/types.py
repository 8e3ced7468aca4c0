from __future__ import annotations
import dataclasses
from typing import Any, NamedTuple

from bitcoinx import Tx

from .constants import (CLIENT_VERSION, HDChainVersion, KeyMetadataVersion, NULL_HASH,
    UNORDERED_POSITION)


class DecodedRecord(NamedTuple):
    tag: str
    # `None` for global records, a single value for single field keys, otherwise a tuple.
    key: Any
    value: Any


class DecodeError(NamedTuple):
    tag: str
    message: str


class ReadResult(NamedTuple):
    tag: str
    success: bool
    message: str = ""


class MasterKey(NamedTuple):
    crypted_key: bytes
    salt: bytes
    # 0 = EVP_sha512()
    derivation_method: int
    derive_iterations: int
    other_derivation_parameters: bytes = b""


class WalletKey(NamedTuple):
    """The superseded `wkey` record value."""
    private_key: bytes
    time_created: int
    time_expires: int
    comment: str


class PrivateKeyValue(NamedTuple):
    private_key: bytes
    integrity_hash: bytes|None = None


class WalletKeyValue(NamedTuple):
    wallet_key: WalletKey
    integrity_hash: bytes|None = None


class KeyMetadata(NamedTuple):
    create_time: int
    version: int = KeyMetadataVersion.WITH_HDDATA
    hd_keypath: str = ""
    hd_master_key_id: bytes = bytes(20)


class KeyPool(NamedTuple):
    time: int
    public_key: bytes
    internal: bool = False
    version: int = CLIENT_VERSION


class HDChain(NamedTuple):
    seed_id: bytes
    external_chain_counter: int = 0
    internal_chain_counter: int = 0
    version: int = HDChainVersion.HD_CHAIN_SPLIT


class BlockLocator(NamedTuple):
    have: list[bytes]
    version: int = CLIENT_VERSION

    def is_null(self) -> bool:
        return len(self.have) == 0


class OpaqueValue(NamedTuple):
    """Coin-protocol records, carried without interpretation."""
    payload: bytes


class AddressBookEntry(NamedTuple):
    name: str|None = None
    purpose: str|None = None


@dataclasses.dataclass(eq=False)
class MerkleTx:
    tx: Tx
    block_hash: bytes = NULL_HASH
    merkle_branch: list[bytes] = dataclasses.field(default_factory=list)
    index: int = -1

    def hash(self) -> bytes:
        return self.tx.hash()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MerkleTx):
            return NotImplemented
        return self.tx.to_bytes() == other.tx.to_bytes() and \
            self.block_hash == other.block_hash and \
            self.merkle_branch == other.merkle_branch and self.index == other.index


@dataclasses.dataclass(eq=False)
class WalletTx(MerkleTx):
    previous_txs: list[MerkleTx] = dataclasses.field(default_factory=list)
    map_value: dict[str, str] = dataclasses.field(default_factory=dict)
    order_form: list[tuple[str, str]] = dataclasses.field(default_factory=list)
    time_received_is_tx_time: int = 0
    time_received: int = 0
    from_me: bool = False
    spent: bool = False
    # Stored in `map_value` under "n" and "timesmart".
    order_pos: int = UNORDERED_POSITION
    time_smart: int = 0
    # Bytes following the known fields. Only legacy rows are expected to have any.
    legacy_tail: bytes = b""

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WalletTx):
            return NotImplemented
        return MerkleTx.__eq__(self, other) and self.previous_txs == other.previous_txs and \
            self.map_value == other.map_value and self.order_form == other.order_form and \
            self.time_received_is_tx_time == other.time_received_is_tx_time and \
            self.time_received == other.time_received and self.from_me == other.from_me and \
            self.spent == other.spent and self.order_pos == other.order_pos and \
            self.time_smart == other.time_smart
