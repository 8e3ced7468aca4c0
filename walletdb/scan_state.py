from __future__ import annotations
import dataclasses


@dataclasses.dataclass
class WalletScanState:
    """Accumulated over a single load pass, then discarded."""
    plaintext_keys: int = 0
    encrypted_keys: int = 0
    watch_keys: int = 0
    key_meta: int = 0
    unknown_records: int = 0
    is_encrypted: bool = False
    has_unordered_tx: bool = False
    file_version: int = 0
    # Transactions decoded from the legacy field layout, in the order they were read.
    upgrade_tx_hashes: list[bytes] = dataclasses.field(default_factory=list)
    # Merged into the wallet model when the pass finishes.
    master_key_max_id: int = 0
    rescan_requested: bool = False

    def total_keys(self) -> int:
        return self.plaintext_keys + self.encrypted_keys

    def is_time_first_key_reliable(self) -> bool:
        # Only reliable if every key has metadata.
        return self.plaintext_keys + self.encrypted_keys + self.watch_keys == self.key_meta
