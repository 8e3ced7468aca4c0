from bitcoinx import PrivateKey, Script, Tx, TxInput, TxOutput

from walletdb.constants import UNORDERED_POSITION
from walletdb.types import WalletTx


def make_key_pair(n: int) -> tuple[bytes, bytes]:
    """A valid public key and private key pair, distinct for each positive `n`."""
    private_key = PrivateKey(n.to_bytes(32, "big"))
    return private_key.public_key.to_bytes(), private_key.to_bytes()


def make_tx(seed: int, value: int=1000) -> Tx:
    # The previous hash is only null for a coinbase, `seed` must be positive.
    prev_hash = bytes([ seed ]) * 32
    return Tx(1, [ TxInput(prev_hash, 0, Script(b""), 0xffffffff) ],
        [ TxOutput(value, Script(b"\x51")) ], 0)


def make_wallet_tx(seed: int, time_received: int=1500000000,
        order_pos: int=UNORDERED_POSITION) -> WalletTx:
    return WalletTx(make_tx(seed), time_received=time_received, order_pos=order_pos,
        map_value={ "comment": f"tx {seed}" })
