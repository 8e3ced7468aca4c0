from __future__ import annotations
from typing import NamedTuple

from bitcoinx import Tx, TxInput

from .constants import INT32_MAX, MAX_MONEY, NULL_HASH


# Coinbase script signature length bounds.
COINBASE_SCRIPT_MIN = 2
COINBASE_SCRIPT_MAX = 100

NULL_PREV_IDX = 0xffffffff


class CheckResult(NamedTuple):
    is_valid: bool
    reason: str = ""


def money_range(value: int) -> bool:
    return 0 <= value <= MAX_MONEY


def is_null_outpoint(txin: TxInput) -> bool:
    return txin.prev_hash == NULL_HASH and txin.prev_idx == NULL_PREV_IDX


def is_coinbase(tx: Tx) -> bool:
    return len(tx.inputs) == 1 and is_null_outpoint(tx.inputs[0])


def check_transaction(tx: Tx, height: int=INT32_MAX) -> CheckResult:
    """
    Context-free structural checks on a stored transaction.

    This is not consensus validation, no scripts are run and no inputs are looked up. The
    `height` is where the transaction's first input was mined, or `INT32_MAX` if that is not
    known. The structural rules do not vary by height at this time.
    """
    if not tx.inputs:
        return CheckResult(False, "bad-txns-vin-empty")
    if not tx.outputs:
        return CheckResult(False, "bad-txns-vout-empty")

    value_out = 0
    for txout in tx.outputs:
        if txout.value < 0:
            return CheckResult(False, "bad-txns-vout-negative")
        if txout.value > MAX_MONEY:
            return CheckResult(False, "bad-txns-vout-toolarge")
        value_out += txout.value
        if not money_range(value_out):
            return CheckResult(False, "bad-txns-txouttotal-toolarge")

    outpoints: set[tuple[bytes, int]] = set()
    for txin in tx.inputs:
        outpoint = (txin.prev_hash, txin.prev_idx)
        if outpoint in outpoints:
            return CheckResult(False, "bad-txns-inputs-duplicate")
        outpoints.add(outpoint)

    if is_coinbase(tx):
        script_length = len(bytes(tx.inputs[0].script_sig))
        if script_length < COINBASE_SCRIPT_MIN or script_length > COINBASE_SCRIPT_MAX:
            return CheckResult(False, "bad-cb-length")
    else:
        for txin in tx.inputs:
            if is_null_outpoint(txin):
                return CheckResult(False, "bad-txns-prevout-null")

    return CheckResult(True)

