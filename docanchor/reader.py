"""
Read anchored metadata back from the ledger.

Lookup:
    1. pending info for the txid -> no confirmed round yet = pending
    2. confirmed -> fetch the block, find the txn by its index in the
       block's txid list, decode the note as UTF-8 JSON

Notes that are missing or not JSON objects yield ``metadata=None`` rather
than an error, so entries anchored by other tools are tolerated.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import Any, Union

from algosdk.error import AlgodHTTPError

from docanchor.anchor import is_synthetic_txid

logger = logging.getLogger(__name__)


class TransactionNotFound(Exception):
    """The ledger does not know this transaction id."""


class LedgerUnavailable(Exception):
    """No active ledger client to read from."""


@dataclass(frozen=True)
class PendingTransaction:
    tx_id: str
    pool_error: str | None = None


@dataclass(frozen=True)
class ConfirmedTransaction:
    tx_id: str
    confirmed_round: int
    metadata: dict | None


@dataclass(frozen=True)
class DemoTransaction:
    tx_id: str


TransactionLookup = Union[PendingTransaction, ConfirmedTransaction, DemoTransaction]


def decode_note(note_b64: str | None) -> dict | None:
    """Decode a base64 note field into a metadata dict, or None."""
    if not note_b64:
        return None
    try:
        data = json.loads(base64.b64decode(note_b64, validate=True).decode("utf-8"))
    except (binascii.Error, ValueError):
        return None
    return data if isinstance(data, dict) else None


class TransactionReader:
    """Fetch and decode anchored metadata through the active endpoint."""

    def __init__(self, selector: Any) -> None:
        self.selector = selector

    def fetch_metadata(self, txid: str) -> TransactionLookup:
        if is_synthetic_txid(txid):
            return DemoTransaction(txid)

        client = self.selector.client
        if client is None:
            raise LedgerUnavailable("Blockchain not available")

        try:
            info = client.pending_transaction_info(txid)
        except AlgodHTTPError as e:
            if e.code == 404:
                raise TransactionNotFound(f"Transaction {txid} not found") from e
            raise

        confirmed_round = int(info.get("confirmed-round") or 0)
        if not confirmed_round:
            return PendingTransaction(txid, info.get("pool-error") or None)

        metadata = self._metadata_from_block(client, txid, confirmed_round)
        if metadata is None:
            logger.info("No metadata found in transaction %s", txid)
        return ConfirmedTransaction(txid, confirmed_round, metadata)

    def _metadata_from_block(self, client: Any, txid: str, round_num: int) -> dict | None:
        txids = client.get_block_txids(round_num).get("blockTxids") or []
        if txid not in txids:
            return None
        index = txids.index(txid)

        block = client.block_info(round_num)
        txns = (block.get("block") or {}).get("txns") or []
        if index >= len(txns):
            return None
        return decode_note((txns[index].get("txn") or {}).get("note"))
