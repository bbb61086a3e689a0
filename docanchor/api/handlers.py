"""
Request handlers for the DocAnchor API.

Each handler is a pure function: (request_data, dependencies) → (status_code, response_dict).
No HTTP plumbing — that lives in server.py.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from datetime import datetime, timezone
from typing import Any

from docanchor import MICROALGOS_PER_ALGO
from docanchor.anchor import AnchorError, UploadMetadata, ValidationError
from docanchor.reader import (
    ConfirmedTransaction,
    DemoTransaction,
    LedgerUnavailable,
    PendingTransaction,
    TransactionNotFound,
)

logger = logging.getLogger(__name__)

_TXID_RE = re.compile(r"^[A-Za-z0-9_]{1,64}$")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def handle_health(ctx: Any) -> tuple[int, dict]:
    """GET /health — liveness probe."""
    return 200, {
        "status": "healthy",
        "timestamp": _now(),
        "serverAddress": ctx.server_address,
        "ledger": ctx.selector.state.to_dict(),
    }


def handle_record_on_chain(
    body: bytes,
    ctx: Any,
    cancel: threading.Event | None = None,
) -> tuple[int, dict]:
    """POST /api/record-on-chain — anchor upload metadata.

    Body: {"cid", "filename", "uploaderAddress"?, "iv", "timestamp"}
    ``cancel`` is the server's stop event; setting it ends the confirmation wait.
    """
    try:
        data = json.loads(body) if body else {}
    except (json.JSONDecodeError, UnicodeDecodeError):
        return 400, {"error": "Invalid JSON"}

    try:
        metadata = UploadMetadata.from_request(data, ctx.server_address)
    except ValidationError as e:
        result: dict[str, Any] = {"error": str(e)}
        if e.missing:
            result["missing"] = e.missing
        return 400, result

    try:
        anchored = ctx.anchor_service().record_metadata(metadata, cancel=cancel)
    except AnchorError as e:
        return 500, {
            "error": "Failed to record on blockchain",
            "details": str(e),
            "timestamp": _now(),
        }

    response: dict[str, Any] = {
        "success": True,
        "txId": anchored.tx_id,
        "explorerUrl": ctx.explorer_link(anchored.tx_id),
        "metadata": metadata.to_dict(),
    }
    if anchored.is_demo:
        response["confirmedRound"] = "demo"
        response["demo"] = True
        response["note"] = f"Demo mode - {anchored.reason}"
    else:
        response["confirmedRound"] = anchored.confirmed_round
    return 200, response


def handle_transaction(txid: str, ctx: Any) -> tuple[int, dict]:
    """GET /api/transaction/<txId> — pending / confirmed / not found."""
    if not txid or not _TXID_RE.match(txid):
        return 400, {"error": "Invalid transaction ID"}

    try:
        found = ctx.reader().fetch_metadata(txid)
    except TransactionNotFound as e:
        return 404, {"error": "Transaction not found", "details": str(e)}
    except LedgerUnavailable:
        return 503, {
            "error": "Blockchain not available",
            "status": "demo_mode",
        }
    except Exception as e:
        logger.error("Error fetching transaction %s: %s", txid, e)
        return 500, {"error": "Failed to fetch transaction", "details": str(e)}

    if isinstance(found, DemoTransaction):
        return 200, {
            "txId": txid,
            "status": "demo",
            "note": "Demo transaction - not recorded on chain",
        }

    if isinstance(found, PendingTransaction):
        return 200, {"txId": txid, "status": "pending", "poolError": found.pool_error}

    if not isinstance(found, ConfirmedTransaction):
        logger.error("Unexpected lookup result for %s: %r", txid, found)
        return 500, {"error": "Failed to fetch transaction", "details": "Unexpected lookup result"}

    result: dict[str, Any] = {
        "txId": txid,
        "status": "confirmed",
        "confirmedRound": found.confirmed_round,
        "explorerUrl": ctx.explorer_link(txid),
    }
    if found.metadata is not None:
        result["metadata"] = found.metadata
    else:
        result["note"] = "No metadata found"
    return 200, result


def handle_balance(ctx: Any) -> tuple[int, dict]:
    """GET /api/account/balance — signing account balance in whole ALGO."""
    client = ctx.selector.client
    if client is None:
        return 200, {
            "address": ctx.server_address,
            "balance": 0,
            "status": "demo_mode",
            "note": "No blockchain connection - demo mode active",
        }

    try:
        info = client.account_info(ctx.server_address)
    except Exception as e:
        logger.error("Error fetching account balance: %s", e)
        return 500, {"error": "Failed to fetch account balance", "details": str(e)}

    return 200, {
        "address": ctx.server_address,
        "balance": int(info.get("amount", 0)) / MICROALGOS_PER_ALGO,
        "minBalance": int(info.get("min-balance", 0)) / MICROALGOS_PER_ALGO,
        "totalAssets": info.get("total-assets-opted-in", 0),
        "totalAppsOptedIn": info.get("total-apps-opted-in", 0),
    }
