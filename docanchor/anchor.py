"""
Anchor upload metadata on Algorand via a 0-ALGO self-payment.

Full workflow (AnchorService.record_metadata):
    1. No active ledger client  -> Demo result, no network I/O
    2. Fetch suggested params from the active endpoint
    3. Build payment server -> server, amount 0, note = metadata JSON
    4. Sign with the server key
    5. Submit, then algosdk wait_for_confirmation for CONFIRMATION_ROUNDS rounds
    6. Classify failures: insufficient funds / network -> Demo,
       anything else -> AnchorError

Demo results come back through the success path and are
always marked as such to the caller.
"""

from __future__ import annotations

import json
import logging
import secrets
import string
import threading
import time
import urllib.error
from dataclasses import dataclass, field
from typing import Any, Union

from algosdk import account, mnemonic, transaction
from algosdk.error import AlgodHTTPError

from docanchor import (
    ANONYMOUS_UPLOADER,
    CONFIRMATION_ROUNDS,
    DEMO_TXID_PREFIX,
    MAX_NOTE_BYTES,
    METADATA_TYPE,
    MOCK_TXID_PREFIX,
    REQUIRED_METADATA_FIELDS,
    VALIDITY_WINDOW,
)

logger = logging.getLogger(__name__)

REASON_UNAVAILABLE = "blockchain not available"
REASON_INSUFFICIENT_FUNDS = "insufficient funds"
REASON_NETWORK = "network connection unavailable"

# What the SDK client lets through when a node cannot be reached
_NETWORK_ERRORS = (urllib.error.URLError, TimeoutError, ConnectionError)

# Fallback markers for errors of any other type
_NETWORK_MARKERS = (
    "fetch failed",
    "enotfound",
    "name or service not known",
    "connection refused",
    "network is unreachable",
)


class AnchorError(Exception):
    """Unclassified failure while building, submitting or confirming a transaction."""


class ValidationError(ValueError):
    """Request is missing required fields or carries malformed values."""

    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing = missing or []


class SignerError(Exception):
    """The server mnemonic is missing or invalid."""


# ---------------------------------------------------------------------------
# Metadata and results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UploadMetadata:
    """Metadata embedded verbatim as JSON in the transaction note."""

    cid: str
    filename: str
    iv: str
    timestamp: str
    server_address: str
    uploader_address: str = ANONYMOUS_UPLOADER
    type: str = METADATA_TYPE

    @classmethod
    def from_request(cls, body: Any, server_address: str) -> UploadMetadata:
        """Validate a record-on-chain request body.

        Raises ValidationError listing missing names in canonical order.
        """
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")

        missing = [name for name in REQUIRED_METADATA_FIELDS if not body.get(name)]
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}", missing=missing
            )

        values = {name: body[name] for name in REQUIRED_METADATA_FIELDS}
        uploader = body.get("uploaderAddress") or ANONYMOUS_UPLOADER
        for name, value in [*values.items(), ("uploaderAddress", uploader)]:
            if not isinstance(value, str):
                raise ValidationError(f"Field {name!r} must be a string")

        metadata = cls(
            server_address=server_address,
            uploader_address=uploader,
            **values,
        )
        if len(metadata.to_note()) > MAX_NOTE_BYTES:
            raise ValidationError(
                f"Metadata exceeds the {MAX_NOTE_BYTES}-byte transaction note limit"
            )
        return metadata

    def to_dict(self) -> dict[str, str]:
        return {
            "type": self.type,
            "cid": self.cid,
            "filename": self.filename,
            "uploaderAddress": self.uploader_address,
            "iv": self.iv,
            "timestamp": self.timestamp,
            "serverAddress": self.server_address,
        }

    def to_note(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")


@dataclass(frozen=True)
class Confirmed:
    tx_id: str
    confirmed_round: int
    metadata: UploadMetadata
    is_demo: bool = field(default=False, init=False)


@dataclass(frozen=True)
class Demo:
    tx_id: str
    reason: str
    metadata: UploadMetadata
    is_demo: bool = field(default=True, init=False)


AnchorResult = Union[Confirmed, Demo]


def synthetic_txid(prefix: str = DEMO_TXID_PREFIX) -> str:
    alphabet = string.ascii_lowercase + string.digits
    rand = "".join(secrets.choice(alphabet) for _ in range(13))
    return f"{prefix}{int(time.time() * 1000)}_{rand}"


def is_synthetic_txid(txid: str) -> bool:
    return txid.startswith((MOCK_TXID_PREFIX, DEMO_TXID_PREFIX))


# ---------------------------------------------------------------------------
# Signing
# ---------------------------------------------------------------------------

class ServerSigner:
    """Holds the server's private key for the process lifetime.

    The key is only reachable through ``sign()``; it is never logged
    and does not appear in ``repr()``.
    """

    def __init__(self, private_key: str) -> None:
        try:
            self.address = account.address_from_private_key(private_key)
        except Exception as e:
            raise SignerError(f"Invalid private key: {type(e).__name__}") from None
        self._private_key = private_key

    @classmethod
    def from_mnemonic(cls, words: str) -> ServerSigner:
        """Derive the signing key from a 25-word Algorand mnemonic."""
        if not words or not words.strip():
            raise SignerError("SERVER_MNEMONIC is required")
        try:
            private_key = mnemonic.to_private_key(" ".join(words.split()))
        except Exception as e:
            raise SignerError(
                f"Invalid SERVER_MNEMONIC ({type(e).__name__}); "
                "expected a valid 25-word Algorand mnemonic"
            ) from None
        return cls(private_key)

    def __repr__(self) -> str:
        return f"ServerSigner(address={self.address!r})"

    def sign(self, txn: transaction.Transaction) -> transaction.SignedTransaction:
        return txn.sign(self._private_key)


def build_anchor_transaction(
    address: str,
    sp: transaction.SuggestedParams,
    metadata: UploadMetadata,
) -> transaction.PaymentTxn:
    """Zero-value self-payment carrying the metadata JSON as its note."""
    sp.flat_fee = False
    sp.last = sp.first + VALIDITY_WINDOW
    return transaction.PaymentTxn(
        sender=address,
        sp=sp,
        receiver=address,
        amt=0,
        note=metadata.to_note(),
    )


# ---------------------------------------------------------------------------
# Confirmation and failure classification
# ---------------------------------------------------------------------------

class _CancellableClient:
    """Delegates to an algod client; round waits fail once ``cancel`` is set."""

    def __init__(self, client: Any, txid: str, cancel: threading.Event) -> None:
        self._client = client
        self._txid = txid
        self._cancel = cancel

    def __getattr__(self, name: str) -> Any:
        return getattr(self._client, name)

    def status_after_block(self, *args: Any, **kwargs: Any) -> Any:
        if self._cancel.is_set():
            raise AnchorError(f"Confirmation wait for {self._txid} cancelled")
        return self._client.status_after_block(*args, **kwargs)


def wait_for_confirmation(
    client: Any,
    txid: str,
    rounds: int = CONFIRMATION_ROUNDS,
    cancel: threading.Event | None = None,
) -> dict:
    """``algosdk.transaction.wait_for_confirmation``, cancellable between rounds.

    Raises the SDK's TransactionRejectedError / ConfirmationTimeoutError, or
    AnchorError once ``cancel`` is set.
    """
    if cancel is not None:
        client = _CancellableClient(client, txid, cancel)
    return transaction.wait_for_confirmation(client, txid, rounds)


def classify_failure(exc: BaseException) -> str | None:
    """Map a ledger failure to a demo reason, or None if it is a hard failure."""
    if isinstance(exc, AlgodHTTPError):
        return REASON_INSUFFICIENT_FUNDS if "overspend" in str(exc).lower() else None
    if isinstance(exc, _NETWORK_ERRORS):
        return REASON_NETWORK

    # No structured kind available: inspect the message
    message = str(exc).lower()
    if "overspend" in message:
        return REASON_INSUFFICIENT_FUNDS
    if any(marker in message for marker in _NETWORK_MARKERS):
        return REASON_NETWORK
    return None


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class AnchorService:
    """Record upload metadata on the ledger through the active endpoint.

    Usage:
        service = AnchorService(context)
        result = service.record_metadata(metadata)
        if result.is_demo: ...
    """

    def __init__(self, context: Any) -> None:
        self.context = context

    @property
    def server_address(self) -> str:
        return self.context.signer.address

    def record_metadata(
        self,
        metadata: UploadMetadata,
        cancel: threading.Event | None = None,
    ) -> AnchorResult:
        """Anchor ``metadata``. Setting ``cancel`` aborts the confirmation wait
        (the API server sets it on shutdown) and raises AnchorError.

        A network-class failure returns Demo at once and starts a background
        endpoint re-probe.
        """
        selector = self.context.selector
        state = selector.state
        if not state.is_active:
            logger.warning("No ledger connection, returning mock transaction")
            return Demo(synthetic_txid(MOCK_TXID_PREFIX), REASON_UNAVAILABLE, metadata)

        client = state.client
        logger.info("Recording metadata for CID %s via %s", metadata.cid, state.endpoint.name)

        try:
            params = client.suggested_params()
            txn = build_anchor_transaction(self.server_address, params, metadata)
            signed = self.context.signer.sign(txn)
            txid = client.send_transaction(signed)
            logger.info("Transaction submitted: %s", txid)
            info = wait_for_confirmation(
                client, txid, self.context.confirmation_rounds, cancel
            )
        except Exception as e:
            reason = classify_failure(e)
            if reason is None:
                logger.error("Error recording on blockchain: %s", e)
                if isinstance(e, AnchorError):
                    raise
                raise AnchorError(str(e)) from e

            logger.warning("Ledger failure classified as %r: %s", reason, e)
            if reason == REASON_NETWORK:
                selector.refresh_in_background()
            return Demo(synthetic_txid(DEMO_TXID_PREFIX), reason, metadata)

        confirmed_round = int(info["confirmed-round"])
        logger.info("Transaction %s confirmed in round %d", txid, confirmed_round)
        return Confirmed(txid, confirmed_round, metadata)
