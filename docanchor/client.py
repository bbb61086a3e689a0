"""
Client side of the pipeline: encrypt locally, pin to IPFS, record on chain.

The encryption key stays on this machine; only the CID, filename, encoded
IV and timestamp are sent to the API.
"""

from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from docanchor import API_DEFAULT_HOST, API_DEFAULT_PORT
from docanchor.crypto import encode_key, encode_nonce, encrypt_file, write_key_file
from docanchor.storage import PinataUploader, is_synthetic_cid

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """The API answered with an error status or could not be reached."""

    def __init__(self, message: str, status: int = 0, data: dict | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.data = data or {}


class ApiClient:
    """Thin urllib client for the DocAnchor API."""

    def __init__(self, base_url: str, timeout: float = 120) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_env(cls) -> ApiClient:
        default = f"http://{API_DEFAULT_HOST}:{API_DEFAULT_PORT}"
        return cls(os.environ.get("DOCANCHOR_API_URL", default))

    def _request(self, method: str, path: str, payload: dict | None = None) -> dict:
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = urllib.request.Request(self.base_url + path, data=data, method=method)
        if data is not None:
            req.add_header("Content-Type", "application/json")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                return json.loads(resp.read().decode())
        except urllib.error.HTTPError as e:
            try:
                body = json.loads(e.read().decode())
            except (ValueError, OSError):
                body = {}
            if not isinstance(body, dict):
                body = {}
            message = body.get("details") or body.get("error") or str(e.reason)
            raise ApiError(f"HTTP {e.code}: {message}", e.code, body) from e
        except urllib.error.URLError as e:
            raise ApiError(f"Cannot reach API at {self.base_url}: {e.reason}") from e

    def record_on_chain(self, metadata: dict[str, Any]) -> dict:
        return self._request("POST", "/api/record-on-chain", metadata)

    def transaction(self, txid: str) -> dict:
        return self._request("GET", f"/api/transaction/{urllib.parse.quote(txid)}")

    def balance(self) -> dict:
        return self._request("GET", "/api/account/balance")

    def health(self) -> dict:
        return self._request("GET", "/health")


@dataclass(frozen=True)
class SubmitResult:
    cid: str
    key: str
    iv: str
    record: dict
    key_file: Path | None = None

    @property
    def stored(self) -> bool:
        """False if the blob only got a synthetic CID."""
        return not is_synthetic_cid(self.cid)

    @property
    def anchored(self) -> bool:
        """False if the API answered with a demo stand-in."""
        return not self.record.get("demo", False)


def submit_document(
    path: str | Path,
    api: ApiClient,
    uploader: PinataUploader,
    uploader_address: str | None = None,
    key_file: str | Path | None = None,
) -> SubmitResult:
    """Encrypt a file, upload the ciphertext, record its metadata on chain.

    The returned key and IV are the only way to decrypt the upload. With
    ``key_file`` they are written there before the record call, so a failed
    recording does not lose them.
    """
    path = Path(path)
    payload, key, nonce = encrypt_file(path)
    logger.info("Encrypted %s (%d bytes ciphertext)", path.name, len(payload.ciphertext))

    cid = uploader.upload(payload.to_bytes(), path.name)
    if key_file is not None:
        key_file = write_key_file(key_file, key, nonce, cid=cid, filename=path.name)

    request: dict[str, Any] = {
        "cid": cid,
        "filename": path.name,
        "iv": encode_nonce(nonce),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if uploader_address:
        request["uploaderAddress"] = uploader_address

    record = api.record_on_chain(request)
    return SubmitResult(
        cid=cid, key=encode_key(key), iv=request["iv"], record=record, key_file=key_file
    )
