"""
IPFS storage for encrypted blobs, pinned through Pinata.

The uploader never raises to its caller: with no JWT configured, or when the
pinning call fails for any reason, it returns a synthetic CID carrying the
reserved ``bafymock`` prefix so the pipeline can continue and downstream
consumers can tell the blob was not actually stored.

HTTP goes through httpx; the pin request is a multipart form post.
"""

from __future__ import annotations

import json
import logging
import os
import secrets
import time

import httpx

from docanchor import (
    IPFS_GATEWAY_URL,
    PINATA_PIN_FILE_URL,
    STORAGE_TIMEOUT_SECS,
    SYNTHETIC_CID_PREFIX,
)

logger = logging.getLogger(__name__)

# RFC 4648 base32 lowercase, the alphabet of CIDv1 strings
_BASE32_ALPHABET = "abcdefghijklmnopqrstuvwxyz234567"


class StorageError(Exception):
    """Error fetching content from the storage network."""


def synthetic_cid() -> str:
    """A CIDv1-looking identifier that is recognisably not a real upload."""
    tail = "".join(secrets.choice(_BASE32_ALPHABET) for _ in range(51))
    return SYNTHETIC_CID_PREFIX + tail


def is_synthetic_cid(cid: str) -> bool:
    return isinstance(cid, str) and cid.startswith(SYNTHETIC_CID_PREFIX)


class PinataUploader:
    """Pin encrypted blobs to IPFS via Pinata's pinFileToIPFS endpoint.

    Usage:
        uploader = PinataUploader.from_env()
        cid = uploader.upload(payload.to_bytes(), "scan.pdf")
    """

    def __init__(
        self,
        jwt: str = "",
        url: str = PINATA_PIN_FILE_URL,
        timeout: int = STORAGE_TIMEOUT_SECS,
    ) -> None:
        self._jwt = jwt
        self.url = url
        self.timeout = timeout

    @classmethod
    def from_env(cls) -> PinataUploader:
        """Create an uploader from the PINATA_JWT environment variable."""
        return cls(jwt=os.environ.get("PINATA_JWT", "").strip())

    @property
    def configured(self) -> bool:
        return bool(self._jwt)

    def __repr__(self) -> str:
        return f"PinataUploader(url={self.url!r}, configured={self.configured})"

    def upload(self, encrypted_bytes: bytes, display_name: str) -> str:
        """Upload an encrypted blob and return its CID.

        Never raises. Falls back to a synthetic CID when no credential is
        configured or the upload fails.
        """
        if not self.configured:
            cid = synthetic_cid()
            logger.warning("No Pinata JWT configured, using synthetic CID %s", cid)
            return cid

        try:
            cid = self._pin(encrypted_bytes, display_name)
        except Exception as e:
            cid = synthetic_cid()
            logger.warning("Pinata upload failed (%s), using synthetic CID %s", e, cid)
            return cid

        logger.info("Pinned %d bytes to IPFS: %s", len(encrypted_bytes), cid)
        return cid

    def _pin(self, encrypted_bytes: bytes, display_name: str) -> str:
        metadata = {
            "name": f"encrypted_document_{int(time.time() * 1000)}",
            "keyvalues": {
                "type": "encrypted_document",
                "originalName": display_name,
                "encrypted": "true",
            },
        }
        response = httpx.post(
            self.url,
            files={"file": (f"encrypted_{display_name}", encrypted_bytes, "application/octet-stream")},
            data={
                "pinataMetadata": json.dumps(metadata),
                "pinataOptions": json.dumps({"cidVersion": 1}),
            },
            headers={"Authorization": f"Bearer {self._jwt}"},
            timeout=self.timeout,
        )
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise StorageError(f"Pinata upload failed: HTTP {e.response.status_code}") from e

        result = response.json()
        cid = result.get("IpfsHash") if isinstance(result, dict) else None
        if not cid:
            raise StorageError("Pinata response missing IpfsHash")
        return cid


def fetch(cid: str, gateway: str = IPFS_GATEWAY_URL, timeout: int = STORAGE_TIMEOUT_SECS) -> bytes:
    """Download an encrypted blob from an IPFS HTTP gateway.

    Raises StorageError for synthetic CIDs and on any transport error.
    """
    if is_synthetic_cid(cid):
        raise StorageError(f"CID {cid} is synthetic; the blob was never stored")

    url = gateway.rstrip("/") + "/" + cid
    try:
        response = httpx.get(url, timeout=timeout, follow_redirects=True)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise StorageError(
            f"Failed to fetch {cid} from IPFS: HTTP {e.response.status_code}"
        ) from e
    except httpx.HTTPError as e:
        raise StorageError(f"Failed to fetch {cid} from IPFS: {e}") from e
    return response.content
