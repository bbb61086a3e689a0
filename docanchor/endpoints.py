"""
Ledger endpoint selection.

State machine:
    Unresolved --probe endpoints in order--> Active(first healthy) | Unavailable

The selector probes once at startup. While Unavailable, readers take the
demo path without touching the network. After a connectivity failure the
anchor service calls ``refresh_in_background()``, which re-runs the probe on
a worker thread; at most one re-probe runs at a time.

Clients are ``algosdk.v2client.algod.AlgodClient`` instances. The SDK opens a
fresh HTTP connection per call, so one client is shared by all request threads.
"""

from __future__ import annotations

import logging
import threading
import urllib.parse
from dataclasses import dataclass
from typing import Any, Callable

from algosdk.v2client import algod

from docanchor import DEFAULT_ENDPOINTS, PROBE_TIMEOUT_SECS

logger = logging.getLogger(__name__)

UNRESOLVED = "unresolved"
ACTIVE = "active"
UNAVAILABLE = "unavailable"


def _join_port(url: str, port: int | None) -> str:
    url = url.rstrip("/")
    if port is None:
        return url
    parts = urllib.parse.urlsplit(url)
    if parts.port is not None:
        return url
    netloc = f"{parts.hostname}:{int(port)}"
    return urllib.parse.urlunsplit((parts.scheme, netloc, parts.path, "", ""))


@dataclass(frozen=True)
class EndpointDescriptor:
    """One configured algod endpoint. Read-only at runtime."""

    url: str
    name: str
    port: int | None = None
    token: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EndpointDescriptor:
        url = data.get("url") or data.get("server")
        if not url:
            raise ValueError(f"Endpoint entry missing 'url': {data!r}")
        port = data.get("port")
        return cls(
            url=str(url),
            name=str(data.get("name") or url),
            port=int(port) if port not in (None, "") else None,
            token=str(data.get("token") or ""),
        )

    @property
    def address(self) -> str:
        """Base URL with the port folded in, as the SDK client expects it."""
        return _join_port(self.url, self.port)

    def __repr__(self) -> str:
        # no token
        return f"EndpointDescriptor(name={self.name!r}, url={self.url!r}, port={self.port!r})"


def algod_client(endpoint: EndpointDescriptor) -> algod.AlgodClient:
    """SDK client for one endpoint; the token is sent as X-Algo-API-Token."""
    return algod.AlgodClient(endpoint.token, endpoint.address)


def default_endpoints(purestake_key: str = "") -> list[EndpointDescriptor]:
    """The built-in testnet endpoint list, PureStake token filled in if given."""
    result = []
    for entry in DEFAULT_ENDPOINTS:
        ep = EndpointDescriptor.from_dict(entry)
        if ep.name == "PureStake" and purestake_key:
            ep = EndpointDescriptor(ep.url, ep.name, ep.port, purestake_key)
        result.append(ep)
    return result


@dataclass(frozen=True)
class LedgerClientState:
    """Exactly one of Unresolved, Active(endpoint, client), Unavailable."""

    status: str
    endpoint: EndpointDescriptor | None = None
    client: Any = None

    @classmethod
    def unresolved(cls) -> LedgerClientState:
        return cls(UNRESOLVED)

    @classmethod
    def active(cls, endpoint: EndpointDescriptor, client: Any) -> LedgerClientState:
        return cls(ACTIVE, endpoint, client)

    @classmethod
    def unavailable(cls) -> LedgerClientState:
        return cls(UNAVAILABLE)

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "endpoint": self.endpoint.name if self.endpoint else None,
        }


class EndpointSelector:
    """Probe an ordered endpoint list and hold the first healthy client.

    Usage:
        selector = EndpointSelector(default_endpoints())
        selector.probe()
        if selector.state.is_active:
            selector.client.status()
    """

    def __init__(
        self,
        endpoints: list[EndpointDescriptor],
        client_factory: Callable[[EndpointDescriptor], Any] = algod_client,
        probe_timeout: float = PROBE_TIMEOUT_SECS,
    ) -> None:
        self.endpoints = tuple(endpoints)
        self._client_factory = client_factory
        self.probe_timeout = probe_timeout
        self._state = LedgerClientState.unresolved()
        self._probe_lock = threading.Lock()
        self._refresh_thread: threading.Thread | None = None

    @property
    def state(self) -> LedgerClientState:
        return self._state

    @property
    def client(self) -> Any:
        """The active client handle, or None."""
        return self._state.client

    @property
    def refreshing(self) -> bool:
        return self._probe_lock.locked()

    def probe(self) -> LedgerClientState:
        """Try each endpoint in configured order; first healthy one wins."""
        with self._probe_lock:
            self._state = self._probe_all()
            return self._state

    def refresh(self) -> LedgerClientState:
        """Re-probe synchronously."""
        logger.info("Re-probing ledger endpoints")
        return self.probe()

    def refresh_in_background(self) -> bool:
        """Start a re-probe on a worker thread unless one is already running.

        Returns immediately; True if this call started the re-probe. The
        current state stays in place until the new probe finishes.
        """
        if not self._probe_lock.acquire(blocking=False):
            logger.debug("Endpoint re-probe already running")
            return False

        logger.info("Re-probing ledger endpoints in the background")
        thread = threading.Thread(
            target=self._probe_and_release, name="endpoint-refresh", daemon=True
        )
        try:
            thread.start()
        except RuntimeError:
            self._probe_lock.release()
            raise
        self._refresh_thread = thread
        return True

    def wait_for_refresh(self, timeout: float | None = None) -> None:
        """Join the last background re-probe, if any."""
        thread = self._refresh_thread
        if thread is not None:
            thread.join(timeout)

    def _probe_and_release(self) -> None:
        # the lock was taken by refresh_in_background()
        try:
            self._state = self._probe_all()
        finally:
            self._probe_lock.release()

    def _probe_all(self) -> LedgerClientState:
        for endpoint in self.endpoints:
            logger.info("Trying %s endpoint...", endpoint.name)
            try:
                client = self._client_factory(endpoint)
                client.status(timeout=self.probe_timeout)
            except Exception as e:
                logger.warning("%s failed: %s", endpoint.name, e)
                continue
            logger.info("Connected to Algorand via %s", endpoint.name)
            return LedgerClientState.active(endpoint, client)

        logger.error("All ledger endpoints failed, running in demo mode")
        return LedgerClientState.unavailable()
