"""
Service context: the signing key and the ledger endpoint handle, built once
at startup and passed explicitly to the API handlers.
"""

from __future__ import annotations

from dataclasses import dataclass

from docanchor import CONFIRMATION_ROUNDS, DEFAULT_EXPLORER_URL
from docanchor.anchor import AnchorService, ServerSigner
from docanchor.config import Settings
from docanchor.endpoints import EndpointSelector
from docanchor.reader import TransactionReader


@dataclass
class ServiceContext:
    signer: ServerSigner
    selector: EndpointSelector
    explorer_url: str = DEFAULT_EXPLORER_URL
    confirmation_rounds: int = CONFIRMATION_ROUNDS

    @property
    def server_address(self) -> str:
        return self.signer.address

    def explorer_link(self, txid: str) -> str:
        return f"{self.explorer_url}{txid}"

    def anchor_service(self) -> AnchorService:
        return AnchorService(self)

    def reader(self) -> TransactionReader:
        return TransactionReader(self.selector)


def build_context(settings: Settings, probe: bool = True) -> ServiceContext:
    """Load the signer and (optionally) probe the ledger endpoints.

    Raises SignerError if the mnemonic is missing or invalid.
    """
    signer = ServerSigner.from_mnemonic(settings.server_mnemonic)
    selector = EndpointSelector(settings.endpoints, probe_timeout=settings.probe_timeout)
    if probe:
        selector.probe()
    return ServiceContext(
        signer=signer,
        selector=selector,
        explorer_url=settings.explorer_url,
        confirmation_rounds=settings.confirmation_rounds,
    )
