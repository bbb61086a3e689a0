"""
Shared fixtures: a throwaway signing account and an in-memory algod node.

No Algorand node or network access required.
"""

from __future__ import annotations

import base64

import pytest
from algosdk import account, error, transaction

from docanchor.anchor import ServerSigner, UploadMetadata
from docanchor.context import ServiceContext
from docanchor.endpoints import EndpointDescriptor, EndpointSelector

TESTNET_GENESIS_HASH = "SGO1GKSzyE7IEPItTxCByw9x8FmnrCDexi9/cOUJOiI="


class FakeAlgod:
    """In-memory stand-in for AlgodClient: every sent transaction lands in the next round."""

    def __init__(self, last_round: int = 1000) -> None:
        self.last_round = last_round
        self.blocks: dict[int, list[tuple[str, str | None]]] = {}
        self.pending: dict[str, dict] = {}
        self.sent: list = []
        self.calls: list[str] = []
        self.confirm = True
        self.send_error: Exception | None = None
        self.amount = 5_000_000

    def status(self, **kwargs) -> dict:
        self.calls.append("status")
        return {"last-round": self.last_round}

    def status_after_block(self, block_num=None, **kwargs) -> dict:
        self.calls.append("status_after_block")
        self.last_round = max(self.last_round, block_num + 1)
        return {"last-round": self.last_round}

    def suggested_params(self, **kwargs) -> transaction.SuggestedParams:
        self.calls.append("suggested_params")
        return transaction.SuggestedParams(
            fee=0,
            first=self.last_round,
            last=self.last_round + 1000,
            gh=TESTNET_GENESIS_HASH,
            gen="testnet-v1.0",
            flat_fee=False,
            consensus_version="future",
            min_fee=1000,
        )

    def send_transaction(self, stx, **kwargs) -> str:
        self.calls.append("send_transaction")
        if self.send_error is not None:
            raise self.send_error
        txid = stx.get_txid()
        note = stx.transaction.note
        round_num = self.last_round + 1
        self.blocks.setdefault(round_num, []).append(
            (txid, base64.b64encode(note).decode() if note else None)
        )
        self.pending[txid] = {
            "confirmed-round": round_num if self.confirm else 0,
            "pool-error": "",
        }
        self.sent.append(stx)
        return txid

    def pending_transaction_info(self, txid: str, **kwargs) -> dict:
        self.calls.append("pending_transaction_info")
        if txid not in self.pending:
            raise error.AlgodHTTPError("txn does not exist", 404)
        return dict(self.pending[txid])

    def block_info(self, block=None, **kwargs) -> dict:
        self.calls.append("block_info")
        txns = []
        for _txid, note in self.blocks.get(block, []):
            txns.append({"txn": {"note": note, "type": "pay"}} if note else {"txn": {"type": "pay"}})
        return {"block": {"rnd": block, "txns": txns}}

    def get_block_txids(self, round_num: int, **kwargs) -> dict:
        self.calls.append("get_block_txids")
        return {"blockTxids": [txid for txid, _ in self.blocks.get(round_num, [])]}

    def account_info(self, address: str, **kwargs) -> dict:
        self.calls.append("account_info")
        return {
            "address": address,
            "amount": self.amount,
            "min-balance": 100_000,
            "total-assets-opted-in": 0,
            "total-apps-opted-in": 1,
        }


@pytest.fixture
def signer():
    private_key, _address = account.generate_account()
    return ServerSigner(private_key)


@pytest.fixture
def fake_algod():
    return FakeAlgod()


@pytest.fixture
def active_selector(fake_algod):
    selector = EndpointSelector(
        [EndpointDescriptor("http://fake-algod", "Fake")],
        client_factory=lambda ep: fake_algod,
    )
    selector.probe()
    return selector


@pytest.fixture
def unavailable_selector():
    selector = EndpointSelector([])
    selector.probe()
    return selector


@pytest.fixture
def ctx(signer, active_selector):
    return ServiceContext(signer=signer, selector=active_selector)


@pytest.fixture
def demo_ctx(signer, unavailable_selector):
    return ServiceContext(signer=signer, selector=unavailable_selector)


@pytest.fixture
def sample_metadata(signer):
    return UploadMetadata(
        cid="bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi",
        filename="scan.pdf",
        iv="AAECAwQFBgcICQoL",
        timestamp="2026-10-18T09:30:00.000Z",
        server_address=signer.address,
        uploader_address="MPUGPI43QBAHNCMAMUBQ4WZQ6OBNUUGQVG46JF6ANJXHXY7GS4EUTHMZWU",
    )
