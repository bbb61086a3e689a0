"""
DocAnchor API — record and read document anchors over HTTP.

Serves the record-on-chain, transaction, balance and health endpoints.
Stdlib http.server only.
"""

from docanchor.api.server import run_api

__all__ = ["run_api"]
