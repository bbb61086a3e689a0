"""
DocAnchor — anchor encrypted documents on Algorand, store the bytes on IPFS.

Architecture:
    Client:   AES-256-GCM encrypt locally -> pin ciphertext to IPFS (CID)
    Ledger:   0-ALGO self-payment whose note field is the upload metadata JSON
    Bridge:   docanchor serve / docanchor submit / docanchor tx CLI commands
"""

__version__ = "0.1.0"

# Crypto constants
KEY_SIZE = 32  # AES-256
NONCE_SIZE = 12  # 96-bit GCM nonce
TAG_SIZE = 16  # GCM authentication tag

# Metadata
METADATA_TYPE = "document_upload"
ANONYMOUS_UPLOADER = "anonymous"
REQUIRED_METADATA_FIELDS = ("cid", "filename", "iv", "timestamp")

# Ledger constants
CONFIRMATION_ROUNDS = 4
VALIDITY_WINDOW = 1000  # rounds a transaction stays valid after last-round
MAX_NOTE_BYTES = 1024  # Algorand transaction note limit
PROBE_TIMEOUT_SECS = 5
LEDGER_TIMEOUT_SECS = 30
MICROALGOS_PER_ALGO = 1_000_000
DEFAULT_EXPLORER_URL = "https://testnet.algoexplorer.io/tx/"

# Synthetic identifiers returned by degraded paths
MOCK_TXID_PREFIX = "mock_tx_"  # no ledger client at all
DEMO_TXID_PREFIX = "demo_tx_"  # classified failure (funds / network)
SYNTHETIC_CID_PREFIX = "bafymock"

# Default Algorand testnet endpoints, in priority order
DEFAULT_ENDPOINTS = [
    {"url": "https://testnet-api.4160.nodely.dev", "port": None, "token": "", "name": "Nodely"},
    {"url": "https://testnet-api.algonode.io", "port": 443, "token": "", "name": "AlgoNode"},
    {"url": "https://testnet-algorand.api.purestake.io/ps2", "port": None, "token": "", "name": "PureStake"},
    {"url": "https://node.testnet.algoexplorerapi.io", "port": None, "token": "", "name": "AlgoExplorer"},
]

# Storage constants
PINATA_PIN_FILE_URL = "https://api.pinata.cloud/pinning/pinFileToIPFS"
IPFS_GATEWAY_URL = "https://w3s.link/ipfs/"
STORAGE_TIMEOUT_SECS = 60

# API constants
API_DEFAULT_PORT = 3001
API_DEFAULT_HOST = "127.0.0.1"
API_MAX_BODY_BYTES = 1024 * 1024  # 1 MiB, metadata only
