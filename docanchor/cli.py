"""
DocAnchor CLI — encrypt documents, pin them to IPFS, anchor them on Algorand.

Commands:
  docanchor serve    - Start the DocAnchor API server
  docanchor encrypt  - Encrypt a file (AES-256-GCM), write blob + key file
  docanchor decrypt  - Decrypt a local blob or fetch one from IPFS by CID
  docanchor submit   - Encrypt, upload and record a file through the API
  docanchor tx       - Show anchored metadata for a transaction
  docanchor balance  - Show the signing account balance
  docanchor health   - Check that the API is up
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path


def _api(args: argparse.Namespace):
    from docanchor.client import ApiClient

    if getattr(args, "api_url", None):
        return ApiClient(args.api_url)
    return ApiClient.from_env()


def _add_api_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--api-url", help="DocAnchor API URL (or set DOCANCHOR_API_URL)")


def _print_json(data: dict) -> None:
    print(json.dumps(data, indent=2))


def cmd_serve(args: argparse.Namespace) -> None:
    """Start the API server. Missing or invalid SERVER_MNEMONIC is fatal."""
    from docanchor.anchor import SignerError
    from docanchor.api import run_api
    from docanchor.config import ConfigError, Settings, load_endpoints
    from docanchor.context import build_context

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    try:
        settings = Settings.from_env()
        if args.endpoints:
            settings.endpoints = load_endpoints(args.endpoints)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        ctx = build_context(settings)
    except SignerError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Set SERVER_MNEMONIC to a 25-word Algorand mnemonic (testnet account).", file=sys.stderr)
        sys.exit(1)

    run_api(ctx, host=args.host or settings.host, port=args.port or settings.port)


def cmd_encrypt(args: argparse.Namespace) -> None:
    """Encrypt a file and write the ciphertext and a key file next to it."""
    from docanchor.crypto import encrypt_file, write_key_file

    path = Path(args.path)
    if not path.is_file():
        print(f"Error: File not found: {path}", file=sys.stderr)
        sys.exit(1)

    payload, key, nonce = encrypt_file(path)

    out_path = Path(args.output) if args.output else path.with_suffix(path.suffix + ".enc")
    key_path = Path(args.key_file) if args.key_file else path.with_suffix(path.suffix + ".key")
    out_path.write_bytes(payload.to_bytes())
    write_key_file(key_path, key, nonce, filename=path.name)

    print(f"Encrypted {path} -> {out_path} ({len(payload.ciphertext)} bytes)")
    print(f"  key file: {key_path} (keep it safe; it is the only way to decrypt)")


def _default_decrypt_output(path: str | None, filename: str | None) -> Path | None:
    """Strip .enc, else use the recorded filename; never an existing file."""
    if path and Path(path).suffix == ".enc":
        out_path = Path(path).with_suffix("")
    else:
        out_path = Path(filename or "decrypted.bin")
    for candidate in (out_path, out_path.with_name(out_path.name + ".decrypted")):
        if not candidate.exists():
            return candidate
    return None


def cmd_decrypt(args: argparse.Namespace) -> None:
    """Decrypt a blob given a key file, from disk or from IPFS by CID."""
    from docanchor.crypto import AuthenticationFailure, EncryptedPayload, decrypt, read_key_file
    from docanchor.storage import StorageError, fetch

    try:
        keys = read_key_file(args.key_file)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    cid = args.cid or keys.get("cid")
    if args.path:
        path = Path(args.path)
        if not path.is_file():
            print(f"Error: File not found: {path}", file=sys.stderr)
            sys.exit(1)
        blob = path.read_bytes()
    elif cid:
        try:
            blob = fetch(cid)
        except StorageError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    else:
        print("Error: Give an encrypted file path or --cid", file=sys.stderr)
        sys.exit(1)

    try:
        plaintext = decrypt(EncryptedPayload.from_bytes(blob), keys["key"], keys["iv"])
    except (AuthenticationFailure, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.output:
        out_path = Path(args.output)
    else:
        out_path = _default_decrypt_output(args.path, keys.get("filename"))
        if out_path is None:
            print("Error: Output file exists; pass -o to choose where to write", file=sys.stderr)
            sys.exit(1)

    out_path.write_bytes(plaintext)
    print(f"Decrypted -> {out_path} ({len(plaintext)} bytes)")


def cmd_submit(args: argparse.Namespace) -> None:
    """Run the full client pipeline for one file."""
    from docanchor.client import ApiError, submit_document
    from docanchor.storage import PinataUploader

    path = Path(args.path)
    if not path.is_file():
        print(f"Error: File not found: {path}", file=sys.stderr)
        sys.exit(1)

    key_path = Path(args.key_file) if args.key_file else path.with_suffix(path.suffix + ".key")
    try:
        result = submit_document(
            path, _api(args), PinataUploader.from_env(), args.uploader, key_file=key_path
        )
    except ApiError as e:
        print(f"Error: Blockchain recording failed: {e}", file=sys.stderr)
        print("The file was encrypted, but could not be recorded on chain.", file=sys.stderr)
        if key_path.exists():
            print(f"Key file kept at {key_path}", file=sys.stderr)
        sys.exit(1)

    record = result.record
    print(f"Submitted {path}")
    print(f"  cid:      {result.cid}{'' if result.stored else '  (synthetic, not stored)'}")
    print(f"  txid:     {record.get('txId')}")
    print(f"  round:    {record.get('confirmedRound')}")
    print(f"  explorer: {record.get('explorerUrl')}")
    if not result.anchored:
        print(f"  NOTE:     {record.get('note')}")
    print(f"  key file: {key_path}")


def cmd_tx(args: argparse.Namespace) -> None:
    from docanchor.client import ApiError

    try:
        _print_json(_api(args).transaction(args.txid))
    except ApiError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def cmd_balance(args: argparse.Namespace) -> None:
    from docanchor.client import ApiError

    try:
        data = _api(args).balance()
    except ApiError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"address: {data.get('address')}")
    if data.get("status") == "demo_mode":
        print("balance: unavailable (demo mode)")
    else:
        print(f"balance: {data.get('balance')} ALGO (min {data.get('minBalance')})")


def cmd_health(args: argparse.Namespace) -> None:
    from docanchor.client import ApiError

    try:
        data = _api(args).health()
    except ApiError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    ledger = data.get("ledger", {})
    print(f"status:  {data.get('status')}")
    print(f"account: {data.get('serverAddress')}")
    print(f"ledger:  {ledger.get('endpoint') or ledger.get('status', '?')}")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="docanchor",
        description="DocAnchor — encrypted document anchoring on Algorand + IPFS.",
    )
    from docanchor import __version__
    parser.add_argument("--version", action="version", version=f"docanchor {__version__}")
    sub = parser.add_subparsers(dest="command")

    # serve
    p_serve = sub.add_parser("serve", help="Start the DocAnchor API server")
    p_serve.add_argument("--host", help="Bind address (default: HOST or 127.0.0.1)")
    p_serve.add_argument("--port", type=int, help="Listen port (default: PORT or 3001)")
    p_serve.add_argument("--endpoints", help="TOML file with [[endpoints]] tables")
    p_serve.add_argument("--log-level", default="info", help="Logging level (default: info)")

    # encrypt
    p_enc = sub.add_parser("encrypt", help="Encrypt a file (AES-256-GCM)")
    p_enc.add_argument("path", help="File to encrypt")
    p_enc.add_argument("-o", "--output", help="Output file for the ciphertext")
    p_enc.add_argument("-k", "--key-file", help="Output key file (default: <path>.key)")

    # decrypt
    p_dec = sub.add_parser("decrypt", help="Decrypt a local blob or an IPFS CID")
    p_dec.add_argument("path", nargs="?", help="Encrypted file (omit to fetch by CID)")
    p_dec.add_argument("-k", "--key-file", required=True, help="Key file from encrypt/submit")
    p_dec.add_argument("--cid", help="Fetch the blob from IPFS by CID")
    p_dec.add_argument("-o", "--output", help="Output file path")

    # submit
    p_sub = sub.add_parser("submit", help="Encrypt, upload and record a file")
    p_sub.add_argument("path", help="File to submit")
    p_sub.add_argument("-k", "--key-file", help="Output key file (default: <path>.key)")
    p_sub.add_argument("--uploader", help="Uploader address to record (default: anonymous)")
    _add_api_args(p_sub)

    # tx / balance / health
    p_tx = sub.add_parser("tx", help="Show anchored metadata for a transaction")
    p_tx.add_argument("txid", help="Transaction ID")
    _add_api_args(p_tx)

    p_bal = sub.add_parser("balance", help="Show the signing account balance")
    _add_api_args(p_bal)

    p_health = sub.add_parser("health", help="Check the API is up")
    _add_api_args(p_health)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    commands = {
        "serve": cmd_serve,
        "encrypt": cmd_encrypt,
        "decrypt": cmd_decrypt,
        "submit": cmd_submit,
        "tx": cmd_tx,
        "balance": cmd_balance,
        "health": cmd_health,
    }
    commands[args.command](args)


if __name__ == "__main__":
    main()
