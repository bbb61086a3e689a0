"""
Tests for the client pipeline and the docanchor CLI.
"""

from __future__ import annotations

import io
import json
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from docanchor.cli import main
from docanchor.client import ApiClient, ApiError, submit_document
from docanchor.crypto import EncryptedPayload, decode_key, decode_nonce, decrypt, read_key_file
from docanchor.storage import PinataUploader, is_synthetic_cid


def _response(data: dict) -> MagicMock:
    resp = MagicMock()
    resp.__enter__.return_value = resp
    resp.read.return_value = json.dumps(data).encode()
    return resp


@pytest.fixture
def document(tmp_path):
    path = tmp_path / "contract.pdf"
    path.write_bytes(b"%PDF-1.7 signed contract")
    return path


# ---------------------------------------------------------------------------
# TestApiClient
# ---------------------------------------------------------------------------

class TestApiClient:

    def test_record_on_chain_posts_json(self):
        api = ApiClient("http://api.example/")
        with patch("docanchor.client.urllib.request.urlopen",
                   return_value=_response({"success": True})) as mock_open:
            assert api.record_on_chain({"cid": "bafy"}) == {"success": True}

        req = mock_open.call_args[0][0]
        assert req.full_url == "http://api.example/api/record-on-chain"
        assert req.get_method() == "POST"
        assert json.loads(req.data) == {"cid": "bafy"}

    def test_error_status(self):
        api = ApiClient("http://api.example")
        body = json.dumps({"error": "Failed to record on blockchain", "details": "boom"}).encode()
        err = urllib.error.HTTPError("u", 500, "Server Error", {}, io.BytesIO(body))
        with patch("docanchor.client.urllib.request.urlopen", side_effect=err):
            with pytest.raises(ApiError) as exc_info:
                api.record_on_chain({})
        assert exc_info.value.status == 500
        assert "boom" in str(exc_info.value)

    def test_unreachable(self):
        api = ApiClient("http://api.example")
        with patch("docanchor.client.urllib.request.urlopen",
                   side_effect=urllib.error.URLError("refused")):
            with pytest.raises(ApiError, match="Cannot reach API"):
                api.health()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("DOCANCHOR_API_URL", "http://elsewhere:9000/")
        assert ApiClient.from_env().base_url == "http://elsewhere:9000"


# ---------------------------------------------------------------------------
# TestSubmitDocument
# ---------------------------------------------------------------------------

class TestSubmitDocument:

    def test_pipeline(self, document):
        api = MagicMock(spec=ApiClient)
        api.record_on_chain.return_value = {"success": True, "txId": "TX", "confirmedRound": 7}
        uploader = PinataUploader(jwt="")

        result = submit_document(document, api, uploader, "UPLOADERADDR")

        sent = api.record_on_chain.call_args[0][0]
        assert sent["cid"] == result.cid
        assert sent["filename"] == "contract.pdf"
        assert sent["iv"] == result.iv
        assert sent["uploaderAddress"] == "UPLOADERADDR"
        assert "key" not in sent
        assert result.anchored
        assert not result.stored
        assert is_synthetic_cid(result.cid)

    def test_uploaded_blob_decrypts(self, document):
        api = MagicMock(spec=ApiClient)
        api.record_on_chain.return_value = {"success": True}
        uploader = MagicMock(spec=PinataUploader)
        uploader.upload.return_value = "bafyrealcid"

        result = submit_document(document, api, uploader)

        blob = uploader.upload.call_args[0][0]
        plaintext = decrypt(
            EncryptedPayload.from_bytes(blob), decode_key(result.key), decode_nonce(result.iv)
        )
        assert plaintext == document.read_bytes()
        assert result.stored
        assert "uploaderAddress" not in api.record_on_chain.call_args[0][0]

    def test_key_file_written_before_record(self, document, tmp_path):
        key_path = tmp_path / "contract.pdf.key"
        api = MagicMock(spec=ApiClient)
        api.record_on_chain.side_effect = lambda request: key_path.exists() and {"success": True}

        result = submit_document(document, api, PinataUploader(jwt=""), key_file=key_path)

        assert result.record == {"success": True}
        assert result.key_file == key_path
        keys = read_key_file(key_path)
        assert keys["cid"] == result.cid
        assert keys["iv"] == decode_nonce(result.iv)

    def test_key_file_survives_api_failure(self, document, tmp_path):
        key_path = tmp_path / "contract.pdf.key"
        api = MagicMock(spec=ApiClient)
        api.record_on_chain.side_effect = ApiError("Cannot reach API")

        with pytest.raises(ApiError):
            submit_document(document, api, PinataUploader(jwt=""), key_file=key_path)

        keys = read_key_file(key_path)
        assert is_synthetic_cid(keys["cid"])
        assert keys["filename"] == "contract.pdf"

    def test_demo_record(self, document):
        api = MagicMock(spec=ApiClient)
        api.record_on_chain.return_value = {"success": True, "demo": True}
        result = submit_document(document, api, PinataUploader(jwt=""))
        assert not result.anchored


# ---------------------------------------------------------------------------
# TestCli
# ---------------------------------------------------------------------------

class TestCli:

    def test_encrypt_then_decrypt(self, document, tmp_path, capsys):
        main(["encrypt", str(document)])
        enc = tmp_path / "contract.pdf.enc"
        key_file = tmp_path / "contract.pdf.key"
        assert enc.exists()
        assert key_file.exists()
        assert enc.read_bytes() != document.read_bytes()

        out = tmp_path / "restored.pdf"
        main(["decrypt", str(enc), "-k", str(key_file), "-o", str(out)])
        assert out.read_bytes() == document.read_bytes()
        assert "Decrypted" in capsys.readouterr().out

    def test_decrypt_default_output_keeps_original(self, document, tmp_path):
        original = document.read_bytes()
        main(["encrypt", str(document)])
        main(["decrypt", str(tmp_path / "contract.pdf.enc"), "-k", str(tmp_path / "contract.pdf.key")])

        assert document.read_bytes() == original
        assert (tmp_path / "contract.pdf.decrypted").read_bytes() == original

    def test_decrypt_refuses_when_fallback_exists(self, document, tmp_path, capsys):
        main(["encrypt", str(document)])
        (tmp_path / "contract.pdf.decrypted").write_bytes(b"keep me")

        with pytest.raises(SystemExit) as exc_info:
            main(["decrypt", str(tmp_path / "contract.pdf.enc"), "-k", str(tmp_path / "contract.pdf.key")])
        assert exc_info.value.code == 1
        assert (tmp_path / "contract.pdf.decrypted").read_bytes() == b"keep me"
        assert "-o" in capsys.readouterr().err

    def test_decrypt_with_wrong_key_fails(self, document, tmp_path):
        main(["encrypt", str(document)])
        other = tmp_path / "other.txt"
        other.write_bytes(b"something else")
        main(["encrypt", str(other)])

        with pytest.raises(SystemExit) as exc_info:
            main([
                "decrypt", str(tmp_path / "contract.pdf.enc"),
                "-k", str(tmp_path / "other.txt.key"),
                "-o", str(tmp_path / "out.bin"),
            ])
        assert exc_info.value.code == 1
        assert not (tmp_path / "out.bin").exists()

    def test_encrypt_missing_file(self, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            main(["encrypt", str(tmp_path / "missing.pdf")])
        assert exc_info.value.code == 1

    def test_submit_writes_key_file(self, document, tmp_path, monkeypatch, capsys):
        monkeypatch.delenv("PINATA_JWT", raising=False)
        record = {
            "success": True, "txId": "TXID", "confirmedRound": "demo",
            "demo": True, "note": "Demo mode - blockchain not available",
        }
        with patch("docanchor.client.urllib.request.urlopen", return_value=_response(record)):
            main(["submit", str(document), "--api-url", "http://api.example"])

        keys = read_key_file(tmp_path / "contract.pdf.key")
        assert is_synthetic_cid(keys["cid"])
        assert keys["filename"] == "contract.pdf"
        out = capsys.readouterr().out
        assert "TXID" in out
        assert "blockchain not available" in out

    def test_submit_api_failure(self, document, monkeypatch):
        monkeypatch.delenv("PINATA_JWT", raising=False)
        with patch("docanchor.client.urllib.request.urlopen",
                   side_effect=urllib.error.URLError("refused")):
            with pytest.raises(SystemExit) as exc_info:
                main(["submit", str(document), "--api-url", "http://api.example"])
        assert exc_info.value.code == 1
        assert read_key_file(document.with_name("contract.pdf.key"))["filename"] == "contract.pdf"

    def test_serve_requires_mnemonic(self, monkeypatch, capsys):
        monkeypatch.delenv("SERVER_MNEMONIC", raising=False)
        monkeypatch.delenv("DOCANCHOR_ENDPOINTS_FILE", raising=False)
        monkeypatch.delenv("PORT", raising=False)
        with patch("docanchor.api.run_api") as mock_run:
            with pytest.raises(SystemExit) as exc_info:
                main(["serve"])
        assert exc_info.value.code == 1
        mock_run.assert_not_called()
        assert "SERVER_MNEMONIC" in capsys.readouterr().err

    def test_no_command_prints_help(self):
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 0
