"""URL scheme 校验与 HTTP 读取测试"""

from __future__ import annotations

import http.client
import io
import urllib.error
from pathlib import Path

import pytest

from phmbuild.core.exceptions import FetchError
from phmbuild.utils import net
from phmbuild.utils.net import download_file, fetch_json, validate_url_scheme


class TestValidateUrlScheme:
    def test_http_ok(self) -> None:
        validate_url_scheme("http://example.com/api")

    def test_https_ok(self) -> None:
        validate_url_scheme("https://example.com/api")

    def test_file_rejected(self) -> None:
        with pytest.raises(ValueError, match="不允许的 URL 协议"):
            validate_url_scheme("file:///etc/passwd")

    def test_empty_scheme_rejected(self) -> None:
        with pytest.raises(ValueError, match="不允许的 URL 协议"):
            validate_url_scheme("/local/path")

    def test_context_in_error(self) -> None:
        with pytest.raises(ValueError, match="release index"):
            validate_url_scheme("file:///x", context="release index")


class _Resp(io.BytesIO):
    def __enter__(self):  # type: ignore[no-untyped-def]
        return self

    def __exit__(self, *args) -> None:  # type: ignore[no-untyped-def]
        self.close()


class TestFetch:
    def test_fetch_json(self, monkeypatch: pytest.MonkeyPatch) -> None:
        seen = {}

        def fake_urlopen(req, timeout):  # type: ignore[no-untyped-def]
            seen["ua"] = req.get_header("User-agent")
            return _Resp(b'{"ok": true}')

        monkeypatch.setattr(net.urllib.request, "urlopen", fake_urlopen)
        assert fetch_json("https://example.com/x.json") == {"ok": True}
        assert seen["ua"] == "phmbuild"

    def test_invalid_json(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(net.urllib.request, "urlopen", lambda req, timeout: _Resp(b"<html>"))
        with pytest.raises(FetchError, match="JSON"):
            fetch_json("https://example.com/x.json")

    def test_http_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def fake_urlopen(req, timeout):  # type: ignore[no-untyped-def]
            raise urllib.error.HTTPError(req.full_url, 404, "nf", {}, None)  # type: ignore[arg-type]

        monkeypatch.setattr(net.urllib.request, "urlopen", fake_urlopen)
        with pytest.raises(FetchError, match="404"):
            fetch_json("https://example.com/missing")

    def test_download_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(net.urllib.request, "urlopen", lambda req, timeout: _Resp(b"payload"))
        dest = download_file("https://example.com/a.bin", tmp_path / "sub" / "a.bin")
        assert dest.read_bytes() == b"payload"


class _BrokenResp(_Resp):
    """读取正文时连接中断"""

    def __init__(self, exc: Exception) -> None:
        super().__init__(b"")
        self._exc = exc

    def read(self, *args):  # type: ignore[no-untyped-def]
        raise self._exc


class TestReadErrors:
    def test_incomplete_read(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(
            net.urllib.request, "urlopen",
            lambda req, timeout: _BrokenResp(http.client.IncompleteRead(b"ab", 10)),
        )
        with pytest.raises(FetchError, match="读取响应失败"):
            net.fetch_text("https://example.com/a.sha256")

    def test_connection_reset_during_download(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(
            net.urllib.request, "urlopen",
            lambda req, timeout: _BrokenResp(ConnectionResetError("reset")),
        )
        dest = tmp_path / "a.tar.zst"
        with pytest.raises(FetchError, match="下载中断"):
            download_file("https://example.com/a.tar.zst", dest)
        assert not dest.exists()

    def test_remote_disconnected_on_open(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def fake_urlopen(req, timeout):  # type: ignore[no-untyped-def]
            raise http.client.BadStatusLine("")

        monkeypatch.setattr(net.urllib.request, "urlopen", fake_urlopen)
        with pytest.raises(FetchError):
            fetch_json("https://example.com/x.json")
