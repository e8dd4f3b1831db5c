from __future__ import annotations

import io
import ssl
from email.message import Message
from http.client import IncompleteRead
from pathlib import Path
from urllib.error import HTTPError, URLError

import pytest

from speechworker.core.io import fetcher as fetcher_mod
from speechworker.core.io.fetcher import FetchError, HttpMediaFetcher
from speechworker.core.utils.concurrency import CancellationToken
from speechworker.core.utils.errors import OperationCancelled


class FakeResponse(io.BytesIO):
    def __init__(self, body: bytes, *, status: int = 200, ctype: str = "audio/mpeg") -> None:
        super().__init__(body)
        self.status = status
        self.headers = Message()
        self.headers["Content-Type"] = ctype


class FakeOpener:
    """Replays a list of responses or exceptions, one per open() call."""

    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.requests = []

    def open(self, req, timeout=None):
        self.requests.append((req, timeout))
        out = self.outcomes.pop(0)
        if isinstance(out, BaseException):
            raise out
        return out


@pytest.fixture
def net(config, monkeypatch):
    monkeypatch.setattr(config, "NET_RETRIES", 1)
    monkeypatch.setattr(config, "NET_TIMEOUT_S", 7)
    return config


def test_fetch_reads_body_and_names_file_from_url(net):
    opener = FakeOpener(FakeResponse(b"ID3" * 50000))

    media = HttpMediaFetcher(opener=opener).fetch("https://cdn.example.com/pod/ep%2012.mp3?x=1")

    assert media.name == "ep 12.mp3"
    assert media.size == 150000
    req, timeout = opener.requests[0]
    assert timeout == 7
    assert req.get_header("User-agent").startswith("speechworker/")


def test_http_error_maps_to_status(net):
    err = HTTPError("https://x.org/a.mp3", 403, "Forbidden", Message(), None)

    with pytest.raises(FetchError) as ei:
        HttpMediaFetcher(opener=FakeOpener(err)).fetch("https://x.org/a.mp3")

    assert ei.value.key == "error.fetch.http_status"
    assert ei.value.params == {"status": 403}


def test_error_status_without_exception(net):
    with pytest.raises(FetchError) as ei:
        HttpMediaFetcher(opener=FakeOpener(FakeResponse(b"", status=500))).fetch("https://x.org/a.mp3")

    assert ei.value.params == {"status": 500}


def test_transient_failure_is_retried(net):
    opener = FakeOpener(URLError("connection reset"), FakeResponse(b"OggS"))

    media = HttpMediaFetcher(opener=opener).fetch("https://x.org/a.ogg")

    assert media.data == b"OggS"
    assert len(opener.requests) == 2


def test_retries_exhausted(net):
    opener = FakeOpener(URLError("no route"), TimeoutError("timed out"))

    with pytest.raises(FetchError) as ei:
        HttpMediaFetcher(opener=opener).fetch("https://x.org/a.ogg")

    assert ei.value.key == "error.fetch.failed"
    assert ei.value.params == {"detail": "timed out"}


def test_cancelled_token_stops_reading(net):
    token = CancellationToken()
    token.cancel()

    with pytest.raises(OperationCancelled):
        HttpMediaFetcher(opener=FakeOpener(FakeResponse(b"data"))).fetch("https://x.org/a.ogg", token)


class FakeYoutubeDL:
    instances = []

    def __init__(self, opts) -> None:
        self.opts = opts
        FakeYoutubeDL.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def extract_info(self, url, download=True):
        for hook in self.opts["progress_hooks"]:
            hook({"status": "downloading"})
        out = Path(self.opts["outtmpl"].replace("%(title)s", "ignored").replace("%(ext)s", "webm"))
        out.write_bytes(b"\x1aE\xdf\xa3" + b"\x00" * 20)
        return {"title": "Talk: part 1"}


def test_html_page_is_resolved_with_yt_dlp(net, monkeypatch):
    FakeYoutubeDL.instances.clear()
    monkeypatch.setattr(fetcher_mod.yt_dlp, "YoutubeDL", FakeYoutubeDL)
    opener = FakeOpener(FakeResponse(b"<html></html>", ctype="text/html; charset=utf-8"))

    media = HttpMediaFetcher(opener=opener).fetch("https://video.example.com/watch?v=1")

    assert media.name == "Talk_ part 1.webm"
    assert media.size == 24
    assert FakeYoutubeDL.instances[0].opts["format"] == "bestaudio/best"
    assert list(Path(net.INPUT_TMP_DIR).iterdir()) == []


def test_html_page_cancel_from_progress_hook(net, monkeypatch):
    monkeypatch.setattr(fetcher_mod.yt_dlp, "YoutubeDL", FakeYoutubeDL)
    token = CancellationToken()
    token.cancel()
    opener = FakeOpener(FakeResponse(b"<html></html>", ctype="text/html"))

    with pytest.raises(OperationCancelled):
        HttpMediaFetcher(opener=opener).fetch("https://video.example.com/watch?v=2", token)


class BrokenResponse(FakeResponse):
    """Body read fails part-way through."""

    def __init__(self, exc: BaseException) -> None:
        super().__init__(b"")
        self.exc = exc

    def read(self, size=-1):
        raise self.exc


def test_truncated_body_is_retried_then_reported(net):
    opener = FakeOpener(BrokenResponse(IncompleteRead(b"abc")), BrokenResponse(IncompleteRead(b"abcdef")))

    with pytest.raises(FetchError) as ei:
        HttpMediaFetcher(opener=opener).fetch("https://x.org/a.mp3")

    assert ei.value.key == "error.fetch.failed"
    assert ei.value.params["detail"].startswith("IncompleteRead")
    assert len(opener.requests) == 2


def test_tls_error_while_reading_recovers_on_retry(net):
    opener = FakeOpener(BrokenResponse(ssl.SSLError("record layer failure")), FakeResponse(b"fLaC"))

    media = HttpMediaFetcher(opener=opener).fetch("https://x.org/a.flac")

    assert media.data == b"fLaC"
