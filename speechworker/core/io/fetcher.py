# core/io/fetcher.py
from __future__ import annotations

import logging
import tempfile
from dataclasses import dataclass, field
from http.client import HTTPException
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.error import HTTPError, URLError
from urllib.request import ProxyHandler, Request, build_opener

import yt_dlp

from speechworker.core.config.app_config import AppConfig as Config
from speechworker.core.io.text import filename_from_url, sanitize_filename
from speechworker.core.utils.concurrency import CancellationToken
from speechworker.core.utils.errors import KeyedError, OperationCancelled
from speechworker.core.utils.logging import YtdlpLogger

log = logging.getLogger(__name__)

_CHUNK = 64 * 1024


class FetchError(KeyedError):
    """Download error with i18n key and params to be localized by UI."""


@dataclass(frozen=True)
class FetchedMedia:
    name: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)


class HttpMediaFetcher:
    """
    Plain HTTP(S) fetch of a media URL into memory.

    HTML responses are treated as media pages and handed to yt_dlp
    (best audio stream) when network.resolve_media_pages is on.
    """

    def __init__(self, *, opener=None) -> None:
        self._opener = opener

    def _build_opener(self):
        if self._opener is not None:
            return self._opener
        proxy = Config.net_proxy()
        handlers = [ProxyHandler({"http": proxy, "https": proxy})] if proxy else []
        return build_opener(*handlers)

    def fetch(self, url: str, token: Optional[CancellationToken] = None) -> FetchedMedia:
        req = Request(url, headers={"User-Agent": f"{Config.APP_NAME}/{Config.APP_VERSION}"})
        opener = self._build_opener()
        attempts = max(1, Config.net_retries() + 1)

        for attempt in range(1, attempts + 1):
            try:
                with opener.open(req, timeout=Config.net_timeout_s()) as resp:
                    status = getattr(resp, "status", 200) or 200
                    if status >= 400:
                        raise FetchError("error.fetch.http_status", status=status)
                    ctype = resp.headers.get_content_type() if resp.headers else ""
                    if ctype == "text/html" and Config.resolve_media_pages():
                        log.info("URL is an HTML page, resolving media with yt-dlp: %s", url)
                        return self._fetch_page(url, token)
                    data = self._read(resp, token)
                return FetchedMedia(name=filename_from_url(url), data=data)
            except HTTPError as ex:
                raise FetchError("error.fetch.http_status", status=ex.code)
            except URLError as ex:
                if attempt >= attempts:
                    raise FetchError("error.fetch.failed", detail=str(ex.reason))
                log.warning("Fetch attempt %d/%d failed: %s", attempt, attempts, ex.reason)
            except (HTTPException, OSError) as ex:
                # timeouts, resets, TLS errors and truncated bodies while reading
                if attempt >= attempts:
                    raise FetchError("error.fetch.failed", detail=str(ex))
                log.warning("Fetch attempt %d/%d failed: %s", attempt, attempts, ex)

        raise FetchError("error.fetch.failed", detail=url)

    @staticmethod
    def _read(resp, token: Optional[CancellationToken]) -> bytes:
        chunks = []
        while True:
            if token is not None:
                token.raise_if_cancelled()
            chunk = resp.read(_CHUNK)
            if not chunk:
                break
            chunks.append(chunk)
        return b"".join(chunks)

    # ----- Media pages (yt_dlp) -----

    def _fetch_page(self, url: str, token: Optional[CancellationToken]) -> FetchedMedia:
        def _hook(d: Dict[str, Any]) -> None:
            if token is not None:
                token.raise_if_cancelled()

        tmp_root = Path(Config.INPUT_TMP_DIR)
        tmp_root.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(dir=tmp_root) as tmp:
            out_dir = Path(tmp)
            ydl_opts: Dict[str, Any] = {
                "format": "bestaudio/best",
                "outtmpl": str(out_dir / "%(title)s.%(ext)s"),
                "quiet": True,
                "noprogress": True,
                "noplaylist": True,
                "nopart": True,
                "retries": Config.net_retries(),
                "socket_timeout": Config.net_timeout_s(),
                "progress_hooks": [_hook],
                "logger": YtdlpLogger(log),
            }
            if Config.net_proxy():
                ydl_opts["proxy"] = Config.net_proxy()

            try:
                with yt_dlp.YoutubeDL(ydl_opts) as ydl:
                    info = ydl.extract_info(url, download=True)
            except OperationCancelled:
                raise
            except Exception as ex:
                if token is not None and token.is_cancelled:
                    raise OperationCancelled() from ex
                raise FetchError("error.fetch.failed", detail=str(ex))

            candidates = [p for p in out_dir.iterdir() if p.is_file()]
            if not candidates:
                raise FetchError("error.fetch.failed", detail="yt-dlp produced no file")
            out_path = max(candidates, key=lambda p: p.stat().st_size)

            title = info.get("title") if isinstance(info, dict) else None
            name = sanitize_filename(f"{title}{out_path.suffix}") if title else out_path.name
            return FetchedMedia(name=name, data=out_path.read_bytes())
