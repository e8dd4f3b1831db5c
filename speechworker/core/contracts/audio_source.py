# core/contracts/audio_source.py
from __future__ import annotations

from typing import Optional, Protocol

from speechworker.core.io.audio_decoder import DecodedAudio
from speechworker.core.io.fetcher import FetchedMedia
from speechworker.core.utils.concurrency import CancellationToken


class AudioDecoder(Protocol):
    """Turns encoded media bytes into mono float32 samples plus source properties."""

    def decode(self, data: bytes, *, name: str = "") -> DecodedAudio: ...


class MediaFetcher(Protocol):
    """Fetches remote media into memory, honouring the cancellation flag."""

    def fetch(self, url: str, token: Optional[CancellationToken] = None) -> FetchedMedia: ...
