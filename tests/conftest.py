from __future__ import annotations

from typing import Any, Dict, List, Optional

import numpy as np
import pytest
from PyQt5 import QtCore

from speechworker.core.config.app_config import AppConfig as Config
from speechworker.core.io.audio_decoder import DecodedAudio
from speechworker.core.io.fetcher import FetchedMedia
from speechworker.core.services.settings_service import SettingsService
from speechworker.ui.i18n.translator import Translator


@pytest.fixture(scope="session")
def qapp():
    app = QtCore.QCoreApplication.instance() or QtCore.QCoreApplication([])
    yield app


@pytest.fixture
def config(tmp_path):
    """AppConfig backed by packaged defaults and a throwaway data dir."""
    saved = (Config.SETTINGS, Config.DATA_DIR, Config.MODELS_DIR, Config.INPUT_TMP_DIR)
    Config.set_data_dir(tmp_path / "home")
    Config.SETTINGS = SettingsService(tmp_path).defaults()
    yield Config
    Config.SETTINGS, Config.DATA_DIR, Config.MODELS_DIR, Config.INPUT_TMP_DIR = saved


@pytest.fixture
def en_messages():
    Translator.load(Config.LOCALES_DIR, "en")
    yield


# ----- Fakes for the external stacks -----

class FakePipe:
    def __init__(self, text: str = " Привет мир ", exc: Optional[Exception] = None) -> None:
        self.text = text
        self.exc = exc
        self.calls: List[Dict[str, Any]] = []

    def __call__(self, inputs, **kwargs):
        self.calls.append({"inputs": inputs, **kwargs})
        if self.exc is not None:
            raise self.exc
        return {"text": self.text}


class FakeLoader:
    """Reports two download steps, then returns the pipe."""

    def __init__(self, pipe=None, *, sizes=(1024 * 1024, 3 * 1024 * 1024), exc: Optional[Exception] = None,
                 cancel_after: Optional[int] = None) -> None:
        self.pipe = pipe if pipe is not None else FakePipe()
        self.sizes = sizes
        self.exc = exc
        self.cancel_after = cancel_after
        self.loads = 0

    @property
    def pipeline(self):
        return self.pipe

    def load(self, *, on_progress=None, token=None):
        self.loads += 1
        if self.exc is not None:
            raise self.exc
        total = sum(self.sizes)
        loaded = 0
        for i, size in enumerate(self.sizes):
            if token is not None:
                token.raise_if_cancelled()
            loaded += size
            if on_progress is not None:
                on_progress(loaded, total)
            if self.cancel_after is not None and i + 1 == self.cancel_after and token is not None:
                token.cancel()
        return self.pipe


class FakeDecoder:
    def __init__(self, *, exc: Optional[Exception] = None, on_decode=None) -> None:
        self.exc = exc
        self.on_decode = on_decode
        self.calls: List[Dict[str, Any]] = []

    def decode(self, data: bytes, *, name: str = "") -> DecodedAudio:
        self.calls.append({"data": data, "name": name})
        if self.on_decode is not None:
            self.on_decode()
        if self.exc is not None:
            raise self.exc
        return DecodedAudio(
            samples=np.zeros(16000 * 2, dtype=np.float32),
            sample_rate=16000,
            source_sample_rate=44100,
            channels=2,
            duration=2.04,
        )


class FakeFetcher:
    def __init__(self, media: Optional[FetchedMedia] = None, *, exc: Optional[Exception] = None,
                 on_fetch=None) -> None:
        self.media = media or FetchedMedia(name="clip.mp3", data=b"ID3" + b"\x00" * 97)
        self.exc = exc
        self.on_fetch = on_fetch
        self.urls: List[str] = []

    def fetch(self, url, token=None):
        self.urls.append(url)
        if self.on_fetch is not None:
            self.on_fetch()
        if self.exc is not None:
            raise self.exc
        return self.media


@pytest.fixture
def fakes():
    class _Fakes:
        Pipe = FakePipe
        Loader = FakeLoader
        Decoder = FakeDecoder
        Fetcher = FakeFetcher

    return _Fakes
