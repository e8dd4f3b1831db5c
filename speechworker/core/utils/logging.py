# core/utils/logging.py
from __future__ import annotations

import logging
import sys
from typing import Iterable, Optional


# Patterns we consider spammy/noisy and keep out of the worker log
_NOISE_PATTERNS: tuple[str, ...] = (
    "UNPLAYABLE formats",
    "developer option intended for debugging",
    "impersonation",
    "SABR streaming",
    "SABR-only",
    "[debug]",
)

# Third-party loggers that flood INFO with download/model chatter
_QUIET_LOGGERS: dict[str, int] = {
    "transformers": logging.ERROR,
    "huggingface_hub": logging.WARNING,
    "urllib3": logging.WARNING,
    "filelock": logging.WARNING,
}

_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def _is_noisy(msg: str, extra: Iterable[str] = ()) -> bool:
    return any(p and p in msg for p in (*_NOISE_PATTERNS, *extra))


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure the root logger once (stderr) and tame library loggers."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    if not any(getattr(h, "_speechworker", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%H:%M:%S"))
        handler._speechworker = True  # type: ignore[attr-defined]
        root.addHandler(handler)

    for name, lvl in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(lvl)

    return logging.getLogger("speechworker")


class YtdlpLogger:
    """
    Passes yt_dlp's logger calls to a stdlib logger, minus known noise.
    Use in YoutubeDL opts: {"logger": YtdlpLogger(log)}.
    """

    def __init__(self, logger: logging.Logger, *, extra_noise: Optional[Iterable[str]] = None) -> None:
        self._logger = logger
        self._extra = tuple(extra_noise or ())

    def _emit(self, level: int, msg) -> None:
        text = str(msg)
        if not _is_noisy(text, self._extra):
            self._logger.log(level, "yt-dlp: %s", text)

    def debug(self, msg) -> None:
        # yt_dlp routes both debug and plain info output here
        if not str(msg).startswith("[debug] "):
            self._emit(logging.DEBUG, msg)

    def info(self, msg) -> None:
        self._emit(logging.INFO, msg)

    def warning(self, msg) -> None:
        self._emit(logging.WARNING, msg)

    def error(self, msg) -> None:
        self._emit(logging.ERROR, msg)
