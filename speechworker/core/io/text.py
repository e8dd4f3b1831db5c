# core/io/text.py
from __future__ import annotations

import re
import unicodedata
from pathlib import PurePosixPath
from typing import Optional
from urllib.parse import unquote, urlparse

_DEFAULT_NAME = "audio"

# Path separators and characters Windows refuses in file names
_UNSAFE = str.maketrans({c: "_" for c in '/\\:*?"<>|'})
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")


def is_url(value: str) -> bool:
    """True for http(s)/ftp URLs."""
    return urlparse((value or "").strip()).scheme.lower() in ("http", "https", "ftp")


def sanitize_filename(name: str, max_len: int = 120) -> str:
    """File name safe on common filesystems; keeps the extension when shortening."""
    n = _CONTROL_RE.sub("", unicodedata.normalize("NFKC", name or ""))
    n = " ".join(n.translate(_UNSAFE).split())
    n = re.sub(r"_{2,}", "_", n)
    if len(n) > max_len:
        p = PurePosixPath(n)
        n = p.stem[: max(1, max_len - len(p.suffix))] + p.suffix
    return n or _DEFAULT_NAME


def filename_from_url(url: str, default: str = _DEFAULT_NAME) -> str:
    """Last path segment of url (percent-decoded), or default when empty."""
    segment = urlparse(url.strip()).path.rstrip("/").rpartition("/")[2]
    return sanitize_filename(unquote(segment)) if segment else default


def format_megabytes(num: Optional[int]) -> str:
    """Bytes as MiB with one decimal, e.g. '75.3'."""
    return f"{max(num or 0, 0) / (1024 * 1024):.1f}"


def clean_text(text: str) -> str:
    """ASR output tidy-up: trailing spaces per line, at most one blank line."""
    lines = [line.rstrip() for line in text.replace("\r\n", "\n").split("\n")]
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()
