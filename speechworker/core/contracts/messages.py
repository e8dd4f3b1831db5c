# core/contracts/messages.py
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

# Step names and statuses used in progress events
STEP_MODEL = "model"
STEP_DECODE = "decode"
STEP_TRANSCRIBE = "transcribe"

STATUS_ACTIVE = "active"
STATUS_COMPLETED = "completed"

Render = Callable[..., str]


def _plain(key: str, **_params: Any) -> str:
    return key


# ----- Commands (controller -> worker) -----

@dataclass(frozen=True)
class FileData:
    """Encoded media handed to the worker: display name, byte size and payload."""

    name: str
    size: int
    data: bytes = field(repr=False)

    @classmethod
    def from_bytes(cls, name: str, data: bytes) -> "FileData":
        return cls(name=name or "audio", size=len(data), data=bytes(data))

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "FileData":
        p = Path(path)
        return cls.from_bytes(p.name, p.read_bytes())


@dataclass(frozen=True)
class TranscribeFile:
    file: FileData


@dataclass(frozen=True)
class TranscribeUrl:
    url: str


@dataclass(frozen=True)
class Cancel:
    pass


@dataclass(frozen=True)
class Ping:
    pass


Command = Union[TranscribeFile, TranscribeUrl, Cancel, Ping]


def _file_from_payload(raw: Any) -> FileData:
    if isinstance(raw, FileData):
        return raw
    if isinstance(raw, (str, Path)):
        return FileData.from_path(raw)
    if not isinstance(raw, dict):
        raise ValueError(f"unsupported file payload: {type(raw).__name__}")
    if raw.get("path"):
        return FileData.from_path(raw["path"])
    data = raw.get("data", raw.get("arrayBuffer"))
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise ValueError("file payload carries no bytes")
    data = bytes(data)
    size = raw.get("size")
    return FileData(
        name=str(raw.get("name") or "audio"),
        size=int(size) if size is not None else len(data),
        data=data,
    )


def parse_command(payload: Any) -> Optional[Command]:
    """
    Turn a wire-style dict ({"type": ..., "file"|"url": ...}) into a command.

    Command objects pass through; unknown types yield None.
    """
    if isinstance(payload, (TranscribeFile, TranscribeUrl, Cancel, Ping)):
        return payload
    if not isinstance(payload, dict):
        return None
    kind = str(payload.get("type", "") or "")
    if kind == "transcribe":
        return TranscribeFile(_file_from_payload(payload.get("file")))
    if kind == "transcribeUrl":
        url = str(payload.get("url", "") or "").strip()
        if not url:
            raise ValueError("transcribeUrl requires a url")
        return TranscribeUrl(url)
    if kind == "cancel":
        return Cancel()
    if kind == "ping":
        return Ping()
    return None


# ----- Events (worker -> controller) -----

@dataclass(frozen=True)
class ProgressEvent:
    step: str
    status: str
    key: str
    params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self, render: Render = _plain) -> Dict[str, Any]:
        return {
            "type": "progress",
            "data": {
                "step": self.step,
                "status": self.status,
                "message": render(self.key, **self.params),
            },
        }


@dataclass(frozen=True)
class AudioInfo:
    duration: float
    sample_rate: int
    channels: int


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    audio: AudioInfo
    file_name: str
    file_size: int

    def to_dict(self, render: Render = _plain) -> Dict[str, Any]:
        return {
            "type": "result",
            "data": {
                "text": self.text,
                "audio": {
                    "duration": self.audio.duration,
                    "sample_rate": self.audio.sample_rate,
                    "channels": self.audio.channels,
                },
                "file": {"name": self.file_name, "size": self.file_size},
            },
        }


@dataclass(frozen=True)
class ErrorEvent:
    key: str
    params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self, render: Render = _plain) -> Dict[str, Any]:
        return {"type": "error", "data": render(self.key, **self.params)}


@dataclass(frozen=True)
class LogEvent:
    key: str
    params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self, render: Render = _plain) -> Dict[str, Any]:
        return {"type": "log", "data": render(self.key, **self.params)}


@dataclass(frozen=True)
class Pong:
    def to_dict(self, render: Render = _plain) -> Dict[str, Any]:
        return {"type": "pong"}


Event = Union[ProgressEvent, TranscriptionResult, ErrorEvent, LogEvent, Pong]
Post = Callable[[Event], None]
