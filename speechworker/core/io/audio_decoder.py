# core/io/audio_decoder.py
from __future__ import annotations

import json
import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from speechworker.core.config.app_config import AppConfig as Config
from speechworker.core.utils.errors import KeyedError


class AudioError(KeyedError):
    """Audio error carrying a translation key + params (UI will localize)."""


@dataclass(frozen=True)
class DecodedAudio:
    """First channel of the source, float32 PCM at sample_rate, plus source stream properties."""

    samples: np.ndarray = field(repr=False)
    sample_rate: int
    source_sample_rate: int
    channels: int
    duration: float


class FfmpegAudioDecoder:
    """FFmpeg-based decoding of in-memory media into model-ready samples."""

    def __init__(self, *, target_rate: Optional[int] = None, tmp_dir: Optional[Path] = None) -> None:
        self._target_rate = int(target_rate or Config.MODEL_SAMPLE_RATE)
        self._tmp_dir = tmp_dir

    @staticmethod
    def _exe(name: str) -> str:
        """Return ffmpeg/ffprobe from FFMPEG_BINARY/FFPROBE_BINARY, else the name on PATH."""
        env = os.environ.get(f"{name.upper()}_BINARY", "").strip()
        if env:
            return env
        return shutil.which(name) or name

    def _run(self, cmd: List[str]) -> bytes:
        try:
            proc = subprocess.run(cmd, capture_output=True, check=True)
        except FileNotFoundError:
            raise AudioError("error.audio.ffmpeg_missing", detail=cmd[0])
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or b"").decode("utf-8", errors="replace").strip()
            raise AudioError("error.audio.decode_failed", detail=stderr.splitlines()[-1] if stderr else str(e))
        return proc.stdout

    def probe(self, src: Path) -> Dict[str, Any]:
        """
        Return {"channels", "sample_rate", "duration"} of the first audio stream.
        Raises AudioError when the input has no audio.
        """
        cmd = [
            self._exe("ffprobe"),
            "-v", "error",
            "-select_streams", "a:0",
            "-show_entries", "stream=channels,sample_rate,duration:format=duration",
            "-of", "json",
            str(src),
        ]
        raw = self._run(cmd)
        try:
            info = json.loads(raw.decode("utf-8") or "{}")
        except ValueError as e:
            raise AudioError("error.audio.decode_failed", detail=f"ffprobe: {e}")

        streams = info.get("streams") or []
        if not streams:
            raise AudioError("error.audio.no_audio_stream")
        stream = streams[0]

        def _float(v: Any) -> Optional[float]:
            try:
                return float(v)
            except (TypeError, ValueError):
                return None

        duration = _float(stream.get("duration"))
        if duration is None:
            duration = _float((info.get("format") or {}).get("duration"))

        return {
            "channels": int(stream.get("channels") or 1),
            "sample_rate": int(stream.get("sample_rate") or 0),
            "duration": duration,
        }

    def decode_file(self, src: Path) -> DecodedAudio:
        props = self.probe(src)
        # First channel only, float32 little-endian at the model rate
        cmd = [
            self._exe("ffmpeg"),
            "-nostdin",
            "-v", "error",
            "-i", str(src),
            "-map", "0:a:0",
            "-af", "pan=mono|c0=c0",
            "-ar", str(self._target_rate),
            "-f", "f32le",
            "-acodec", "pcm_f32le",
            "pipe:1",
        ]
        raw = self._run(cmd)
        samples = np.frombuffer(raw, dtype=np.float32).copy()
        if samples.size == 0:
            raise AudioError("error.audio.empty")

        duration = props["duration"]
        if duration is None:
            duration = samples.size / float(self._target_rate)

        return DecodedAudio(
            samples=samples,
            sample_rate=self._target_rate,
            source_sample_rate=props["sample_rate"] or self._target_rate,
            channels=props["channels"],
            duration=float(duration),
        )

    def decode(self, data: bytes, *, name: str = "") -> DecodedAudio:
        """Decode encoded media bytes via a temp file (containers need seeking)."""
        if not data:
            raise AudioError("error.audio.empty")
        tmp_root = Path(self._tmp_dir or Config.INPUT_TMP_DIR)
        tmp_root.mkdir(parents=True, exist_ok=True)
        suffix = Path(name).suffix if name else ""
        with tempfile.TemporaryDirectory(dir=tmp_root) as tmp:
            src = Path(tmp) / f"input{suffix}"
            src.write_bytes(data)
            return self.decode_file(src)
