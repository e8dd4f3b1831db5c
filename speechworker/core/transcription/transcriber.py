# core/transcription/transcriber.py
from __future__ import annotations

from typing import Any, Dict, Optional

from speechworker.core.config.app_config import AppConfig as Config
from speechworker.core.contracts.transcriber import AsrPipeline
from speechworker.core.io.audio_decoder import DecodedAudio
from speechworker.core.io.text import clean_text
from speechworker.core.utils.errors import KeyedError


class TranscriptionError(KeyedError):
    """Inference error carrying a translation key + params."""


class SpeechTranscriber:
    """Runs an ASR pipeline over decoded samples with settings-driven chunking."""

    def __init__(self, pipe: AsrPipeline) -> None:
        self._pipe = pipe

    @staticmethod
    def call_options(overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Pipeline call kwargs from model settings (chunking, task, language)."""
        model_cfg = Config.model_settings()
        model_cfg.update(overrides or {})

        generate_kwargs: Dict[str, Any] = {"task": str(model_cfg.get("pipeline_task", "transcribe"))}
        language = model_cfg.get("default_language", "ru")
        if language:
            generate_kwargs["language"] = str(language)

        opts: Dict[str, Any] = {
            "chunk_length_s": int(model_cfg.get("chunk_length_s", 30)),
            "stride_length_s": int(model_cfg.get("stride_length_s", 5)),
            "generate_kwargs": generate_kwargs,
        }
        if bool(model_cfg.get("return_timestamps", False)):
            opts["return_timestamps"] = True
        return opts

    def transcribe(self, audio: DecodedAudio, **overrides: Any) -> str:
        try:
            result = self._pipe(
                {"raw": audio.samples, "sampling_rate": audio.sample_rate},
                **self.call_options(overrides),
            )
        except Exception as ex:
            raise TranscriptionError("error.transcription.failed", detail=str(ex))
        text = result["text"] if isinstance(result, dict) and "text" in result else str(result)
        return clean_text(text)
