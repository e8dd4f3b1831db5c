# core/transcription/model_loader.py
from __future__ import annotations

import fnmatch
import logging
import threading
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

from huggingface_hub import HfApi, hf_hub_download, snapshot_download
from transformers import AutoModelForSpeechSeq2Seq, AutoProcessor, pipeline

from speechworker.core.config.app_config import AppConfig as Config
from speechworker.core.utils.concurrency import CancellationToken
from speechworker.core.utils.errors import KeyedError, OperationCancelled

log = logging.getLogger(__name__)

ProgressFn = Callable[[int, int], None]

_BASE_PATTERNS: Tuple[str, ...] = ("*.json", "*.txt")


class ModelError(KeyedError):
    """Model loading error carrying a translation key + params."""


class ModelLoader:
    """
    Builds the ASR pipeline using AppConfig / settings.json and caches it.

    Weights are fetched from the Hugging Face Hub file by file so that byte
    progress can be reported and the cancellation flag honoured between files.
    """

    def __init__(self, model_id: Optional[str] = None, cache_dir: Optional[Path] = None) -> None:
        self._model_id = model_id
        self._cache_dir = cache_dir
        self._pipe: Any = None
        self._pipe_model_id: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def model_id(self) -> str:
        if self._model_id:
            return self._model_id
        return str(Config.model_settings().get("model_id") or "openai/whisper-tiny")

    @property
    def cache_dir(self) -> str:
        return str(self._cache_dir or Config.MODELS_DIR)

    @property
    def pipeline(self) -> Any:
        return self._pipe

    def is_loaded(self) -> bool:
        return self._pipe is not None and self._pipe_model_id == self.model_id

    def unload(self) -> None:
        with self._lock:
            self._pipe = None
            self._pipe_model_id = None

    # ----- Hub download -----

    @staticmethod
    def _patterns(use_safetensors: bool) -> Tuple[str, ...]:
        return _BASE_PATTERNS + (("*.safetensors",) if use_safetensors else ("*.safetensors", "*.bin"))

    def _remote_files(self, patterns: Tuple[str, ...]) -> List[Tuple[str, int]]:
        """(filename, size) of top-level repo files matching patterns."""
        info = HfApi().model_info(self.model_id, files_metadata=True)
        out: List[Tuple[str, int]] = []
        for sib in info.siblings or []:
            name = sib.rfilename
            if "/" in name:
                continue
            if any(fnmatch.fnmatch(name, p) for p in patterns):
                out.append((name, int(sib.size or 0)))
        return out

    def _download(
        self,
        patterns: Tuple[str, ...],
        on_progress: Optional[ProgressFn],
        token: Optional[CancellationToken],
    ) -> str:
        files = self._remote_files(patterns)
        if not files:
            raise ModelError("error.model.no_files", model=self.model_id)

        total = sum(size for _, size in files)
        loaded = 0
        for filename, size in files:
            if token is not None:
                token.raise_if_cancelled()
            hf_hub_download(self.model_id, filename, cache_dir=self.cache_dir)
            loaded += size
            if on_progress is not None:
                on_progress(loaded, total)

        return snapshot_download(
            self.model_id,
            allow_patterns=list(patterns),
            cache_dir=self.cache_dir,
            local_files_only=True,
        )

    def _resolve_model_dir(
        self,
        model_cfg: dict,
        on_progress: Optional[ProgressFn],
        token: Optional[CancellationToken],
    ) -> str:
        patterns = self._patterns(bool(model_cfg.get("use_safetensors", True)))
        if not bool(model_cfg.get("local_models_only", False)):
            try:
                return self._download(patterns, on_progress, token)
            except (OperationCancelled, ModelError):
                raise
            except Exception as ex:
                log.warning("Hub unavailable for '%s' (%s); trying local cache", self.model_id, ex)

        try:
            return snapshot_download(
                self.model_id,
                allow_patterns=list(patterns),
                cache_dir=self.cache_dir,
                local_files_only=True,
            )
        except Exception as ex:
            raise ModelError("error.model.load_failed", model=self.model_id, detail=str(ex))

    # ----- Build -----

    def load(
        self,
        *,
        on_progress: Optional[ProgressFn] = None,
        token: Optional[CancellationToken] = None,
    ) -> Any:
        """
        Return the cached pipeline or fetch weights and build a transformers
        ASR pipeline.

        Respects model settings:
          - model_id
          - local_models_only
          - use_safetensors
          - low_cpu_mem_usage
        """
        with self._lock:
            if self.is_loaded():
                return self._pipe

            logging.getLogger("transformers").setLevel(logging.ERROR)
            model_cfg = Config.model_settings()
            model_dir = self._resolve_model_dir(model_cfg, on_progress, token)

            if token is not None:
                token.raise_if_cancelled()

            log.info("Loading ASR model '%s' from '%s' on %s", self.model_id, model_dir, Config.DEVICE_FRIENDLY_NAME)
            device_index = Config.device_index()
            try:
                model = AutoModelForSpeechSeq2Seq.from_pretrained(
                    model_dir,
                    low_cpu_mem_usage=bool(model_cfg.get("low_cpu_mem_usage", True)),
                    use_safetensors=bool(model_cfg.get("use_safetensors", True)),
                    local_files_only=True,
                )
                processor = AutoProcessor.from_pretrained(model_dir, local_files_only=True)

                # Behaviour (task, language, chunking) is set per call in SpeechTranscriber.
                self._pipe = pipeline(
                    "automatic-speech-recognition",
                    model=model,
                    tokenizer=processor.tokenizer,
                    feature_extractor=processor.feature_extractor,
                    device=device_index,
                    dtype=None if device_index == -1 else Config.DTYPE,
                )
            except Exception as ex:
                raise ModelError("error.model.load_failed", model=self.model_id, detail=str(ex))

            self._pipe_model_id = self.model_id
            return self._pipe
