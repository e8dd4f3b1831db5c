# core/contracts/transcriber.py
from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Protocol

from speechworker.core.utils.concurrency import CancellationToken


class AsrPipeline(Protocol):
    """Callable ASR pipeline (transformers 'automatic-speech-recognition')."""

    def __call__(self, inputs: Any, **kwargs: Any) -> Dict[str, Any]: ...


class PipelineProvider(Protocol):
    """
    Builds or returns a cached ASR pipeline.

    on_progress(loaded_bytes, total_bytes) reports weight downloads; token is
    checked between downloaded files.
    """

    @property
    def pipeline(self) -> Optional[AsrPipeline]: ...

    def load(
        self,
        *,
        on_progress: Optional[Callable[[int, int], None]] = None,
        token: Optional[CancellationToken] = None,
    ) -> AsrPipeline: ...
