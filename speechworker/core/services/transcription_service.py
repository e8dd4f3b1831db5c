# core/services/transcription_service.py
from __future__ import annotations

import logging
from typing import Callable, Optional

from speechworker.core.contracts.audio_source import AudioDecoder, MediaFetcher
from speechworker.core.contracts.messages import (
    STATUS_ACTIVE,
    STATUS_COMPLETED,
    STEP_DECODE,
    STEP_MODEL,
    STEP_TRANSCRIBE,
    AudioInfo,
    ErrorEvent,
    FileData,
    LogEvent,
    Post,
    ProgressEvent,
    TranscriptionResult,
)
from speechworker.core.contracts.transcriber import AsrPipeline, PipelineProvider
from speechworker.core.io.audio_decoder import AudioError, DecodedAudio, FfmpegAudioDecoder
from speechworker.core.io.fetcher import HttpMediaFetcher
from speechworker.core.io.text import format_megabytes
from speechworker.core.transcription.model_loader import ModelLoader
from speechworker.core.transcription.transcriber import SpeechTranscriber
from speechworker.core.utils.concurrency import CancellationToken
from speechworker.core.utils.errors import KeyedError, OperationCancelled

log = logging.getLogger(__name__)


class TranscriptionService:
    """
    Sequences model load -> decode -> transcribe for one file or URL.

    Every step reports through `post` (progress, result, error, log events).
    Each job gets its own cancellation token, checked between steps; a job
    whose token is already set when it starts never runs. A cancelled job
    ends without a result or error.
    """

    def __init__(
        self,
        loader: Optional[PipelineProvider] = None,
        decoder: Optional[AudioDecoder] = None,
        fetcher: Optional[MediaFetcher] = None,
        transcriber_factory: Optional[Callable[[AsrPipeline], SpeechTranscriber]] = None,
    ) -> None:
        self._loader: PipelineProvider = loader or ModelLoader()
        self._decoder: AudioDecoder = decoder or FfmpegAudioDecoder()
        self._fetcher: MediaFetcher = fetcher or HttpMediaFetcher()
        self._make_transcriber = transcriber_factory or SpeechTranscriber

    # ----- Steps -----

    def init_model(self, post: Post, token: CancellationToken) -> Optional[AsrPipeline]:
        post(ProgressEvent(STEP_MODEL, STATUS_ACTIVE, "progress.model.loading"))

        def _on_progress(loaded: int, total: int) -> None:
            token.raise_if_cancelled()
            pct = (loaded / total * 100.0) if total else 100.0
            post(ProgressEvent(
                STEP_MODEL,
                STATUS_ACTIVE,
                "progress.model.downloading",
                {"percent": f"{pct:.1f}", "size": format_megabytes(total)},
            ))

        try:
            pipe = self._loader.load(on_progress=_on_progress, token=token)
        except OperationCancelled:
            return None

        post(ProgressEvent(STEP_MODEL, STATUS_COMPLETED, "progress.model.ready"))
        return pipe

    def decode_audio(self, file: FileData, post: Post) -> DecodedAudio:
        post(ProgressEvent(STEP_DECODE, STATUS_ACTIVE, "progress.decode.decoding"))
        try:
            audio = self._decoder.decode(file.data, name=file.name)
        except AudioError:
            raise
        except Exception as ex:
            raise AudioError("error.audio.decode_failed", detail=str(ex))

        post(ProgressEvent(
            STEP_DECODE,
            STATUS_COMPLETED,
            "progress.decode.done",
            {
                "channels": audio.channels,
                "sample_rate": audio.source_sample_rate,
                "duration": f"{audio.duration:.1f}",
            },
        ))
        return audio

    def transcribe_audio(self, pipe: AsrPipeline, audio: DecodedAudio, post: Post) -> Optional[str]:
        post(ProgressEvent(STEP_TRANSCRIBE, STATUS_ACTIVE, "progress.transcribe.running"))
        try:
            text = self._make_transcriber(pipe).transcribe(audio)
        except OperationCancelled:
            return None
        post(ProgressEvent(STEP_TRANSCRIBE, STATUS_COMPLETED, "progress.transcribe.done"))
        return text

    # ----- Jobs -----

    def process_file(self, file: FileData, post: Post, token: CancellationToken) -> None:
        if token.is_cancelled:
            return
        try:
            pipe = self.init_model(post, token)
            if token.is_cancelled or pipe is None:
                return

            audio = self.decode_audio(file, post)
            if token.is_cancelled:
                return

            text = self.transcribe_audio(pipe, audio, post)
            if token.is_cancelled or text is None:
                return
            if not text:
                post(LogEvent("log.empty_transcript", {"name": file.name}))
                return

            post(TranscriptionResult(
                text=text,
                audio=AudioInfo(
                    duration=audio.duration,
                    sample_rate=audio.source_sample_rate,
                    channels=audio.channels,
                ),
                file_name=file.name,
                file_size=file.size,
            ))
        except OperationCancelled:
            return
        except Exception as ex:
            post(self.error_event(ex))

    def process_url(self, url: str, post: Post, token: CancellationToken) -> None:
        if token.is_cancelled:
            return
        try:
            post(ProgressEvent(STEP_DECODE, STATUS_ACTIVE, "progress.decode.fetching"))
            media = self._fetcher.fetch(url, token)
            if token.is_cancelled:
                return
        except OperationCancelled:
            return
        except Exception as ex:
            post(self.error_event(ex))
            return

        self.process_file(FileData(name=media.name, size=media.size, data=media.data), post, token)

    # ----- Errors -----

    @staticmethod
    def error_event(ex: BaseException) -> ErrorEvent:
        if isinstance(ex, KeyedError):
            return ErrorEvent(ex.key, dict(ex.params))
        log.exception("Unexpected worker error")
        return ErrorEvent("error.worker.unexpected", {"detail": str(ex) or type(ex).__name__})
