# ui/workers/transcription_worker.py
from __future__ import annotations

import logging
import threading
from typing import Any, List, Optional

from PyQt5 import QtCore

from speechworker.core.contracts.messages import (
    Cancel,
    ErrorEvent,
    Event,
    LogEvent,
    Ping,
    Pong,
    ProgressEvent,
    TranscribeFile,
    TranscribeUrl,
    TranscriptionResult,
    parse_command,
)
from speechworker.core.services.transcription_service import TranscriptionService
from speechworker.core.utils.concurrency import CancellationToken
from speechworker.ui.i18n.translator import tr

_logger = logging.getLogger(__name__)


class TranscriptionWorker(QtCore.QObject):
    """
    Runs transcription jobs in the thread it was moved to.

    Commands arrive on `on_queued` (queued from the controlling thread, each
    with its own cancellation token) or `on_command` (direct calls, sharing
    `token`). `cancel()`, `abort()` and `ping()` are safe from any thread.
    """

    message = QtCore.pyqtSignal(object)            # wire dict {"type", "data"}
    progress = QtCore.pyqtSignal(str, str, str)    # step, status, message
    result = QtCore.pyqtSignal(object)             # TranscriptionResult
    error = QtCore.pyqtSignal(str)
    log = QtCore.pyqtSignal(str)
    pong = QtCore.pyqtSignal()
    busy_changed = QtCore.pyqtSignal(bool)
    finished = QtCore.pyqtSignal()                 # after every transcribe job

    def __init__(self, service: Optional[TranscriptionService] = None) -> None:
        super().__init__()
        self._service = service or TranscriptionService()
        self._token = CancellationToken()
        self._lock = threading.Lock()
        self._queued: List[CancellationToken] = []
        self._busy = False

    @property
    def token(self) -> CancellationToken:
        """Flag for commands delivered straight to on_command; reset after each such job."""
        return self._token

    @property
    def is_busy(self) -> bool:
        return self._busy

    # ----- Commands -----

    def job_token(self) -> CancellationToken:
        """
        Fresh token for a command about to be queued.

        cancel() reaches it from now until the command has been handled, so a
        cancel sent while the job still waits in the queue is not lost.
        """
        token = CancellationToken()
        with self._lock:
            self._queued.append(token)
        return token

    def abort(self) -> None:
        """Set the flag of the running job and of every queued one."""
        with self._lock:
            tokens = [self._token, *self._queued]
        for token in tokens:
            token.cancel()

    def cancel(self) -> None:
        """Request best-effort cancellation of the current and queued jobs."""
        self.abort()
        self._post(LogEvent("log.cancelled"))

    def ping(self) -> None:
        self._post(Pong())

    @QtCore.pyqtSlot(object)
    def on_command(self, payload: Any) -> None:
        self._dispatch(payload, None)

    @QtCore.pyqtSlot(object, object)
    def on_queued(self, payload: Any, token: CancellationToken) -> None:
        self._dispatch(payload, token)

    def _dispatch(self, payload: Any, token: Optional[CancellationToken]) -> None:
        try:
            cmd = parse_command(payload)
        except (ValueError, OSError) as e:
            self._release(token)
            self._post(ErrorEvent("error.worker.bad_command", {"detail": str(e)}))
            self.finished.emit()
            return

        if isinstance(cmd, TranscribeFile):
            self._run_job(self._service.process_file, cmd.file, token)
            return
        if isinstance(cmd, TranscribeUrl):
            self._run_job(self._service.process_url, cmd.url, token)
            return

        self._release(token)
        if cmd is None:
            _logger.debug("Ignoring unknown command: %r", payload)
        elif isinstance(cmd, Cancel):
            self.cancel()
        elif isinstance(cmd, Ping):
            self.ping()

    def _run_job(self, job, arg, token: Optional[CancellationToken]) -> None:
        direct = token is None
        if direct:
            token = self._token
        self._set_busy(True)
        try:
            job(arg, self._post, token)
        except Exception as e:
            # Service forwards its own errors; this is a last-resort net.
            self._post(self._service.error_event(e))
        finally:
            if direct:
                token.reset()
            else:
                self._release(token)
            self._set_busy(False)
            self.finished.emit()

    def _release(self, token: Optional[CancellationToken]) -> None:
        if token is None:
            return
        with self._lock:
            if token in self._queued:
                self._queued.remove(token)

    def _set_busy(self, value: bool) -> None:
        if self._busy != value:
            self._busy = value
            self.busy_changed.emit(value)

    # ----- Events -----

    def _post(self, event: Event) -> None:
        self.message.emit(event.to_dict(tr))
        if isinstance(event, ProgressEvent):
            self.progress.emit(event.step, event.status, tr(event.key, **event.params))
        elif isinstance(event, TranscriptionResult):
            self.result.emit(event)
        elif isinstance(event, ErrorEvent):
            self.error.emit(tr(event.key, **event.params))
        elif isinstance(event, LogEvent):
            self.log.emit(tr(event.key, **event.params))
        elif isinstance(event, Pong):
            self.pong.emit()
