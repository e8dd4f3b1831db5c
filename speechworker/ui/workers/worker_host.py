# ui/workers/worker_host.py
from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

from PyQt5 import QtCore

from speechworker.core.contracts.messages import FileData, TranscribeFile, TranscribeUrl
from speechworker.core.services.transcription_service import TranscriptionService
from speechworker.ui.workers.transcription_worker import TranscriptionWorker


class WorkerHost(QtCore.QObject):
    """
    Controller-side handle for a TranscriptionWorker living in its own QThread.

    Lives on the calling (UI) thread. Jobs are posted through a queued signal
    and run one at a time; worker signals are re-emitted here so receivers
    run on the UI thread.
    """

    message = QtCore.pyqtSignal(object)
    progress = QtCore.pyqtSignal(str, str, str)
    result = QtCore.pyqtSignal(object)
    error = QtCore.pyqtSignal(str)
    log = QtCore.pyqtSignal(str)
    pong = QtCore.pyqtSignal()
    busy_changed = QtCore.pyqtSignal(bool)
    finished = QtCore.pyqtSignal()

    _submit = QtCore.pyqtSignal(object, object)  # payload, job token

    def __init__(self, service: Optional[TranscriptionService] = None, parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent)
        self._thread = QtCore.QThread(self)
        self._thread.setObjectName("speechworker-transcription")
        self._worker = TranscriptionWorker(service)
        self._worker.moveToThread(self._thread)

        self._submit.connect(self._worker.on_queued, QtCore.Qt.QueuedConnection)

        self._worker.message.connect(self.message)
        self._worker.progress.connect(self.progress)
        self._worker.result.connect(self.result)
        self._worker.error.connect(self.error)
        self._worker.log.connect(self.log)
        self._worker.pong.connect(self.pong)
        self._worker.busy_changed.connect(self.busy_changed)
        self._worker.finished.connect(self.finished)

        self._thread.finished.connect(self._worker.deleteLater)
        self._thread.start()

    @property
    def worker(self) -> TranscriptionWorker:
        return self._worker

    def is_running(self) -> bool:
        return self._thread.isRunning()

    # ----- Commands -----

    def post(self, payload: object) -> None:
        """Queue a raw command (wire dict or command object) to the worker."""
        # token is registered before queueing so an early cancel() reaches it
        self._submit.emit(payload, self._worker.job_token())

    def transcribe_file(self, path: Union[str, Path]) -> None:
        # Read on the worker thread; unreadable paths come back as an error event.
        self.post({"type": "transcribe", "file": {"path": str(path)}})

    def transcribe_bytes(self, name: str, data: bytes) -> None:
        self.post(TranscribeFile(FileData.from_bytes(name, data)))

    def transcribe_url(self, url: str) -> None:
        self.post(TranscribeUrl(url))

    def cancel(self) -> None:
        # Direct call: the worker thread is blocked inside the running job.
        # Covers jobs still waiting in the queue as well.
        self._worker.cancel()

    def ping(self) -> None:
        self._worker.ping()

    def shutdown(self, timeout_ms: int = 10000) -> bool:
        """Cancel running and queued jobs, stop the thread and wait for it."""
        if not self._thread.isRunning():
            return True
        self._worker.abort()
        self._thread.quit()
        return self._thread.wait(timeout_ms)
