from __future__ import annotations

import pytest

from speechworker.core.contracts.messages import TranscriptionResult
from speechworker.core.io.audio_decoder import AudioError
from speechworker.core.services.transcription_service import TranscriptionService
from speechworker.ui.workers.transcription_worker import TranscriptionWorker


@pytest.fixture
def make_worker(qapp, config, en_messages, fakes):
    def _make(**kw):
        svc = TranscriptionService(
            loader=kw.get("loader") or fakes.Loader(),
            decoder=kw.get("decoder") or fakes.Decoder(),
            fetcher=kw.get("fetcher") or fakes.Fetcher(),
        )
        worker = TranscriptionWorker(svc)
        rec = {"message": [], "progress": [], "result": [], "error": [], "log": [], "pong": 0, "finished": 0}
        worker.message.connect(rec["message"].append)
        worker.progress.connect(lambda *a: rec["progress"].append(a))
        worker.result.connect(rec["result"].append)
        worker.error.connect(rec["error"].append)
        worker.log.connect(rec["log"].append)

        def _pong():
            rec["pong"] += 1

        def _finished():
            rec["finished"] += 1

        worker.pong.connect(_pong)
        worker.finished.connect(_finished)
        return worker, rec

    return _make


def test_transcribe_command_emits_rendered_progress_and_result(make_worker):
    worker, rec = make_worker()

    worker.on_command({"type": "transcribe", "file": {"name": "a.wav", "size": 4, "data": b"RIFF"}})

    assert rec["progress"][0] == ("model", "active", "Loading model from the hub...")
    assert ("model", "active", "Downloaded: 25.0% of 4.0 MB") in rec["progress"]
    assert ("model", "completed", "Model loaded and cached") in rec["progress"]
    assert ("decode", "completed", "2 channel(s), 44100 Hz, 2.0 s") in rec["progress"]
    assert rec["progress"][-1] == ("transcribe", "completed", "Text recognized")
    assert len(rec["result"]) == 1
    assert isinstance(rec["result"][0], TranscriptionResult)
    assert rec["finished"] == 1
    assert rec["error"] == []


def test_message_signal_carries_wire_dicts(make_worker):
    worker, rec = make_worker()

    worker.on_command({"type": "transcribe", "file": {"name": "a.wav", "data": b"RIFF"}})

    first, last = rec["message"][0], rec["message"][-1]
    assert first == {
        "type": "progress",
        "data": {"step": "model", "status": "active", "message": "Loading model from the hub..."},
    }
    assert last["type"] == "result"
    assert last["data"]["file"] == {"name": "a.wav", "size": 4}
    assert last["data"]["audio"] == {"duration": 2.04, "sample_rate": 44100, "channels": 2}
    assert last["data"]["text"] == "Привет мир"


def test_error_is_rendered_with_detail(make_worker, fakes):
    worker, rec = make_worker(decoder=fakes.Decoder(exc=AudioError("error.audio.decode_failed", detail="EOF")))

    worker.on_command({"type": "transcribe", "file": {"name": "a.wav", "data": b"RIFF"}})

    assert rec["error"] == ["Audio decoding error: EOF"]
    assert rec["message"][-1] == {"type": "error", "data": "Audio decoding error: EOF"}
    assert rec["finished"] == 1


def test_transcribe_url_command(make_worker, fakes):
    fetcher = fakes.Fetcher()
    worker, rec = make_worker(fetcher=fetcher)

    worker.on_command({"type": "transcribeUrl", "url": "https://example.com/clip.mp3"})

    assert fetcher.urls == ["https://example.com/clip.mp3"]
    assert rec["progress"][0] == ("decode", "active", "Downloading audio...")
    assert rec["result"][0].file_name == "clip.mp3"


def test_cancel_sets_flag_and_logs(make_worker):
    worker, rec = make_worker()

    worker.on_command({"type": "cancel"})

    assert worker.token.is_cancelled
    assert rec["log"] == ["Processing cancelled"]
    assert rec["message"] == [{"type": "log", "data": "Processing cancelled"}]
    assert rec["finished"] == 0


def test_cancel_from_inside_a_job_stops_before_inference(make_worker, fakes):
    holder = {}
    pipe = fakes.Pipe()
    worker, rec = make_worker(
        loader=fakes.Loader(pipe),
        decoder=fakes.Decoder(on_decode=lambda: holder["worker"].cancel()),
    )
    holder["worker"] = worker

    worker.on_command({"type": "transcribe", "file": {"name": "a.wav", "data": b"RIFF"}})

    assert pipe.calls == []
    assert rec["result"] == []
    assert rec["error"] == []
    assert rec["log"] == ["Processing cancelled"]
    assert rec["finished"] == 1


def test_ping_answers_pong(make_worker):
    worker, rec = make_worker()

    worker.on_command({"type": "ping"})

    assert rec["pong"] == 1
    assert rec["message"] == [{"type": "pong"}]


def test_unknown_command_is_ignored(make_worker):
    worker, rec = make_worker()

    worker.on_command({"type": "selfDestruct"})

    assert rec["message"] == []
    assert rec["finished"] == 0


def test_malformed_file_payload_reports_bad_command(make_worker):
    worker, rec = make_worker()

    worker.on_command({"type": "transcribe", "file": {"name": "a.wav"}})

    assert rec["error"] == ["Invalid command: file payload carries no bytes"]
    assert rec["finished"] == 1


def test_missing_path_reports_bad_command(make_worker, tmp_path):
    worker, rec = make_worker()

    worker.on_command({"type": "transcribe", "file": {"path": str(tmp_path / "nope.wav")}})

    assert len(rec["error"]) == 1
    assert rec["error"][0].startswith("Invalid command:")
    assert rec["finished"] == 1


def test_busy_flag_toggles_around_a_job(make_worker):
    worker, rec = make_worker()
    states = []
    worker.busy_changed.connect(states.append)

    worker.on_command({"type": "transcribe", "file": {"name": "a.wav", "data": b"RIFF"}})

    assert states == [True, False]
    assert not worker.is_busy


def test_cancel_before_a_direct_job_applies_to_it(make_worker, fakes):
    pipe = fakes.Pipe()
    worker, rec = make_worker(loader=fakes.Loader(pipe))

    worker.cancel()
    worker.on_command({"type": "transcribe", "file": {"name": "a.wav", "data": b"RIFF"}})

    assert rec["result"] == []
    assert pipe.calls == []
    assert rec["finished"] == 1
    # consumed by that job
    assert not worker.token.is_cancelled


def test_cancel_reaches_a_queued_job_token(make_worker):
    worker, rec = make_worker()
    token = worker.job_token()

    worker.cancel()
    worker.on_queued({"type": "transcribe", "file": {"name": "a.wav", "data": b"RIFF"}}, token)

    assert token.is_cancelled
    assert rec["result"] == []
    assert rec["finished"] == 1


def test_finished_job_token_is_not_cancelled_later(make_worker):
    worker, rec = make_worker()
    token = worker.job_token()
    worker.on_queued({"type": "transcribe", "file": {"name": "a.wav", "data": b"RIFF"}}, token)

    worker.cancel()

    assert len(rec["result"]) == 1
    assert not token.is_cancelled
