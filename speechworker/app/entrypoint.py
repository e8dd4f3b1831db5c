# app/entrypoint.py
from __future__ import annotations

import argparse
import dataclasses
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from PyQt5 import QtCore

from speechworker.core.config.app_config import AppConfig as Config
from speechworker.core.io.text import is_url
from speechworker.core.services.settings_service import SettingsError, SettingsService, SettingsSnapshot
from speechworker.core.utils.logging import setup_logging
from speechworker.ui.i18n.translator import I18nError, Translator, tr
from speechworker.ui.workers.worker_host import WorkerHost

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 130


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog=Config.APP_NAME,
        description="Transcribe an audio file or URL in a background worker.",
    )
    parser.add_argument("source", help="path to a media file or an http(s) URL")
    parser.add_argument("--lang", help="spoken language code, or 'auto' to detect")
    parser.add_argument("--task", choices=("transcribe", "translate"), help="pipeline task")
    parser.add_argument("--model", help="Hugging Face model id (e.g. openai/whisper-small)")
    parser.add_argument("--settings", type=Path, help="settings.json to use")
    parser.add_argument("--home", type=Path, help="data directory (default: $SPEECHWORKER_HOME or ~/.speechworker)")
    parser.add_argument("--ui-lang", help="message language (default: app.language setting)")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser.parse_args(argv)


def _apply_overrides(snap: SettingsSnapshot, args: argparse.Namespace) -> SettingsSnapshot:
    model = dict(snap.model)
    if args.model:
        model["model_id"] = args.model
    if args.lang:
        model["default_language"] = None if args.lang.lower() == "auto" else args.lang
    if args.task:
        model["pipeline_task"] = args.task
    return dataclasses.replace(snap, model=model)


def _load_locales(preference: str) -> None:
    try:
        Translator.load_preferred(Config.LOCALES_DIR, preference)
    except I18nError:
        Translator.load_best(Config.LOCALES_DIR, system_first=False, fallback="en")


def run(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    app = QtCore.QCoreApplication.instance() or QtCore.QCoreApplication(sys.argv[:1])

    if args.home:
        Config.set_data_dir(args.home.expanduser())

    svc = SettingsService(Config.DATA_DIR, settings_path=args.settings)
    try:
        snap, restored, _reason = svc.load_or_restore()
    except SettingsError as ex:
        _load_locales(args.ui_lang or "auto")
        print(tr(ex.key, **ex.params), file=sys.stderr)
        return EXIT_ERROR

    _load_locales(args.ui_lang or str(snap.app.get("language", "auto")))
    logger = setup_logging("DEBUG" if args.verbose else str(snap.app.get("log_level", "INFO")))
    if restored:
        logger.warning(tr("cli.settings_restored", path=str(svc.settings_path)))

    Config.initialize(_apply_overrides(snap, args))
    logger.debug("Device: %s, data dir: %s", Config.DEVICE_FRIENDLY_NAME, Config.DATA_DIR)

    host = WorkerHost()
    outcome = {"code": None, "cancelled": False}

    def _on_progress(step: str, status: str, message: str) -> None:
        print(f"[{step}:{status}] {message}", file=sys.stderr, flush=True)

    def _on_result(res) -> None:
        outcome["code"] = EXIT_OK
        print(res.text, flush=True)

    def _on_error(message: str) -> None:
        outcome["code"] = EXIT_ERROR
        print(message, file=sys.stderr, flush=True)

    def _on_finished() -> None:
        if outcome["code"] is None:
            # no result and no error: cancelled, or nothing was recognized
            outcome["code"] = EXIT_CANCELLED if outcome["cancelled"] else EXIT_OK
        app.quit()

    host.progress.connect(_on_progress)
    host.log.connect(lambda msg: print(msg, file=sys.stderr, flush=True))
    host.result.connect(_on_result)
    host.error.connect(_on_error)
    host.finished.connect(_on_finished)

    def _on_sigint(*_args) -> None:
        outcome["cancelled"] = True
        logging.getLogger("speechworker").info(tr("cli.interrupted"))
        host.cancel()

    signal.signal(signal.SIGINT, _on_sigint)
    # Qt's loop blocks Python signal delivery; wake the interpreter periodically.
    tick = QtCore.QTimer()
    tick.timeout.connect(lambda: None)
    tick.start(200)

    source = args.source.strip()
    if is_url(source):
        QtCore.QTimer.singleShot(0, lambda: host.transcribe_url(source))
    else:
        QtCore.QTimer.singleShot(0, lambda: host.transcribe_file(Path(source).expanduser()))

    app.exec_()
    tick.stop()
    host.shutdown()
    return outcome["code"]


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
