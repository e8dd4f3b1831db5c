# core/services/settings_service.py
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from speechworker.core.utils.errors import KeyedError

_DEFAULTS_PATH = Path(__file__).resolve().parents[1] / "config" / "defaults.json"

USER_SECTIONS: Tuple[str, ...] = ("app", "engine", "model", "network")

# Keys whose restore is safe: the file itself is absent or unreadable.
_RESTORABLE = (
    "error.settings.settings_missing",
    "error.settings.settings_invalid",
    "error.settings.json_invalid",
)


class SettingsError(KeyedError):
    """Settings error carrying a translation key + params (UI will localize)."""


@dataclass(frozen=True)
class SettingsSnapshot:
    """Immutable snapshot of validated settings."""

    app: Dict[str, Any]
    engine: Dict[str, Any]
    model: Dict[str, Any]
    network: Dict[str, Any]

    def as_dict(self) -> Dict[str, Dict[str, Any]]:
        return {sec: dict(getattr(self, sec)) for sec in USER_SECTIONS}


# ----- Field checkers -----

Check = Callable[[Any, str], Any]


def _text(val: Any, field: str) -> str:
    if not isinstance(val, str) or not val.strip():
        raise SettingsError("error.type.string_nonempty", field=field)
    return val.strip()


def _optional_text(val: Any, field: str) -> Optional[str]:
    if val is None:
        return None
    if not isinstance(val, str):
        raise SettingsError("error.type.string_nonempty", field=field)
    return val.strip() or None


def _flag(val: Any, field: str) -> bool:
    if not isinstance(val, bool):
        raise SettingsError("error.type.bool", field=field)
    return val


def _int(minimum: int) -> Check:
    def check(val: Any, field: str) -> int:
        # bool is an int subclass
        if not isinstance(val, int) or isinstance(val, bool):
            raise SettingsError("error.type.int", field=field)
        if val < minimum:
            raise SettingsError("error.type.int_min", field=field, minimum=minimum)
        return val
    return check


def _choice(*allowed: str, upper: bool = False) -> Check:
    def check(val: Any, field: str) -> str:
        s = str(val).strip().lower()
        if s not in allowed:
            raise SettingsError("error.type.enum_invalid", field=field, value=s, allowed=", ".join(allowed))
        return s.upper() if upper else s
    return check


_FIELDS: Dict[str, Dict[str, Check]] = {
    "app": {
        "language": _text,
        "log_level": _choice("debug", "info", "warning", "error", upper=True),
    },
    "engine": {
        "preferred_device": _choice("auto", "cpu", "gpu"),
        "precision": _choice("auto", "float32", "float16", "bfloat16"),
        "allow_tf32": _flag,
    },
    "model": {
        "model_id": _text,
        "local_models_only": _flag,
        "use_safetensors": _flag,
        "low_cpu_mem_usage": _flag,
        "chunk_length_s": _int(1),
        "stride_length_s": _int(0),
        "pipeline_task": _choice("transcribe", "translate"),
        "default_language": _optional_text,
        "return_timestamps": _flag,
    },
    "network": {
        "http_timeout_s": _int(1),
        "retries": _int(0),
        "proxy": _optional_text,
        "resolve_media_pages": _flag,
    },
}


def _check_model(model: Dict[str, Any]) -> None:
    # Overlapping strides on both sides must leave part of every chunk.
    if model["stride_length_s"] * 2 >= model["chunk_length_s"]:
        raise SettingsError(
            "error.settings.stride_too_long",
            chunk=model["chunk_length_s"],
            stride=model["stride_length_s"],
        )


class SettingsService:
    """
    Loads and validates settings.json against the packaged defaults.json.

    Every section (app, engine, model, network) must carry all keys present in
    defaults.json. Values are checked per field; unknown keys are dropped.
    """

    def __init__(
        self,
        data_dir: Optional[Path] = None,
        *,
        defaults_path: Optional[Path] = None,
        settings_path: Optional[Path] = None,
    ) -> None:
        data_dir = Path(data_dir) if data_dir else Path.cwd()
        self._defaults_path = Path(defaults_path) if defaults_path else _DEFAULTS_PATH
        self._settings_path = Path(settings_path) if settings_path else data_dir / "settings.json"

    @property
    def settings_path(self) -> Path:
        return self._settings_path

    # ----- I/O -----

    @staticmethod
    def _read_json(path: Path) -> Dict[str, Any]:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as ex:
            raise SettingsError("error.settings.json_invalid", path=str(path), detail=str(ex))
        if not isinstance(data, dict):
            raise SettingsError("error.settings.settings_invalid", path=str(path), detail="root is not an object")
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        self._settings_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._settings_path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self._settings_path)

    def _defaults_raw(self) -> Dict[str, Any]:
        if not self._defaults_path.exists():
            raise SettingsError("error.settings.defaults_missing", path=str(self._defaults_path))
        return self._read_json(self._defaults_path)

    # ----- Validation -----

    @staticmethod
    def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
        sec = raw.get(name)
        if not isinstance(sec, dict):
            raise SettingsError("error.settings.section_invalid", section=name)
        return sec

    def _validate(self, raw: Dict[str, Any], defaults: Dict[str, Any]) -> SettingsSnapshot:
        out: Dict[str, Dict[str, Any]] = {}
        for name in USER_SECTIONS:
            src = self._section(raw, name)
            schema = self._section(defaults, name)
            fields = _FIELDS[name]
            missing = sorted((set(schema) | set(fields)) - set(src))
            if missing:
                raise SettingsError("error.settings.missing_keys", section=name, keys=", ".join(missing))
            out[name] = {key: fields[key](src[key], f"{name}.{key}") for key in fields}
        _check_model(out["model"])
        return SettingsSnapshot(**out)

    # ----- Public API -----

    def defaults(self) -> SettingsSnapshot:
        """Validated snapshot of defaults.json alone."""
        defaults = self._defaults_raw()
        return self._validate(defaults, defaults)

    def load(self) -> SettingsSnapshot:
        defaults = self._defaults_raw()
        if not self._settings_path.exists():
            raise SettingsError("error.settings.settings_missing", path=str(self._settings_path))
        return self._validate(self._read_json(self._settings_path), defaults)

    def restore_defaults(self, sections: Optional[Iterable[str]] = None) -> None:
        """Overwrite chosen sections (all by default) in settings.json with defaults."""
        defaults = self._defaults_raw()
        wanted = USER_SECTIONS if sections is None else [s for s in sections if s in USER_SECTIONS]

        data: Dict[str, Any] = {}
        if self._settings_path.exists():
            try:
                data = self._read_json(self._settings_path)
            except SettingsError:
                data = {}
        for name in wanted:
            data[name] = self._section(defaults, name)
        self._write(data)

    def load_or_restore(self) -> Tuple[SettingsSnapshot, bool, str]:
        """
        Load settings; if the user file is missing or unreadable, rewrite it from
        defaults and load again. Returns (snapshot, restored, reason_key).
        Field-level validation errors are raised as-is.
        """
        try:
            return self.load(), False, ""
        except SettingsError as ex:
            if ex.key not in _RESTORABLE:
                raise
            self.restore_defaults()
            return self.load(), True, ex.key

    def save_sections(self, **sections: Optional[Dict[str, Any]]) -> SettingsSnapshot:
        """
        Validate and write the given sections (app=, engine=, model=, network=).

        Sections not passed keep their current value, or the default when
        settings.json does not exist yet. Nothing is written on error.
        """
        unknown = set(sections) - set(USER_SECTIONS)
        if unknown:
            raise SettingsError("error.settings.section_invalid", section=", ".join(sorted(unknown)))

        defaults = self._defaults_raw()
        base = self._read_json(self._settings_path) if self._settings_path.exists() else defaults
        merged = {
            name: sections[name] if sections.get(name) is not None else base.get(name, defaults.get(name))
            for name in USER_SECTIONS
        }
        snap = self._validate(merged, defaults)
        self._write(snap.as_dict())
        return snap
