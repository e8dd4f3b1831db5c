# ui/i18n/translator.py
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Set

from PyQt5 import QtCore

from speechworker.core.utils.errors import KeyedError

FALLBACK_LANG = "en"


class I18nError(KeyedError):
    """Locale file missing or unreadable."""


def _flatten(tree: Dict[str, Any], prefix: str = "") -> Dict[str, str]:
    """Nested message tree -> {"progress.model.ready": "..."}."""
    flat: Dict[str, str] = {}
    for name, node in tree.items():
        if not isinstance(name, str):
            continue
        key = f"{prefix}.{name}" if prefix else name
        if isinstance(node, dict):
            flat.update(_flatten(node, key))
        else:
            flat[key] = str(node)
    return flat


def _read_catalog(path: Path) -> Dict[str, str]:
    try:
        tree = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as ex:
        raise I18nError("error.i18n.locale_invalid", path=str(path), detail=str(ex))
    if not isinstance(tree, dict):
        raise I18nError("error.i18n.locale_invalid", path=str(path), detail="root is not an object")
    return _flatten(tree)


def system_lang_hint() -> str:
    """System UI language as 'ru-ru' / 'en'."""
    lang, _, region = QtCore.QLocale.system().name().partition("_")
    lang = (lang or FALLBACK_LANG).lower()
    return f"{lang}-{region.lower()}" if region else lang


def discover_locales(locales_dir: Path) -> Set[str]:
    codes: Set[str] = set()
    if not Path(locales_dir).is_dir():
        return codes
    for p in Path(locales_dir).glob("*.json"):
        code = p.stem.strip().lower().replace("_", "-")
        if not code:
            continue
        codes.add(code)
        codes.add(code.split("-", 1)[0])
    return codes


def _pick_best(hint: str, available: Iterable[str], fallback: str = FALLBACK_LANG) -> str:
    available = set(available)
    for candidate in (hint, hint.split("-", 1)[0], fallback):
        if candidate in available:
            return candidate
    return min(available) if available else fallback


def _locale_file(locales_dir: Path, lang: str) -> Optional[Path]:
    lang = lang.lower().replace("_", "-")
    for code in (lang, lang.split("-", 1)[0]):
        path = Path(locales_dir) / f"{code}.json"
        if path.exists():
            return path
    return None


class _Catalog:
    """Messages of the active language layered over the fallback language."""

    def __init__(self) -> None:
        self.lang = FALLBACK_LANG
        self.messages: Dict[str, str] = {}

    def install(self, locales_dir: Path, lang: str) -> None:
        path = _locale_file(locales_dir, lang)
        if path is None:
            raise I18nError("error.i18n.locale_not_found", lang=lang, dir=str(locales_dir))

        messages: Dict[str, str] = {}
        fallback = _locale_file(locales_dir, FALLBACK_LANG)
        if fallback is not None and fallback != path:
            messages.update(_read_catalog(fallback))
        messages.update(_read_catalog(path))

        self.messages = messages
        self.lang = lang

    def render(self, key: str, params: Dict[str, Any]) -> str:
        template = self.messages.get(key, key)
        if not params:
            return template
        try:
            return template.format(**params)
        except (KeyError, IndexError, ValueError):
            return template


_CATALOG = _Catalog()


def tr(key: str, **params: Any) -> str:
    """Localized message for key; unknown keys render as the key itself."""
    return _CATALOG.render(key, params)


class Translator:
    @staticmethod
    def load(locales_dir: Path, lang: str) -> None:
        """Load lang (or its base language), raising I18nError when absent."""
        _CATALOG.install(locales_dir, lang)

    @staticmethod
    def load_best(locales_dir: Path, system_first: bool = True, fallback: str = FALLBACK_LANG) -> None:
        available = discover_locales(locales_dir)
        if not available:
            _CATALOG.messages = {}
            return
        hint = system_lang_hint() if system_first else fallback
        _CATALOG.install(locales_dir, _pick_best(hint, available, fallback=fallback))

    @staticmethod
    def load_preferred(locales_dir: Path, preference: str) -> None:
        """'auto' picks from the system locale; anything else loads that language."""
        if not preference or preference.lower() == "auto":
            Translator.load_best(locales_dir)
        else:
            Translator.load(locales_dir, preference)

    @staticmethod
    def tr(key: str, **params: Any) -> str:
        return tr(key, **params)

    @staticmethod
    def current_language() -> str:
        return _CATALOG.lang
