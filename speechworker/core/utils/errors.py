# core/utils/errors.py
from __future__ import annotations

from typing import Any, Dict


class KeyedError(RuntimeError):
    """Error carrying a translation key + params (UI will localize)."""

    def __init__(self, key: str, **params: Any) -> None:
        self.key = key
        self.params: Dict[str, Any] = params
        super().__init__(key)

    def __str__(self) -> str:
        detail = self.params.get("detail")
        return f"{self.key}: {detail}" if detail else self.key


class OperationCancelled(Exception):
    """Raised at a checkpoint once the cancellation flag is set."""
