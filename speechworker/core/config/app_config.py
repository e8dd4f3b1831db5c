# core/config/app_config.py
from __future__ import annotations

import os
import platform
from pathlib import Path
from typing import Any, Dict

import torch

from speechworker.core.services.settings_service import SettingsService, SettingsSnapshot, SettingsError
from speechworker.core.utils.errors import KeyedError


class ConfigError(KeyedError):
    """App configuration error wrapping settings/device issues."""


def _default_home() -> Path:
    env = os.environ.get("SPEECHWORKER_HOME", "").strip()
    return Path(env).expanduser() if env else Path.home() / ".speechworker"


class AppConfig:
    """Global application configuration and metadata."""

    # ----- Static app metadata (not user-configurable) -----

    APP_NAME: str = "speechworker"
    APP_VERSION: str = "0.1.0"

    # ----- Paths -----

    PACKAGE_DIR: Path = Path(__file__).resolve().parents[2]
    RESOURCES_DIR: Path = PACKAGE_DIR / "resources"
    LOCALES_DIR: Path = RESOURCES_DIR / "locales"

    DATA_DIR: Path = _default_home()
    MODELS_DIR: Path = DATA_DIR / "models"
    INPUT_TMP_DIR: Path = DATA_DIR / ".input_tmp"

    # ----- Audio -----

    # Whisper feature extractors expect 16 kHz input; ffmpeg resamples to it.
    MODEL_SAMPLE_RATE: int = 16000

    # ----- Network defaults -----

    NET_TIMEOUT_S: int = 30
    NET_RETRIES: int = 3
    NET_PROXY: str | None = None

    # ----- Device / dtype / runtime -----

    DEVICE: torch.device = torch.device("cpu")
    DTYPE: Any = torch.float32
    DEVICE_FRIENDLY_NAME: str = "CPU"
    DEVICE_KIND: str = "CPU"
    DEVICE_MODEL: str | None = None
    TF32_ENABLED: bool = False

    # Cached settings snapshot
    SETTINGS: SettingsSnapshot | None = None

    # ----- Public initialization -----

    @classmethod
    def initialize(cls, settings: SettingsService | SettingsSnapshot | None = None) -> None:
        """
        Load settings and apply runtime configuration.

        Accepts a ready snapshot (e.g. from SettingsService.load_or_restore)
        or a service to load from. Paths are fixed in code.
        """
        if isinstance(settings, SettingsSnapshot):
            snap = settings
        else:
            ss = settings or SettingsService(cls.DATA_DIR)
            try:
                snap = ss.load()
            except SettingsError as ex:
                raise ConfigError(ex.key, **ex.params) from ex

        cls.SETTINGS = snap

        cls._ensure_dirs()
        cls._apply_network(snap.network)
        cls._setup_device_dtype(user=snap.engine)

    @classmethod
    def set_data_dir(cls, data_dir: Path) -> None:
        """Relocate every data path under data_dir."""
        cls.DATA_DIR = Path(data_dir)
        cls.MODELS_DIR = cls.DATA_DIR / "models"
        cls.INPUT_TMP_DIR = cls.DATA_DIR / ".input_tmp"

    # ----- Apply sections from settings -----

    @classmethod
    def _apply_network(cls, network: Dict[str, Any]) -> None:
        """Retries, timeout and proxy for hub downloads and URL fetches (values already validated)."""
        cls.NET_RETRIES = max(0, int(network.get("retries", cls.NET_RETRIES)))
        cls.NET_TIMEOUT_S = max(1, int(network.get("http_timeout_s", cls.NET_TIMEOUT_S)))
        cls.NET_PROXY = network.get("proxy") or None
        if cls.NET_PROXY:
            # huggingface_hub and urllib both honour the standard proxy variables
            os.environ.setdefault("HTTPS_PROXY", cls.NET_PROXY)
            os.environ.setdefault("HTTP_PROXY", cls.NET_PROXY)

    # ----- Filesystem -----

    @classmethod
    def _ensure_dirs(cls) -> None:
        """Create all required data directories if missing."""
        for p in (cls.DATA_DIR, cls.MODELS_DIR, cls.INPUT_TMP_DIR):
            p.mkdir(parents=True, exist_ok=True)

    # ----- Device / DType -----

    _CUDA_PRECISIONS: Dict[str, Any] = {
        "float32": torch.float32,
        "float16": torch.float16,
        "bfloat16": torch.bfloat16,
    }

    @classmethod
    def _setup_device_dtype(cls, *, user: Dict[str, Any]) -> None:
        """
        Pick the inference device and dtype from engine settings.

        FORCE_CPU=1 in the environment wins over settings. On CUDA,
        precision "auto" means bfloat16 where supported, else float16.
        CPU always runs float32.
        """
        wants_cpu = os.environ.get("FORCE_CPU", "0") == "1" or str(user.get("preferred_device", "auto")).lower() == "cpu"
        use_cuda = not wants_cpu and torch.cuda.is_available()

        if use_cuda:
            cls.DEVICE = torch.device("cuda:0")
            prec = str(user.get("precision", "auto")).lower()
            if prec in cls._CUDA_PRECISIONS:
                cls.DTYPE = cls._CUDA_PRECISIONS[prec]
            else:
                cls.DTYPE = torch.bfloat16 if torch.cuda.is_bf16_supported() else torch.float16
            cls.DEVICE_KIND = "GPU"
            try:
                cls.DEVICE_MODEL = torch.cuda.get_device_name(0)
            except RuntimeError:
                cls.DEVICE_MODEL = None
        else:
            cls.DEVICE = torch.device("cpu")
            cls.DTYPE = torch.float32
            cls.DEVICE_KIND = "CPU"
            cls.DEVICE_MODEL = platform.processor() or None

        cls.DEVICE_FRIENDLY_NAME = f"{cls.DEVICE_KIND} ({cls.DEVICE_MODEL})" if cls.DEVICE_MODEL else cls.DEVICE_KIND

        cls.TF32_ENABLED = use_cuda and bool(user.get("allow_tf32", True))
        if use_cuda:
            torch.backends.cuda.matmul.allow_tf32 = cls.TF32_ENABLED
            torch.backends.cudnn.allow_tf32 = cls.TF32_ENABLED

    # ----- Convenience accessors -----

    @classmethod
    def language(cls) -> str:
        if cls.SETTINGS:
            return str(cls.SETTINGS.app.get("language", "auto"))
        return "auto"

    @classmethod
    def log_level(cls) -> str:
        if cls.SETTINGS:
            return str(cls.SETTINGS.app.get("log_level", "INFO"))
        return "INFO"

    @classmethod
    def model_settings(cls) -> Dict[str, Any]:
        return dict(cls.SETTINGS.model) if cls.SETTINGS else {}

    @classmethod
    def network_settings(cls) -> Dict[str, Any]:
        return dict(cls.SETTINGS.network) if cls.SETTINGS else {}

    @classmethod
    def device_index(cls) -> int:
        """transformers pipeline device: GPU ordinal or -1 for CPU."""
        return 0 if cls.DEVICE.type == "cuda" else -1

    @classmethod
    def net_retries(cls) -> int:
        return cls.NET_RETRIES

    @classmethod
    def net_timeout_s(cls) -> int:
        return cls.NET_TIMEOUT_S

    @classmethod
    def net_proxy(cls) -> str | None:
        return cls.NET_PROXY

    @classmethod
    def resolve_media_pages(cls) -> bool:
        return bool(cls.network_settings().get("resolve_media_pages", True))
