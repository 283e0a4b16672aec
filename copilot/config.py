"""Configuration management for API keys and runtime settings."""

import logging
import os
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# config.py is in copilot/, .env is in project root
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(env_path, override=True)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def default_app_data_dir() -> Path:
    """Per-user application data directory for persisted settings."""
    if sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))
    return base / "overlay-copilot"


class Config:
    """Application configuration from environment variables."""

    # AI backend
    AI_BACKEND: str = os.getenv("AI_BACKEND", "gemini")  # "gemini" or "gemini-rest"
    GEMINI_API_KEY: Optional[str] = os.getenv("GEMINI_API_KEY")
    GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
    GEMINI_BASE_URL: str = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com")
    GEMINI_TIMEOUT_SECONDS: float = float(os.getenv("GEMINI_TIMEOUT_SECONDS", "90"))
    VERIFY_KEY_ON_START: bool = _env_bool("VERIFY_KEY_ON_START", True)

    # Conversation
    HISTORY_LIMIT: int = int(os.getenv("HISTORY_LIMIT", "10"))

    # Capture sampling (manual-trigger by default)
    AUTO_SAMPLE: bool = _env_bool("AUTO_SAMPLE", False)
    SAMPLE_INTERVAL_MS: int = int(os.getenv("SAMPLE_INTERVAL_MS", "2000"))
    SAMPLE_MIN_INTERVAL_MS: int = int(os.getenv("SAMPLE_MIN_INTERVAL_MS", "1000"))
    MAX_FRAME_WIDTH: int = int(os.getenv("MAX_FRAME_WIDTH", "1280"))
    JPEG_QUALITY: int = int(os.getenv("JPEG_QUALITY", "70"))
    TRANSCRIPT_WINDOW_SECONDS: int = int(os.getenv("TRANSCRIPT_WINDOW_SECONDS", "30"))

    # Audio input
    AUDIO_DEVICE: Optional[str] = os.getenv("AUDIO_DEVICE")
    AUDIO_SAMPLE_RATE: int = int(os.getenv("AUDIO_SAMPLE_RATE", "48000"))

    # Overlay surface
    OVERLAY_RENDERER: str = os.getenv("OVERLAY_RENDERER", "qt")  # "qt" or "headless"
    OVERLAY_WIDTH: int = int(os.getenv("OVERLAY_WIDTH", "400"))
    OVERLAY_HEIGHT: int = int(os.getenv("OVERLAY_HEIGHT", "600"))
    OVERLAY_MARGIN: int = int(os.getenv("OVERLAY_MARGIN", "20"))
    OVERLAY_REQUEST_TIMEOUT: float = float(os.getenv("OVERLAY_REQUEST_TIMEOUT", "5.0"))

    # Control server
    SERVER_HOST: str = os.getenv("SERVER_HOST", "127.0.0.1")
    SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8010"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    APP_DATA_DIR: Path = Path(os.getenv("APP_DATA_DIR") or default_app_data_dir())

    @classmethod
    def settings_path(cls) -> Path:
        return cls.APP_DATA_DIR / "settings.json"

    @classmethod
    def validate(cls) -> list[str]:
        """Validate configuration and return list of missing or invalid settings."""
        missing = []

        if cls.AI_BACKEND not in ("gemini", "gemini-rest"):
            missing.append(f"AI_BACKEND (unsupported value '{cls.AI_BACKEND}')")

        # The key may also be supplied per session from the control surface
        if not cls.GEMINI_API_KEY:
            missing.append("GEMINI_API_KEY (or pass apiKey when starting a session)")

        if cls.OVERLAY_RENDERER not in ("qt", "headless"):
            missing.append(f"OVERLAY_RENDERER (unsupported value '{cls.OVERLAY_RENDERER}')")

        return missing


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=(level or Config.LOG_LEVEL).upper(),
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )
