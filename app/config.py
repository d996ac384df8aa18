from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

DEFAULT_TOUCHUP_BASE_URL = "https://api.openai.com/v1"
DEFAULT_TOUCHUP_MODEL = "dall-e-2"
DEFAULT_TOUCHUP_SIZE = "1024x1024"


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _float_env(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True, slots=True)
class Settings:
    """
    Process-wide configuration for the meme service.

    Built once at startup and passed explicitly to the components that need
    it, so tests can construct their own instance instead of patching the
    environment.
    """

    openai_api_key: str | None = None
    touchup_model: str = DEFAULT_TOUCHUP_MODEL
    touchup_base_url: str = DEFAULT_TOUCHUP_BASE_URL
    # Seconds allowed for one touch-up call, including retries.
    touchup_timeout: float = 60.0
    # Square canvas the edit model is asked to work on.
    touchup_size: str = DEFAULT_TOUCHUP_SIZE
    touchup_max_retries: int = 1
    touchup_requests_per_minute: int = 30
    touchup_burst: int = 3
    max_upload_bytes: int = 10 * 1024 * 1024

    @property
    def touchup_enabled(self) -> bool:
        return bool(self.openai_api_key)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "Settings":
        """
        Read settings from environment variables.

        Recognised variables: OPENAI_API_KEY, MEME_TOUCHUP_MODEL,
        MEME_TOUCHUP_BASE_URL, MEME_TOUCHUP_TIMEOUT, MEME_TOUCHUP_SIZE,
        MEME_TOUCHUP_RETRIES, MEME_TOUCHUP_RPM, MEME_TOUCHUP_BURST and
        MEME_MAX_UPLOAD_BYTES. Unset or blank values fall back to the defaults.
        """
        env = os.environ if env is None else env
        api_key = (env.get("OPENAI_API_KEY") or "").strip() or None
        return cls(
            openai_api_key=api_key,
            touchup_model=env.get("MEME_TOUCHUP_MODEL", DEFAULT_TOUCHUP_MODEL),
            touchup_base_url=env.get("MEME_TOUCHUP_BASE_URL", DEFAULT_TOUCHUP_BASE_URL).rstrip("/"),
            touchup_timeout=_float_env(env, "MEME_TOUCHUP_TIMEOUT", 60.0),
            touchup_size=(env.get("MEME_TOUCHUP_SIZE") or "").strip() or DEFAULT_TOUCHUP_SIZE,
            touchup_max_retries=max(0, _int_env(env, "MEME_TOUCHUP_RETRIES", 1)),
            touchup_requests_per_minute=max(1, _int_env(env, "MEME_TOUCHUP_RPM", 30)),
            touchup_burst=max(1, _int_env(env, "MEME_TOUCHUP_BURST", 3)),
            max_upload_bytes=_int_env(env, "MEME_MAX_UPLOAD_BYTES", 10 * 1024 * 1024),
        )


def load_settings(env_path: Path | None = None) -> Settings:
    """
    Load `.env` (if present) into the process environment and build Settings.

    Values already exported in the shell take precedence over the file.
    """
    env_path = env_path or Path(__file__).parent.parent / ".env"
    print("\n" + "=" * 60)
    print("🔧 LOADING ENVIRONMENT CONFIGURATION")
    print("=" * 60)
    if env_path.exists():
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=env_path, override=False)
        print(f"✓ .env file loaded from {env_path}")
    else:
        print(f"⚠ .env file not found at: {env_path}")

    settings = Settings.from_env()
    if settings.touchup_enabled:
        print(f"✓ OPENAI_API_KEY loaded: {settings.openai_api_key[:7]}...")
        print(f"✓ Touch-up model: {settings.touchup_model}")
    else:
        print("⚠ OPENAI_API_KEY not set - touch-up DISABLED, deterministic composites only")
    print("=" * 60 + "\n")
    return settings
