import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

DEFAULT_UPSTREAM_URL = "https://openrouter.ai/api/v1/chat/completions"
DEFAULT_MODEL = "google/gemini-2.5-flash"
DEFAULT_ALLOWED_ORIGINS = (
    "https://fitnessmate.netlify.app",
    "http://localhost:5500",
    "http://127.0.0.1:5500",
)

CORS_MODES = ("allowlist", "wildcard", "echo")
ERROR_PASSTHROUGH_MODES = ("json", "raw-text")


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_bool(name: str, default: bool = False) -> bool:
    v = (os.getenv(name) or "").strip().lower()
    if not v:
        return default
    return v in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    return tuple(o.strip() for o in raw.split(",") if o.strip())


@dataclass(frozen=True)
class Settings:
    """Process-wide proxy configuration, built once at startup."""

    api_key: str = ""
    upstream_url: str = DEFAULT_UPSTREAM_URL
    default_model: str = DEFAULT_MODEL
    allowed_origins: Tuple[str, ...] = DEFAULT_ALLOWED_ORIGINS
    cors_mode: str = "allowlist"
    retry_budget: int = 1
    error_passthrough: str = "json"
    timeout_s: float = 60.0
    backoff_ms: int = 300
    preview_chars: int = 1000
    max_body_bytes: int = 50 * 1024 * 1024
    close_connections: bool = True
    client_token: str = ""
    user_agent: str = "fitnessmate-proxy/1.0"
    port: int = 5501
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.cors_mode not in CORS_MODES:
            raise ValueError(f"cors_mode must be one of {CORS_MODES}, got {self.cors_mode!r}")
        if self.error_passthrough not in ERROR_PASSTHROUGH_MODES:
            raise ValueError(
                f"error_passthrough must be one of {ERROR_PASSTHROUGH_MODES}, got {self.error_passthrough!r}"
            )
        if self.retry_budget < 0:
            object.__setattr__(self, "retry_budget", 0)
        if self.timeout_s <= 0:
            object.__setattr__(self, "timeout_s", 60.0)
        if self.preview_chars < 0:
            object.__setattr__(self, "preview_chars", 0)

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    @classmethod
    def from_env(cls, env_dir: Optional[Path] = None) -> "Settings":
        # .env then .env.local; real environment wins over both
        base = env_dir or Path.cwd()
        load_dotenv(base / ".env", override=False)
        load_dotenv(base / ".env.local", override=False)

        settings = cls(
            api_key=_env_str("OPENROUTER_API_KEY"),
            upstream_url=_env_str("OPENROUTER_URL", DEFAULT_UPSTREAM_URL),
            default_model=_env_str("PROXY_DEFAULT_MODEL", DEFAULT_MODEL),
            allowed_origins=_env_list("PROXY_ALLOWED_ORIGINS", DEFAULT_ALLOWED_ORIGINS),
            cors_mode=_env_str("PROXY_CORS_MODE", "allowlist").lower(),
            retry_budget=_env_int("PROXY_RETRY_BUDGET", 1),
            error_passthrough=_env_str("PROXY_ERROR_PASSTHROUGH", "json").lower(),
            timeout_s=_env_float("PROXY_TIMEOUT_S", 60.0),
            backoff_ms=_env_int("PROXY_BACKOFF_MS", 300),
            preview_chars=_env_int("PROXY_PREVIEW_CHARS", 1000),
            max_body_bytes=_env_int("PROXY_MAX_BODY_BYTES", 50 * 1024 * 1024),
            close_connections=_env_bool("PROXY_CLOSE_CONNECTIONS", True),
            client_token=_env_str("PROXY_CLIENT_TOKEN"),
            user_agent=_env_str("PROXY_USER_AGENT", "fitnessmate-proxy/1.0"),
            port=_env_int("PORT", 5501),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
        )
        if not settings.has_api_key:
            logging.getLogger(__name__).warning("OPENROUTER_API_KEY is empty. Proxy will answer 500.")
        return settings


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure root logging once for the process."""
    log_level = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger = logging.getLogger("fitnessmate_proxy")
    logger.info("Logging level set to %s", logging.getLevelName(log_level))
    return logger
