import os
from typing import Optional


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class Settings:
    # Profile storage
    PROFILE_DB_PATH: str = os.getenv("ANKABOT_PROFILE_DB", os.path.expanduser("~/.ankabot/profiles.sqlite"))
    DEFAULT_PROFILE: str = os.getenv("ANKABOT_PROFILE", "default")

    # HTTP
    REQUEST_TIMEOUT: int = int(os.getenv("ANKABOT_REQUEST_TIMEOUT", "30"))
    MAX_REDIRECTS: int = int(os.getenv("ANKABOT_MAX_REDIRECTS", "10"))
    USER_AGENT: str = os.getenv(
        "ANKABOT_USER_AGENT",
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/127.0.0.0 Safari/537.36",
    )
    ACCEPT_LANGUAGE: Optional[str] = os.getenv("ANKABOT_ACCEPT_LANGUAGE")

    # Playwright / headless rendering
    PLAYWRIGHT_HEADLESS: bool = _flag("ANKABOT_HEADLESS", "1")
    NAVIGATION_TIMEOUT_MS: int = int(os.getenv("ANKABOT_NAVIGATION_TIMEOUT_MS", "30000"))
    VIEWPORT_WIDTH: int = int(os.getenv("ANKABOT_VIEWPORT_WIDTH", "1280"))
    VIEWPORT_HEIGHT: int = int(os.getenv("ANKABOT_VIEWPORT_HEIGHT", "800"))

    # Wait protocol defaults
    MAX_WAIT_MS: int = int(os.getenv("ANKABOT_MAX_WAIT_MS", "12000"))
    NETWORK_IDLE_MS: int = int(os.getenv("ANKABOT_NETWORK_IDLE_MS", "1000"))
    WAIT_READY: str = os.getenv("ANKABOT_WAIT_READY", "complete")
    SELECTOR_POLL_MS: int = int(os.getenv("ANKABOT_SELECTOR_POLL_MS", "100"))
    NETWORK_POLL_MS: int = int(os.getenv("ANKABOT_NETWORK_POLL_MS", "50"))

    # Fallback classifier thresholds
    MIN_BODY_CHARS: int = int(os.getenv("ANKABOT_MIN_BODY_CHARS", "256"))
    MIN_TEXT_RATIO: float = float(os.getenv("ANKABOT_MIN_TEXT_RATIO", "0.05"))

    # Outputs
    PDF_BY_DEFAULT: bool = _flag("ANKABOT_PDF", "1")
    RUN_DIR: Optional[str] = os.getenv("ANKABOT_RUN_DIR")

    # Logging
    LOG_LEVEL: str = os.getenv("ANKABOT_LOG_LEVEL", "INFO")


settings = Settings()
