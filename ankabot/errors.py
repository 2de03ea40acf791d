"""Fatal errors raised by ankabot.

Hierarchy:
    AnkabotError (base)
    ├── InvalidUrlError   - URL missing scheme/host or not http(s)
    ├── HttpFetchError    - network failure while HTTP mode was forced
    ├── BrowserLaunchError - headless browser could not be started
    │   └── BrowserContextError - context or page rejected (bad locale, timezone, geolocation)
    ├── OutputWriteError  - artifact destination not writable
    ├── ProfileError      - unreadable cookie file or profile record
    └── WaitStateError    - invalid wait protocol transition

Recoverable conditions (HTTP failure with fallback available, wait timeouts,
single capture failures) never raise; they are recorded on the FetchResult.
"""
from typing import Optional


class AnkabotError(Exception):
    """Base exception for all fatal ankabot errors."""

    kind = "error"
    exit_code = 1

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        self.message = message
        self.url = url
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.url:
            return f"{self.message} (URL: {self.url})"
        return self.message


class InvalidUrlError(AnkabotError):
    kind = "invalid_url"


class HttpFetchError(AnkabotError):
    """Raised when the HTTP attempt fails and browser fallback is disabled."""

    kind = "http_fetch_failed"

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message, url)
        self.status_code = status_code


class BrowserLaunchError(AnkabotError):
    """Raised when Chromium cannot be launched. Not retried."""

    kind = "browser_launch_failed"


class BrowserContextError(BrowserLaunchError):
    """Raised when the browser refuses the context options or cannot open a page."""

    kind = "browser_context_failed"


class OutputWriteError(AnkabotError):
    kind = "output_unwritable"

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class ProfileError(AnkabotError):
    kind = "profile_error"


class WaitStateError(AnkabotError):
    """Raised when an invalid wait state transition is attempted."""

    kind = "wait_state_error"

    def __init__(self, from_state, to_state) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid wait state transition: {from_state.value} -> {to_state.value}")
