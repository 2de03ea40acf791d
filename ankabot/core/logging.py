import logging
import sys
from typing import Optional

from ankabot.core.config import settings

_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def setup_logging(verbose: bool = False, level: Optional[str] = None) -> None:
    """
    Configure root logging for the CLI.
    Everything goes to stderr so stdout stays reserved for the JSON summary.
    """
    if verbose:
        resolved = logging.DEBUG
    else:
        resolved = logging.getLevelName((level or settings.LOG_LEVEL).upper())
        if not isinstance(resolved, int):
            resolved = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%H:%M:%S"))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(resolved)

    # Third-party chatter stays at WARNING unless explicitly debugging
    for noisy in ("httpx", "httpcore", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.DEBUG if verbose else logging.WARNING)
