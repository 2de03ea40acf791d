import json
import logging
import os
from pathlib import Path
from typing import Any, Dict

from ankabot.errors import OutputWriteError

logger = logging.getLogger(__name__)


class ArtifactWriter:
    """Writes capture payloads to disk, creating parent directories."""

    def save(self, data: bytes, path: str) -> str:
        target = Path(path).expanduser()
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise OutputWriteError(f"Cannot write {target}: {e.strerror or e}", str(target))
        logger.info("saved %s (%d bytes)", target, len(data))
        return str(target.resolve())

    def save_json(self, payload: Dict[str, Any], path: str) -> str:
        data = json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8")
        return self.save(data, path)

    def ensure_dir(self, path: str) -> str:
        try:
            os.makedirs(path, exist_ok=True)
        except OSError as e:
            raise OutputWriteError(f"Cannot create run directory {path}: {e.strerror or e}", path)
        return os.path.realpath(path)
