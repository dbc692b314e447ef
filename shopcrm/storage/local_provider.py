"""
Filesystem storage for the persisted CRM document.
Each key is one JSON file under the state directory.
"""
import os
from typing import Optional
from pathlib import Path

import structlog

from ..config import settings
from .provider import StateStorage


logger = structlog.get_logger(__name__)


class LocalStateStorage(StateStorage):
    """Local filesystem storage provider."""

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.local_state_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _get_path(self, key: str) -> Path:
        """Get the local filesystem path for a given key."""
        # Remove leading slash and sanitize
        clean_key = key.lstrip("/").replace("..", "").replace("\\", "/").replace("/", "_")
        return self.base_dir / f"{clean_key}.json"

    def read(self, key: str) -> Optional[str]:
        path = self._get_path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def write(self, key: str, content: str) -> None:
        """Write atomically so a crash never leaves a half-written document."""
        path = self._get_path(key)
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)

    def exists(self, key: str) -> bool:
        return self._get_path(key).exists()

    def delete(self, key: str) -> None:
        path = self._get_path(key)
        try:
            if path.exists():
                path.unlink()
        except OSError as e:
            logger.warning("state_delete_failed", key=key, error=str(e))
