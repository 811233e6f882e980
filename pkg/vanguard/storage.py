"""
Bearer token persistence.

The token lives in a small JSON file so the bot keeps its session across
restarts. A 401 from the backend clears it.
"""
import json
import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_PATH = Path.home() / ".local" / "share" / "vanguard" / "auth.json"


class TokenStore:
    """File-backed store for the auth token."""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path).expanduser() if path else DEFAULT_TOKEN_PATH

    def get(self) -> Optional[str]:
        if not self.path.exists():
            return None
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable token file {self.path}: {e}")
            return None
        token = data.get("authToken") if isinstance(data, dict) else None
        return token or None

    def set(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Atomic write: write to temp, then rename
        tmp_file = self.path.with_suffix(".json.tmp")
        with open(tmp_file, "w") as f:
            json.dump({"authToken": token}, f)
        tmp_file.rename(self.path)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class MemoryTokenStore:
    """In-process token store with the same interface."""

    def __init__(self, token: Optional[str] = None):
        self._token = token

    def get(self) -> Optional[str]:
        return self._token

    def set(self, token: str) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None
