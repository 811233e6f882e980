# Vanguard client: configuration
# Override the API endpoint and client behavior via YAML or environment.

import os
import yaml
from pathlib import Path
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "vanguard.yaml"
DEFAULT_API_BASE_URL = "http://localhost:5000/api"


def ensure_valid_url(url: Optional[str]) -> Optional[str]:
    """Prefix http:// when the URL has no scheme."""
    if not url:
        return None
    if not url.startswith("http://") and not url.startswith("https://"):
        return f"http://{url}"
    return url


@dataclass
class ClientConfig:
    """Runtime configuration for the API client."""

    # Backend
    api_base_url: str = DEFAULT_API_BASE_URL
    timeout: float = 30.0

    # Retry on transport failures (never on HTTP error statuses)
    max_retries: int = 3
    retry_delay: float = 1.0
    backoff_factor: float = 2.0

    # Credentials
    token_path: str = "~/.local/share/vanguard/auth.json"

    # Query cache
    tasks_stale_secs: float = 300.0
    summary_stale_secs: float = 10.0

    # Board
    remark_max_length: int = 30

    def apply_env(self) -> "ClientConfig":
        """Environment variables override file values."""
        base_url = os.environ.get("VANGUARD_API_BASE_URL")
        if base_url:
            self.api_base_url = base_url
        timeout = os.environ.get("VANGUARD_TIMEOUT")
        if timeout:
            self.timeout = float(timeout)
        token_path = os.environ.get("VANGUARD_TOKEN_PATH")
        if token_path:
            self.token_path = token_path
        # An empty base URL falls back to the local backend
        self.api_base_url = (ensure_valid_url(self.api_base_url) or DEFAULT_API_BASE_URL).rstrip("/")
        self.token_path = str(Path(self.token_path).expanduser())
        return self

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ClientConfig":
        """Build from a mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})

    @classmethod
    def load(cls, path: Optional[str] = None) -> "ClientConfig":
        """Load the `api` section of a YAML file, falling back to defaults."""
        cfg_path = Path(path) if path else CONFIG_PATH
        if cfg_path.exists():
            with open(cfg_path, "r") as f:
                data = yaml.safe_load(f) or {}
            cfg = cls.from_dict(data.get("api", data))
        else:
            cfg = cls()
        return cfg.apply_env()
