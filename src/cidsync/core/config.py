"""
Configuration management for cidsync.
Handles sync defaults and named endpoint aliases.
"""

from dataclasses import asdict, dataclass, fields
from pathlib import Path
import json
import logging
from typing import Any, Dict, Optional, Union

from cidsync.core.batch import BatchConfig

logger = logging.getLogger(__name__)


@dataclass
class SyncDefaults:
    """Default values for sync options"""
    batch_size: int = BatchConfig.MAX_CIDS_PER_BATCH  # CIDs synced concurrently
    timeout: Optional[float] = None  # Request timeout in seconds, None waits forever
    retries: int = BatchConfig.DEFAULT_RETRIES  # Extra attempts per request
    retry_backoff: float = BatchConfig.RETRY_BACKOFF  # Base delay between retries
    count_upload_failure_twice: bool = BatchConfig.COUNT_UPLOAD_FAILURE_TWICE


class ConfigManager:
    """Manages cidsync configuration"""

    URL_SCHEMES = ("http://", "https://")

    def __init__(self, config_dir: Optional[Union[str, Path]] = None):
        """
        Initialize configuration manager

        Args:
            config_dir: Directory holding config.json (default: ~/.config/cidsync)
        """
        if config_dir is None:
            config_dir = Path.home() / ".config" / "cidsync"
        self.config_dir = Path(config_dir)
        self.config_file = self.config_dir / "config.json"
        self.defaults = SyncDefaults()
        self.endpoints: Dict[str, str] = {}
        self._load_config()

    def _load_config(self):
        """Load configuration from file"""
        if not self.config_file.exists():
            return

        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                data = json.load(f)

            known = {f.name for f in fields(SyncDefaults)}
            defaults = {
                key: self._coerce(key, value)
                for key, value in data.get("defaults", {}).items()
                if key in known
            }
            self.defaults = SyncDefaults(**defaults)
            self.endpoints = dict(data.get("endpoints", {}))
        except (OSError, ValueError, AttributeError, TypeError) as e:
            logger.warning(f"Failed to load config {self.config_file}: {e}")
            self.defaults = SyncDefaults()
            self.endpoints = {}

    def _save_config(self):
        """Save configuration to file"""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        data = {
            "defaults": asdict(self.defaults),
            "endpoints": self.endpoints,
        }
        with open(self.config_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=4)

    @classmethod
    def normalize_url(cls, url: str) -> str:
        """Validate an endpoint URL and strip the trailing slash"""
        url = url.strip()
        if not url.startswith(cls.URL_SCHEMES):
            raise ValueError(
                f"Endpoint '{url}' must start with http:// or https://"
            )
        return url.rstrip("/")

    def set_endpoint(self, name: str, url: str):
        """Add or replace a named endpoint"""
        self.endpoints[name] = self.normalize_url(url)
        self._save_config()

    def remove_endpoint(self, name: str):
        """Remove a named endpoint"""
        if name not in self.endpoints:
            raise KeyError(f"Unknown endpoint: {name}")
        del self.endpoints[name]
        self._save_config()

    def get_endpoints(self) -> Dict[str, str]:
        """Get all named endpoints"""
        return dict(self.endpoints)

    def resolve_endpoint(self, value: str) -> str:
        """Resolve an endpoint alias; anything else is used as a URL"""
        if value in self.endpoints:
            return self.endpoints[value]
        return self.normalize_url(value)

    def set_default(self, key: str, value: Any):
        """Set a sync default"""
        field_types = {f.name: f.type for f in fields(SyncDefaults)}
        if key not in field_types:
            raise KeyError(
                f"Unknown setting '{key}'. Valid settings: {', '.join(sorted(field_types))}"
            )
        setattr(self.defaults, key, self._coerce(key, value))
        self._save_config()

    @staticmethod
    def _coerce(key: str, value: Any) -> Any:
        """Convert a setting to its type, rejecting out of range values"""
        if key == "count_upload_failure_twice":
            if isinstance(value, bool):
                return value
            lowered = str(value).lower()
            if lowered in ("1", "true", "yes", "on"):
                return True
            if lowered in ("0", "false", "no", "off"):
                return False
            raise ValueError(f"Invalid boolean for {key}: {value}")

        if isinstance(value, bool):
            raise ValueError(f"Invalid value for {key}: {value}")

        if key in ("batch_size", "retries"):
            if isinstance(value, float) and not value.is_integer():
                raise ValueError(f"Invalid value for {key}: {value}")
            number = int(value)
            if number < (1 if key == "batch_size" else 0):
                raise ValueError(f"Invalid value for {key}: {value}")
            return number

        if key == "timeout":
            if value is None or (isinstance(value, str) and value.lower() in ("", "none")):
                return None
            number = float(value)
            if number <= 0:
                raise ValueError(f"Invalid value for {key}: {value}")
            return number

        number = float(value)
        if number < 0:
            raise ValueError(f"Invalid value for {key}: {value}")
        return number
