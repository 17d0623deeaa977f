"""
config.py — Auditor Configuration
====================================
Defaults come from the environment; a JSON config file and the
command line may override them.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class Settings:
    """Auditor configuration from environment."""

    DATA_DIR: str = os.getenv("AUDITOR_DATA_DIR", "./auditdata")
    INDEX_URL: str = os.getenv("AUDITOR_INDEX_URL", "http://localhost:8500")
    BRIDGE_URL: str = os.getenv("AUDITOR_BRIDGE_URL", "http://localhost:8080")
    BRIDGE_USER: Optional[str] = os.getenv("AUDITOR_BRIDGE_USER")
    BRIDGE_PASSWORD: Optional[str] = os.getenv("AUDITOR_BRIDGE_PASSWORD")
    NODE_CONCURRENCY: int = int(os.getenv("AUDITOR_NODE_CONCURRENCY", "10"))
    SHARD_CONCURRENCY: int = int(os.getenv("AUDITOR_SHARD_CONCURRENCY", "10"))
    INDEX_TIMEOUT: float = float(os.getenv("AUDITOR_INDEX_TIMEOUT", "10"))
    NEGOTIATION_TIMEOUT: float = float(os.getenv("AUDITOR_NEGOTIATION_TIMEOUT", "30"))
    TRANSFER_TIMEOUT: float = float(os.getenv("AUDITOR_TRANSFER_TIMEOUT", "300"))
    INDEX_PAGE_SIZE: int = int(os.getenv("AUDITOR_INDEX_PAGE_SIZE", "100"))
    SAMPLE_MODE: str = os.getenv("AUDITOR_SAMPLE_MODE", "exhaustive")
    DIGEST_ALGORITHM: str = os.getenv("AUDITOR_DIGEST_ALGORITHM", "sha256")
    LOG_LEVEL: str = os.getenv("AUDITOR_LOG_LEVEL", "INFO")
    API_HOST: str = os.getenv("AUDITOR_API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("AUDITOR_API_PORT", "8600"))

    @classmethod
    def field_names(cls):
        return [name for name in vars(cls) if name.isupper()]

    def apply(self, path: Optional[str] = None, data_dir: Optional[str] = None) -> "Settings":
        """
        Override the environment defaults in place.

        Args:
            path: Optional JSON file of {"setting_name": value}. Names are
                matched case-insensitively against the settings above.
            data_dir: Optional data directory, overriding everything else.

        Returns:
            self, for chaining.

        Raises:
            ValueError: If the file is not a JSON object, names an unknown
                setting, or a value has the wrong type.
            OSError: If the file cannot be read.
        """
        if path:
            try:
                raw = json.loads(Path(path).read_text(encoding="utf-8"))
            except json.JSONDecodeError as e:
                raise ValueError(f"Config file {path} is not valid JSON: {e}") from e
            if not isinstance(raw, dict):
                raise ValueError(f"Config file {path} must contain a JSON object")
            known = self.field_names()
            for key, value in raw.items():
                name = str(key).upper()
                if name not in known:
                    raise ValueError(f"Unknown setting {key!r} in {path}")
                setattr(self, name, self._coerce(name, value))
            logger.debug("Loaded %d setting(s) from %s", len(raw), path)
        if data_dir:
            self.DATA_DIR = data_dir
        return self

    @classmethod
    def from_file(cls, path: Optional[str] = None, data_dir: Optional[str] = None) -> "Settings":
        """Fresh settings from the environment plus a config file."""
        return cls().apply(path, data_dir)

    def _coerce(self, name: str, value):
        current = getattr(type(self), name)
        if value is None or current is None:
            return value
        kind = type(current)
        if kind is bool or isinstance(value, bool):
            raise ValueError(f"Setting {name} has the wrong type: {value!r}")
        try:
            return kind(value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Setting {name} has the wrong type: {value!r}") from e

    @property
    def ledger_dir(self) -> str:
        return str(Path(self.DATA_DIR) / "statedb")

    @property
    def shard_dir(self) -> str:
        return str(Path(self.DATA_DIR) / "shards")

    @property
    def bridge_auth(self):
        if self.BRIDGE_USER:
            return (self.BRIDGE_USER, self.BRIDGE_PASSWORD or "")
        return None


settings = Settings()
