"""API key storage.

Keys are scoped per named service (``deepgram``, ``openai``, ...) and
optionally per profile identifier. The backing file is YAML, readable only
by the owner.
"""

import logging
import os
import threading
from pathlib import Path
from typing import Dict, Optional

import yaml

from ..errors import StorageError

logger = logging.getLogger(__name__)


class SecretStore:
    """Small YAML-backed secret store."""

    def __init__(self, path: str):
        self.path = Path(path)
        self.lock = threading.Lock()

    @staticmethod
    def account(service: str, profile_id: Optional[str] = None) -> str:
        return f"{service}_{profile_id}" if profile_id else service

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise StorageError(f"Failed to read secret store {self.path}: {e}") from e
        return data or {}

    def _write(self, data: Dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                yaml.safe_dump(data, f, default_flow_style=False)
        except OSError as e:
            raise StorageError(f"Failed to write secret store {self.path}: {e}") from e

    def get(self, service: str, profile_id: Optional[str] = None) -> Optional[str]:
        """Return the stored key, or None if there is none."""
        with self.lock:
            value = self._read().get(self.account(service, profile_id))
        return str(value) if value else None

    def set(self, service: str, value: str, profile_id: Optional[str] = None) -> None:
        account = self.account(service, profile_id)
        with self.lock:
            data = self._read()
            data[account] = value
            self._write(data)
        logger.info(f"Stored API key for {account}")

    def delete(self, service: str, profile_id: Optional[str] = None) -> None:
        """Remove a key. Deleting a missing key is not an error."""
        account = self.account(service, profile_id)
        with self.lock:
            data = self._read()
            if data.pop(account, None) is None:
                return
            self._write(data)
        logger.info(f"Deleted API key for {account}")

    def resolve_api_key(self, service: str, profile_id: Optional[str] = None) -> Optional[str]:
        """Profile-specific key first, then the service-wide key."""
        if profile_id:
            key = self.get(service, profile_id)
            if key:
                return key
        return self.get(service)
