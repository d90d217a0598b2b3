"""Persistence: chunk files, entity store and API key storage."""

from .file_manager import FileManager
from .object_store import ObjectStore
from .secret_store import SecretStore

__all__ = [
    "FileManager",
    "ObjectStore",
    "SecretStore",
]
