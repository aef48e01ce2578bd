from __future__ import annotations

import logging

from .config import AppSettings, ConfigManager
from .services.key_store import KeyStore
from .storage.backend import TableBackend
from .storage.memory_backend import MemoryBackend
from .storage.supabase_client import SupabaseClient


def create_backend(config: ConfigManager, settings: AppSettings) -> TableBackend:
    if settings.backend == "memory":
        logging.getLogger("App").warning("Using in-memory backend; data is lost on exit")
        return MemoryBackend((settings.employees_table, settings.keys_table, settings.transactions_table))
    return SupabaseClient(config, settings)


def build_store(config: ConfigManager | None = None) -> KeyStore:
    """Composition root: settings -> backend -> store. The caller owns the store."""
    config = config or ConfigManager()
    settings = config.load()
    return KeyStore(create_backend(config, settings), settings)


__all__ = ["create_backend", "build_store"]
