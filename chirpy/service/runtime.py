from __future__ import annotations

import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from chirpy.config import get_settings, reset_settings_cache
from chirpy.logging import get_logger
from chirpy.service.auth import AuthService
from chirpy.service.metrics import HitCounter
from chirpy.storage.memory import MemoryStore
from chirpy.storage.postgres import PostgresStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a DSN for safe logging."""
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        store_type = "memory" if self.settings.use_memory_store else "postgres"
        logger.info(
            "runtime_init_started",
            store_type=store_type,
            platform=self.settings.platform.value,
            test_mode=self.settings.test_mode,
        )
        try:
            self.store = (
                MemoryStore(state_dir=self.settings.state_dir)
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                database_url=_mask_url_password(self.settings.database_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        self.auth = AuthService(self.store, self.settings)
        self.hits = HitCounter()
        logger.info("runtime_initialized", store_type=store_type)

    def close(self) -> None:
        if isinstance(self.store, PostgresStore):
            self.store.close()


runtime: Runtime | None = None
# Thread-safe singleton pattern using a lock
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton using double-checked locking."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None:
            runtime.close()
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
