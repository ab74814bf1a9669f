"""Process-wide onnxruntime environment.

The environment is never initialized at import time. Callers initialize it
explicitly (a second call is a no-op) and tear it down explicitly, which
keeps tests free to create and destroy it as they please.
"""

import ctypes
import threading
from typing import List, Optional, Sequence

import onnxruntime as ort
import structlog

from flagembed.common.errors import RuntimeEnvironmentError

logger = structlog.get_logger("runtime_environment")

CPU_PROVIDER = "CPUExecutionProvider"
# onnxruntime severity: 0 verbose, 1 info, 2 warning, 3 error, 4 fatal
DEFAULT_LOG_SEVERITY = 3


class RuntimeEnvironment:
    """Handle over the engine's process-wide state."""

    def __init__(self):
        self._lock = threading.Lock()
        self._initialized = False
        self._library = None
        self.providers: List[str] = [CPU_PROVIDER]

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(
        self,
        library_path: Optional[str] = None,
        providers: Optional[Sequence[str]] = None,
        log_severity: int = DEFAULT_LOG_SEVERITY,
    ) -> None:
        """Initialize the environment once.

        Parameters
        - library_path: Shared library loaded into the process with ``RTLD_GLOBAL``
          before any session is created. The onnxruntime package always runs its
          own bundled engine, so this does not swap the engine out; it only makes
          the library's symbols available, e.g. for custom operators or
          execution-provider dependencies
        - providers: Requested execution providers; unavailable ones are dropped
        - log_severity: onnxruntime default logger severity
        """
        with self._lock:
            if self._initialized:
                return

            if library_path:
                try:
                    self._library = ctypes.CDLL(library_path, mode=ctypes.RTLD_GLOBAL)
                except OSError as exc:
                    raise RuntimeEnvironmentError(
                        f"failed to load inference runtime library {library_path}: {exc}"
                    ) from exc

            ort.set_default_logger_severity(log_severity)
            self.providers = self._select_providers(providers)
            self._initialized = True

        logger.info(
            "Inference environment initialized",
            onnxruntime_version=ort.__version__,
            providers=self.providers,
            library_path=library_path,
        )

    def destroy(self) -> None:
        """Tear the environment down; safe to call when not initialized."""
        with self._lock:
            if not self._initialized:
                return
            self._initialized = False
            self._library = None
            self.providers = [CPU_PROVIDER]
        logger.info("Inference environment destroyed")

    @staticmethod
    def _select_providers(requested: Optional[Sequence[str]]) -> List[str]:
        available = set(ort.get_available_providers())
        selected = [name for name in (requested or [CPU_PROVIDER]) if name in available]
        dropped = [name for name in (requested or []) if name not in available]
        if dropped:
            logger.warning("Execution providers unavailable", dropped=dropped, available=sorted(available))
        return selected or [CPU_PROVIDER]


_environment: Optional[RuntimeEnvironment] = None
_environment_lock = threading.Lock()


def get_runtime_environment() -> RuntimeEnvironment:
    """Return the process-wide environment handle (not initialized)."""
    global _environment
    with _environment_lock:
        if _environment is None:
            _environment = RuntimeEnvironment()
        return _environment
