"""
Process-wide compute backend lifecycle.

The backend owns device detection and routes the log output of the libraries
doing the heavy lifting (transformers, torch) into the localllm loggers.
"""

import gc
import logging
import threading
from typing import List, Optional

import torch
from transformers.utils import logging as hf_logging

from .errors import BackendNotReadyError, backend_logger as logger

# Third-party loggers whose records are forwarded by the sink
ROUTED_LOGGERS = ("torch",)


class BackendLogSink(logging.Handler):
    """Forward backend library records to the localllm backend logger.

    Records at ERROR and above go to the error channel, everything else to
    the informational channel.
    """

    def __init__(self, target: logging.Logger = logger):
        super().__init__(level=logging.DEBUG)
        self.target = target

    def emit(self, record: logging.LogRecord) -> None:
        try:
            text = record.getMessage().rstrip()
        except Exception:
            self.handleError(record)
            return
        if not text:
            return
        if record.levelno >= logging.ERROR:
            self.target.error(f"[{record.name}] {text}")
        else:
            self.target.info(f"[{record.name}] {text}")


class Backend:
    """Shared compute backend: log routing plus device detection."""

    def __init__(self):
        self._initialized = False
        self._device: Optional[torch.device] = None
        self._sink: Optional[BackendLogSink] = None
        self._routed: List[logging.Logger] = []
        self._live_sessions = 0
        self._sessions_lock = threading.Lock()

    @property
    def live_sessions(self) -> int:
        """Number of sessions currently holding a loaded model."""
        with self._sessions_lock:
            return self._live_sessions

    def register_session(self) -> int:
        with self._sessions_lock:
            self._live_sessions += 1
            return self._live_sessions

    def unregister_session(self) -> int:
        with self._sessions_lock:
            self._live_sessions = max(0, self._live_sessions - 1)
            return self._live_sessions

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def device(self) -> torch.device:
        if not self._initialized:
            raise BackendNotReadyError("Backend not initialized; call init() first")
        return self._device

    @property
    def has_accelerator(self) -> bool:
        return self._initialized and self._device.type != "cpu"

    def require_ready(self) -> None:
        if not self._initialized:
            raise BackendNotReadyError("Backend not initialized; call init() first")

    def init(self) -> None:
        """Install the log sink and initialize the compute backend."""
        if self._initialized:
            logger.info("Backend already initialized")
            return

        self._sink = BackendLogSink()
        hf_logging.add_handler(self._sink)
        self._routed = []
        for name in ROUTED_LOGGERS:
            routed = logging.getLogger(name)
            routed.addHandler(self._sink)
            self._routed.append(routed)

        if torch.cuda.is_available():
            self._device = torch.device("cuda")
            logger.info(f"Backend initialized on cuda ({torch.cuda.get_device_name(0)})")
        else:
            self._device = torch.device("cpu")
            logger.info(f"Backend initialized on cpu ({torch.get_num_threads()} threads available)")

        self._initialized = True

    def shutdown(self) -> None:
        """Release backend-wide resources. Never raises."""
        if not self._initialized:
            logger.info("Backend not initialized, nothing to free")
            return
        live = self.live_sessions
        if live > 0:
            logger.warning(f"Backend freed while {live} session(s) still loaded")

        try:
            gc.collect()
            if self._device.type == "cuda":
                torch.cuda.empty_cache()
        except RuntimeError as e:
            logger.error(f"Failed to release backend resources: {e}")

        if self._sink is not None:
            hf_logging.remove_handler(self._sink)
            for routed in self._routed:
                routed.removeHandler(self._sink)
        self._sink = None
        self._routed = []
        self._device = None
        self._initialized = False
        logger.info("Backend freed")


_default_backend = Backend()


def get_backend() -> Backend:
    """Return the process-wide backend instance."""
    return _default_backend


def init() -> None:
    _default_backend.init()


def shutdown() -> None:
    _default_backend.shutdown()
