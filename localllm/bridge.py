"""
Boundary operations over a process-wide default session.

These functions keep the flat contract exposed to host applications: a
boolean for load and a plain string for generation, with failure details in
the logs only. Use Session directly for structured results.
"""

from typing import Optional

from . import backend
from .session import Session

_session: Optional[Session] = None


def get_session() -> Session:
    """Return the default session, creating it on first use."""
    global _session
    if _session is None:
        _session = Session()
    return _session


def backend_init() -> None:
    """Initialize the compute backend. Must precede every other call."""
    backend.init()


def backend_free() -> None:
    """Free the compute backend. Call after unload()."""
    backend.shutdown()


def load_model(path: str, context_size: int, thread_count: int, gpu_layer_count: int) -> bool:
    return get_session().load(path, context_size, thread_count, gpu_layer_count).success


def generate_completion(prompt: str, max_tokens: int) -> str:
    return get_session().generate(prompt, max_tokens).text


def unload() -> None:
    if _session is not None:
        _session.unload()
