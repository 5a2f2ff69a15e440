"""
Inference session: ownership of one model/context/sampler triple.

A Session is the unit of state for loading, generating and unloading. Every
public operation takes the session lock, so one session may be shared between
threads; independent sessions do not share state.
"""

import threading
from typing import Optional

from .backend import Backend, get_backend
from .config import ModelConfig, SamplerConfig
from .constants import BATCH_CAPACITY
from .context import Context
from .errors import (
    BackendNotReadyError,
    ContextCreationError,
    ModelLoadError,
    log_exception,
    report_memory_usage,
    session_logger as logger,
)
from .generator import CompletionGenerator
from .model import Model
from .result import GenerationResult, LoadResult
from .samplers import SamplerChain, build_sampler_chain


class Session:
    """Holds at most one live {Model, Context, SamplerChain} triple."""

    def __init__(self, backend: Optional[Backend] = None, sampler_config: Optional[SamplerConfig] = None):
        self.backend = backend or get_backend()
        self.sampler_config = sampler_config or SamplerConfig()
        self.model: Optional[Model] = None
        self.context: Optional[Context] = None
        self.sampler: Optional[SamplerChain] = None
        self._lock = threading.RLock()

    @property
    def is_loaded(self) -> bool:
        return self.model is not None and self.context is not None and self.sampler is not None

    def load(
        self,
        path: str,
        context_size: int,
        thread_count: int,
        gpu_layer_count: int = 0,
    ) -> LoadResult:
        """
        Load weights, allocate a context and build the sampler chain.

        A triple already held by this session is released first.

        Args:
            path: Local model directory
            context_size: Context window in tokens
            thread_count: Compute threads
            gpu_layer_count: Layers to offload to the accelerator

        Returns:
            LoadResult, truthy only once model, context and sampler all exist
        """
        with self._lock:
            try:
                self.backend.require_ready()
            except BackendNotReadyError as e:
                log_exception(e, logger, log_traceback=False)
                return LoadResult(False, e)

            if self.model is not None or self.context is not None or self.sampler is not None:
                logger.warning("Session already holds a model, releasing it before loading")
                self.unload()

            try:
                model = Model.load(path, gpu_layer_count, self.backend)
            except ModelLoadError as e:
                log_exception(e, logger)
                return LoadResult(False, e)
            except Exception as e:
                error = ModelLoadError(
                    f"Unexpected error loading model: {e}",
                    details={"path": path, "cause": type(e).__name__},
                )
                log_exception(error, logger)
                return LoadResult(False, error)

            try:
                context = Context(model, n_ctx=context_size, n_threads=thread_count, n_batch=BATCH_CAPACITY)
            except ContextCreationError as e:
                log_exception(e, logger)
                model.free()
                return LoadResult(False, e)
            except Exception as e:
                error = ContextCreationError(
                    f"Unexpected error creating context: {e}",
                    details={"cause": type(e).__name__},
                )
                log_exception(error, logger)
                model.free()
                return LoadResult(False, error)

            try:
                sampler = build_sampler_chain(self.sampler_config)
            except ValueError as e:
                error = ContextCreationError(f"Invalid sampler configuration: {e}")
                log_exception(error, logger)
                context.free()
                model.free()
                return LoadResult(False, error)
            logger.info(f"Sampler chain initialized: {sampler!r}")

            self.model, self.context, self.sampler = model, context, sampler
            self.backend.register_session()
            report_memory_usage("model load", logger)
            return LoadResult(True)

    def load_config(self, config: ModelConfig) -> LoadResult:
        """Load using a ModelConfig."""
        return self.load(config.model_path, config.context_size, config.thread_count, config.gpu_layer_count)

    def generate(self, prompt: str, max_tokens: int, cancel_event: Optional[threading.Event] = None) -> GenerationResult:
        """Generate a completion. See CompletionGenerator.generate."""
        with self._lock:
            return CompletionGenerator(self.model, self.context, self.sampler).generate(
                prompt, max_tokens, cancel_event
            )

    def unload(self) -> None:
        """Release sampler, context, then model. Safe to call repeatedly."""
        with self._lock:
            was_loaded = self.is_loaded
            if self.sampler is not None:
                self.sampler.free()
                self.sampler = None
            if self.context is not None:
                self.context.free()
                self.context = None
            if self.model is not None:
                self.model.free()
                self.model = None
            if was_loaded:
                self.backend.unregister_session()
                logger.info("Model unloaded")

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unload()

    def __repr__(self) -> str:
        return f"Session(model={self.model!r}, context={self.context!r})"
