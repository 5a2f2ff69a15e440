"""
Inference service for generating clinical notes from transcripts.

The service owns a Session and runs every operation on a single worker
thread, so callers on latency-sensitive threads can submit work and get a
future back while download/load/generate/unload stay serialized.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from .backend import Backend, get_backend
from .config import RuntimeConfig
from .downloader import ModelDownloader, ModelInfo, ProgressCallback
from .errors import GenerationError, InvalidStateError, ModelDownloadError, log_exception, service_logger as logger
from .session import Session
from .templates import PromptTemplateGenerator


class InferenceService:
    """Downloads and loads a model on demand and turns transcripts into clinical notes."""

    def __init__(self, config: RuntimeConfig, backend: Optional[Backend] = None):
        self.config = config
        self.backend = backend or get_backend()
        self.session = Session(self.backend, config.sampling)
        self.downloader = ModelDownloader(config.model.model_path, config.download)
        self.templates = PromptTemplateGenerator()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="localllm")
        self._initialized = False
        self._closed = False

    def _submit(self, fn, *args) -> Future:
        if self._closed:
            raise InvalidStateError("Inference service is closed")
        return self._executor.submit(fn, *args)

    def is_ready(self) -> bool:
        return self._initialized and self.session.is_loaded

    def is_model_downloaded(self) -> bool:
        return self.downloader.is_model_downloaded()

    def initialize(self, on_progress: Optional[ProgressCallback] = None) -> bool:
        """
        Fetch the model if needed, initialize the backend and load it.

        Args:
            on_progress: Download progress callback (0.0 to 1.0)
        """
        return self._submit(self._initialize, on_progress).result()

    def _initialize(self, on_progress: Optional[ProgressCallback] = None) -> bool:
        if self.is_ready():
            logger.debug("Model already initialized")
            return True

        model_config = self.config.model
        if self.downloader.enabled:
            try:
                self.downloader.download_if_needed(on_progress)
            except ModelDownloadError as e:
                log_exception(e, logger)
                return False

        logger.info(f"Initializing model from {model_config.model_path}")
        self.backend.init()

        result = self.session.load_config(model_config)
        if not result:
            logger.error(f"Failed to load model: {result.error}")
            self.backend.shutdown()
            self._initialized = False
            return False

        self._initialized = True
        logger.info("Model initialized successfully")
        return True

    def submit_notes(self, transcript: str) -> Future:
        """Queue a clinical-notes generation and return its future."""
        return self._submit(self._generate_notes, transcript)

    def generate_notes(self, transcript: str) -> str:
        """
        Generate clinical notes from transcription text.

        Args:
            transcript: Combined transcription text from the session

        Returns:
            Generated clinical notes

        Raises:
            InvalidStateError: If the model cannot be initialized or the
                service is closed
            ValueError: If the transcript is blank
            GenerationError: If the model returns an empty response
        """
        return self.submit_notes(transcript).result()

    def _generate_notes(self, transcript: str) -> str:
        if not self.is_ready():
            logger.warning("Model not initialized, attempting initialization...")
            if not self._initialize():
                raise InvalidStateError("Failed to initialize model")

        if not transcript or not transcript.strip():
            raise ValueError("Transcript is empty")

        logger.info(f"Generating clinical notes for transcript of length: {len(transcript)}")
        prompt = self.templates.create_clinical_notes_prompt(transcript)
        logger.debug(f"Prompt: {prompt}")

        result = self.session.generate(prompt, self.config.model.max_predict_tokens)
        text = result.text.strip()
        if not text:
            raise GenerationError(
                "Model returned an empty response",
                details={"status": result.status.value},
            )

        if result.truncated:
            logger.warning(f"Generation truncated after {result.n_generated} tokens")
        logger.info(f"Clinical notes generated successfully, length: {len(text)}")
        return text

    def get_model_info(self) -> ModelInfo:
        return self.downloader.get_model_info()

    def get_model_version(self) -> str:
        return self.downloader.get_model_version()

    def clear_model_cache(self) -> bool:
        """Delete downloaded model files. A loaded model stays usable."""
        return self._submit(self.downloader.clear_cache).result()

    def release(self) -> None:
        """Release model and backend resources. The next request re-initializes."""
        if self._closed:
            return
        self._executor.submit(self._release).result()

    def _release(self) -> None:
        if not self._initialized:
            return
        try:
            self.session.unload()
            self.backend.shutdown()
            logger.info("Model released")
        except RuntimeError as e:
            logger.error(f"Error releasing model: {e}")
        finally:
            self._initialized = False

    def close(self) -> None:
        """Release resources and stop the worker. Idempotent."""
        if self._closed:
            return
        try:
            self.release()
        finally:
            self._closed = True
            self._executor.shutdown(wait=True)

    def __enter__(self) -> "InferenceService":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
