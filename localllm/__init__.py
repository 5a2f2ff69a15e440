"""
localllm - on-device language model inference.

This package loads a local causal language model, keeps its key/value cache
in an execution context, and generates completions through a
temperature -> top-k -> top-p -> seeded-draw sampler chain.
"""

__version__ = "0.1.0"

from .errors import setup_logging
from .backend import Backend, get_backend
from .config import DownloadConfig, ModelConfig, RuntimeConfig, SamplerConfig
from .downloader import ModelDownloader
from .result import GenerationResult, GenerationStatus, LoadResult
from .session import Session
from .service import InferenceService

__all__ = [
    "Backend",
    "DownloadConfig",
    "GenerationResult",
    "GenerationStatus",
    "InferenceService",
    "LoadResult",
    "ModelDownloader",
    "ModelConfig",
    "RuntimeConfig",
    "SamplerConfig",
    "Session",
    "get_backend",
    "setup_logging",
]
