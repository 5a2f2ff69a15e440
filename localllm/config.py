"""
Configuration classes for inference sessions.

This module defines the configuration dataclasses used to specify model
loading, sampling and runtime settings.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .constants import (
    DEFAULT_CONTEXT_SIZE,
    DEFAULT_GPU_LAYER_COUNT,
    DEFAULT_MAX_PREDICT_TOKENS,
    DEFAULT_MIN_KEEP,
    DEFAULT_SEED,
    DEFAULT_TEMPERATURE,
    DEFAULT_THREAD_COUNT,
    DEFAULT_TOP_K,
    DEFAULT_TOP_P,
)


@dataclass
class SamplerConfig:
    """Parameters of the sampler chain."""

    temperature: float = DEFAULT_TEMPERATURE
    top_k: int = DEFAULT_TOP_K
    top_p: float = DEFAULT_TOP_P
    min_keep: int = DEFAULT_MIN_KEEP
    seed: int = DEFAULT_SEED


@dataclass
class ModelConfig:
    """Model location and context sizing."""

    model_path: Optional[str] = None
    context_size: int = DEFAULT_CONTEXT_SIZE
    thread_count: int = DEFAULT_THREAD_COUNT
    gpu_layer_count: int = DEFAULT_GPU_LAYER_COUNT
    max_predict_tokens: int = DEFAULT_MAX_PREDICT_TOKENS


@dataclass
class DownloadConfig:
    """Hugging Face Hub source of the model directory."""

    repo_id: Optional[str] = None
    revision: str = "main"
    files: Optional[List[str]] = None  # None lists the repository
    model_version: Optional[str] = None


@dataclass
class RuntimeConfig:
    """Complete configuration for a CLI run or an inference service."""

    model: ModelConfig = field(default_factory=ModelConfig)
    sampling: SamplerConfig = field(default_factory=SamplerConfig)
    download: DownloadConfig = field(default_factory=DownloadConfig)
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuntimeConfig":
        """Build a RuntimeConfig from a validated configuration dictionary."""
        return cls(
            model=ModelConfig(**data.get("model", {})),
            sampling=SamplerConfig(**data.get("sampling", {})),
            download=DownloadConfig(**(data.get("download") or {})),
            log_level=data.get("log_level", "INFO"),
            log_file=data.get("log_file"),
        )
