"""
Model download and local cache management.

Fetches a model directory from the Hugging Face Hub on first use. Files are
staged in a sibling ``.partial`` directory and moved into place only once
every file has arrived, so an interrupted download never looks complete.
"""

import fnmatch
import os
import shutil
from dataclasses import dataclass
from typing import Callable, List, Optional

from huggingface_hub import get_token, hf_hub_download, list_repo_files
from huggingface_hub.errors import HfHubHTTPError

from .config import DownloadConfig
from .errors import ModelDownloadError, service_logger as logger

# Files needed to load weights and tokenizer
MODEL_FILE_PATTERNS = ("*.json", "*.safetensors", "*.bin", "*.model", "*.txt", "*.tiktoken")
WEIGHT_FILE_PATTERNS = ("*.safetensors", "*.bin")

ProgressCallback = Callable[[float], None]


@dataclass
class ModelInfo:
    """What is cached locally for the configured model."""

    exists: bool
    size_bytes: int
    path: str

    @property
    def size_mb(self) -> float:
        return self.size_bytes / (1024 * 1024)


def _matches(name: str, patterns) -> bool:
    return any(fnmatch.fnmatch(os.path.basename(name), pattern) for pattern in patterns)


class ModelDownloader:
    """Keeps a local model directory in sync with a Hub repository."""

    def __init__(self, model_dir: str, config: Optional[DownloadConfig] = None):
        self.model_dir = model_dir
        self.config = config or DownloadConfig()

    @property
    def enabled(self) -> bool:
        return bool(self.config.repo_id)

    @property
    def partial_dir(self) -> str:
        return os.path.normpath(self.model_dir) + ".partial"

    def is_model_downloaded(self) -> bool:
        """True when the directory holds a config and a non-empty weight file."""
        if not os.path.isfile(os.path.join(self.model_dir, "config.json")):
            return False
        for name in os.listdir(self.model_dir):
            path = os.path.join(self.model_dir, name)
            if _matches(name, WEIGHT_FILE_PATTERNS) and os.path.getsize(path) > 0:
                return True
        return False

    def _token(self) -> Optional[str]:
        return os.environ.get("HF_HUB_TOKEN") or get_token()

    def _files_to_fetch(self, token: Optional[str]) -> List[str]:
        if self.config.files:
            return list(self.config.files)

        files = [
            name for name in list_repo_files(self.config.repo_id, revision=self.config.revision, token=token)
            if _matches(name, MODEL_FILE_PATTERNS)
        ]
        # Prefer safetensors weights over pickled ones
        if any(_matches(name, ("*.safetensors",)) for name in files):
            files = [name for name in files if not _matches(name, ("*.bin",))]
        return files

    def download_if_needed(self, on_progress: Optional[ProgressCallback] = None) -> str:
        """
        Download the model unless it is already cached.

        Args:
            on_progress: Called with the completed fraction (0.0 to 1.0)

        Returns:
            The local model directory

        Raises:
            ModelDownloadError: If no repository is configured or a file
                cannot be fetched
        """
        if self.is_model_downloaded():
            logger.info(f"Model already downloaded: {self.model_dir}")
            if on_progress:
                on_progress(1.0)
            return self.model_dir

        if not self.enabled:
            raise ModelDownloadError(
                "Model directory is missing and no download repository is configured",
                details={"path": self.model_dir},
            )

        repo_id = self.config.repo_id
        logger.info(f"Starting model download from {repo_id}@{self.config.revision}")
        token = self._token()
        try:
            files = self._files_to_fetch(token)
            if not files:
                raise ModelDownloadError("Repository has no model files", details={"repo_id": repo_id})

            os.makedirs(self.partial_dir, exist_ok=True)
            for i, filename in enumerate(files, start=1):
                hf_hub_download(
                    repo_id=repo_id,
                    filename=filename,
                    revision=self.config.revision,
                    local_dir=self.partial_dir,
                    token=token,
                )
                logger.debug(f"Downloaded {filename} ({i}/{len(files)})")
                if on_progress:
                    on_progress(i / len(files))

            if os.path.exists(self.model_dir):
                shutil.rmtree(self.model_dir)
            os.replace(self.partial_dir, self.model_dir)
        except (HfHubHTTPError, OSError, ValueError) as e:
            shutil.rmtree(self.partial_dir, ignore_errors=True)
            raise ModelDownloadError(
                f"Failed to download model: {e}",
                details={"repo_id": repo_id, "cause": type(e).__name__},
            ) from e
        except ModelDownloadError:
            shutil.rmtree(self.partial_dir, ignore_errors=True)
            raise

        logger.info(f"Model downloaded successfully: {self.model_dir} ({self.get_model_info().size_mb:.1f} MB)")
        return self.model_dir

    def get_model_info(self) -> ModelInfo:
        exists = self.is_model_downloaded()
        size = 0
        if os.path.isdir(self.model_dir):
            for root, _, names in os.walk(self.model_dir):
                size += sum(os.path.getsize(os.path.join(root, name)) for name in names)
        return ModelInfo(exists=exists, size_bytes=size, path=os.path.abspath(self.model_dir))

    def get_model_version(self) -> str:
        if self.config.model_version:
            return self.config.model_version
        if self.enabled:
            return f"{self.config.repo_id}@{self.config.revision}"
        return os.path.basename(os.path.normpath(self.model_dir))

    def clear_cache(self) -> bool:
        """Delete the downloaded model. Only repository-backed models are removed."""
        if not self.enabled:
            logger.warning(f"Refusing to delete {self.model_dir}: no download repository configured")
            return False
        try:
            if os.path.exists(self.model_dir):
                shutil.rmtree(self.model_dir)
            shutil.rmtree(self.partial_dir, ignore_errors=True)
        except OSError as e:
            logger.error(f"Error clearing model cache: {e}")
            return False
        logger.info("Model cache cleared")
        return True
