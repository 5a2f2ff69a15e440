"""
Result classes for session operations.

Load and generation outcomes are returned as values so callers can tell a
legitimately empty completion apart from a failed one.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .errors import LocalLLMError


class GenerationStatus(Enum):
    """Why a generation call ended."""

    STOP = "stop"  # end-of-generation token sampled
    LENGTH = "length"  # max_tokens budget exhausted
    CANCELLED = "cancelled"
    TRUNCATED = "truncated"  # re-feed decode failed mid-stream
    NOT_LOADED = "not_loaded"
    TOKENIZATION_FAILED = "tokenization_failed"
    PROMPT_DECODE_FAILED = "prompt_decode_failed"


SUCCESS_STATUSES = (GenerationStatus.STOP, GenerationStatus.LENGTH, GenerationStatus.CANCELLED)


@dataclass
class GenerationResult:
    """Outcome of one completion call."""

    status: GenerationStatus
    text: str = ""
    token_ids: List[int] = field(default_factory=list)
    n_prompt_tokens: int = 0
    error: Optional[LocalLLMError] = None

    @property
    def ok(self) -> bool:
        return self.status in SUCCESS_STATUSES

    @property
    def truncated(self) -> bool:
        return self.status is GenerationStatus.TRUNCATED

    @property
    def n_generated(self) -> int:
        return len(self.token_ids)

    def __str__(self) -> str:
        return self.text


@dataclass
class LoadResult:
    """Outcome of a load call. Truthy only on success."""

    success: bool
    error: Optional[LocalLLMError] = None

    def __bool__(self) -> bool:
        return self.success
