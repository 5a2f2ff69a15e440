"""
Base sampler interface.

This module defines the abstract Sampler interface that every stage of the
sampler chain follows.
"""

from abc import ABC, abstractmethod

import torch


class Sampler(ABC):
    """Abstract base class for sampler chain stages."""

    # True for terminal stages that pick the final token
    selects = False

    @abstractmethod
    def apply(self, logits: torch.Tensor) -> torch.Tensor:
        """
        Transform a logits distribution.

        Args:
            logits: Token logits (shape: [vocab_size])

        Returns:
            Transformed logits. Removed candidates are set to -inf.
        """
        pass

    def select(self, logits: torch.Tensor) -> int:
        """Pick a token from the transformed logits (terminal stages only)."""
        raise NotImplementedError(f"{type(self).__name__} does not select tokens")

    def accept(self, token_id: int) -> None:
        """Record a token committed to the output. Stateless by default."""
        pass

    def reset(self) -> None:
        """Clear per-generation state."""
        pass
