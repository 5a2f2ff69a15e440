"""
Top-K truncation stage.
"""

import torch

from .base import Sampler


class TopKSampler(Sampler):
    """
    Top-K truncation stage.

    Keeps the k most probable tokens and removes the rest.
    """

    def __init__(self, k: int):
        """
        Initialize the TopKSampler.

        Args:
            k: The number of top tokens to keep (must be a positive integer).
        """
        if not isinstance(k, int) or k <= 0:
            raise ValueError("Top-K (k) must be a positive integer.")
        self.k = k

    def apply(self, logits: torch.Tensor) -> torch.Tensor:
        effective_k = min(self.k, logits.size(-1))
        if effective_k == logits.size(-1):
            return logits

        _, top_k_indices = torch.topk(logits, effective_k)
        filtered_logits = torch.full_like(logits, -float("inf"))
        filtered_logits[top_k_indices] = logits[top_k_indices]
        return filtered_logits

    def __repr__(self) -> str:
        return f"TopKSampler(k={self.k})"
