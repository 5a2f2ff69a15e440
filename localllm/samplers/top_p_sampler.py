"""
Top-p (nucleus) truncation stage.

This module keeps the smallest set of tokens whose cumulative probability
mass is greater than or equal to p.
"""

import torch

from .base import Sampler


class TopPSampler(Sampler):
    """
    Top-p (nucleus) truncation - keeps top tokens until cumulative probability >= p.

    At least ``min_keep`` tokens always survive, whatever their mass.
    """

    def __init__(self, p: float = 0.9, min_keep: int = 1):
        """
        Initialize the Top-p sampler.

        Args:
            p: Cumulative probability threshold (default: 0.9)
            min_keep: Minimum number of candidates to keep (default: 1)
        """
        if not isinstance(p, (int, float)) or not 0.0 < p <= 1.0:
            raise ValueError("Top-p must be in (0, 1].")
        if not isinstance(min_keep, int) or min_keep < 1:
            raise ValueError("min_keep must be a positive integer.")
        self.p = float(p)
        self.min_keep = min_keep

    def apply(self, logits: torch.Tensor) -> torch.Tensor:
        if self.p >= 1.0:
            return logits

        # Sort logits in descending order
        sorted_logits, sorted_indices = torch.sort(logits, descending=True)
        cumulative_probs = torch.cumsum(torch.softmax(sorted_logits, dim=-1), dim=-1)

        # Remove tokens once the threshold has been reached by the preceding ones
        sorted_indices_to_remove = cumulative_probs >= self.p
        sorted_indices_to_remove[..., 1:] = sorted_indices_to_remove[..., :-1].clone()
        sorted_indices_to_remove[..., : self.min_keep] = False

        indices_to_remove = sorted_indices_to_remove.scatter(
            dim=-1, index=sorted_indices, src=sorted_indices_to_remove
        )
        filtered_logits = logits.clone()
        filtered_logits[indices_to_remove] = -float("inf")
        return filtered_logits

    def __repr__(self) -> str:
        return f"TopPSampler(p={self.p}, min_keep={self.min_keep})"
