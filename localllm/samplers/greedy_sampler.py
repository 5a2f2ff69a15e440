"""
Greedy selection.

Always selects the highest probability token (argmax operation). Used as the
terminal stage when sampling is configured with a non-positive temperature.
"""

import torch

from .base import Sampler


class GreedySampler(Sampler):
    """Greedy selection - always selects the highest logit."""

    selects = True

    def apply(self, logits: torch.Tensor) -> torch.Tensor:
        return logits

    def select(self, logits: torch.Tensor) -> int:
        return logits.argmax().item()

    def __repr__(self) -> str:
        return "GreedySampler()"
