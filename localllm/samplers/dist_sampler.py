"""
Seeded categorical draw, the terminal stage of the sampler chain.
"""

import torch

from ..constants import DEFAULT_SEED
from ..errors import generate_logger as logger
from .base import Sampler


class DistSampler(Sampler):
    """
    Categorical draw from the softmax of the incoming logits.

    Uses its own ``torch.Generator`` so a fixed seed reproduces the same
    token sequence regardless of the global RNG state.
    """

    selects = True

    def __init__(self, seed: int = DEFAULT_SEED):
        """
        Initialize the DistSampler.

        Args:
            seed: RNG seed. ``DEFAULT_SEED`` draws a fresh random seed.
        """
        self.seed = seed
        self.generator = torch.Generator(device="cpu")
        if seed == DEFAULT_SEED:
            self.generator.seed()
        else:
            self.generator.manual_seed(seed)

    def apply(self, logits: torch.Tensor) -> torch.Tensor:
        return logits

    def select(self, logits: torch.Tensor) -> int:
        probabilities = torch.softmax(logits.float().cpu(), dim=-1)

        # Check for invalid probabilities (all -inf case)
        if torch.isnan(probabilities).any() or probabilities.sum() <= 0:
            logger.warning("Degenerate distribution, falling back to argmax")
            return torch.argmax(logits).item()

        return torch.multinomial(probabilities, num_samples=1, generator=self.generator).item()

    def __repr__(self) -> str:
        return f"DistSampler(seed={self.seed:#x})"
