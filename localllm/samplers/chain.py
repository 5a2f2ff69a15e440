"""
Ordered sampler pipeline.
"""

from typing import List, Sequence

import torch

from ..errors import InvalidStateError
from .base import Sampler


class SamplerChain:
    """
    Ordered pipeline of sampler stages ending in a selecting stage.

    The chain carries the history of accepted tokens for the current
    generation call; ``reset`` clears it.
    """

    def __init__(self, stages: Sequence[Sampler]):
        stages = list(stages)
        if not stages or not stages[-1].selects:
            raise ValueError("Sampler chain must end with a selecting stage")
        if any(stage.selects for stage in stages[:-1]):
            raise ValueError("Only the last stage of a sampler chain may select")
        self.stages: List[Sampler] = stages
        self.history: List[int] = []
        self.freed = False

    def sample_logits(self, logits: torch.Tensor) -> int:
        """Run the stages in order over ``logits`` and return the drawn token."""
        if self.freed:
            raise InvalidStateError("Sampler chain already freed")
        working_logits = logits.float().clone()
        for stage in self.stages[:-1]:
            working_logits = stage.apply(working_logits)
        return self.stages[-1].select(working_logits)

    def sample(self, context, idx: int = -1) -> int:
        """Sample from the logits of output ``idx`` of the context's last decode."""
        return self.sample_logits(context.get_logits(idx))

    def accept(self, token_id: int) -> None:
        self.history.append(token_id)
        for stage in self.stages:
            stage.accept(token_id)

    def reset(self) -> None:
        self.history.clear()
        for stage in self.stages:
            stage.reset()

    def free(self) -> None:
        self.stages = []
        self.history = []
        self.freed = True

    def __len__(self) -> int:
        return len(self.stages)

    def __repr__(self) -> str:
        return " -> ".join(repr(stage) for stage in self.stages)
