"""
Temperature scaling stage.
"""

import torch

from .base import Sampler


class TemperatureSampler(Sampler):
    """
    Temperature scaling stage.

    Divides logits by a given temperature value. Higher temperatures flatten
    the distribution, lower temperatures sharpen it towards greedy.
    """

    def __init__(self, temperature: float = 1.0):
        """
        Initialize the TemperatureSampler.

        Args:
            temperature: The temperature value to apply to logits (default: 1.0).
                         Must be a positive float.
        """
        if not isinstance(temperature, (int, float)) or temperature <= 0:
            raise ValueError("Temperature must be a positive float.")
        self.temperature = float(temperature)

    def apply(self, logits: torch.Tensor) -> torch.Tensor:
        return logits / self.temperature

    def __repr__(self) -> str:
        return f"TemperatureSampler(temperature={self.temperature})"
