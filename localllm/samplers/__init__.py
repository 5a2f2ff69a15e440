"""
Sampler implementations composing the token sampler chain.

Each stage transforms a logits distribution; the terminal stage draws the
token. Stages run in a fixed order: temperature, top-k, top-p, then the
seeded categorical draw.
"""

from .base import Sampler
from .temperature_sampler import TemperatureSampler
from .top_k_sampler import TopKSampler
from .top_p_sampler import TopPSampler
from .dist_sampler import DistSampler
from .greedy_sampler import GreedySampler
from .chain import SamplerChain
from .factory import build_sampler_chain

__all__ = [
    "Sampler",
    "TemperatureSampler",
    "TopKSampler",
    "TopPSampler",
    "DistSampler",
    "GreedySampler",
    "SamplerChain",
    "build_sampler_chain",
]
