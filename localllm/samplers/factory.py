"""
Factory for the default sampler chain.
"""

from ..config import SamplerConfig
from .chain import SamplerChain
from .dist_sampler import DistSampler
from .greedy_sampler import GreedySampler
from .temperature_sampler import TemperatureSampler
from .top_k_sampler import TopKSampler
from .top_p_sampler import TopPSampler


def build_sampler_chain(config: SamplerConfig = None) -> SamplerChain:
    """
    Build the sampler chain: temperature -> top-k -> top-p -> seeded draw.

    A non-positive temperature yields a greedy chain.

    Args:
        config: Sampling parameters (defaults if not provided)

    Returns:
        Configured SamplerChain instance
    """
    if config is None:
        config = SamplerConfig()

    if config.temperature <= 0:
        return SamplerChain([GreedySampler()])

    return SamplerChain([
        TemperatureSampler(config.temperature),
        TopKSampler(config.top_k),
        TopPSampler(config.top_p, min_keep=config.min_keep),
        DistSampler(config.seed),
    ])
