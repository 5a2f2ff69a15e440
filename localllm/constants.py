"""
Constants for the localllm inference session.

This module contains the fixed sizes and default parameters used throughout
the loader, the sampler chain and the completion generator.
"""

# Context parameters
BATCH_CAPACITY = 512  # Tokens per decode call, also the context's n_batch
DEFAULT_SEQ_ID = 0  # Single-sequence sessions always use sequence 0

# Tokenization
TOKENIZE_MARGIN = 128  # Extra token capacity over len(prompt) for multi-token expansion
PIECE_MAX_BYTES = 128  # Upper bound on a detokenized fragment

# Sampler chain defaults
DEFAULT_TEMPERATURE = 0.7
DEFAULT_TOP_K = 40
DEFAULT_TOP_P = 0.95
DEFAULT_MIN_KEEP = 1
DEFAULT_SEED = 0xFFFFFFFF  # Draw a fresh random seed for every chain

# Loader defaults
DEFAULT_CONTEXT_SIZE = 2048
DEFAULT_THREAD_COUNT = 4
DEFAULT_GPU_LAYER_COUNT = 0
DEFAULT_MAX_PREDICT_TOKENS = 1024

# Environment variable values read as true
ENV_TRUE_VALUES = ("true", "1", "yes", "on")
