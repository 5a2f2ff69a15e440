"""
Unit tests for localllm.

This package contains tests for the inference session: sampler stages, prompt
batching, the generation loop, session lifecycle, configuration and the
end-to-end path over a tiny checkpoint.
"""
