"""
Execution context: the key/value cache bound to one loaded model.
"""

from typing import Optional

import torch
from transformers import DynamicCache

from .batch import Batch
from .constants import BATCH_CAPACITY, DEFAULT_SEQ_ID
from .errors import ContextCreationError, DecodeError, InvalidStateError, session_logger as logger
from .model import Model


class Context:
    """
    Decode state for a single sequence.

    Holds the KV cache, the number of cached positions and the logits of the
    entries flagged in the most recent decode.
    """

    def __init__(self, model: Model, n_ctx: int, n_threads: int, n_batch: int = BATCH_CAPACITY):
        """
        Allocate a context for ``model``.

        Args:
            model: Loaded model the context is bound to
            n_ctx: Context window in tokens
            n_threads: Compute threads for CPU decode
            n_batch: Maximum tokens per decode call

        Raises:
            ContextCreationError: If the model is gone or a size is invalid
        """
        if model is None or not model.is_loaded:
            raise ContextCreationError("Cannot create a context without a loaded model")
        if n_ctx <= 0:
            raise ContextCreationError("Context size must be positive", details={"n_ctx": n_ctx})
        if n_threads <= 0:
            raise ContextCreationError("Thread count must be positive", details={"n_threads": n_threads})
        if n_batch <= 0:
            raise ContextCreationError("Batch capacity must be positive", details={"n_batch": n_batch})

        max_positions = model.max_positions
        if max_positions is not None and n_ctx > max_positions:
            raise ContextCreationError(
                "Context size exceeds the model's trained positions",
                details={"n_ctx": n_ctx, "max_positions": max_positions},
            )

        self.model = model
        self.n_ctx = n_ctx
        self.n_threads = n_threads
        self.n_batch = n_batch

        # torch thread pools are process-wide
        torch.set_num_threads(n_threads)

        self.cache: Optional[DynamicCache] = DynamicCache()
        self.n_past = 0
        self._logits: Optional[torch.Tensor] = None

        logger.info(f"Context created successfully (n_ctx={n_ctx}, n_threads={n_threads}, n_batch={n_batch})")

    @property
    def device(self) -> torch.device:
        return self.model.device

    def clear_memory(self) -> None:
        """Drop every cached position."""
        if self.cache is None:
            raise InvalidStateError("Context already freed")
        self.cache = DynamicCache()
        self.n_past = 0
        self._logits = None

    def _check_batch(self, batch: Batch) -> None:
        if batch.n_tokens == 0:
            raise DecodeError("Empty batch")
        if batch.n_tokens > self.n_batch:
            raise DecodeError(
                "Batch larger than the context's batch capacity",
                details={"n_tokens": batch.n_tokens, "n_batch": self.n_batch},
            )
        if any(tuple(entry.seq_ids) != (DEFAULT_SEQ_ID,) for entry in batch):
            raise DecodeError("Only sequence 0 is supported")

        positions = batch.positions
        if positions[0] != self.n_past:
            raise DecodeError(
                "Batch does not continue the cached sequence",
                details={"first_pos": positions[0], "n_past": self.n_past},
            )
        if any(b != a + 1 for a, b in zip(positions, positions[1:])):
            raise DecodeError("Batch positions are not contiguous")
        if positions[-1] >= self.n_ctx:
            raise DecodeError(
                "Context window exhausted",
                details={"pos": positions[-1], "n_ctx": self.n_ctx},
            )

    def decode(self, batch: Batch) -> None:
        """
        Run the model over ``batch``, extending the KV cache.

        Raises:
            InvalidStateError: If the context or its model has been freed
            DecodeError: If the batch is invalid or the forward pass fails.
                The cache is left as it was before the call.
        """
        if self.cache is None or not self.model.is_loaded:
            raise InvalidStateError("Context or model already freed")
        self._check_batch(batch)

        input_ids = torch.tensor([batch.tokens], dtype=torch.long, device=self.device)
        position_ids = torch.tensor([batch.positions], dtype=torch.long, device=self.device)

        try:
            with torch.no_grad():
                outputs = self.model.module(
                    input_ids=input_ids,
                    position_ids=position_ids,
                    past_key_values=self.cache,
                    use_cache=True,
                )
        except (RuntimeError, ValueError, IndexError) as e:
            # Layers that already appended this batch are rolled back
            self.cache.crop(self.n_past)
            raise DecodeError(f"Forward pass failed: {e}", details={"n_tokens": batch.n_tokens}) from e

        self.cache = outputs.past_key_values
        self.n_past = batch.positions[-1] + 1

        indices = batch.logit_indices
        self._logits = outputs.logits[0, indices, :].float() if indices else None

    def get_logits(self, idx: int = -1) -> torch.Tensor:
        """Logits of flagged output ``idx`` of the last decode (-1 is the last one)."""
        if self._logits is None:
            raise InvalidStateError("No logits available; the last decode flagged no outputs")
        return self._logits[idx]

    def free(self) -> None:
        if self.cache is None:
            return
        self.cache = None
        self._logits = None
        self.n_past = 0
        logger.info("Context freed")

    def __repr__(self) -> str:
        return f"Context(n_ctx={self.n_ctx}, n_threads={self.n_threads}, n_past={self.n_past})"
