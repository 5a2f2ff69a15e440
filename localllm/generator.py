"""
Completion generation over a loaded model and context.

This module tokenizes a prompt, feeds it through the context in bounded
batches, then runs the sample -> detokenize -> re-feed loop.
"""

import math
import threading
import time
from typing import List, Optional

from .batch import Batch
from .constants import DEFAULT_SEQ_ID, PIECE_MAX_BYTES, TOKENIZE_MARGIN
from .context import Context
from .errors import (
    DecodeError,
    GenerationDecodeError,
    InvalidStateError,
    PromptDecodeError,
    TokenizationError,
    generate_logger as logger,
    log_exception,
)
from .model import Model
from .result import GenerationResult, GenerationStatus
from .samplers import SamplerChain


class CompletionGenerator:
    """Handles autoregressive generation for one model/context/sampler triple."""

    def __init__(self, model: Optional[Model], context: Optional[Context], sampler: Optional[SamplerChain]):
        self.model = model
        self.context = context
        self.sampler = sampler

    def generate(
        self,
        prompt: str,
        max_tokens: int,
        cancel_event: Optional[threading.Event] = None,
    ) -> GenerationResult:
        """
        Generate a completion for ``prompt``.

        Never raises: every failure is logged and reported through the
        result's status.

        Args:
            prompt: Input text
            max_tokens: Maximum tokens to generate
            cancel_event: Optional event checked once per generated token

        Returns:
            GenerationResult with the accumulated text
        """
        if self.model is None or self.context is None or self.sampler is None:
            error = InvalidStateError("Model not loaded")
            logger.error(error.message)
            return GenerationResult(GenerationStatus.NOT_LOADED, error=error)

        if max_tokens < 0:
            logger.warning(f"Negative max_tokens={max_tokens}, treating as 0")
            max_tokens = 0
        if max_tokens == 0:
            return GenerationResult(GenerationStatus.LENGTH)

        logger.info(f"Generating completion for prompt of length {len(prompt)}, max_tokens={max_tokens}")

        try:
            tokens = self.model.tokenize(prompt, len(prompt) + TOKENIZE_MARGIN, add_special=True, parse_special=True)
            if not tokens:
                raise TokenizationError("Prompt produced no tokens")
        except TokenizationError as e:
            log_exception(e, logger)
            return GenerationResult(GenerationStatus.TOKENIZATION_FAILED, error=e)

        n_prompt = len(tokens)
        logger.info(f"Tokenized prompt: {n_prompt} tokens")

        try:
            self.context.clear_memory()
            self.sampler.reset()
        except InvalidStateError as e:
            log_exception(e, logger)
            return GenerationResult(GenerationStatus.NOT_LOADED, n_prompt_tokens=n_prompt, error=e)

        with Batch(self.context.n_batch) as batch:
            try:
                self.decode_prompt(tokens, batch)
            except (PromptDecodeError, InvalidStateError) as e:
                log_exception(e, logger)
                return GenerationResult(GenerationStatus.PROMPT_DECODE_FAILED, n_prompt_tokens=n_prompt, error=e)
            logger.info("Prompt decoded")

            return self._generate_tokens(batch, n_prompt, max_tokens, cancel_event)

    def decode_prompt(self, tokens: List[int], batch: Batch) -> int:
        """
        Feed prompt tokens in batches of at most ``batch.capacity`` entries.

        Only the last token of the whole prompt emits logits.

        Returns:
            Number of batches decoded

        Raises:
            PromptDecodeError: If any batch fails to decode
        """
        n_prompt = len(tokens)
        n_batches = 0
        for i, token in enumerate(tokens):
            is_last = i == n_prompt - 1
            batch.add(token, i, (DEFAULT_SEQ_ID,), logits=is_last)
            if batch.is_full or is_last:
                try:
                    self.context.decode(batch)
                except DecodeError as e:
                    raise PromptDecodeError(
                        f"Decode failed at token {i}",
                        details={"token_index": i, "n_prompt": n_prompt, "cause": e.message},
                    ) from e
                batch.clear()
                n_batches += 1

        expected = math.ceil(n_prompt / batch.capacity)
        logger.debug(f"Prompt decoded in {n_batches} batch(es) (expected {expected})")
        return n_batches

    def _generate_tokens(
        self,
        batch: Batch,
        n_prompt: int,
        max_tokens: int,
        cancel_event: Optional[threading.Event],
    ) -> GenerationResult:
        pieces: List[bytes] = []
        generated: List[int] = []
        status = GenerationStatus.LENGTH
        error = None
        start = time.perf_counter()

        while len(generated) < max_tokens:
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Generation cancelled after {len(generated)} tokens")
                status = GenerationStatus.CANCELLED
                break

            try:
                new_token = self.sampler.sample(self.context, -1)
            except InvalidStateError as e:
                log_exception(e, logger)
                error = e
                status = GenerationStatus.TRUNCATED
                break
            self.sampler.accept(new_token)

            # Check for end of generation
            if self.model.is_eog(new_token):
                logger.info("End of generation token reached")
                status = GenerationStatus.STOP
                break

            piece = self.model.token_to_piece(new_token, PIECE_MAX_BYTES, special=True)
            if piece:
                pieces.append(piece)
                logger.debug(f"Token {len(generated)}: {piece!r}")

            pos = n_prompt + len(generated)
            generated.append(new_token)

            batch.clear()
            batch.add(new_token, pos, (DEFAULT_SEQ_ID,), logits=True)
            try:
                self.context.decode(batch)
            except (DecodeError, InvalidStateError) as e:
                error = GenerationDecodeError(
                    f"Decode failed at generated token {len(generated) - 1}",
                    details={"pos": pos, "cause": str(e)},
                )
                log_exception(error, logger)
                status = GenerationStatus.TRUNCATED
                break

        # Fragments may split a multi-byte character, so decode only once joined
        text = b"".join(pieces).decode("utf-8", errors="replace")
        elapsed = time.perf_counter() - start
        logger.info(
            f"Generated {len(generated)} tokens in {elapsed:.2f}s, result length: {len(text)} ({status.value})"
        )
        return GenerationResult(status, text, generated, n_prompt, error)
