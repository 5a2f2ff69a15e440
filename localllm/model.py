"""
Model loading and vocabulary access.

This module wraps a Hugging Face causal language model and its tokenizer
behind the handle used by the session: tokenization, detokenization of single
tokens and end-of-generation detection.
"""

import gc
import os
import re
from typing import Dict, List, Optional, Set

import torch
from safetensors import SafetensorError
from transformers import AutoModelForCausalLM, AutoTokenizer

from .backend import Backend, get_backend
from .constants import PIECE_MAX_BYTES
from .errors import ModelLoadError, TokenizationError, session_logger as logger

# Turn-terminator tokens used by chat-tuned vocabularies
EOG_TOKEN_STRINGS = ("<end_of_turn>", "<|eot_id|>", "<|im_end|>", "<|end|>", "<|endoftext|>")

# SentencePiece word-boundary marker
SPIECE_UNDERLINE = "▁"

# SentencePiece byte-fallback tokens such as <0xE2>
BYTE_FALLBACK_TOKEN = re.compile(r"<0x([0-9A-Fa-f]{2})>")


def bytes_to_unicode() -> Dict[int, str]:
    """
    Byte-level BPE alphabet: every byte maps to a printable character.

    Printable Latin-1 bytes map to themselves; the rest are shifted past 255.
    """
    byte_values = (
        list(range(ord("!"), ord("~") + 1))
        + list(range(ord("¡"), ord("¬") + 1))
        + list(range(ord("®"), ord("ÿ") + 1))
    )
    chars = list(byte_values)
    n = 0
    for b in range(256):
        if b not in byte_values:
            byte_values.append(b)
            chars.append(256 + n)
            n += 1
    return dict(zip(byte_values, (chr(c) for c in chars)))


def build_byte_decoder(tokenizer, vocab: Dict[str, int]) -> Optional[Dict[str, int]]:
    """Return the character -> byte map of a byte-level vocabulary, else None."""
    byte_decoder = getattr(tokenizer, "byte_decoder", None)
    if byte_decoder:
        return dict(byte_decoder)

    encoder = bytes_to_unicode()
    # A byte-level vocabulary holds every byte character as a token
    if all(char in vocab for char in encoder.values()):
        return {char: b for b, char in encoder.items()}
    return None


class Model:
    """Loaded weights plus vocabulary."""

    def __init__(self, module, tokenizer, path: str, gpu_layer_count: int, device: torch.device):
        self.module = module
        self.tokenizer = tokenizer
        self.path = path
        self.gpu_layer_count = gpu_layer_count
        self.device = device

        vocab = tokenizer.get_vocab()
        self.eog_token_ids: Set[int] = self._collect_eog_ids(vocab)
        self.special_token_ids: Set[int] = set(tokenizer.all_special_ids)
        self.byte_decoder = build_byte_decoder(tokenizer, vocab)

    @classmethod
    def load(cls, path: str, gpu_layer_count: int = 0, backend: Optional[Backend] = None) -> "Model":
        """
        Load model weights and tokenizer from a local directory.

        Args:
            path: Directory containing the model and tokenizer files
            gpu_layer_count: Layers to offload. Any non-zero value places the
                whole model on the accelerator when one is available.
            backend: Initialized backend (defaults to the process-wide one)

        Returns:
            Loaded Model

        Raises:
            BackendNotReadyError: If the backend is not initialized
            ModelLoadError: If the path is missing or the checkpoint unusable
        """
        backend = backend or get_backend()
        backend.require_ready()

        logger.info(f"Loading model from: {path}")
        if not path or not os.path.exists(path):
            raise ModelLoadError("Model path does not exist", details={"path": path})

        if gpu_layer_count != 0 and backend.has_accelerator:
            device = backend.device
        else:
            if gpu_layer_count != 0:
                logger.warning(f"No accelerator available, ignoring gpu_layer_count={gpu_layer_count}")
            device = torch.device("cpu")

        # Set dtype based on device support
        if device.type == "cuda":
            dtype = torch.bfloat16 if torch.cuda.is_bf16_supported() else torch.float16
        else:
            dtype = torch.float32

        try:
            module = AutoModelForCausalLM.from_pretrained(path, dtype=dtype)
            tokenizer = AutoTokenizer.from_pretrained(path)
        except (OSError, ValueError, KeyError, RuntimeError, SafetensorError) as e:
            raise ModelLoadError(
                f"Failed to load model: {e}",
                details={"path": path, "cause": type(e).__name__},
            ) from e

        module.to(device)
        # CRITICAL: Set model to evaluation mode for inference
        module.eval()

        model = cls(module, tokenizer, path, gpu_layer_count, device)
        logger.info(
            f"Model loaded on device: {device} (dtype={dtype}, vocab={model.n_vocab}, "
            f"eog={sorted(model.eog_token_ids)})"
        )
        return model

    def _collect_eog_ids(self, vocab: Dict[str, int]) -> Set[int]:
        eog: Set[int] = set()
        if self.tokenizer.eos_token_id is not None:
            eog.add(self.tokenizer.eos_token_id)

        generation_config = getattr(self.module, "generation_config", None)
        eos = getattr(generation_config, "eos_token_id", None)
        if isinstance(eos, int):
            eog.add(eos)
        elif eos:
            eog.update(eos)

        for text in EOG_TOKEN_STRINGS:
            if text in vocab:
                eog.add(vocab[text])
        return eog

    @property
    def is_loaded(self) -> bool:
        return self.module is not None

    @property
    def n_vocab(self) -> int:
        return self.module.config.vocab_size

    @property
    def max_positions(self) -> Optional[int]:
        """Longest sequence the weights were built for, if the config says."""
        config = self.module.config
        return getattr(config, "max_position_embeddings", None) or getattr(config, "n_positions", None)

    def tokenize(
        self,
        text: str,
        n_tokens_max: int,
        add_special: bool = True,
        parse_special: bool = True,
    ) -> List[int]:
        """
        Convert text into token ids.

        Args:
            text: Input text
            n_tokens_max: Capacity of the caller's token buffer
            add_special: Mark the beginning of sequence
            parse_special: Treat special-token text as control tokens

        Raises:
            TokenizationError: If the tokenizer fails or more than
                ``n_tokens_max`` tokens are produced
        """
        try:
            if parse_special:
                token_ids = self.tokenizer.encode(text, add_special_tokens=add_special)
            else:
                token_ids = self.tokenizer.encode(
                    text, add_special_tokens=add_special, split_special_tokens=True
                )
        except (ValueError, TypeError) as e:
            raise TokenizationError(f"Tokenizer failed: {e}") from e

        bos = self.tokenizer.bos_token_id
        if add_special and bos is not None and bos not in self.eog_token_ids:
            if not token_ids or token_ids[0] != bos:
                token_ids = [bos] + token_ids

        if len(token_ids) > n_tokens_max:
            raise TokenizationError(
                "Prompt needs more tokens than the buffer holds",
                details={"required": len(token_ids), "capacity": n_tokens_max},
            )
        return token_ids

    def token_to_piece(self, token_id: int, max_bytes: int = PIECE_MAX_BYTES, special: bool = True) -> bytes:
        """
        Render one token as raw bytes, truncated to ``max_bytes``.

        Byte-level and byte-fallback tokens may hold part of a multi-byte
        UTF-8 character, so pieces are only decoded once joined.
        """
        if token_id in self.special_token_ids and not special:
            return b""

        raw = self.tokenizer.convert_ids_to_tokens(token_id)
        if not isinstance(raw, str):
            return b""

        if token_id not in self.special_token_ids:
            if self.byte_decoder is not None and all(char in self.byte_decoder for char in raw):
                return bytes(self.byte_decoder[char] for char in raw)[:max_bytes]
            match = BYTE_FALLBACK_TOKEN.fullmatch(raw)
            if match:
                return bytes([int(match.group(1), 16)])

        piece = self.tokenizer.decode(
            [token_id], skip_special_tokens=not special, clean_up_tokenization_spaces=False
        )
        # Single-token decode drops the SentencePiece leading space
        if raw.startswith(SPIECE_UNDERLINE) and not piece.startswith(" "):
            piece = " " + piece
        return piece.encode("utf-8")[:max_bytes]

    def is_eog(self, token_id: int) -> bool:
        return token_id in self.eog_token_ids

    def free(self) -> None:
        """Release the weights."""
        if self.module is None:
            return
        on_cuda = self.device.type == "cuda"
        self.module = None
        self.tokenizer = None
        gc.collect()
        if on_cuda:
            torch.cuda.empty_cache()
        logger.info(f"Model freed: {self.path}")

    def __repr__(self) -> str:
        return f"Model(path={self.path!r}, device={self.device}, gpu_layer_count={self.gpu_layer_count})"
