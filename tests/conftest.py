"""
Shared fixtures: in-memory stand-ins for Model/Context and a tiny real
checkpoint for end-to-end tests.
"""

import pytest
import torch

from localllm.backend import Backend
from localllm.errors import DecodeError, TokenizationError

BOS_ID = 1
EOG_ID = 0


class FakeModel:
    """Character-level vocabulary: token 1 is BOS, token 0 ends generation."""

    def __init__(self, tokens_per_char=1, fail_tokenize=False):
        self.tokens_per_char = tokens_per_char
        self.fail_tokenize = fail_tokenize
        self.tokenize_calls = []
        self.freed = False

    @property
    def is_loaded(self):
        return not self.freed

    def tokenize(self, text, n_tokens_max, add_special=True, parse_special=True):
        self.tokenize_calls.append((text, n_tokens_max, add_special, parse_special))
        if self.fail_tokenize:
            raise TokenizationError("tokenizer exploded")
        ids = [BOS_ID] if add_special else []
        for ch in text:
            ids.extend([2 + ord(ch) % 50] * self.tokens_per_char)
        if len(ids) > n_tokens_max:
            raise TokenizationError("too many tokens", details={"required": len(ids)})
        return ids

    def token_to_piece(self, token_id, max_bytes=128, special=True):
        return f"<{token_id}>".encode()

    def is_eog(self, token_id):
        return token_id == EOG_ID

    def free(self):
        self.freed = True


class FakeContext:
    """Records every decoded batch as (token, pos, logits) triples."""

    def __init__(self, n_ctx=4096, n_batch=512, fail_at_pos=None):
        self.n_ctx = n_ctx
        self.n_batch = n_batch
        self.fail_at_pos = fail_at_pos
        self.n_past = 0
        self.decoded = []
        self.cleared = 0
        self.freed = False

    def clear_memory(self):
        self.cleared += 1
        self.n_past = 0

    def decode(self, batch):
        entries = [(e.token, e.pos, e.logits) for e in batch]
        self.decoded.append(entries)
        positions = [pos for _, pos, _ in entries]
        if positions[-1] >= self.n_ctx:
            raise DecodeError("Context window exhausted")
        if self.fail_at_pos is not None and self.fail_at_pos in positions:
            raise DecodeError("Forward pass failed")
        self.n_past = positions[-1] + 1

    def get_logits(self, idx=-1):
        return torch.zeros(64)

    def free(self):
        self.freed = True


class ScriptedSampler:
    """Returns tokens from a fixed script, then repeats the last one."""

    def __init__(self, script):
        self.script = list(script)
        self.accepted = []
        self.resets = 0
        self._next = 0

    def sample(self, context, idx=-1):
        token = self.script[min(self._next, len(self.script) - 1)]
        self._next += 1
        return token

    def accept(self, token_id):
        self.accepted.append(token_id)

    def reset(self):
        self.resets += 1

    def free(self):
        pass


@pytest.fixture
def fake_model():
    return FakeModel()


@pytest.fixture
def fake_context():
    return FakeContext()


@pytest.fixture
def backend():
    backend = Backend()
    backend.init()
    yield backend
    backend.shutdown()


TINY_VOCAB = ["<pad>", "<unk>", "<s>", "</s>", "Hello", "world", "the", "a", "patient", "reports",
              "pain", "and", "fever", "for", "two", "days", ".", ","]


@pytest.fixture(scope="session")
def tiny_model_dir(tmp_path_factory):
    """Randomly initialized two-layer Llama with a word-level tokenizer."""
    from tokenizers import Tokenizer, models, pre_tokenizers
    from transformers import LlamaConfig, LlamaForCausalLM, PreTrainedTokenizerFast

    path = tmp_path_factory.mktemp("tiny-llama")
    vocab = {word: i for i, word in enumerate(TINY_VOCAB)}

    word_level = Tokenizer(models.WordLevel(vocab=vocab, unk_token="<unk>"))
    word_level.pre_tokenizer = pre_tokenizers.Whitespace()
    tokenizer = PreTrainedTokenizerFast(
        tokenizer_object=word_level,
        bos_token="<s>",
        eos_token="</s>",
        unk_token="<unk>",
        pad_token="<pad>",
    )
    tokenizer.save_pretrained(str(path))

    config = LlamaConfig(
        vocab_size=len(TINY_VOCAB),
        hidden_size=32,
        intermediate_size=64,
        num_hidden_layers=2,
        num_attention_heads=2,
        num_key_value_heads=2,
        max_position_embeddings=256,
        bos_token_id=vocab["<s>"],
        eos_token_id=vocab["</s>"],
        pad_token_id=vocab["<pad>"],
    )
    torch.manual_seed(0)
    LlamaForCausalLM(config).save_pretrained(str(path))
    return str(path)
