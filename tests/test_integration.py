"""
End-to-end tests over a tiny randomly initialized checkpoint.
"""

import os
import shutil
from unittest.mock import patch

import pytest
import torch

from localllm import bridge
from localllm.batch import Batch
from localllm.config import SamplerConfig
from localllm.context import Context
from localllm.errors import ContextCreationError, DecodeError, InvalidStateError, ModelLoadError
from localllm.model import Model
from localllm.result import GenerationStatus
from localllm.session import Session

from .conftest import TINY_VOCAB


@pytest.fixture
def tiny_model(backend, tiny_model_dir):
    model = Model.load(tiny_model_dir, 0, backend)
    yield model
    model.free()


class TestModel:

    def test_load_missing_path(self, backend):
        with pytest.raises(ModelLoadError):
            Model.load("/definitely/not/a/model", 0, backend)

    def test_load_directory_without_weights(self, backend, tmp_path):
        with pytest.raises(ModelLoadError):
            Model.load(str(tmp_path), 0, backend)

    def test_vocabulary(self, tiny_model):
        assert tiny_model.is_loaded
        assert tiny_model.n_vocab == len(TINY_VOCAB)
        assert tiny_model.max_positions == 256
        assert tiny_model.device.type == "cpu"
        assert tiny_model.is_eog(TINY_VOCAB.index("</s>"))
        assert not tiny_model.is_eog(TINY_VOCAB.index("Hello"))

    def test_tokenize_prepends_bos(self, tiny_model):
        tokens = tiny_model.tokenize("Hello world", 64)
        assert tokens == [TINY_VOCAB.index("<s>"), TINY_VOCAB.index("Hello"), TINY_VOCAB.index("world")]

    def test_tokenize_respects_capacity(self, tiny_model):
        from localllm.errors import TokenizationError

        with pytest.raises(TokenizationError):
            tiny_model.tokenize("Hello world", 2)

    def test_token_to_piece(self, tiny_model):
        assert tiny_model.token_to_piece(TINY_VOCAB.index("patient")) == b"patient"
        assert tiny_model.token_to_piece(TINY_VOCAB.index("patient"), max_bytes=3) == b"pat"

    def test_load_corrupt_weights(self, backend, tiny_model_dir, tmp_path):
        broken = tmp_path / "broken"
        shutil.copytree(tiny_model_dir, broken)
        (broken / "model.safetensors").write_bytes(b"\xff" * 64)

        with pytest.raises(ModelLoadError):
            Model.load(str(broken), 0, backend)

    def test_load_passes_dtype(self, backend, tiny_model_dir):
        from transformers import AutoModelForCausalLM

        with patch.object(
            AutoModelForCausalLM, "from_pretrained", wraps=AutoModelForCausalLM.from_pretrained
        ) as from_pretrained:
            model = Model.load(tiny_model_dir, 0, backend)
        model.free()

        kwargs = from_pretrained.call_args.kwargs
        assert kwargs["dtype"] == torch.float32
        assert "torch_dtype" not in kwargs

    def test_free_is_idempotent(self, backend, tiny_model_dir):
        model = Model.load(tiny_model_dir, 0, backend)
        model.free()
        model.free()
        assert not model.is_loaded


class TestTokenPieces:

    def test_byte_level_pieces_join_into_text(self):
        from tokenizers import Tokenizer, decoders, models, pre_tokenizers, trainers
        from transformers import PreTrainedTokenizerFast

        bpe = Tokenizer(models.BPE())
        bpe.pre_tokenizer = pre_tokenizers.ByteLevel(add_prefix_space=False)
        bpe.decoder = decoders.ByteLevel()
        # Alphabet only: every byte stays its own token
        trainer = trainers.BpeTrainer(
            vocab_size=257,
            special_tokens=["<|endoftext|>"],
            initial_alphabet=pre_tokenizers.ByteLevel.alphabet(),
        )
        bpe.train_from_iterator(["café notes ✓"], trainer=trainer)
        tokenizer = PreTrainedTokenizerFast(tokenizer_object=bpe, eos_token="<|endoftext|>")
        model = Model(None, tokenizer, "memory", 0, torch.device("cpu"))

        ids = tokenizer.encode("é✓", add_special_tokens=False)
        pieces = [model.token_to_piece(token_id) for token_id in ids]

        assert model.byte_decoder is not None
        assert len(ids) == 5
        assert all(len(piece) == 1 for piece in pieces)
        assert b"".join(pieces).decode("utf-8") == "é✓"

    def test_byte_fallback_tokens(self):
        from tokenizers import Tokenizer, models
        from transformers import PreTrainedTokenizerFast

        vocab = {"<unk>": 0, "</s>": 1, "caf": 2, "<0xC3>": 3, "<0xA9>": 4}
        tokenizer = PreTrainedTokenizerFast(
            tokenizer_object=Tokenizer(models.WordLevel(vocab=vocab, unk_token="<unk>")),
            unk_token="<unk>",
            eos_token="</s>",
        )
        model = Model(None, tokenizer, "memory", 0, torch.device("cpu"))

        pieces = [model.token_to_piece(token_id) for token_id in (2, 3, 4)]

        assert model.byte_decoder is None
        assert pieces == [b"caf", b"\xc3", b"\xa9"]
        assert b"".join(pieces).decode("utf-8") == "café"

    def test_special_tokens_hidden_on_request(self):
        from tokenizers import Tokenizer, models
        from transformers import PreTrainedTokenizerFast

        vocab = {"<unk>": 0, "</s>": 1, "fever": 2}
        tokenizer = PreTrainedTokenizerFast(
            tokenizer_object=Tokenizer(models.WordLevel(vocab=vocab, unk_token="<unk>")),
            unk_token="<unk>",
            eos_token="</s>",
        )
        model = Model(None, tokenizer, "memory", 0, torch.device("cpu"))

        assert model.token_to_piece(1, special=False) == b""
        assert model.token_to_piece(2, special=False) == b"fever"


class TestContext:

    def test_context_larger_than_model_positions(self, tiny_model):
        with pytest.raises(ContextCreationError):
            Context(tiny_model, n_ctx=512, n_threads=1)

    def test_invalid_sizes(self, tiny_model):
        with pytest.raises(ContextCreationError):
            Context(tiny_model, n_ctx=0, n_threads=1)
        with pytest.raises(ContextCreationError):
            Context(tiny_model, n_ctx=64, n_threads=0)

    def test_decode_extends_cache(self, tiny_model):
        context = Context(tiny_model, n_ctx=64, n_threads=1)
        with Batch(8) as batch:
            for pos, token in enumerate([2, 4, 5]):
                batch.add(token, pos, logits=pos == 2)
            context.decode(batch)

            assert context.n_past == 3
            assert context.get_logits(-1).shape == (len(TINY_VOCAB),)

            batch.clear()
            batch.add(6, 3, logits=True)
            context.decode(batch)
            assert context.n_past == 4

    def test_decode_without_flagged_outputs(self, tiny_model):
        context = Context(tiny_model, n_ctx=64, n_threads=1)
        with Batch(8) as batch:
            batch.add(2, 0)
            context.decode(batch)
        with pytest.raises(InvalidStateError):
            context.get_logits()

    def test_decode_rejects_gaps(self, tiny_model):
        context = Context(tiny_model, n_ctx=64, n_threads=1)
        with Batch(8) as batch:
            batch.add(2, 5, logits=True)
            with pytest.raises(DecodeError):
                context.decode(batch)
        assert context.n_past == 0

    def test_decode_past_window(self, tiny_model):
        context = Context(tiny_model, n_ctx=2, n_threads=1)
        with Batch(8) as batch:
            for pos in range(3):
                batch.add(4, pos)
            with pytest.raises(DecodeError, match="Context window exhausted"):
                context.decode(batch)

    def test_clear_memory(self, tiny_model):
        context = Context(tiny_model, n_ctx=64, n_threads=1)
        with Batch(8) as batch:
            batch.add(2, 0, logits=True)
            context.decode(batch)
        context.clear_memory()
        assert context.n_past == 0

    def test_use_after_free(self, tiny_model):
        context = Context(tiny_model, n_ctx=64, n_threads=1)
        context.free()
        with pytest.raises(InvalidStateError):
            context.clear_memory()


class TestEndToEnd:

    def test_load_generate_unload(self, backend, tiny_model_dir):
        session = Session(backend=backend)
        assert session.load(tiny_model_dir, context_size=128, thread_count=1, gpu_layer_count=0)

        result = session.generate("Hello", 5)

        assert result.ok
        assert result.n_prompt_tokens == 2
        assert result.n_generated <= 5
        if result.status is GenerationStatus.LENGTH:
            assert result.n_generated == 5
            assert result.text != ""

        session.unload()
        assert not session.is_loaded

    def test_seeded_generation_is_reproducible(self, backend, tiny_model_dir):
        outputs = []
        for _ in range(2):
            with Session(backend=backend, sampler_config=SamplerConfig(seed=1234)) as session:
                session.load(tiny_model_dir, 128, 1)
                outputs.append(session.generate("the patient reports pain", 8).token_ids)
        assert outputs[0] == outputs[1]

    def test_greedy_generation_repeats(self, backend, tiny_model_dir):
        with Session(backend=backend, sampler_config=SamplerConfig(temperature=0.0)) as session:
            session.load(tiny_model_dir, 128, 1)
            first = session.generate("Hello world", 6)
            second = session.generate("Hello world", 6)
        assert first.token_ids == second.token_ids
        assert first.text == second.text

    def test_prompt_longer_than_context(self, backend, tiny_model_dir):
        with Session(backend=backend) as session:
            assert session.load(tiny_model_dir, context_size=8, thread_count=1)
            result = session.generate(" ".join(["fever"] * 20), 5)

        assert result.status is GenerationStatus.PROMPT_DECODE_FAILED
        assert result.text == ""

    def test_generation_truncated_at_window(self, backend, tiny_model_dir):
        with Session(backend=backend, sampler_config=SamplerConfig(temperature=0.0)) as session:
            session.load(tiny_model_dir, context_size=6, thread_count=1)
            # BOS plus three words fill positions 0..3
            result = session.generate("the patient reports", 10)

        assert result.status in (GenerationStatus.TRUNCATED, GenerationStatus.STOP)
        if result.truncated:
            assert result.n_generated == 3

    def test_context_too_large_fails_load(self, backend, tiny_model_dir):
        session = Session(backend=backend)
        result = session.load(tiny_model_dir, context_size=4096, thread_count=1)

        assert not result
        assert isinstance(result.error, ContextCreationError)
        assert not session.is_loaded
        assert backend.live_sessions == 0


class TestBridge:

    @pytest.fixture(autouse=True)
    def default_backend(self):
        bridge.backend_init()
        yield
        bridge.unload()
        bridge.backend_free()

    def test_full_cycle(self, tiny_model_dir):
        assert bridge.load_model(tiny_model_dir, 128, 1, 0) is True
        text = bridge.generate_completion("Hello", 5)
        assert isinstance(text, str)
        bridge.unload()
        assert bridge.generate_completion("Hello", 5) == ""

    def test_missing_model(self):
        assert bridge.load_model(os.path.join("no", "such", "model"), 128, 1, 0) is False
        assert bridge.generate_completion("Hello", 5) == ""

    def test_corrupt_weights_report_failure(self, tiny_model_dir, tmp_path):
        broken = tmp_path / "broken"
        shutil.copytree(tiny_model_dir, broken)
        (broken / "model.safetensors").write_bytes(b"\xff" * 64)

        assert bridge.load_model(str(broken), 128, 1, 0) is False
        assert not bridge.get_session().is_loaded
        assert bridge.get_session().backend.live_sessions == 0
        assert bridge.generate_completion("Hello", 5) == ""

    def test_zero_tokens(self, tiny_model_dir):
        assert bridge.load_model(tiny_model_dir, 128, 1, 0)
        assert bridge.generate_completion("Hello", 0) == ""

    def test_unload_twice(self, tiny_model_dir):
        bridge.load_model(tiny_model_dir, 128, 1, 0)
        bridge.unload()
        bridge.unload()
        assert not bridge.get_session().is_loaded


def test_logits_are_float32(backend, tiny_model):
    context = Context(tiny_model, n_ctx=16, n_threads=1)
    with Batch(4) as batch:
        batch.add(2, 0, logits=True)
        context.decode(batch)
    assert context.get_logits().dtype == torch.float32
