"""
Command-line interface for running completions against a local model.

Configuration comes from an optional YAML file; command-line arguments
override it.
"""

import argparse
import sys
from typing import List, Optional

from . import backend
from .config import RuntimeConfig
from .config_schema import load_config
from .errors import LocalLLMError, logger, setup_logging
from .session import Session


class ArgumentParserSetup:
    """Handles command-line argument parsing for the localllm runner."""

    @staticmethod
    def create_parser() -> argparse.ArgumentParser:
        """
        Create and configure the argument parser.

        Returns:
            Configured ArgumentParser instance
        """
        parser = argparse.ArgumentParser(
            description="Run text completion with a local language model",
            formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        )

        parser.add_argument(
            "--config",
            type=str,
            help="Path to YAML configuration file",
        )
        parser.add_argument(
            "--model",
            type=str,
            help="Local model directory (overrides config)",
        )
        parser.add_argument(
            "--prompt",
            type=str,
            help="Prompt to complete (interactive mode if omitted)",
        )
        parser.add_argument(
            "--max-tokens",
            type=int,
            help="Maximum tokens to generate (overrides config)",
        )

        # Context sizing
        parser.add_argument("--context-size", type=int, help="Context window in tokens")
        parser.add_argument("--threads", type=int, help="Compute threads")
        parser.add_argument("--gpu-layers", type=int, help="Layers to offload to the accelerator")

        # Sampling parameters
        parser.add_argument("--temperature", type=float, help="Sampling temperature (<= 0 for greedy)")
        parser.add_argument("--top-k", type=int, help="Top-k truncation")
        parser.add_argument("--top-p", type=float, help="Nucleus sampling threshold")
        parser.add_argument("--seed", type=int, help="Sampling seed")

        # Logging
        parser.add_argument(
            "--log-level",
            type=str,
            choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            help="Logging level (overrides config)",
        )
        parser.add_argument("--log-file", type=str, help="Write logs to this file as well")

        return parser

    @staticmethod
    def parse_args(args: Optional[List[str]] = None) -> argparse.Namespace:
        return ArgumentParserSetup.create_parser().parse_args(args)


def build_config(args: argparse.Namespace) -> RuntimeConfig:
    """Merge the optional YAML config with command-line overrides."""
    config = load_config(args.config) if args.config else RuntimeConfig()

    overrides = {
        "model_path": args.model,
        "context_size": args.context_size,
        "thread_count": args.threads,
        "gpu_layer_count": args.gpu_layers,
        "max_predict_tokens": args.max_tokens,
    }
    for key, value in overrides.items():
        if value is not None:
            setattr(config.model, key, value)

    sampling_overrides = {
        "temperature": args.temperature,
        "top_k": args.top_k,
        "top_p": args.top_p,
        "seed": args.seed,
    }
    for key, value in sampling_overrides.items():
        if value is not None:
            setattr(config.sampling, key, value)

    if args.log_level is not None:
        config.log_level = args.log_level
    if args.log_file is not None:
        config.log_file = args.log_file
    return config


def run_interactive(session: Session, max_tokens: int) -> None:
    print("Entering interactive mode. Type 'quit' or 'exit' to end.")
    while True:
        try:
            prompt = input("> ")
        except (KeyboardInterrupt, EOFError):
            print()
            break
        if prompt.lower() in ("quit", "exit"):
            break
        result = session.generate(prompt, max_tokens)
        print(result.text)
        if not result.ok:
            print(f"[{result.status.value}]", file=sys.stderr)


def main(argv: Optional[List[str]] = None) -> int:
    args = ArgumentParserSetup.parse_args(argv)
    try:
        config = build_config(args)
    except LocalLLMError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    setup_logging(config.log_level, config.log_file)
    if not config.model.model_path:
        print("No model given; use --model or a config file", file=sys.stderr)
        return 2

    backend.init()
    session = Session(sampler_config=config.sampling)
    try:
        if not session.load_config(config.model):
            logger.error("Model failed to load")
            return 1

        if args.prompt is not None:
            result = session.generate(args.prompt, config.model.max_predict_tokens)
            print(result.text)
            return 0 if result.ok else 1

        run_interactive(session, config.model.max_predict_tokens)
        return 0
    finally:
        session.unload()
        backend.shutdown()
