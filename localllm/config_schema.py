"""
Configuration schema validation and environment variable support.

This module validates YAML configuration files against a schema, resolves
``${VAR}`` / ``${VAR:default}`` references and applies ``LOCALLLM_*``
environment overrides.
"""

import os
import re
from typing import Any, Dict

import yaml

from .config import RuntimeConfig
from .constants import (
    DEFAULT_CONTEXT_SIZE,
    DEFAULT_GPU_LAYER_COUNT,
    DEFAULT_MAX_PREDICT_TOKENS,
    DEFAULT_MIN_KEEP,
    DEFAULT_SEED,
    DEFAULT_TEMPERATURE,
    DEFAULT_THREAD_COUNT,
    DEFAULT_TOP_K,
    DEFAULT_TOP_P,
    ENV_TRUE_VALUES,
)
from .errors import ConfigurationError, ValidationError, logger


class ConfigSchema:
    """Defines the schema for localllm configuration files."""

    SCHEMA = {
        "model": {
            "type": dict,
            "required": True,
            "description": "Model location and context sizing",
            "schema": {
                "model_path": {
                    "type": str,
                    "required": True,
                    "description": "Path to a local model directory",
                    "env_var": "LOCALLLM_MODEL_PATH",
                },
                "context_size": {
                    "type": int,
                    "required": False,
                    "default": DEFAULT_CONTEXT_SIZE,
                    "description": "Context window in tokens",
                    "min_value": 1,
                    "env_var": "LOCALLLM_CONTEXT_SIZE",
                },
                "thread_count": {
                    "type": int,
                    "required": False,
                    "default": DEFAULT_THREAD_COUNT,
                    "description": "Compute threads",
                    "min_value": 1,
                    "env_var": "LOCALLLM_THREAD_COUNT",
                },
                "gpu_layer_count": {
                    "type": int,
                    "required": False,
                    "default": DEFAULT_GPU_LAYER_COUNT,
                    "description": "Layers to offload to the accelerator",
                    "min_value": 0,
                    "env_var": "LOCALLLM_GPU_LAYER_COUNT",
                },
                "max_predict_tokens": {
                    "type": int,
                    "required": False,
                    "default": DEFAULT_MAX_PREDICT_TOKENS,
                    "description": "Generation budget used by the inference service",
                    "min_value": 0,
                    "env_var": "LOCALLLM_MAX_PREDICT_TOKENS",
                },
            },
        },
        "sampling": {
            "type": dict,
            "required": False,
            "default": {},
            "description": "Sampler chain parameters",
            "schema": {
                "temperature": {
                    "type": float,
                    "required": False,
                    "default": DEFAULT_TEMPERATURE,
                    "description": "Temperature (<= 0 selects greedy decoding)",
                    "min_value": 0.0,
                    "env_var": "LOCALLLM_TEMPERATURE",
                },
                "top_k": {
                    "type": int,
                    "required": False,
                    "default": DEFAULT_TOP_K,
                    "description": "Top-k truncation",
                    "min_value": 1,
                    "env_var": "LOCALLLM_TOP_K",
                },
                "top_p": {
                    "type": float,
                    "required": False,
                    "default": DEFAULT_TOP_P,
                    "description": "Nucleus truncation threshold",
                    "min_value": 0.0,
                    "max_value": 1.0,
                    "env_var": "LOCALLLM_TOP_P",
                },
                "min_keep": {
                    "type": int,
                    "required": False,
                    "default": DEFAULT_MIN_KEEP,
                    "description": "Minimum candidates kept by top-p",
                    "min_value": 1,
                    "env_var": "LOCALLLM_MIN_KEEP",
                },
                "seed": {
                    "type": int,
                    "required": False,
                    "default": DEFAULT_SEED,
                    "description": "Draw seed (0xFFFFFFFF for random)",
                    "min_value": 0,
                    "env_var": "LOCALLLM_SEED",
                },
            },
        },
        "download": {
            "type": dict,
            "required": False,
            "default": {},
            "description": "Hugging Face Hub source used when the model directory is missing",
            "schema": {
                "repo_id": {
                    "type": str,
                    "required": False,
                    "default": None,
                    "description": "Repository to download from (disabled when unset)",
                    "env_var": "LOCALLLM_DOWNLOAD_REPO_ID",
                },
                "revision": {
                    "type": str,
                    "required": False,
                    "default": "main",
                    "description": "Branch, tag or commit",
                    "env_var": "LOCALLLM_DOWNLOAD_REVISION",
                },
                "files": {
                    "type": list,
                    "item_type": str,
                    "required": False,
                    "default": None,
                    "description": "Files to fetch (the repository listing when unset)",
                },
                "model_version": {
                    "type": str,
                    "required": False,
                    "default": None,
                    "description": "Version string reported for the model",
                    "env_var": "LOCALLLM_MODEL_VERSION",
                },
            },
        },
        "log_level": {
            "type": str,
            "required": False,
            "default": "INFO",
            "description": "Logging level",
            "choices": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            "env_var": "LOCALLLM_LOG_LEVEL",
        },
        "log_file": {
            "type": str,
            "required": False,
            "default": None,
            "description": "Optional log file",
            "env_var": "LOCALLLM_LOG_FILE",
        },
    }


class EnvironmentVariableResolver:
    """Handles environment variable substitution in configuration values."""

    ENV_VAR_PATTERN = re.compile(r'\$\{([^}]+)\}')

    @classmethod
    def resolve_env_vars(cls, value: Any) -> Any:
        """Resolve ``${VAR}`` references recursively."""
        if isinstance(value, str):
            return cls._resolve_string_env_vars(value)
        elif isinstance(value, dict):
            return {k: cls.resolve_env_vars(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [cls.resolve_env_vars(item) for item in value]
        else:
            return value

    @classmethod
    def _resolve_string_env_vars(cls, value: str) -> str:
        def replace_env_var(match):
            env_var = match.group(1)
            # Support default values: ${VAR:default}
            if ':' in env_var:
                var_name, default_value = env_var.split(':', 1)
                return os.getenv(var_name, default_value)
            env_value = os.getenv(env_var)
            if env_value is None:
                raise ConfigurationError(
                    f"Environment variable '{env_var}' not found",
                    details={"variable": env_var, "value": value}
                )
            return env_value

        return cls.ENV_VAR_PATTERN.sub(replace_env_var, value)

    @classmethod
    def apply_env_var_overrides(cls, config: Dict[str, Any], schema: Dict[str, Any]) -> Dict[str, Any]:
        """Apply ``env_var`` overrides declared in the schema."""
        result = config.copy()

        for key, field_schema in schema.items():
            env_var = field_schema.get("env_var")
            if env_var and env_var in os.environ:
                env_value = os.environ[env_var]
                try:
                    if field_schema["type"] == bool:
                        result[key] = env_value.lower() in ENV_TRUE_VALUES
                    elif field_schema["type"] == int:
                        result[key] = int(env_value, 0)
                    elif field_schema["type"] == float:
                        result[key] = float(env_value)
                    else:
                        result[key] = env_value
                except (ValueError, TypeError) as e:
                    raise ConfigurationError(
                        f"Invalid value for environment variable {env_var}: {env_value}",
                        details={"env_var": env_var, "value": env_value, "expected_type": field_schema["type"].__name__}
                    ) from e
                logger.info(f"Applied environment override: {key} = {result[key]} (from {env_var})")

            if field_schema["type"] == dict and "schema" in field_schema:
                nested = result.get(key)
                if nested is None:
                    nested = {}
                if isinstance(nested, dict):
                    nested = cls.apply_env_var_overrides(nested, field_schema["schema"])
                    if nested or key in result:
                        result[key] = nested

        return result


class ConfigValidator:
    """Validates configuration against schema."""

    def __init__(self, schema: Dict[str, Any]):
        self.schema = schema

    def validate(self, config: Dict[str, Any]) -> Dict[str, Any]:
        validated_config = self._validate_dict(config, self.schema, "root")
        logger.debug("Configuration validation successful")
        return validated_config

    def _validate_dict(self, config: Dict[str, Any], schema: Dict[str, Any], path: str) -> Dict[str, Any]:
        result = {}

        for key, field_schema in schema.items():
            if field_schema.get("required", False) and key not in config:
                raise ValidationError(
                    f"Required field '{key}' missing",
                    details={"path": path, "field": key}
                )

        for key, field_schema in schema.items():
            if key in config:
                result[key] = self._validate_field(config[key], field_schema, f"{path}.{key}")
            elif field_schema["type"] == dict and "schema" in field_schema:
                result[key] = self._validate_dict({}, field_schema["schema"], f"{path}.{key}")
            elif "default" in field_schema:
                result[key] = field_schema["default"]

        unknown_fields = set(config.keys()) - set(schema.keys())
        if unknown_fields:
            logger.warning(f"Unknown configuration fields: {sorted(unknown_fields)}")

        return result

    def _validate_field(self, value: Any, field_schema: Dict[str, Any], path: str) -> Any:
        expected_type = field_schema["type"]

        if value is None and not field_schema.get("required", False):
            if expected_type == dict and "schema" in field_schema:
                return self._validate_dict({}, field_schema["schema"], path)
            return field_schema.get("default")

        # YAML integers are acceptable where floats are expected
        if expected_type == float and isinstance(value, int) and not isinstance(value, bool):
            value = float(value)

        if expected_type == dict and not isinstance(value, dict):
            raise ValidationError(
                f"Field '{path}' must be a dictionary",
                details={"path": path, "value": value, "expected_type": "dict"}
            )
        if expected_type == list:
            item_type = field_schema.get("item_type", object)
            if not isinstance(value, list) or not all(isinstance(item, item_type) for item in value):
                raise ValidationError(
                    f"Field '{path}' must be a list of {item_type.__name__}",
                    details={"path": path, "value": value, "expected_type": "list"}
                )
            return list(value)

        if expected_type in (str, int, float, bool) and (
            not isinstance(value, expected_type) or (expected_type != bool and isinstance(value, bool))
        ):
            raise ValidationError(
                f"Field '{path}' must be of type {expected_type.__name__}",
                details={"path": path, "value": value, "expected_type": expected_type.__name__}
            )

        if "choices" in field_schema and value not in field_schema["choices"]:
            raise ValidationError(
                f"Field '{path}' must be one of {field_schema['choices']}",
                details={"path": path, "value": value, "choices": field_schema["choices"]}
            )

        if "min_value" in field_schema and value < field_schema["min_value"]:
            raise ValidationError(
                f"Field '{path}' must be >= {field_schema['min_value']}",
                details={"path": path, "value": value, "min_value": field_schema["min_value"]}
            )
        if "max_value" in field_schema and value > field_schema["max_value"]:
            raise ValidationError(
                f"Field '{path}' must be <= {field_schema['max_value']}",
                details={"path": path, "value": value, "max_value": field_schema["max_value"]}
            )

        if expected_type == dict and "schema" in field_schema:
            return self._validate_dict(value, field_schema["schema"], path)

        return value


def validate_config(config: Dict[str, Any], schema: Dict[str, Any] = None) -> Dict[str, Any]:
    """
    Validate configuration with environment variable resolution.

    Args:
        config: Configuration dictionary to validate
        schema: Optional custom schema (defaults to ConfigSchema.SCHEMA)

    Returns:
        Validated configuration with environment variables resolved

    Raises:
        ValidationError: If validation fails
        ConfigurationError: If environment variable resolution fails
    """
    if schema is None:
        schema = ConfigSchema.SCHEMA

    config = EnvironmentVariableResolver.resolve_env_vars(config)
    config = EnvironmentVariableResolver.apply_env_var_overrides(config, schema)
    return ConfigValidator(schema).validate(config)


def validate_config_file(config_path: str) -> Dict[str, Any]:
    """
    Load and validate a configuration file.

    Raises:
        ConfigurationError: If file cannot be loaded
        ValidationError: If validation fails
    """
    try:
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {config_path}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file: {e}")

    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise ConfigurationError("Configuration file must contain a YAML dictionary")

    return validate_config(config)


def load_config(config_path: str) -> RuntimeConfig:
    """Load, validate and convert a YAML file into a RuntimeConfig."""
    return RuntimeConfig.from_dict(validate_config_file(config_path))
