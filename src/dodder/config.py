"""Environment-backed application configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

from dodder.agent.models import GenerationParams
from dodder.llm.client import DEFAULT_OLLAMA_HOST


def _to_bool(value: str | None, default: bool = False) -> bool:
    """Convert common env var truthy/falsy values into booleans."""
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


@dataclass(slots=True)
class AppConfig:
    """Runtime settings loaded from environment variables and config files."""

    ollama_host: str
    model: str | None
    request_timeout: float
    command_timeout: float | None
    max_steps: int
    max_backend_attempts: int
    max_correction_attempts: int
    max_context_chars: int
    max_output_chars: int
    log_dir: str
    log_level: str
    system_prompt: str | None
    json_mode: bool
    shell: str | None
    working_directory: str | None
    generation: GenerationParams

    @classmethod
    def from_env(cls) -> AppConfig:
        file_config = _load_preferred_file_config()
        generation_from_file = file_config.get("generation")
        generation_config = generation_from_file if isinstance(generation_from_file, dict) else {}

        return cls(
            ollama_host=(
                os.getenv("DODDER_OLLAMA_HOST")
                or os.getenv("OLLAMA_HOST")
                or _to_optional_string(file_config.get("ollama_host"))
                or DEFAULT_OLLAMA_HOST
            ),
            model=(
                os.getenv("DODDER_MODEL")
                or _to_optional_string(file_config.get("default_model"))
            ),
            request_timeout=_to_positive_float(
                os.getenv("DODDER_REQUEST_TIMEOUT") or file_config.get("request_timeout"),
                default=120.0,
            ),
            command_timeout=_to_optional_timeout(
                os.getenv("DODDER_COMMAND_TIMEOUT") or file_config.get("command_timeout"),
                default=300.0,
            ),
            max_steps=_to_positive_int(
                os.getenv("DODDER_MAX_STEPS") or file_config.get("max_steps"),
                default=20,
            ),
            max_backend_attempts=_to_positive_int(
                os.getenv("DODDER_MAX_BACKEND_ATTEMPTS")
                or file_config.get("max_backend_attempts"),
                default=2,
            ),
            max_correction_attempts=_to_non_negative_int(
                os.getenv("DODDER_MAX_CORRECTION_ATTEMPTS")
                or file_config.get("max_correction_attempts"),
                default=1,
            ),
            max_context_chars=_to_non_negative_int(
                os.getenv("DODDER_MAX_CONTEXT_CHARS") or file_config.get("max_context_chars"),
                default=24000,
            ),
            max_output_chars=_to_positive_int(
                os.getenv("DODDER_MAX_OUTPUT_CHARS") or file_config.get("max_output_chars"),
                default=8000,
            ),
            log_dir=(
                os.getenv("DODDER_LOG_DIR")
                or _to_optional_string(file_config.get("log_dir"))
                or "logs"
            ),
            log_level=(
                os.getenv("DODDER_LOG_LEVEL")
                or _to_optional_string(file_config.get("log_level"))
                or "WARNING"
            ).upper(),
            system_prompt=(
                os.getenv("DODDER_SYSTEM_PROMPT")
                or _to_optional_string(file_config.get("system_prompt"))
            ),
            json_mode=_to_bool(
                os.getenv("DODDER_JSON_MODE"),
                default=bool(file_config.get("json_mode", True)),
            ),
            shell=(
                os.getenv("DODDER_SHELL")
                or _to_optional_string(file_config.get("shell"))
            ),
            working_directory=(
                os.getenv("DODDER_CWD")
                or _to_optional_string(file_config.get("cwd"))
            ),
            generation=_generation_params(generation_config),
        )


def _generation_params(config: dict[str, object]) -> GenerationParams:
    defaults = GenerationParams()
    return GenerationParams(
        temperature=_to_float(
            os.getenv("DODDER_TEMPERATURE") or config.get("temperature"),
            default=defaults.temperature,
        ),
        max_tokens=_to_positive_int(
            os.getenv("DODDER_MAX_TOKENS") or config.get("max_tokens"),
            default=defaults.max_tokens,
        ),
        top_p=_to_float(
            os.getenv("DODDER_TOP_P") or config.get("top_p"),
            default=defaults.top_p,
        ),
        frequency_penalty=_to_float(
            os.getenv("DODDER_FREQUENCY_PENALTY") or config.get("frequency_penalty"),
            default=defaults.frequency_penalty,
        ),
        presence_penalty=_to_float(
            os.getenv("DODDER_PRESENCE_PENALTY") or config.get("presence_penalty"),
            default=defaults.presence_penalty,
        ),
    )


def _to_optional_string(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _load_file_config(path_value: str) -> dict[str, object]:
    path = Path(path_value)
    if not path.exists() or not path.is_file():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            parsed = json.load(fh)
    except (OSError, json.JSONDecodeError):
        return {}
    if isinstance(parsed, dict):
        return parsed
    return {}


def _load_preferred_file_config() -> dict[str, object]:
    explicit_path = os.getenv("DODDER_CONFIG_FILE")
    if explicit_path:
        return _load_file_config(explicit_path)

    shared_config = _load_file_config("dodder.config.json")
    local_override = _load_file_config("dodder.config.local.json")
    return _merge_dicts(shared_config, local_override)


def _merge_dicts(base: dict[str, object], override: dict[str, object]) -> dict[str, object]:
    merged: dict[str, object] = dict(base)
    for key, value in override.items():
        base_value = merged.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            merged[key] = _merge_dicts(base_value, value)
        else:
            merged[key] = value
    return merged


def _to_positive_int(value: object, *, default: int) -> int:
    parsed = _to_int(value)
    if parsed is None or parsed <= 0:
        return default
    return parsed


def _to_non_negative_int(value: object, *, default: int) -> int:
    parsed = _to_int(value)
    if parsed is None or parsed < 0:
        return default
    return parsed


def _to_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _to_float(value: object, *, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return default
    return default


def _to_positive_float(value: object, *, default: float) -> float:
    parsed = _to_float(value, default=default)
    return parsed if parsed > 0 else default


def _to_optional_timeout(value: object, *, default: float) -> float | None:
    """Return a timeout in seconds; zero disables the timeout."""
    parsed = _to_float(value, default=default)
    if parsed == 0:
        return None
    return parsed if parsed > 0 else default
