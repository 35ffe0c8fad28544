"""Configuration system for planwright.

Loads the active generation model, the model-selector choices, generation,
file-index and telemetry settings from ``.pw/config.json``. All fields are
optional; sensible defaults are provided for zero-config operation.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from planwright.state import config_path, ensure_base_layout, read_json, write_json

# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass
class ApiConfiguration:
    """The generation model the plan is submitted to.

    Opaque to the interaction engine: it is only forwarded to the host in an
    ``apiConfiguration`` event.
    """

    backend: str = "claude_code"  # claude_code, codex, cursor
    model: str = ""
    extra_flags: list[str] = field(default_factory=list)

    def label(self) -> str:
        return f"{self.backend}:{self.model}" if self.model else self.backend

    def to_dict(self) -> dict[str, Any]:
        return {"backend": self.backend, "model": self.model, "extra_flags": list(self.extra_flags)}


@dataclass
class GenerationConfig:
    """Generation service settings."""

    timeout: int = 600
    cancel_on_clear: bool = False


@dataclass
class IndexConfig:
    """Mention file-index settings."""

    max_entries: int = 5000
    ignore: list[str] = field(default_factory=list)


@dataclass
class TelemetryConfig:
    enabled: bool = True


@dataclass
class PlanwrightConfig:
    """Top-level configuration, loaded from .pw/config.json."""

    api: ApiConfiguration = field(default_factory=ApiConfiguration)
    models: list[ApiConfiguration] = field(default_factory=list)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    index: IndexConfig = field(default_factory=IndexConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

KNOWN_BACKENDS = ("claude_code", "codex", "cursor")


def default_models() -> list[ApiConfiguration]:
    return [ApiConfiguration(backend=backend) for backend in KNOWN_BACKENDS]


def default_config() -> PlanwrightConfig:
    """Return the built-in default configuration."""
    return PlanwrightConfig(models=default_models())


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

VALID_API_KEYS = {"backend", "model", "extra_flags"}
VALID_GENERATION_KEYS = {"timeout", "cancel_on_clear"}
VALID_INDEX_KEYS = {"max_entries", "ignore"}
VALID_TELEMETRY_KEYS = {"enabled"}
VALID_TOP_KEYS = {"api", "models", "generation", "index", "telemetry"}


def check_unknown_keys(data: dict, valid: set[str], context: str) -> None:
    """Raise ValueError if data contains keys not in valid set."""
    unknown = set(data) - valid
    if unknown:
        raise ValueError(f"Unknown keys in {context}: {', '.join(sorted(unknown))}")


def check_section(data: Any, context: str) -> dict:
    if not isinstance(data, dict):
        raise ValueError(f"{context} must be an object, got {type(data).__name__}")
    return data


def validate_api(data: dict, context: str = "api") -> ApiConfiguration:
    """Validate and construct an ApiConfiguration from a raw dict."""
    check_unknown_keys(data, VALID_API_KEYS, context)

    backend = data.get("backend", "claude_code")
    if not isinstance(backend, str):
        raise ValueError(f"{context}.backend must be a string, got {type(backend).__name__}")
    if backend not in KNOWN_BACKENDS:
        raise ValueError(f"{context}.backend '{backend}' is not a known backend: {', '.join(KNOWN_BACKENDS)}")

    model = data.get("model", "")
    if model and not isinstance(model, str):
        raise ValueError(f"{context}.model must be a string, got {type(model).__name__}")

    extra_flags = data.get("extra_flags", [])
    if not isinstance(extra_flags, list):
        raise ValueError(f"{context}.extra_flags must be a list, got {type(extra_flags).__name__}")
    for i, flag in enumerate(extra_flags):
        if not isinstance(flag, str):
            raise ValueError(f"{context}.extra_flags[{i}] must be a string, got {type(flag).__name__}")

    return ApiConfiguration(backend=backend, model=model or "", extra_flags=extra_flags)


def validate_models(data: Any) -> list[ApiConfiguration]:
    if not isinstance(data, list):
        raise ValueError(f"models must be a list, got {type(data).__name__}")
    return [validate_api(check_section(item, f"models[{i}]"), f"models[{i}]") for i, item in enumerate(data)]


def validate_generation(data: dict) -> GenerationConfig:
    check_unknown_keys(data, VALID_GENERATION_KEYS, "generation")

    timeout = data.get("timeout", 600)
    if not isinstance(timeout, int) or isinstance(timeout, bool):
        raise ValueError(f"generation.timeout must be an integer, got {type(timeout).__name__}")
    if timeout <= 0:
        raise ValueError(f"generation.timeout must be positive, got {timeout}")

    cancel_on_clear = data.get("cancel_on_clear", False)
    if not isinstance(cancel_on_clear, bool):
        raise ValueError(f"generation.cancel_on_clear must be a boolean, got {type(cancel_on_clear).__name__}")

    return GenerationConfig(timeout=timeout, cancel_on_clear=cancel_on_clear)


def validate_index(data: dict) -> IndexConfig:
    check_unknown_keys(data, VALID_INDEX_KEYS, "index")

    max_entries = data.get("max_entries", 5000)
    if not isinstance(max_entries, int) or isinstance(max_entries, bool):
        raise ValueError(f"index.max_entries must be an integer, got {type(max_entries).__name__}")

    ignore = data.get("ignore", [])
    if not isinstance(ignore, list):
        raise ValueError(f"index.ignore must be a list, got {type(ignore).__name__}")
    for i, pattern in enumerate(ignore):
        if not isinstance(pattern, str):
            raise ValueError(f"index.ignore[{i}] must be a string, got {type(pattern).__name__}")

    return IndexConfig(max_entries=max_entries, ignore=ignore)


def validate_telemetry(data: dict) -> TelemetryConfig:
    check_unknown_keys(data, VALID_TELEMETRY_KEYS, "telemetry")
    enabled = data.get("enabled", True)
    if not isinstance(enabled, bool):
        raise ValueError(f"telemetry.enabled must be a boolean, got {type(enabled).__name__}")
    return TelemetryConfig(enabled=enabled)


def validate_config(data: dict) -> PlanwrightConfig:
    """Validate a raw dict and construct a PlanwrightConfig.

    The active ``api`` model is always offered by the model selector: it is
    prepended to ``models`` when not already listed.

    Raises:
        ValueError: On unknown keys, type errors, or unknown backends.
    """
    check_unknown_keys(data, VALID_TOP_KEYS, "config")

    api = validate_api(check_section(data.get("api", {}), "api"))
    models = validate_models(data["models"]) if "models" in data else default_models()
    if api not in models:
        models = [api, *models]

    generation = validate_generation(check_section(data.get("generation", {}), "generation"))
    index = validate_index(check_section(data.get("index", {}), "index"))
    telemetry = validate_telemetry(check_section(data.get("telemetry", {}), "telemetry"))

    return PlanwrightConfig(api=api, models=models, generation=generation, index=index, telemetry=telemetry)


# ---------------------------------------------------------------------------
# Loading / saving
# ---------------------------------------------------------------------------


def load_config(base: Path) -> PlanwrightConfig:
    """Load configuration from .pw/config.json, falling back to defaults.

    Raises:
        ValueError: If the file exists but contains invalid JSON or fails
            validation.
    """
    path = config_path(base)
    if not path.exists():
        return default_config()

    text = path.read_text(encoding="utf-8").strip()
    if not text or text == "{}":
        return default_config()

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ValueError(f"Config must be a JSON object, got {type(data).__name__}")

    return validate_config(data)


def config_to_dict(cfg: PlanwrightConfig) -> dict[str, Any]:
    return {
        "api": cfg.api.to_dict(),
        "models": [m.to_dict() for m in cfg.models],
        "generation": {"timeout": cfg.generation.timeout, "cancel_on_clear": cfg.generation.cancel_on_clear},
        "index": {"max_entries": cfg.index.max_entries, "ignore": list(cfg.index.ignore)},
        "telemetry": {"enabled": cfg.telemetry.enabled},
    }


def save_api_configuration(base: Path, api: ApiConfiguration) -> None:
    """Persist the selected model as ``api`` in .pw/config.json.

    Other keys in the file are left untouched. Raises ``ValueError`` when the
    existing file is not a JSON object.
    """
    ensure_base_layout(base)
    path = config_path(base)
    try:
        data = read_json(path)
    except FileNotFoundError:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a JSON object")
    data["api"] = api.to_dict()
    write_json(path, data)
