"""Personality configuration loader.

All user-facing copy (greeting, default title, system instructions, error
texts) lives in a YAML file so it can be translated without touching code.
"""

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from barta.models.messages import ModelVariant

_DEFAULT_PATH = Path(__file__).parent / "default.yaml"


def load_personality(path: Path | None = None) -> dict[str, Any]:
    """Load personality configuration from YAML file.

    Args:
        path: Optional path to personality YAML file.
              Defaults to default.yaml in this directory.

    Returns:
        Dictionary with personality configuration.

    Raises:
        FileNotFoundError: If the personality file does not exist.
        yaml.YAMLError: If the file contains invalid YAML.
        ValueError: If a model variant has no system instruction.
    """
    config_path = path or _DEFAULT_PATH

    if not config_path.exists():
        raise FileNotFoundError(f"Personality file not found: {config_path}")

    with open(config_path, encoding="utf-8") as f:
        config: dict[str, Any] = yaml.safe_load(f)

    instructions = config.get("instructions") or {}
    missing = [variant.value for variant in ModelVariant if variant.value not in instructions]
    if missing:
        raise ValueError(
            f"Personality file {config_path} has no instruction for: {', '.join(missing)}"
        )

    return config


@lru_cache(maxsize=1)
def get_personality() -> dict[str, Any]:
    """Return the default personality, loaded once per process."""
    return load_personality()


def get_system_instruction(
    model: ModelVariant, personality: dict[str, Any] | None = None
) -> str:
    """Return the system instruction bound to ``model``."""
    if personality is None:
        personality = get_personality()
    return personality["instructions"][model.value].strip()


def get_error_messages(personality: dict[str, Any] | None = None) -> dict[str, str]:
    if personality is None:
        personality = get_personality()
    return dict(personality.get("errors") or {})
