"""Agent configuration loading with defaults and CLI override merging."""

from __future__ import annotations

import copy
from pathlib import Path

import yaml

CONFIG_FILENAME = "meal-agent.yaml"

DEFAULTS = {
    "generation": {
        "backend": "solver",
        "model": "haiku",
        "timeout_seconds": 120,
    },
    "solver": {
        "max_deterministic_time": 10.0,
        "random_seed": 0,
    },
    "planning": {
        "default_span_days": 7,
        "max_days": 35,
        "meal_types": ["lunch", "dinner"],
        "max_prompt_recipes": 120,
    },
    "aisles": {
        # Extra keyword -> aisle rules layered over the built-in table.
        "keywords": {},
    },
    "recipes": {
        "dir": "recipes",
    },
}


def deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base, returning a new dict."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(state_dir: Path) -> dict:
    """Load agent settings from YAML in the state directory, falling back to defaults."""
    config_path = state_dir / CONFIG_FILENAME

    if config_path.exists():
        with open(config_path) as f:
            user_config = yaml.safe_load(f) or {}
        if not isinstance(user_config, dict):
            raise ValueError(f"{config_path} must contain a YAML mapping")
        return deep_merge(copy.deepcopy(DEFAULTS), user_config)

    return copy.deepcopy(DEFAULTS)


def apply_cli_overrides(config: dict, **overrides: object) -> dict:
    """Apply CLI argument overrides to config.

    Supports flat keys that map into nested config:
      backend -> generation.backend
      model -> generation.model
      meal_types -> planning.meal_types (comma-separated)
      recipe_dir -> recipes.dir
    """
    if overrides.get("backend") is not None:
        config["generation"]["backend"] = overrides["backend"]
    if overrides.get("model") is not None:
        config["generation"]["model"] = overrides["model"]
    if overrides.get("meal_types") is not None:
        types_str = str(overrides["meal_types"])
        config["planning"]["meal_types"] = [
            t.strip().lower() for t in types_str.split(",") if t.strip()
        ]
    if overrides.get("recipe_dir") is not None:
        config["recipes"]["dir"] = str(overrides["recipe_dir"])

    return config
