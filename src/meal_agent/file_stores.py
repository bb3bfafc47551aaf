"""File-backed stores under a state directory, used by the CLI.

Layout::

    <state>/profiles/<user>.yaml
    <state>/aisles/<user>.yaml
    <state>/runs/<run_id>.json
    <state>/meal_plans/<user>/<date>.json
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path

import yaml

from meal_agent.models import CookingSession, Meal, MealPlanDay, Profile, Run
from meal_agent.stores import newest_first, normalize_override

logger = logging.getLogger(__name__)


def _safe_name(value: str) -> str:
    name = re.sub(r"[^A-Za-z0-9_.-]", "_", str(value)).strip(".")
    if not name:
        raise ValueError(f"Invalid identifier: {value!r}")
    return name


def _write_json(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2) + "\n")
    tmp.replace(path)


def _read_yaml(path: Path) -> dict:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a YAML mapping")
    return data


class FileProfileStore:
    def __init__(self, state_dir: Path):
        self.root = Path(state_dir) / "profiles"

    def _path(self, user_id: str) -> Path:
        return self.root / f"{_safe_name(user_id)}.yaml"

    def find_by_user(self, user_id: str) -> Profile | None:
        path = self._path(user_id)
        if not path.exists():
            return None
        data = _read_yaml(path)
        data.setdefault("user_id", user_id)
        return Profile.from_dict(data)

    def save(self, profile: Profile) -> None:
        path = self._path(profile.user_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump(profile.to_dict(), f, sort_keys=False)


class FileAisleOverrideStore:
    def __init__(self, state_dir: Path):
        self.root = Path(state_dir) / "aisles"

    def _path(self, user_id: str) -> Path:
        return self.root / f"{_safe_name(user_id)}.yaml"

    def get_overrides(self, user_id: str) -> dict[str, str]:
        path = self._path(user_id)
        if not path.exists():
            return {}
        return {str(k): str(v) for k, v in _read_yaml(path).items()}

    def upsert(self, user_id: str, name: str, aisle: str) -> tuple[str, str]:
        key, value = normalize_override(name, aisle)
        overrides = self.get_overrides(user_id)
        overrides[key] = value
        path = self._path(user_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump(dict(sorted(overrides.items())), f)
        logger.info("Aisle override for %s: %s -> %s", user_id, key, value)
        return key, value


class FileRunStore:
    def __init__(self, state_dir: Path):
        self.root = Path(state_dir) / "runs"

    def _path(self, run_id: str) -> Path:
        return self.root / f"{_safe_name(run_id)}.json"

    def _read(self, path: Path) -> Run:
        return Run.from_dict(json.loads(path.read_text()))

    def create(self, run: Run) -> Run:
        path = self._path(run.id)
        if path.exists():
            raise ValueError(f"Run already exists: {run.id}")
        _write_json(path, run.to_dict())
        return self._read(path)

    def find(self, run_id: str, user_id: str) -> Run | None:
        path = self._path(run_id)
        if not path.exists():
            return None
        run = self._read(path)
        return run if run.user_id == user_id else None

    def update(self, run: Run) -> Run:
        path = self._path(run.id)
        if not path.exists():
            raise KeyError(run.id)
        _write_json(path, run.to_dict())
        return self._read(path)

    def list_for_user(self, user_id: str, limit: int = 20) -> list[Run]:
        if not self.root.is_dir():
            return []
        runs = [self._read(p) for p in sorted(self.root.glob("*.json"))]
        return newest_first((r for r in runs if r.user_id == user_id), limit)


class FileMealPlanStore:
    def __init__(self, state_dir: Path):
        self.root = Path(state_dir) / "meal_plans"

    def _path(self, date: str, user_id: str) -> Path:
        return self.root / _safe_name(user_id) / f"{_safe_name(date)}.json"

    def commit_day(
        self, date: str, user_id: str, meals: list[Meal], cooking_sessions: list[CookingSession]
    ) -> MealPlanDay:
        day = MealPlanDay(date=date, meals=list(meals), cooking_sessions=list(cooking_sessions))
        _write_json(self._path(date, user_id), day.to_dict())
        return day

    def find_day(self, date: str, user_id: str) -> MealPlanDay | None:
        path = self._path(date, user_id)
        if not path.exists():
            return None
        return MealPlanDay.from_dict(json.loads(path.read_text()))

    def delete_day(self, date: str, user_id: str) -> None:
        self._path(date, user_id).unlink(missing_ok=True)

    def days_for_user(self, user_id: str) -> list[MealPlanDay]:
        user_dir = self.root / _safe_name(user_id)
        if not user_dir.is_dir():
            return []
        return [MealPlanDay.from_dict(json.loads(p.read_text())) for p in sorted(user_dir.glob("*.json"))]
