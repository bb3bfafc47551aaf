"""Recipe catalog backed by a directory of markdown files with YAML frontmatter."""

from __future__ import annotations

import logging
import re
from pathlib import Path

import frontmatter
import yaml

from meal_agent.models import Nutrition, PlanPreferences, Recipe

logger = logging.getLogger(__name__)

_LIST_MARKER_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+")
_SUBHEADING_RE = re.compile(r"^\s*(?:\*\*.+\*\*|.+:)\s*$")


def normalize_servings(raw: str | int | float | None) -> int | None:
    """Parse varied servings formats into an integer.

    Handles: "Serves 4", "4", "4 servings", "Servings: 4",
    "4 to 6 servings" (midpoint), "" -> None.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return int(raw) if raw > 0 else None

    s = str(raw).strip()
    if not s:
        return None

    m = re.search(r"(?:serves?|servings?:?)\s*(\d+)", s, re.IGNORECASE)
    if m:
        return int(m.group(1)) or None

    m = re.match(r"(\d+)\s*(?:to|-)\s*(\d+)", s)
    if m:
        return (int(m.group(1)) + int(m.group(2))) // 2 or None

    m = re.match(r"(\d+)", s)
    if m and int(m.group(1)) > 0:
        return int(m.group(1))

    return None


def normalize_time(raw: str | int | float | None) -> int | None:
    """Parse "10 minutes", "1 hour 30 minutes", 15 or "1h" into minutes."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return int(raw) if raw > 0 else None

    s = str(raw).strip()
    if not s:
        return None

    total = 0
    m = re.search(r"(\d+)\s*(?:hours?|hrs?|h)\b", s, re.IGNORECASE)
    if m:
        total += int(m.group(1)) * 60
    m = re.search(r"(\d+)\s*(?:minutes?|mins?|m)\b", s, re.IGNORECASE)
    if m:
        total += int(m.group(1))
    if total > 0:
        return total

    m = re.match(r"(\d+)$", s)
    if m:
        return int(m.group(1)) or None
    return None


def extract_section(content: str, *headings: str) -> str | None:
    """Text under the first ``## <heading>`` (or ``###``) among headings.

    Captures everything until the next heading of equal or higher level.
    """
    names = "|".join(re.escape(h) for h in headings)
    in_section = False
    section_level = 0
    result: list[str] = []

    for line in content.split("\n"):
        m = re.match(rf"^(#{{2,3}})\s+(?:{names})\b", line, re.IGNORECASE)
        if m and not in_section:
            in_section = True
            section_level = len(m.group(1))
            continue

        if in_section:
            if re.match(r"^(#{1,%d})\s+" % section_level, line):
                break
            result.append(line)

    text = "\n".join(result).strip()
    return text or None


def section_lines(text: str | None) -> tuple[str, ...]:
    """List items of a section with bullets, numbering and sub-headings removed."""
    if not text:
        return ()
    lines = []
    for line in text.split("\n"):
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        stripped = _LIST_MARKER_RE.sub("", line).strip()
        if not _LIST_MARKER_RE.match(line) and _SUBHEADING_RE.match(stripped):
            continue
        stripped = re.sub(r"^\[[ xX]\]\s*", "", stripped)
        if stripped:
            lines.append(stripped)
    return tuple(lines)


def _to_float(val: object) -> float | None:
    if val is None or val == "":
        return None
    try:
        return float(val)
    except (ValueError, TypeError):
        return None


def _to_str(val: object) -> str | None:
    if val is None or val == "":
        return None
    return str(val).strip()


def parse_recipe_file(file_path: Path) -> Recipe | None:
    """Parse a single recipe markdown file; None for non-recipes."""
    try:
        post = frontmatter.load(file_path)
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
        logger.warning("Could not read %s: %s", file_path.name, e)
        return None

    meta = post.metadata
    if meta.get("type") != "recipe":
        return None

    owner = _to_str(meta.get("owner"))
    title = _to_str(meta.get("title")) or file_path.stem.replace("-", " ").replace("_", " ").title()

    return Recipe(
        id=_to_str(meta.get("id")) or file_path.stem,
        title=title,
        ingredients=section_lines(extract_section(post.content, "Ingredients")),
        instructions=section_lines(extract_section(post.content, "Directions", "Instructions", "Method")),
        servings=normalize_servings(meta.get("servings")),
        category=(_to_str(meta.get("category")) or _to_str(meta.get("meal_type")) or "").lower() or None,
        prep_time_min=normalize_time(meta.get("prep_time")) or normalize_time(meta.get("total_time")),
        is_global=bool(meta.get("global", owner is None)),
        owner_id=owner,
        nutrition=Nutrition(
            calories=_to_float(meta.get("calories")),
            protein_g=_to_float(meta.get("protein_g")),
            carbs_g=_to_float(meta.get("carbs_g")),
            fat_g=_to_float(meta.get("fat_g")),
        ),
    )


def discover_recipe_files(recipe_dir: Path) -> list[Path]:
    """Find all .md files in the recipe directory."""
    return sorted(recipe_dir.glob("*.md"))


class MarkdownRecipeStore:
    """Read-only recipe catalog; files are parsed once on first use."""

    def __init__(self, recipe_dir: Path):
        self.recipe_dir = Path(recipe_dir)
        self._recipes: list[Recipe] | None = None

    def load(self) -> list[Recipe]:
        if self._recipes is None:
            if not self.recipe_dir.is_dir():
                logger.warning("Recipe directory %s does not exist", self.recipe_dir)
                self._recipes = []
                return self._recipes

            recipes = []
            seen: set[str] = set()
            for f in discover_recipe_files(self.recipe_dir):
                recipe = parse_recipe_file(f)
                if recipe is None:
                    logger.debug("SKIP (not a recipe): %s", f.name)
                    continue
                if recipe.id in seen:
                    logger.warning("Duplicate recipe id %s in %s, skipping", recipe.id, f.name)
                    continue
                seen.add(recipe.id)
                recipes.append(recipe)
            logger.debug("Loaded %d recipes from %s", len(recipes), self.recipe_dir)
            self._recipes = recipes
        return self._recipes

    def list_eligible(self, user_id: str, preferences: PlanPreferences | None = None) -> list[Recipe]:
        return [r for r in self.load() if r.is_global or r.owner_id == user_id]
