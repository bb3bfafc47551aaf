"""Ingredient normalization: canonical name, quantity, unit and grocery aisle."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from fractions import Fraction

DEFAULT_AISLE = "Other"

AISLE_ORDER = [
    "Produce",
    "Meat & Seafood",
    "Dairy",
    "Pantry",
    "Spices & Condiments",
    "Frozen",
    "Other",
]

# Aisle classification by keyword; the longest matching keyword wins.
SECTION_KEYWORDS = {
    "Produce": [
        "lettuce", "tomato", "onion", "garlic", "bell pepper", "jalapeno",
        "carrot", "celery", "potato", "sweet potato", "broccoli", "spinach",
        "kale", "cabbage", "zucchini", "mushroom", "avocado", "lemon", "lime",
        "ginger", "cilantro", "parsley", "basil", "mint", "green onion",
        "scallion", "cucumber", "corn", "pea", "bean sprout", "apple",
        "banana", "berry", "mango", "orange", "squash", "cauliflower",
        "asparagus", "eggplant", "beet", "radish",
    ],
    "Meat & Seafood": [
        "chicken", "beef", "pork", "turkey", "salmon", "shrimp", "fish",
        "sausage", "bacon", "steak", "thigh", "breast", "drumstick", "lamb",
        "tilapia", "tuna", "crab", "lobster", "scallop", "clam", "mussel",
        "oyster", "meatball", "chorizo",
    ],
    "Dairy": [
        "cheese", "milk", "cream", "yogurt", "butter", "egg", "sour cream",
        "cream cheese", "mozzarella", "parmesan", "cheddar", "ricotta", "feta",
        "cottage cheese", "whipping cream", "half and half",
    ],
    "Pantry": [
        "rice", "pasta", "noodle", "flour", "sugar", "oil", "olive oil",
        "vinegar", "broth", "stock", "canned", "bean", "lentil", "chickpea",
        "coconut milk", "tomato sauce", "tomato paste", "soy sauce",
        "tortilla", "bread", "bun", "pita", "wrap", "oat", "quinoa", "tofu",
        "peanut butter",
    ],
    "Spices & Condiments": [
        "salt", "pepper", "black pepper", "cumin", "paprika", "oregano",
        "thyme", "cinnamon", "chili powder", "curry", "turmeric", "cayenne",
        "nutmeg", "garlic powder", "onion powder", "bay leaf",
        "red pepper flake", "hot sauce", "sriracha", "mustard", "ketchup",
        "mayo", "mayonnaise", "honey", "maple syrup", "worcestershire",
    ],
    "Frozen": [
        "frozen",
        "ice cream",
    ],
}

# Exact normalized names whose keyword match would land in the wrong aisle.
DEFAULT_AISLE_TABLE = {
    "coconut milk": "Pantry",
    "almond milk": "Dairy",
    "egg noodle": "Pantry",
    "peanut": "Pantry",
}

UNIT_ALIASES = {
    # volume
    "tsp": "tsp",
    "teaspoon": "tsp",
    "teaspoons": "tsp",
    "tbsp": "tbsp",
    "tbs": "tbsp",
    "tablespoon": "tbsp",
    "tablespoons": "tbsp",
    "cup": "cup",
    "cups": "cup",
    "c": "cup",
    "ml": "ml",
    "milliliter": "ml",
    "milliliters": "ml",
    "l": "l",
    "liter": "l",
    "liters": "l",
    # weight
    "g": "g",
    "gram": "g",
    "grams": "g",
    "kg": "kg",
    "kilogram": "kg",
    "kilograms": "kg",
    "oz": "oz",
    "ounce": "oz",
    "ounces": "oz",
    "lb": "lb",
    "lbs": "lb",
    "pound": "lb",
    "pounds": "lb",
    # count
    "whole": "whole",
    "clove": "clove",
    "cloves": "clove",
    "can": "can",
    "cans": "can",
    "package": "package",
    "packages": "package",
    "slice": "slice",
    "slices": "slice",
    "piece": "piece",
    "pieces": "piece",
}

UNIT_FAMILIES = {
    "tsp": "volume",
    "tbsp": "volume",
    "cup": "volume",
    "ml": "volume",
    "l": "volume",
    "g": "weight",
    "kg": "weight",
    "oz": "weight",
    "lb": "weight",
    "whole": "count",
    "clove": "count",
    "can": "count",
    "package": "count",
    "slice": "count",
    "piece": "count",
}

COUNT_UNIT = "whole"

# Measures with no comparable quantity; their lines go to review.
VAGUE_MEASURES = {
    "pinch", "pinches", "dash", "dashes", "handful", "handfuls",
    "splash", "splashes", "sprig", "sprigs", "bunch", "bunches",
}

PREPARATION_WORDS = [
    "to taste", "for garnish", "for serving", "optional",
    "fresh", "freshly", "chopped", "minced", "diced", "sliced", "grated",
    "shredded", "crushed", "peeled", "cubed", "julienned", "halved",
    "quartered", "trimmed", "rinsed", "drained", "softened", "melted",
    "beaten", "cooked", "uncooked", "finely", "roughly", "thinly",
    "coarsely", "large", "medium", "small", "organic", "raw", "boneless",
    "skinless", "ripe",
]

UNICODE_FRACTIONS = {
    "½": "1/2",
    "⅓": "1/3",
    "⅔": "2/3",
    "¼": "1/4",
    "¾": "3/4",
    "⅛": "1/8",
}

IRREGULAR_PLURALS = {
    "leaves": "leaf",
    "halves": "half",
    "loaves": "loaf",
}

# Words ending in "s" that are already singular.
SINGULAR_S_WORDS = {"hummus", "couscous", "asparagus", "molasses", "swiss", "grits"}

_RANGE_RE = re.compile(r"^[\d./]+\s*(?:-|–|to)\s*[\d./]+\s+(.*)$")
_QUANTITY_RE = re.compile(r"^(\d+\s+\d+/\d+|\d+/\d+|\d+(?:\.\d+)?|\.\d+)\s+(.*)$")
_PREP_RE = re.compile(r"\b(?:" + "|".join(re.escape(w) for w in PREPARATION_WORDS) + r")\b")


@dataclass(frozen=True)
class NormalizedIngredient:
    original: str
    normalized_name: str
    quantity: Fraction | None
    unit: str | None
    aisle: str


def parse_quantity(text: str) -> Fraction | None:
    """Parse an integer, simple fraction, mixed number or decimal."""
    s = text.strip()
    for glyph, ascii_frac in UNICODE_FRACTIONS.items():
        s = s.replace(glyph, f" {ascii_frac}")
    s = re.sub(r"\s+", " ", s).strip()
    if not s:
        return None

    m = re.fullmatch(r"(\d+) (\d+)/(\d+)", s)
    if m:
        den = int(m.group(3))
        if den == 0:
            return None
        return int(m.group(1)) + Fraction(int(m.group(2)), den)

    m = re.fullmatch(r"(\d+)/(\d+)", s)
    if m:
        den = int(m.group(2))
        if den == 0:
            return None
        return Fraction(int(m.group(1)), den)

    if re.fullmatch(r"\d+(?:\.\d+)?|\.\d+", s):
        return Fraction(s)

    return None


def normalize_unit(unit: str | None) -> str | None:
    """Map a unit word to its canonical form, or None when not a known unit."""
    if not unit:
        return None
    u = re.sub(r"[^a-z]", "", unit.lower())
    return UNIT_ALIASES.get(u)


def unit_family(unit: str | None) -> str | None:
    if not unit:
        return None
    return UNIT_FAMILIES.get(unit)


def singularize(word: str) -> str:
    if word in IRREGULAR_PLURALS:
        return IRREGULAR_PLURALS[word]
    if word in SINGULAR_S_WORDS or len(word) <= 3:
        return word
    if word.endswith("ies"):
        return word[:-3] + "y"
    if word.endswith("oes"):
        return word[:-2]
    if word.endswith(("ches", "shes", "xes", "sses")):
        return word[:-2]
    if word.endswith("s") and not word.endswith(("ss", "us", "is")):
        return word[:-1]
    return word


def normalize_name(text: str) -> str:
    """Canonical ingredient key: lower-case, unadorned, singular."""
    s = text.lower()
    s = re.sub(r"\(.*?\)", " ", s)
    s = re.sub(r"[^\w\s]", " ", s)
    s = _PREP_RE.sub(" ", s)
    s = re.sub(r"\s+", " ", s).strip()
    s = re.sub(r"^of\s+", "", s)
    return " ".join(singularize(w) for w in s.split())


def classify_aisle(
    normalized_name: str,
    aisle_overrides: Mapping[str, str] | None = None,
    extra_keywords: Mapping[str, str] | None = None,
) -> str:
    """Resolve the aisle for a normalized name.

    Order: per-user override, exact default table, keyword rules (longest
    keyword wins, configured extras considered alongside the built-ins).
    """
    if aisle_overrides and normalized_name in aisle_overrides:
        return aisle_overrides[normalized_name]
    if normalized_name in DEFAULT_AISLE_TABLE:
        return DEFAULT_AISLE_TABLE[normalized_name]

    best: tuple[int, str] | None = None
    rules: list[tuple[str, str]] = [
        (kw, section) for section, keywords in SECTION_KEYWORDS.items() for kw in keywords
    ]
    if extra_keywords:
        rules.extend((kw.lower(), aisle) for kw, aisle in extra_keywords.items())
    for kw, section in rules:
        if kw in normalized_name and (best is None or len(kw) > best[0]):
            best = (len(kw), section)
    return best[1] if best else DEFAULT_AISLE


def split_quantity(cleaned: str) -> tuple[Fraction | None, str]:
    """Peel a leading quantity off lower-cased ingredient text.

    Ranges ("2-3", "1 to 2") are not a single quantity: the numbers are
    removed but the quantity is None.
    """
    m = _RANGE_RE.match(cleaned)
    if m:
        return None, m.group(1)
    m = _QUANTITY_RE.match(cleaned)
    if m:
        return parse_quantity(m.group(1)), m.group(2)
    if cleaned.startswith("a "):
        return Fraction(1), cleaned[2:]
    if cleaned.startswith("an "):
        return Fraction(1), cleaned[3:]
    return None, cleaned


def normalize_ingredient(
    raw: str,
    aisle_overrides: Mapping[str, str] | None = None,
    extra_keywords: Mapping[str, str] | None = None,
) -> NormalizedIngredient | None:
    """Normalize one free-text ingredient line; None for blank lines."""
    original = str(raw or "").strip()
    if not original:
        return None

    cleaned = original.lower()
    for glyph, ascii_frac in UNICODE_FRACTIONS.items():
        cleaned = cleaned.replace(glyph, f" {ascii_frac}")
    cleaned = re.sub(r"\([^)]*\)", " ", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()

    quantity, remaining = split_quantity(cleaned)
    measured = remaining != cleaned
    unit: str | None = None

    tokens = remaining.split()
    if tokens:
        first = re.sub(r"[^a-z]", "", tokens[0])
        if first in VAGUE_MEASURES:
            quantity = None
            remaining = " ".join(tokens[1:])
        elif measured and len(tokens) > 1 and normalize_unit(first):
            unit = normalize_unit(first)
            remaining = " ".join(tokens[1:])

    if "to taste" in remaining:
        quantity = None

    name = normalize_name(remaining)
    if not name:
        return None

    if quantity is None:
        unit = None
    elif unit is None:
        unit = COUNT_UNIT

    return NormalizedIngredient(
        original=original,
        normalized_name=name,
        quantity=quantity,
        unit=unit,
        aisle=classify_aisle(name, aisle_overrides, extra_keywords),
    )
