"""
Slot extraction for the shopping interview.

Three independent pure functions map free text to one slot each:
- extract_product_type: first canonical category with a keyword as a whole word
- extract_budget: budget range from phrases, numeric ranges or quick replies
- extract_city: gazetteer city, explicit nationwide request, or a bare city name

No state is kept between calls; the same text always gives the same slot.
"""
import re
import unicodedata
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

NO_LIMIT_BUDGET = 999999

# Canonical categories offered to the user and used for display.
CANONICAL_CATEGORIES = [
    "vêtements", "électronique", "électroménager", "accessoires", "chaussures",
    "informatique", "smartphones", "sport", "loisirs", "fitness", "maison",
    "jardin", "décoration", "bijoux", "montres", "automobile", "pièces détachées",
    "livres", "culture", "multimédia", "cosmétiques", "beauté", "parfums",
    "jouets", "enfants", "puériculture",
]

# Order matters: the first category with a matching keyword wins
# ("ordinateur" resolves to électronique, not informatique).
# Keywords match whole words, optionally pluralised ("robes", "micro-ondes").
PRODUCT_TYPE_KEYWORDS: Dict[str, List[str]] = {
    "vêtements": ["vêtement", "habit", "robe", "pantalon", "chemise", "pull", "mode"],
    "électroménager": ["électroménager", "frigo", "lave-linge", "four", "micro-onde"],
    "électronique": ["électronique", "électro", "tv", "télé", "télévision", "ordinateur", "tablette"],
    "accessoires": ["accessoire", "sac", "ceinture", "écharpe", "gant"],
    "sport": ["sport", "fitness", "musculation", "course", "vélo"],
    "maison": ["maison", "meuble", "canapé", "table", "chaise"],
    "informatique": ["informatique", "ordinateur", "pc", "laptop", "clavier", "souris"],
    "smartphones": ["smartphone", "téléphone", "mobile", "iphone", "android"],
    "cosmétiques": ["cosmétique", "maquillage", "crème", "parfum", "beauté"],
}

# Categories proposed when a search comes back empty.
SIMILAR_PRODUCT_TYPES: Dict[str, List[str]] = {
    "vêtements": ["accessoires", "chaussures"],
    "électronique": ["informatique", "smartphones"],
    "électroménager": ["maison", "électronique"],
    "sport": ["loisirs", "fitness"],
    "cosmétiques": ["beauté", "parfums"],
    "jouets": ["enfants", "puériculture"],
    "automobile": ["pièces détachées"],
    "livres": ["culture", "multimédia"],
    "maison": ["jardin", "décoration"],
}

BUDGET_QUICK_REPLIES: Dict[str, tuple] = {
    "50-200": (50, 200),
    "100-500": (100, 500),
    "500-1000": (500, 1000),
}

CITY_GAZETTEER = [
    "Casablanca", "Rabat", "Fès", "Marrakech", "Agadir",
    "Tanger", "Oujda", "Meknès", "Tétouan", "Kenitra",
]

NATIONWIDE_PHRASES = ["tout le maroc", "toute la france", "tout le pays", "partout", "peu importe"]

_NO_LIMIT = re.compile(r"pas\s+de\s+limite|sans\s+limite|illimit[ée]")
_BETWEEN = re.compile(r"entre\s+(\d+)\s*(?:€|euros?|dh|mad)?\s+et\s+(\d+)")
_RANGE = re.compile(r"(\d+)\s*(?:€|euros?|dh|mad)?\s*[-–]\s*(\d+)")
_MAXIMUM = re.compile(r"maximum?\s+(\d+)|jusqu['’]?\s*à\s+(\d+)|max\s+(\d+)|moins\s+de\s+(\d+)")
_MINIMUM = re.compile(r"minimum?\s+(\d+)|à\s+partir\s+de\s+(\d+)|min\s+(\d+)|plus\s+de\s+(\d+)")
_SINGLE_NAME = re.compile(r"^[a-zA-ZÀ-ÿ-]+$")

_KEYWORD_PATTERNS: Dict[str, "re.Pattern"] = {
    category: re.compile(r"(?<!\w)(?:" + "|".join(re.escape(k) for k in keywords) + r")[sx]?(?!\w)")
    for category, keywords in PRODUCT_TYPE_KEYWORDS.items()
}


def _fold(text: str) -> str:
    """Lowercase and strip accents so 'fes' matches 'Fès'."""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def _first_group(match: "re.Match") -> int:
    return int(next(g for g in match.groups() if g is not None))


# ----------------------------------------------------------------------
# Product type
# ----------------------------------------------------------------------

def extract_product_type(text: str) -> Optional[str]:
    """Return the first canonical category with a keyword word in the text, else None."""
    lowered = (text or "").lower()
    for category, pattern in _KEYWORD_PATTERNS.items():
        if pattern.search(lowered):
            return category
    return None


def get_similar_product_types(product_type: Optional[str]) -> List[str]:
    return list(SIMILAR_PRODUCT_TYPES.get(product_type or "", []))


# ----------------------------------------------------------------------
# Budget
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class BudgetRange:
    """A budget slot. Both bounds are always set; open ends use 0 / the no-limit ceiling."""
    minimum: int
    maximum: int

    def validation_errors(self) -> List[str]:
        """Messages describing why this range cannot be stored, empty if valid."""
        errors = []
        if self.minimum > self.maximum:
            errors.append("Le budget minimum ne peut pas être supérieur au budget maximum")
        if self.minimum < 0:
            errors.append("Le budget minimum ne peut pas être négatif")
        return errors


def extract_budget(text: str, no_limit: int = NO_LIMIT_BUDGET) -> Optional[BudgetRange]:
    """
    Extract a budget range. Patterns are tried in order:

    1. "pas de limite" / "sans limite" / "illimité" -> (0, no_limit)
    2. "entre X et Y"                               -> (X, Y)
    3. "X - Y"                                      -> (X, Y)
    4. "maximum X" / "jusqu'à X" / "moins de X"     -> (0, X)
    5. "minimum X" / "à partir de X" / "plus de X"  -> (X, no_limit)
    6. exact quick-reply bucket ("50-200€")         -> bucket values

    Returns None when nothing matches; the caller re-prompts.
    Inverted ranges are returned as-is so the caller can explain the problem.
    """
    lowered = (text or "").lower().strip()

    if _NO_LIMIT.search(lowered):
        return BudgetRange(0, no_limit)

    match = _BETWEEN.search(lowered)
    if match:
        return BudgetRange(int(match.group(1)), int(match.group(2)))

    match = _RANGE.search(lowered)
    if match:
        return BudgetRange(int(match.group(1)), int(match.group(2)))

    match = _MAXIMUM.search(lowered)
    if match:
        return BudgetRange(0, _first_group(match))

    match = _MINIMUM.search(lowered)
    if match:
        return BudgetRange(_first_group(match), no_limit)

    bucket = re.sub(r"\s|€|euros?", "", lowered)
    if bucket in BUDGET_QUICK_REPLIES:
        low, high = BUDGET_QUICK_REPLIES[bucket]
        return BudgetRange(low, high)

    return None


# ----------------------------------------------------------------------
# Location
# ----------------------------------------------------------------------

class LocationKind(str, Enum):
    """Three distinct outcomes: a city, an explicit nationwide search, or nothing usable."""
    CITY = "city"
    NATIONWIDE = "nationwide"
    NOT_PROVIDED = "not_provided"


@dataclass(frozen=True)
class LocationExtraction:
    kind: LocationKind
    city: Optional[str] = None

    @property
    def is_provided(self) -> bool:
        return self.kind != LocationKind.NOT_PROVIDED


def extract_city(text: str) -> LocationExtraction:
    """
    Resolve the location slot.

    A nationwide phrase wins over everything (no city filter). Otherwise the
    gazetteer is scanned with accent- and case-insensitive containment, and a
    lone alphabetic word longer than two letters is accepted as a free-form
    city name, capitalised.
    """
    lowered = (text or "").lower().strip()
    folded = _fold(lowered)

    if any(_fold(phrase) in folded for phrase in NATIONWIDE_PHRASES):
        return LocationExtraction(LocationKind.NATIONWIDE)

    for city in CITY_GAZETTEER:
        if _fold(city) in folded:
            return LocationExtraction(LocationKind.CITY, city)

    if len(lowered) > 2 and _SINGLE_NAME.match(lowered):
        return LocationExtraction(LocationKind.CITY, lowered.title())

    return LocationExtraction(LocationKind.NOT_PROVIDED)
