"""Named filters and sort keys for the recipe listing endpoint."""
from typing import Callable, Dict, Iterable, List, Optional

from .config import Config
from .schemas import Recipe

DIFFICULTY_RANK = {"Easy": 1, "Medium": 2, "Hard": 3}
GLUTEN_WORDS = ("bread", "pasta", "pizza")
DEFAULT_SORT = "popularity"

Predicate = Callable[[Recipe], bool]


def parse_filters(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [f.strip() for f in raw.split(",") if f.strip()]


def build_filters(config: Config) -> Dict[str, Predicate]:
    return {
        "vegetarian": lambda r: config.vegetarian_category_id in r.category_ids,
        "quick-meals": lambda r: config.quick_meals_category_id in r.category_ids,
        "low-carb": lambda r: (r.calories or 0) <= config.low_carb_max_calories,
        "gluten-free": lambda r: not any(w in r.title.lower() for w in GLUTEN_WORDS),
    }


def apply_filters(recipes: Iterable[Recipe], names: List[str], config: Config) -> List[Recipe]:
    """Keep recipes passing every named filter. Unknown names are ignored."""
    available = build_filters(config)
    predicates = [available[n] for n in names if n in available]
    return [r for r in recipes if all(p(r) for p in predicates)]


def _total_time(recipe: Recipe) -> int:
    return recipe.prep_time + recipe.cook_time


def sort_recipes(recipes: Iterable[Recipe], sort: Optional[str] = DEFAULT_SORT) -> List[Recipe]:
    recipes = list(recipes)
    if sort == "newest":
        return sorted(recipes, key=lambda r: r.created_at, reverse=True)
    if sort == "time-asc":
        return sorted(recipes, key=_total_time)
    if sort == "time-desc":
        return sorted(recipes, key=_total_time, reverse=True)
    if sort == "difficulty":
        # unknown difficulty labels sort after Hard
        return sorted(recipes, key=lambda r: DIFFICULTY_RANK.get(r.difficulty, len(DIFFICULTY_RANK) + 1))
    return sorted(recipes, key=lambda r: r.rating_count or 0, reverse=True)
