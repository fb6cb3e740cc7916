import json
import logging
from pathlib import Path

from . import schemas
from .storage import IStorage

logger = logging.getLogger(__name__)


def load_sample_data(path):
    """Load the sample catalog from a JSON file.

    Args:
        path (str or Path): Path to the JSON file.

    Returns:
        dict: ``users``, ``categories`` and ``recipes`` lists; empty lists
        when the file does not exist.
    """
    p = Path(path)
    if not p.exists():
        logger.warning("Sample data file %s not found", p)
        return {"users": [], "categories": [], "recipes": []}
    with p.open("r", encoding="utf-8") as f:
        return json.load(f)


def seed_storage(storage: IStorage, data: dict) -> int:
    """Create the sample users, categories and recipes. Returns recipes added.

    Recipes name their author by username and their categories by name.
    Seeding is skipped when the first sample user already exists, so a
    persistent database is only seeded once.
    """
    users = data.get("users", [])
    if users and storage.get_user_by_username(users[0]["username"]) is not None:
        logger.info("Sample data already present, skipping")
        return 0

    user_ids = {}
    for u in users:
        user = storage.create_user(schemas.UserCreate.model_validate(u))
        user_ids[user.username] = user.id

    category_ids = {}
    for c in data.get("categories", []):
        category = storage.create_category(schemas.CategoryCreate.model_validate(c))
        category_ids[category.name] = category.id

    added = 0
    for r in data.get("recipes", []):
        payload = {
            k: v for k, v in r.items()
            if k not in ("author", "categories", "ingredients", "steps", "nutrition")
        }
        payload["userId"] = user_ids.get(r.get("author"))
        payload["categoryIds"] = [category_ids[name] for name in r.get("categories", []) if name in category_ids]
        recipe = storage.create_recipe(schemas.RecipeCreate.model_validate(payload))

        for ing in r.get("ingredients", []):
            storage.create_ingredient(
                schemas.IngredientCreate.model_validate({**ing, "recipeId": recipe.id})
            )
        for step in r.get("steps", []):
            storage.create_step(schemas.StepCreate.model_validate({**step, "recipeId": recipe.id}))
        if r.get("nutrition"):
            storage.create_nutrition_info(
                schemas.NutritionInfoCreate.model_validate({**r["nutrition"], "recipeId": recipe.id})
            )
        added += 1

    logger.info("Seeded %d user(s), %d categories, %d recipe(s)", len(user_ids), len(category_ids), added)
    return added
