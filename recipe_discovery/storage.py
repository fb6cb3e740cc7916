"""Storage contract and the in-memory store.

`IStorage` is the only writer of entity state. Route handlers receive an
instance through a FastAPI dependency and never touch entities directly.

Absence is signalled with ``None`` (reads, updates) or ``False`` (deletes);
storage methods never raise for a missing id and do no input validation.
The one exception is uniqueness: a username, email or category name that
is already taken raises `ConflictError`, checked under the same lock as
the write.
"""
import functools
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional

from . import schemas

logger = logging.getLogger(__name__)

SAVE_RECIPES = "SAVE_RECIPES"
UNKNOWN_AUTHOR = "Unknown"
UNCATEGORIZED = schemas.CategoryRef(id=0, name="Uncategorized")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_milestone(count: int, step: int) -> bool:
    """True when `count` is a positive multiple of `step`."""
    return count > 0 and step > 0 and count % step == 0


def window(items: list, limit: Optional[int], offset: int) -> list:
    if limit is None:
        return items[offset:]
    return items[offset:offset + limit]


class ConflictError(Exception):
    """A unique field (username, email, category name) is already taken."""


class IStorage(ABC):
    save_milestone: int = 5

    # Users
    @abstractmethod
    def get_user(self, user_id: int) -> Optional[schemas.User]: ...

    @abstractmethod
    def get_user_by_username(self, username: str) -> Optional[schemas.User]: ...

    @abstractmethod
    def get_user_by_email(self, email: str) -> Optional[schemas.User]: ...

    @abstractmethod
    def create_user(self, data: schemas.UserCreate) -> schemas.User:
        """Raises ConflictError when the username or email is taken."""

    # Recipes
    @abstractmethod
    def get_recipes(self, limit: Optional[int] = 100, offset: int = 0) -> List[schemas.Recipe]:
        """Most recently created first, then the offset/limit window."""

    @abstractmethod
    def get_recipe(self, recipe_id: int) -> Optional[schemas.Recipe]: ...

    @abstractmethod
    def get_recipes_by_category(
        self, category_id: int, limit: Optional[int] = 100, offset: int = 0
    ) -> List[schemas.Recipe]: ...

    @abstractmethod
    def search_recipes(self, query: str) -> List[schemas.Recipe]:
        """Case-insensitive substring match on title or description."""

    @abstractmethod
    def create_recipe(self, data: schemas.RecipeCreate) -> schemas.Recipe: ...

    @abstractmethod
    def update_recipe(self, recipe_id: int, data: schemas.RecipeUpdate) -> Optional[schemas.Recipe]: ...

    @abstractmethod
    def delete_recipe(self, recipe_id: int) -> bool:
        """Also removes the recipe's ingredients, steps and nutrition rows."""

    # Ingredients
    @abstractmethod
    def get_ingredient(self, ingredient_id: int) -> Optional[schemas.Ingredient]: ...

    @abstractmethod
    def get_ingredients_by_recipe_id(self, recipe_id: int) -> List[schemas.Ingredient]: ...

    @abstractmethod
    def create_ingredient(self, data: schemas.IngredientCreate) -> schemas.Ingredient: ...

    @abstractmethod
    def update_ingredient(
        self, ingredient_id: int, data: schemas.IngredientUpdate
    ) -> Optional[schemas.Ingredient]: ...

    @abstractmethod
    def delete_ingredient(self, ingredient_id: int) -> bool: ...

    # Steps
    @abstractmethod
    def get_step(self, step_id: int) -> Optional[schemas.Step]: ...

    @abstractmethod
    def get_steps_by_recipe_id(self, recipe_id: int) -> List[schemas.Step]: ...

    @abstractmethod
    def create_step(self, data: schemas.StepCreate) -> schemas.Step: ...

    @abstractmethod
    def update_step(self, step_id: int, data: schemas.StepUpdate) -> Optional[schemas.Step]: ...

    @abstractmethod
    def delete_step(self, step_id: int) -> bool: ...

    # Categories
    @abstractmethod
    def get_categories(self) -> List[schemas.Category]: ...

    @abstractmethod
    def get_category_by_id(self, category_id: int) -> Optional[schemas.Category]: ...

    @abstractmethod
    def get_category_by_name(self, name: str) -> Optional[schemas.Category]: ...

    @abstractmethod
    def create_category(self, data: schemas.CategoryCreate) -> schemas.Category:
        """Raises ConflictError when the name is taken."""

    @abstractmethod
    def update_category(
        self, category_id: int, data: schemas.CategoryUpdate
    ) -> Optional[schemas.Category]:
        """Raises ConflictError when renaming onto another category's name."""

    @abstractmethod
    def delete_category(self, category_id: int) -> bool: ...

    # Saved recipes
    @abstractmethod
    def get_saved_recipes_by_user_id(self, user_id: int) -> List[schemas.SavedRecipe]: ...

    @abstractmethod
    def get_saved_recipe_count(self, user_id: int) -> int: ...

    @abstractmethod
    def create_saved_recipe(self, data: schemas.SavedRecipeCreate) -> schemas.SavedRecipe:
        """Every `save_milestone`-th save also records a SAVE_RECIPES achievement."""

    @abstractmethod
    def delete_saved_recipe(self, user_id: int, recipe_id: int) -> bool: ...

    # Achievements
    @abstractmethod
    def get_achievement(self, achievement_id: int) -> Optional[schemas.Achievement]: ...

    @abstractmethod
    def get_achievements_by_user_id(self, user_id: int) -> List[schemas.Achievement]: ...

    @abstractmethod
    def create_achievement(self, data: schemas.AchievementCreate) -> schemas.Achievement: ...

    @abstractmethod
    def update_achievement(
        self, achievement_id: int, data: schemas.AchievementUpdate
    ) -> Optional[schemas.Achievement]: ...

    # Nutrition
    @abstractmethod
    def get_nutrition(self, nutrition_id: int) -> Optional[schemas.NutritionInfo]: ...

    @abstractmethod
    def get_nutrition_by_recipe_id(self, recipe_id: int) -> Optional[schemas.NutritionInfo]: ...

    @abstractmethod
    def create_nutrition_info(self, data: schemas.NutritionInfoCreate) -> schemas.NutritionInfo: ...

    @abstractmethod
    def update_nutrition_info(
        self, nutrition_id: int, data: schemas.NutritionInfoUpdate
    ) -> Optional[schemas.NutritionInfo]: ...

    @abstractmethod
    def delete_nutrition_info(self, nutrition_id: int) -> bool: ...

    # Uniqueness, called by the backends while holding their write lock
    def _check_user_unique(self, data: schemas.UserCreate) -> None:
        if self.get_user_by_username(data.username) is not None:
            raise ConflictError("Username already exists")
        if self.get_user_by_email(data.email) is not None:
            raise ConflictError("Email already exists")

    def _check_category_name(self, name: Optional[str], category_id: Optional[int] = None) -> None:
        if name is None:
            return
        clash = self.get_category_by_name(name)
        if clash is not None and clash.id != category_id:
            raise ConflictError("Category already exists")

    # Composed view
    def get_recipe_by_id(self, recipe_id: int) -> Optional[schemas.RecipeWithDetails]:
        """Recipe joined with its ingredients, steps, nutrition, author and categories.

        A missing author becomes ``Unknown`` and a category id that no longer
        resolves becomes ``{id: 0, name: "Uncategorized"}``.
        """
        recipe = self.get_recipe(recipe_id)
        if recipe is None:
            return None

        user = self.get_user(recipe.user_id) if recipe.user_id is not None else None
        if user is None:
            author = schemas.RecipeAuthor(username=UNKNOWN_AUTHOR, avatar_url=None)
        else:
            author = schemas.RecipeAuthor(username=user.username, avatar_url=user.avatar_url)

        categories = []
        for category_id in recipe.category_ids:
            category = self.get_category_by_id(category_id)
            if category is None:
                categories.append(UNCATEGORIZED)
            else:
                categories.append(schemas.CategoryRef(id=category.id, name=category.name))

        return schemas.RecipeWithDetails(
            **recipe.model_dump(),
            ingredients=self.get_ingredients_by_recipe_id(recipe_id),
            steps=self.get_steps_by_recipe_id(recipe_id),
            nutrition_info=self.get_nutrition_by_recipe_id(recipe_id),
            user=author,
            categories=categories,
        )


def synchronized(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)
    return wrapper


class MemStorage(IStorage):
    """Dict-per-entity store with one monotonic id counter per entity type.

    Handlers run in a thread pool, so every public operation holds the
    store lock for its whole duration, side effects included.
    """

    def __init__(self, save_milestone: int = 5) -> None:
        self.save_milestone = save_milestone
        self._lock = threading.RLock()
        self.users: Dict[int, schemas.User] = {}
        self.recipes: Dict[int, schemas.Recipe] = {}
        self.ingredients: Dict[int, schemas.Ingredient] = {}
        self.steps: Dict[int, schemas.Step] = {}
        self.categories: Dict[int, schemas.Category] = {}
        self.saved_recipes: Dict[int, schemas.SavedRecipe] = {}
        self.achievements: Dict[int, schemas.Achievement] = {}
        self.nutrition_info: Dict[int, schemas.NutritionInfo] = {}
        self._ids = {
            name: itertools.count(1)
            for name in (
                "users", "recipes", "ingredients", "steps", "categories",
                "saved_recipes", "achievements", "nutrition_info",
            )
        }

    def _next_id(self, table: str) -> int:
        return next(self._ids[table])

    @staticmethod
    def _merge(existing, data):
        return existing.model_copy(update=data.model_dump(exclude_unset=True))

    # Users
    @synchronized
    def get_user(self, user_id):
        return self.users.get(user_id)

    @synchronized
    def get_user_by_username(self, username):
        return next((u for u in self.users.values() if u.username == username), None)

    @synchronized
    def get_user_by_email(self, email):
        return next((u for u in self.users.values() if u.email == email), None)

    @synchronized
    def create_user(self, data):
        self._check_user_unique(data)
        user = schemas.User(**data.model_dump(), id=self._next_id("users"), created_at=utcnow())
        self.users[user.id] = user
        logger.debug("Created user %s (%s)", user.id, user.username)
        return user

    # Recipes
    def _recipes_newest_first(self):
        return sorted(self.recipes.values(), key=lambda r: r.id, reverse=True)

    @synchronized
    def get_recipes(self, limit=100, offset=0):
        return window(self._recipes_newest_first(), limit, offset)

    @synchronized
    def get_recipe(self, recipe_id):
        return self.recipes.get(recipe_id)

    @synchronized
    def get_recipe_by_id(self, recipe_id):
        return super().get_recipe_by_id(recipe_id)

    @synchronized
    def get_recipes_by_category(self, category_id, limit=100, offset=0):
        matching = [r for r in self._recipes_newest_first() if category_id in r.category_ids]
        return window(matching, limit, offset)

    @synchronized
    def search_recipes(self, query):
        needle = query.lower()
        return [
            r for r in self._recipes_newest_first()
            if needle in r.title.lower() or needle in r.description.lower()
        ]

    @synchronized
    def create_recipe(self, data):
        recipe = schemas.Recipe(
            **data.model_dump(),
            id=self._next_id("recipes"),
            created_at=utcnow(),
            rating=0,
            rating_count=0,
        )
        self.recipes[recipe.id] = recipe

        for category_id in recipe.category_ids:
            category = self.categories.get(category_id)
            if category is not None:
                self.categories[category_id] = category.model_copy(
                    update={"recipe_count": category.recipe_count + 1}
                )

        logger.debug("Created recipe %s (%s)", recipe.id, recipe.title)
        return recipe

    @synchronized
    def update_recipe(self, recipe_id, data):
        existing = self.recipes.get(recipe_id)
        if existing is None:
            return None
        self.recipes[recipe_id] = self._merge(existing, data)
        return self.recipes[recipe_id]

    @synchronized
    def delete_recipe(self, recipe_id):
        if self.recipes.pop(recipe_id, None) is None:
            return False
        for table in (self.ingredients, self.steps, self.nutrition_info):
            for row_id in [k for k, row in table.items() if row.recipe_id == recipe_id]:
                del table[row_id]
        logger.debug("Deleted recipe %s with its ingredients, steps and nutrition", recipe_id)
        return True

    # Ingredients
    @synchronized
    def get_ingredient(self, ingredient_id):
        return self.ingredients.get(ingredient_id)

    @synchronized
    def get_ingredients_by_recipe_id(self, recipe_id):
        return sorted(
            (i for i in self.ingredients.values() if i.recipe_id == recipe_id),
            key=lambda i: i.id,
        )

    @synchronized
    def create_ingredient(self, data):
        ingredient = schemas.Ingredient(**data.model_dump(), id=self._next_id("ingredients"))
        self.ingredients[ingredient.id] = ingredient
        return ingredient

    @synchronized
    def update_ingredient(self, ingredient_id, data):
        existing = self.ingredients.get(ingredient_id)
        if existing is None:
            return None
        self.ingredients[ingredient_id] = self._merge(existing, data)
        return self.ingredients[ingredient_id]

    @synchronized
    def delete_ingredient(self, ingredient_id):
        return self.ingredients.pop(ingredient_id, None) is not None

    # Steps
    @synchronized
    def get_step(self, step_id):
        return self.steps.get(step_id)

    @synchronized
    def get_steps_by_recipe_id(self, recipe_id):
        return sorted(
            (s for s in self.steps.values() if s.recipe_id == recipe_id),
            key=lambda s: (s.step_number, s.id),
        )

    @synchronized
    def create_step(self, data):
        step = schemas.Step(**data.model_dump(), id=self._next_id("steps"))
        self.steps[step.id] = step
        return step

    @synchronized
    def update_step(self, step_id, data):
        existing = self.steps.get(step_id)
        if existing is None:
            return None
        self.steps[step_id] = self._merge(existing, data)
        return self.steps[step_id]

    @synchronized
    def delete_step(self, step_id):
        return self.steps.pop(step_id, None) is not None

    # Categories
    @synchronized
    def get_categories(self):
        return sorted(self.categories.values(), key=lambda c: c.id)

    @synchronized
    def get_category_by_id(self, category_id):
        return self.categories.get(category_id)

    @synchronized
    def get_category_by_name(self, name):
        return next((c for c in self.categories.values() if c.name == name), None)

    @synchronized
    def create_category(self, data):
        self._check_category_name(data.name)
        category = schemas.Category(
            **data.model_dump(), id=self._next_id("categories"), recipe_count=0
        )
        self.categories[category.id] = category
        return category

    @synchronized
    def update_category(self, category_id, data):
        existing = self.categories.get(category_id)
        if existing is None:
            return None
        self._check_category_name(data.name, category_id)
        self.categories[category_id] = self._merge(existing, data)
        return self.categories[category_id]

    @synchronized
    def delete_category(self, category_id):
        return self.categories.pop(category_id, None) is not None

    # Saved recipes
    @synchronized
    def get_saved_recipes_by_user_id(self, user_id):
        return sorted(
            (s for s in self.saved_recipes.values() if s.user_id == user_id),
            key=lambda s: s.id,
            reverse=True,
        )

    @synchronized
    def get_saved_recipe_count(self, user_id):
        return sum(1 for s in self.saved_recipes.values() if s.user_id == user_id)

    @synchronized
    def create_saved_recipe(self, data):
        saved = schemas.SavedRecipe(
            **data.model_dump(), id=self._next_id("saved_recipes"), saved_at=utcnow()
        )
        self.saved_recipes[saved.id] = saved

        total = self.get_saved_recipe_count(saved.user_id)
        if is_milestone(total, self.save_milestone):
            self.create_achievement(
                schemas.AchievementCreate(user_id=saved.user_id, type=SAVE_RECIPES, count=total)
            )
            logger.info("User %s reached %s saved recipes", saved.user_id, total)
        return saved

    @synchronized
    def delete_saved_recipe(self, user_id, recipe_id):
        match = next(
            (
                s for s in sorted(self.saved_recipes.values(), key=lambda s: s.id)
                if s.user_id == user_id and s.recipe_id == recipe_id
            ),
            None,
        )
        if match is None:
            return False
        del self.saved_recipes[match.id]
        return True

    # Achievements
    @synchronized
    def get_achievement(self, achievement_id):
        return self.achievements.get(achievement_id)

    @synchronized
    def get_achievements_by_user_id(self, user_id):
        return sorted(
            (a for a in self.achievements.values() if a.user_id == user_id),
            key=lambda a: a.id,
            reverse=True,
        )

    @synchronized
    def create_achievement(self, data):
        achievement = schemas.Achievement(
            **data.model_dump(), id=self._next_id("achievements"), achieved_at=utcnow()
        )
        self.achievements[achievement.id] = achievement
        return achievement

    @synchronized
    def update_achievement(self, achievement_id, data):
        existing = self.achievements.get(achievement_id)
        if existing is None:
            return None
        self.achievements[achievement_id] = self._merge(existing, data)
        return self.achievements[achievement_id]

    # Nutrition
    @synchronized
    def get_nutrition(self, nutrition_id):
        return self.nutrition_info.get(nutrition_id)

    @synchronized
    def get_nutrition_by_recipe_id(self, recipe_id):
        return next(
            (
                n for n in sorted(self.nutrition_info.values(), key=lambda n: n.id)
                if n.recipe_id == recipe_id
            ),
            None,
        )

    @synchronized
    def create_nutrition_info(self, data):
        nutrition = schemas.NutritionInfo(**data.model_dump(), id=self._next_id("nutrition_info"))
        self.nutrition_info[nutrition.id] = nutrition
        return nutrition

    @synchronized
    def update_nutrition_info(self, nutrition_id, data):
        existing = self.nutrition_info.get(nutrition_id)
        if existing is None:
            return None
        self.nutrition_info[nutrition_id] = self._merge(existing, data)
        return self.nutrition_info[nutrition_id]

    @synchronized
    def delete_nutrition_info(self, nutrition_id):
        return self.nutrition_info.pop(nutrition_id, None) is not None
