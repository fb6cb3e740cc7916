import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from recipe_discovery import schemas
from recipe_discovery.crud import SqlStorage
from recipe_discovery.storage import SAVE_RECIPES, ConflictError, is_milestone


def test_create_then_get_returns_equal_entities(storage, make_recipe, make_user, make_category):
    user = make_user()
    assert storage.get_user(user.id) == user

    category = make_category()
    assert storage.get_category_by_id(category.id) == category

    recipe = make_recipe(userId=user.id)
    assert recipe.id == 1
    assert storage.get_recipe(recipe.id) == recipe
    assert recipe.rating == 0 and recipe.rating_count == 0

    ingredient = storage.create_ingredient(
        schemas.IngredientCreate(recipe_id=recipe.id, name="flour", quantity="1/2", unit="cup")
    )
    assert storage.get_ingredient(ingredient.id) == ingredient

    step = storage.create_step(
        schemas.StepCreate(recipe_id=recipe.id, step_number=1, instruction="Mix", timer_minutes=2)
    )
    assert storage.get_step(step.id) == step

    achievement = storage.create_achievement(
        schemas.AchievementCreate(user_id=user.id, type="COOK_RECIPES")
    )
    assert achievement.count == 1
    assert storage.get_achievement(achievement.id) == achievement

    nutrition = storage.create_nutrition_info(
        schemas.NutritionInfoCreate(recipe_id=recipe.id, protein=10, carbs=20)
    )
    assert storage.get_nutrition(nutrition.id) == nutrition
    assert storage.get_nutrition_by_recipe_id(recipe.id) == nutrition


def test_missing_ids_signal_absence(storage):
    assert storage.get_user(42) is None
    assert storage.get_recipe(42) is None
    assert storage.get_recipe_by_id(42) is None
    assert storage.get_category_by_id(42) is None
    assert storage.get_nutrition_by_recipe_id(42) is None
    assert storage.update_recipe(42, schemas.RecipeUpdate(title="x")) is None
    assert storage.update_step(42, schemas.StepUpdate(instruction="x")) is None
    assert storage.delete_recipe(42) is False
    assert storage.delete_ingredient(42) is False
    assert storage.delete_category(42) is False
    assert storage.delete_saved_recipe(1, 42) is False


def test_delete_existing_then_get_is_none(storage, make_recipe, make_category):
    recipe = make_recipe()
    assert storage.delete_recipe(recipe.id) is True
    assert storage.get_recipe(recipe.id) is None
    assert storage.delete_recipe(recipe.id) is False

    category = make_category()
    assert storage.delete_category(category.id) is True
    assert storage.get_category_by_id(category.id) is None


def test_ids_are_never_reused(storage, make_recipe):
    first = make_recipe()
    second = make_recipe()
    storage.delete_recipe(second.id)
    third = make_recipe()
    assert (first.id, second.id, third.id) == (1, 2, 3)


def test_update_merges_only_given_fields(storage, make_recipe):
    recipe = make_recipe(title="Old", servings=2)
    updated = storage.update_recipe(recipe.id, schemas.RecipeUpdate(title="New"))
    assert updated.title == "New"
    assert updated.servings == 2
    assert updated.created_at == recipe.created_at
    assert storage.get_recipe(recipe.id).title == "New"


def test_recipe_creation_increments_referenced_categories(storage, make_recipe, make_category):
    a, b, c = make_category(), make_category(), make_category()
    make_recipe(categoryIds=[a.id, b.id])

    assert storage.get_category_by_id(a.id).recipe_count == 1
    assert storage.get_category_by_id(b.id).recipe_count == 1
    assert storage.get_category_by_id(c.id).recipe_count == 0


def test_unknown_category_ids_are_skipped(storage, make_recipe, make_category):
    a = make_category()
    make_recipe(categoryIds=[a.id, 99])
    assert storage.get_category_by_id(a.id).recipe_count == 1
    assert storage.get_category_by_id(99) is None


def test_category_counter_is_not_adjusted_after_creation(storage, make_recipe, make_category):
    a, b = make_category(), make_category()
    recipe = make_recipe(categoryIds=[a.id])

    storage.update_recipe(recipe.id, schemas.RecipeUpdate(category_ids=[b.id]))
    assert storage.get_category_by_id(a.id).recipe_count == 1
    assert storage.get_category_by_id(b.id).recipe_count == 0

    storage.delete_recipe(recipe.id)
    assert storage.get_category_by_id(a.id).recipe_count == 1


def test_get_recipes_newest_first_with_window(storage, make_recipe):
    for _ in range(3):
        make_recipe()

    assert [r.id for r in storage.get_recipes(limit=2, offset=0)] == [3, 2]
    assert [r.id for r in storage.get_recipes(limit=1, offset=1)] == [2]
    assert [r.id for r in storage.get_recipes(limit=2, offset=1)] == [2, 1]
    assert [r.id for r in storage.get_recipes(limit=None)] == [3, 2, 1]
    assert storage.get_recipes(limit=5, offset=3) == []


def test_get_recipes_by_category(storage, make_recipe, make_category):
    veg, sweet = make_category("Vegetarian"), make_category("Desserts")
    make_recipe(categoryIds=[veg.id])
    make_recipe(categoryIds=[sweet.id])
    make_recipe(categoryIds=[veg.id, sweet.id])

    assert [r.id for r in storage.get_recipes_by_category(veg.id)] == [3, 1]
    assert [r.id for r in storage.get_recipes_by_category(veg.id, limit=1, offset=1)] == [1]
    assert storage.get_recipes_by_category(99) == []


def test_search_is_case_insensitive_on_title_and_description(storage, make_recipe):
    make_recipe(title="Spaghetti Pasta Bake", description="Cheesy oven dish")
    make_recipe(title="Green Salad", description="Goes well with pasta")
    make_recipe(title="Pancakes", description="Sweet")

    assert [r.id for r in storage.search_recipes("PASTA")] == [2, 1]
    assert [r.title for r in storage.search_recipes("bake")] == ["Spaghetti Pasta Bake"]
    assert storage.search_recipes("sushi") == []


def test_recipe_with_details_joins_related_rows(storage, make_recipe, make_user, make_category):
    user = make_user(avatar_url="https://example.com/me.jpg")
    italian = make_category("Italian")
    recipe = make_recipe(userId=user.id, categoryIds=[italian.id, 77])

    second = storage.create_ingredient(schemas.IngredientCreate(recipe_id=recipe.id, name="b", quantity="1"))
    first_step = storage.create_step(schemas.StepCreate(recipe_id=recipe.id, step_number=2, instruction="Bake"))
    storage.create_step(schemas.StepCreate(recipe_id=recipe.id, step_number=1, instruction="Mix"))
    storage.create_ingredient(schemas.IngredientCreate(recipe_id=recipe.id, name="c", quantity="2"))
    storage.create_nutrition_info(schemas.NutritionInfoCreate(recipe_id=recipe.id, protein=5))

    details = storage.get_recipe_by_id(recipe.id)
    assert details.title == recipe.title
    assert [i.name for i in details.ingredients] == ["b", "c"]
    assert details.ingredients[0].id == second.id
    assert [s.step_number for s in details.steps] == [1, 2]
    assert details.steps[1].id == first_step.id
    assert details.nutrition_info.protein == 5
    assert details.user == schemas.RecipeAuthor(username=user.username, avatar_url=user.avatar_url)
    assert [(c.id, c.name) for c in details.categories] == [(italian.id, "Italian"), (0, "Uncategorized")]


def test_recipe_without_owner_has_unknown_author(storage, make_recipe):
    recipe = make_recipe(userId=None)
    details = storage.get_recipe_by_id(recipe.id)
    assert details.user.username == "Unknown"
    assert details.user.avatar_url is None
    assert details.nutrition_info is None
    assert details.ingredients == [] and details.steps == []


def test_delete_recipe_removes_ingredients_steps_and_nutrition(storage, make_recipe):
    doomed = make_recipe()
    kept = make_recipe()
    for recipe in (doomed, kept):
        storage.create_ingredient(schemas.IngredientCreate(recipe_id=recipe.id, name="salt", quantity="1"))
        storage.create_step(schemas.StepCreate(recipe_id=recipe.id, step_number=1, instruction="Cook"))
        storage.create_nutrition_info(schemas.NutritionInfoCreate(recipe_id=recipe.id, fiber=1))

    assert storage.delete_recipe(doomed.id)
    assert storage.get_ingredients_by_recipe_id(doomed.id) == []
    assert storage.get_steps_by_recipe_id(doomed.id) == []
    assert storage.get_nutrition_by_recipe_id(doomed.id) is None

    assert len(storage.get_ingredients_by_recipe_id(kept.id)) == 1
    assert len(storage.get_steps_by_recipe_id(kept.id)) == 1
    assert storage.get_nutrition_by_recipe_id(kept.id) is not None


def test_saving_recipes_creates_milestone_achievements(storage, make_user):
    user = make_user()
    other = make_user("other")
    storage.create_saved_recipe(schemas.SavedRecipeCreate(user_id=other.id, recipe_id=1))

    for n in range(1, 16):
        storage.create_saved_recipe(schemas.SavedRecipeCreate(user_id=user.id, recipe_id=n))
        achievements = storage.get_achievements_by_user_id(user.id)
        assert len(achievements) == n // 5

    achievements = storage.get_achievements_by_user_id(user.id)
    assert [a.count for a in achievements] == [15, 10, 5]
    assert all(a.type == SAVE_RECIPES for a in achievements)
    assert storage.get_achievements_by_user_id(other.id) == []


def test_saved_recipes_allow_duplicates_and_delete_first_match(storage, make_user):
    user = make_user()
    first = storage.create_saved_recipe(schemas.SavedRecipeCreate(user_id=user.id, recipe_id=7))
    second = storage.create_saved_recipe(schemas.SavedRecipeCreate(user_id=user.id, recipe_id=7))
    assert storage.get_saved_recipe_count(user.id) == 2

    assert storage.delete_saved_recipe(user.id, 7) is True
    assert [s.id for s in storage.get_saved_recipes_by_user_id(user.id)] == [second.id]
    assert first.id < second.id
    assert storage.delete_saved_recipe(user.id, 7) is True
    assert storage.delete_saved_recipe(user.id, 7) is False


def test_steps_are_ordered_by_step_number(storage, make_recipe):
    recipe = make_recipe()
    for number in (3, 1, 2):
        storage.create_step(schemas.StepCreate(recipe_id=recipe.id, step_number=number, instruction=f"s{number}"))
    assert [s.instruction for s in storage.get_steps_by_recipe_id(recipe.id)] == ["s1", "s2", "s3"]


def test_lookup_by_unique_fields(storage, make_user, make_category):
    user = make_user("alice", email="alice@example.com")
    make_category("Breakfast")
    assert storage.get_user_by_username("alice") == user
    assert storage.get_user_by_email("alice@example.com") == user
    assert storage.get_user_by_username("bob") is None
    assert storage.get_category_by_name("Breakfast").name == "Breakfast"


def test_is_milestone():
    assert [n for n in range(0, 21) if is_milestone(n, 5)] == [5, 10, 15, 20]


def test_taken_unique_fields_raise_conflict(storage, make_user, make_category):
    make_user("alice", email="alice@example.com")
    with pytest.raises(ConflictError, match="Username"):
        make_user("alice", email="other@example.com")
    with pytest.raises(ConflictError, match="Email"):
        make_user("bob", email="alice@example.com")

    breakfast = make_category("Breakfast")
    lunch = make_category("Lunch")
    with pytest.raises(ConflictError):
        make_category("Breakfast")
    with pytest.raises(ConflictError):
        storage.update_category(lunch.id, schemas.CategoryUpdate(name="Breakfast"))
    # keeping its own name is not a clash
    assert storage.update_category(breakfast.id, schemas.CategoryUpdate(name="Breakfast")) is not None
    assert storage.get_category_by_id(lunch.id).name == "Lunch"
    assert storage.update_category(99, schemas.CategoryUpdate(name="Breakfast")) is None


def with_slow_username_lookup(storage_cls):
    class SlowLookup(storage_cls):
        def get_user_by_username(self, username):
            time.sleep(0.2)
            return super().get_user_by_username(username)
    return SlowLookup


def test_concurrent_signups_create_one_user(storage):
    store = with_slow_username_lookup(type(storage))()

    def signup(email):
        try:
            return store.create_user(schemas.UserCreate(username="alice", password="x", email=email))
        except ConflictError:
            return None

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(signup, ["a1@example.com", "a2@example.com"]))

    created = [r for r in results if r is not None]
    assert len(created) == 1
    assert store.get_user_by_username("alice") == created[0]
    assert store.get_user(created[0].id + 1) is None


def test_sql_unique_constraint_maps_to_conflict():
    class StaleLookups(SqlStorage):
        def get_user_by_username(self, username):
            return None

        def get_user_by_email(self, email):
            return None

    store = StaleLookups("sqlite://")
    data = schemas.UserCreate(username="alice", password="x", email="alice@example.com")
    first = store.create_user(data)
    with pytest.raises(ConflictError):
        store.create_user(data)
    assert store.get_user(first.id) == first
    # the session is usable again after the rollback
    assert store.create_user(
        schemas.UserCreate(username="bob", password="x", email="bob@example.com")
    ).username == "bob"


def test_timestamps_are_utc_aware(storage, make_user):
    user = make_user()
    saved = storage.create_saved_recipe(schemas.SavedRecipeCreate(user_id=user.id, recipe_id=1))
    achievement = storage.create_achievement(schemas.AchievementCreate(user_id=user.id, type="COOK_RECIPES"))
    for stamp in (
        storage.get_user(user.id).created_at,
        storage.get_saved_recipes_by_user_id(user.id)[0].saved_at,
        storage.get_achievement(achievement.id).achieved_at,
        saved.saved_at,
    ):
        assert stamp.utcoffset() == timedelta(0)
