import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError

from . import models, schemas
from .db import init_db, make_engine, make_session_factory
from .storage import SAVE_RECIPES, ConflictError, IStorage, is_milestone, utcnow, window

logger = logging.getLogger(__name__)


def _to_schema(schema, row):
    if row is None:
        return None
    values = {c.key: getattr(row, c.key) for c in inspect(row).mapper.column_attrs}
    for key, value in values.items():
        # SQLite stores naive datetimes; everything is written in UTC
        if isinstance(value, datetime) and value.tzinfo is None:
            values[key] = value.replace(tzinfo=timezone.utc)
    return schema.model_validate(values)


def _apply(row, data) -> None:
    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(row, key, value)


class SqlStorage(IStorage):
    """IStorage over SQLAlchemy tables, one session and one commit per operation."""

    def __init__(self, db_url: str = "sqlite://", save_milestone: int = 5) -> None:
        self.save_milestone = save_milestone
        self.engine = make_engine(db_url)
        self.SessionLocal = make_session_factory(self.engine)
        self._lock = threading.RLock()
        init_db(self.engine)

    @contextmanager
    def _session(self):
        with self._lock:
            db = self.SessionLocal()
            try:
                yield db
            finally:
                db.close()

    @staticmethod
    def _commit(db) -> None:
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise ConflictError("Unique constraint violated") from exc

    def _get(self, model, schema, row_id):
        with self._session() as db:
            return _to_schema(schema, db.get(model, row_id))

    def _create(self, model, schema, **values):
        with self._session() as db:
            row = model(**values)
            db.add(row)
            self._commit(db)
            db.refresh(row)
            return _to_schema(schema, row)

    def _update(self, model, schema, row_id, data):
        with self._session() as db:
            row = db.get(model, row_id)
            if row is None:
                return None
            _apply(row, data)
            self._commit(db)
            db.refresh(row)
            return _to_schema(schema, row)

    def _delete(self, model, row_id) -> bool:
        with self._session() as db:
            row = db.get(model, row_id)
            if row is None:
                return False
            db.delete(row)
            db.commit()
            return True

    # Users
    def get_user(self, user_id):
        return self._get(models.User, schemas.User, user_id)

    def get_user_by_username(self, username):
        with self._session() as db:
            row = db.query(models.User).filter(models.User.username == username).first()
            return _to_schema(schemas.User, row)

    def get_user_by_email(self, email):
        with self._session() as db:
            row = db.query(models.User).filter(models.User.email == email).first()
            return _to_schema(schemas.User, row)

    def create_user(self, data):
        with self._lock:
            self._check_user_unique(data)
            return self._create(models.User, schemas.User, **data.model_dump(), created_at=utcnow())

    # Recipes
    def _all_recipes(self, db):
        rows = db.query(models.Recipe).order_by(models.Recipe.id.desc()).all()
        return [_to_schema(schemas.Recipe, r) for r in rows]

    def get_recipes(self, limit=100, offset=0):
        with self._session() as db:
            query = db.query(models.Recipe).order_by(models.Recipe.id.desc()).offset(offset)
            if limit is not None:
                query = query.limit(limit)
            return [_to_schema(schemas.Recipe, r) for r in query.all()]

    def get_recipe(self, recipe_id):
        return self._get(models.Recipe, schemas.Recipe, recipe_id)

    def get_recipe_by_id(self, recipe_id):
        with self._lock:
            return super().get_recipe_by_id(recipe_id)

    def get_recipes_by_category(self, category_id, limit=100, offset=0):
        # JSON containment is dialect specific; match in Python instead
        with self._session() as db:
            matching = [r for r in self._all_recipes(db) if category_id in r.category_ids]
        return window(matching, limit, offset)

    def search_recipes(self, query):
        needle = query.lower()
        with self._session() as db:
            return [
                r for r in self._all_recipes(db)
                if needle in r.title.lower() or needle in r.description.lower()
            ]

    def create_recipe(self, data):
        with self._session() as db:
            row = models.Recipe(**data.model_dump(), created_at=utcnow(), rating=0, rating_count=0)
            db.add(row)
            for category_id in data.category_ids:
                category = db.get(models.Category, category_id)
                if category is not None:
                    category.recipe_count = (category.recipe_count or 0) + 1
            db.commit()
            db.refresh(row)
            logger.debug("Created recipe %s (%s)", row.id, row.title)
            return _to_schema(schemas.Recipe, row)

    def update_recipe(self, recipe_id, data):
        return self._update(models.Recipe, schemas.Recipe, recipe_id, data)

    def delete_recipe(self, recipe_id):
        with self._session() as db:
            row = db.get(models.Recipe, recipe_id)
            if row is None:
                return False
            for model in (models.Ingredient, models.Step, models.NutritionInfo):
                db.query(model).filter(model.recipe_id == recipe_id).delete(
                    synchronize_session=False
                )
            db.delete(row)
            db.commit()
            logger.debug("Deleted recipe %s with its ingredients, steps and nutrition", recipe_id)
            return True

    # Ingredients
    def get_ingredient(self, ingredient_id):
        return self._get(models.Ingredient, schemas.Ingredient, ingredient_id)

    def get_ingredients_by_recipe_id(self, recipe_id):
        with self._session() as db:
            rows = (
                db.query(models.Ingredient)
                .filter(models.Ingredient.recipe_id == recipe_id)
                .order_by(models.Ingredient.id)
                .all()
            )
            return [_to_schema(schemas.Ingredient, r) for r in rows]

    def create_ingredient(self, data):
        return self._create(models.Ingredient, schemas.Ingredient, **data.model_dump())

    def update_ingredient(self, ingredient_id, data):
        return self._update(models.Ingredient, schemas.Ingredient, ingredient_id, data)

    def delete_ingredient(self, ingredient_id):
        return self._delete(models.Ingredient, ingredient_id)

    # Steps
    def get_step(self, step_id):
        return self._get(models.Step, schemas.Step, step_id)

    def get_steps_by_recipe_id(self, recipe_id):
        with self._session() as db:
            rows = (
                db.query(models.Step)
                .filter(models.Step.recipe_id == recipe_id)
                .order_by(models.Step.step_number, models.Step.id)
                .all()
            )
            return [_to_schema(schemas.Step, r) for r in rows]

    def create_step(self, data):
        return self._create(models.Step, schemas.Step, **data.model_dump())

    def update_step(self, step_id, data):
        return self._update(models.Step, schemas.Step, step_id, data)

    def delete_step(self, step_id):
        return self._delete(models.Step, step_id)

    # Categories
    def get_categories(self):
        with self._session() as db:
            rows = db.query(models.Category).order_by(models.Category.id).all()
            return [_to_schema(schemas.Category, r) for r in rows]

    def get_category_by_id(self, category_id):
        return self._get(models.Category, schemas.Category, category_id)

    def get_category_by_name(self, name):
        with self._session() as db:
            row = db.query(models.Category).filter(models.Category.name == name).first()
            return _to_schema(schemas.Category, row)

    def create_category(self, data):
        with self._lock:
            self._check_category_name(data.name)
            return self._create(models.Category, schemas.Category, **data.model_dump(), recipe_count=0)

    def update_category(self, category_id, data):
        with self._lock:
            if self.get_category_by_id(category_id) is None:
                return None
            self._check_category_name(data.name, category_id)
            return self._update(models.Category, schemas.Category, category_id, data)

    def delete_category(self, category_id):
        return self._delete(models.Category, category_id)

    # Saved recipes
    def get_saved_recipes_by_user_id(self, user_id):
        with self._session() as db:
            rows = (
                db.query(models.SavedRecipe)
                .filter(models.SavedRecipe.user_id == user_id)
                .order_by(models.SavedRecipe.id.desc())
                .all()
            )
            return [_to_schema(schemas.SavedRecipe, r) for r in rows]

    def get_saved_recipe_count(self, user_id):
        with self._session() as db:
            return db.query(models.SavedRecipe).filter(models.SavedRecipe.user_id == user_id).count()

    def create_saved_recipe(self, data):
        with self._session() as db:
            row = models.SavedRecipe(**data.model_dump(), saved_at=utcnow())
            db.add(row)
            db.flush()
            total = (
                db.query(models.SavedRecipe)
                .filter(models.SavedRecipe.user_id == data.user_id)
                .count()
            )
            if is_milestone(total, self.save_milestone):
                db.add(
                    models.Achievement(
                        user_id=data.user_id, type=SAVE_RECIPES, count=total, achieved_at=utcnow()
                    )
                )
                logger.info("User %s reached %s saved recipes", data.user_id, total)
            db.commit()
            db.refresh(row)
            return _to_schema(schemas.SavedRecipe, row)

    def delete_saved_recipe(self, user_id, recipe_id):
        with self._session() as db:
            row = (
                db.query(models.SavedRecipe)
                .filter(
                    models.SavedRecipe.user_id == user_id,
                    models.SavedRecipe.recipe_id == recipe_id,
                )
                .order_by(models.SavedRecipe.id)
                .first()
            )
            if row is None:
                return False
            db.delete(row)
            db.commit()
            return True

    # Achievements
    def get_achievement(self, achievement_id):
        return self._get(models.Achievement, schemas.Achievement, achievement_id)

    def get_achievements_by_user_id(self, user_id):
        with self._session() as db:
            rows = (
                db.query(models.Achievement)
                .filter(models.Achievement.user_id == user_id)
                .order_by(models.Achievement.id.desc())
                .all()
            )
            return [_to_schema(schemas.Achievement, r) for r in rows]

    def create_achievement(self, data):
        return self._create(
            models.Achievement, schemas.Achievement, **data.model_dump(), achieved_at=utcnow()
        )

    def update_achievement(self, achievement_id, data):
        return self._update(models.Achievement, schemas.Achievement, achievement_id, data)

    # Nutrition
    def get_nutrition(self, nutrition_id):
        return self._get(models.NutritionInfo, schemas.NutritionInfo, nutrition_id)

    def get_nutrition_by_recipe_id(self, recipe_id):
        with self._session() as db:
            row = (
                db.query(models.NutritionInfo)
                .filter(models.NutritionInfo.recipe_id == recipe_id)
                .order_by(models.NutritionInfo.id)
                .first()
            )
            return _to_schema(schemas.NutritionInfo, row)

    def create_nutrition_info(self, data):
        return self._create(models.NutritionInfo, schemas.NutritionInfo, **data.model_dump())

    def update_nutrition_info(self, nutrition_id, data):
        return self._update(models.NutritionInfo, schemas.NutritionInfo, nutrition_id, data)

    def delete_nutrition_info(self, nutrition_id):
        return self._delete(models.NutritionInfo, nutrition_id)
