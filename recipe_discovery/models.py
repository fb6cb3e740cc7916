from sqlalchemy import JSON, Column, DateTime, Integer, String, Text
# relationship not used; references are plain integer columns like in MemStorage
from .db import Base

# AUTOINCREMENT keeps SQLite from reusing the ids of deleted rows
_TABLE_ARGS = {"sqlite_autoincrement": True}


class User(Base):
    __tablename__ = "users"
    __table_args__ = _TABLE_ARGS
    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(200), unique=True, index=True, nullable=False)
    password = Column(String(200), nullable=False)
    email = Column(String(200), unique=True, nullable=False)
    avatar_url = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class Recipe(Base):
    __tablename__ = "recipes"
    __table_args__ = _TABLE_ARGS
    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    image_url = Column(Text, nullable=False)
    prep_time = Column(Integer, nullable=False)  # minutes
    cook_time = Column(Integer, nullable=False)  # minutes
    servings = Column(Integer, nullable=False)
    calories = Column(Integer, nullable=True)
    difficulty = Column(String(20), nullable=False)
    user_id = Column(Integer, nullable=True)
    category_ids = Column(JSON, nullable=False)  # list of category ids
    rating = Column(Integer, nullable=False, default=0)
    rating_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False)


class Ingredient(Base):
    __tablename__ = "ingredients"
    __table_args__ = _TABLE_ARGS
    id = Column(Integer, primary_key=True, index=True)
    recipe_id = Column(Integer, index=True, nullable=False)
    name = Column(Text, nullable=False)
    quantity = Column(String(50), nullable=False)
    unit = Column(String(50), nullable=True)


class Step(Base):
    __tablename__ = "steps"
    __table_args__ = _TABLE_ARGS
    id = Column(Integer, primary_key=True, index=True)
    recipe_id = Column(Integer, index=True, nullable=False)
    step_number = Column(Integer, nullable=False)
    instruction = Column(Text, nullable=False)
    timer_minutes = Column(Integer, nullable=True)


class Category(Base):
    __tablename__ = "categories"
    __table_args__ = _TABLE_ARGS
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), unique=True, nullable=False)
    image_url = Column(Text, nullable=False)
    recipe_count = Column(Integer, nullable=False, default=0)


class SavedRecipe(Base):
    __tablename__ = "saved_recipes"
    __table_args__ = _TABLE_ARGS
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, index=True, nullable=False)
    recipe_id = Column(Integer, nullable=False)
    saved_at = Column(DateTime(timezone=True), nullable=False)


class Achievement(Base):
    __tablename__ = "achievements"
    __table_args__ = _TABLE_ARGS
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, index=True, nullable=False)
    type = Column(String(50), nullable=False)
    count = Column(Integer, nullable=False, default=1)
    achieved_at = Column(DateTime(timezone=True), nullable=False)


class NutritionInfo(Base):
    __tablename__ = "nutrition_info"
    __table_args__ = _TABLE_ARGS
    id = Column(Integer, primary_key=True, index=True)
    recipe_id = Column(Integer, index=True, nullable=False)
    protein = Column(Integer, nullable=True)  # grams
    carbs = Column(Integer, nullable=True)
    fats = Column(Integer, nullable=True)
    fiber = Column(Integer, nullable=True)
