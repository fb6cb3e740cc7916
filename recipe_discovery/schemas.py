from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake-case attributes in Python, camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _reject_null(value):
    if value is None:
        raise ValueError("may not be null")
    return value


# Users

class UserBase(CamelModel):
    username: str = Field(..., min_length=1, json_schema_extra={"example": "demouser"})
    password: str
    email: str = Field(..., min_length=1, json_schema_extra={"example": "demo@example.com"})
    avatar_url: Optional[str] = None


class UserCreate(UserBase):
    pass


class User(UserBase):
    id: int
    created_at: datetime


class UserPublic(CamelModel):
    id: int
    username: str
    email: str
    avatar_url: Optional[str] = None
    created_at: datetime


# Recipes

class RecipeBase(CamelModel):
    title: str = Field(..., json_schema_extra={"example": "Spaghetti Carbonara"})
    description: str
    image_url: str
    prep_time: int = Field(..., ge=0, description="Minutes")
    cook_time: int = Field(..., ge=0, description="Minutes")
    servings: int = Field(..., gt=0)
    calories: Optional[int] = None
    difficulty: str = Field(..., json_schema_extra={"example": "Medium"})
    user_id: Optional[int] = None
    category_ids: List[int] = Field(..., json_schema_extra={"example": [4, 5]})


class RecipeCreate(RecipeBase):
    pass


class RecipeUpdate(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    prep_time: Optional[int] = Field(None, ge=0)
    cook_time: Optional[int] = Field(None, ge=0)
    servings: Optional[int] = Field(None, gt=0)
    calories: Optional[int] = None
    difficulty: Optional[str] = None
    user_id: Optional[int] = None
    category_ids: Optional[List[int]] = None

    @field_validator(
        "title", "description", "image_url", "prep_time", "cook_time",
        "servings", "difficulty", "category_ids", mode="before",
    )
    @classmethod
    def not_null(cls, value):
        return _reject_null(value)


class Recipe(RecipeBase):
    id: int
    created_at: datetime
    rating: int = 0
    rating_count: int = 0


# Ingredients

class IngredientBase(CamelModel):
    recipe_id: int
    name: str
    quantity: str = Field(..., json_schema_extra={"example": "1/2"})
    unit: Optional[str] = None


class IngredientCreate(IngredientBase):
    pass


class IngredientUpdate(CamelModel):
    recipe_id: Optional[int] = None
    name: Optional[str] = None
    quantity: Optional[str] = None
    unit: Optional[str] = None

    @field_validator("recipe_id", "name", "quantity", mode="before")
    @classmethod
    def not_null(cls, value):
        return _reject_null(value)


class Ingredient(IngredientBase):
    id: int


# Steps

class StepBase(CamelModel):
    recipe_id: int
    step_number: int = Field(..., ge=1)
    instruction: str
    timer_minutes: Optional[int] = Field(None, ge=0)


class StepCreate(StepBase):
    pass


class StepUpdate(CamelModel):
    recipe_id: Optional[int] = None
    step_number: Optional[int] = Field(None, ge=1)
    instruction: Optional[str] = None
    timer_minutes: Optional[int] = Field(None, ge=0)

    @field_validator("recipe_id", "step_number", "instruction", mode="before")
    @classmethod
    def not_null(cls, value):
        return _reject_null(value)


class Step(StepBase):
    id: int


# Categories

class CategoryBase(CamelModel):
    name: str = Field(..., min_length=1, json_schema_extra={"example": "Vegetarian"})
    image_url: str


class CategoryCreate(CategoryBase):
    pass


class CategoryUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    image_url: Optional[str] = None

    @field_validator("name", "image_url", mode="before")
    @classmethod
    def not_null(cls, value):
        return _reject_null(value)


class Category(CategoryBase):
    id: int
    recipe_count: int = 0


# Saved recipes

class SavedRecipeCreate(CamelModel):
    user_id: int
    recipe_id: int


class SavedRecipe(SavedRecipeCreate):
    id: int
    saved_at: datetime


class SavedRecipeCount(CamelModel):
    count: int


# Achievements

class AchievementCreate(CamelModel):
    user_id: int
    type: str = Field(..., json_schema_extra={"example": "COOK_RECIPES"})
    count: int = 1


class AchievementUpdate(CamelModel):
    user_id: Optional[int] = None
    type: Optional[str] = None
    count: Optional[int] = None

    @field_validator("user_id", "type", "count", mode="before")
    @classmethod
    def not_null(cls, value):
        return _reject_null(value)


class Achievement(AchievementCreate):
    id: int
    achieved_at: datetime


# Nutrition

class NutritionInfoCreate(CamelModel):
    recipe_id: int
    protein: Optional[int] = None
    carbs: Optional[int] = None
    fats: Optional[int] = None
    fiber: Optional[int] = None


class NutritionInfoUpdate(CamelModel):
    recipe_id: Optional[int] = None
    protein: Optional[int] = None
    carbs: Optional[int] = None
    fats: Optional[int] = None
    fiber: Optional[int] = None

    @field_validator("recipe_id", mode="before")
    @classmethod
    def not_null(cls, value):
        return _reject_null(value)


class NutritionInfo(NutritionInfoCreate):
    id: int


# Composed recipe view

class RecipeAuthor(CamelModel):
    username: str
    avatar_url: Optional[str] = None


class CategoryRef(CamelModel):
    id: int
    name: str


class RecipeWithDetails(Recipe):
    ingredients: List[Ingredient] = Field(default_factory=list)
    steps: List[Step] = Field(default_factory=list)
    nutrition_info: Optional[NutritionInfo] = None
    user: RecipeAuthor
    categories: List[CategoryRef] = Field(default_factory=list)
