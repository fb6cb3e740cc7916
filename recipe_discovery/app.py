import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import listing, schemas
from .config import Config, StorageBackend
from .crud import SqlStorage
from .seed import load_sample_data, seed_storage
from .storage import ConflictError, IStorage, MemStorage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def build_storage(config: Config) -> IStorage:
    if config.storage_backend is StorageBackend.sql:
        return SqlStorage(config.db_url, save_milestone=config.save_milestone)
    return MemStorage(save_milestone=config.save_milestone)


def get_storage(request: Request) -> IStorage:
    return request.app.state.storage


def get_config(request: Request) -> Config:
    return request.app.state.config


def _not_found(entity: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"{entity} not found")


def _no_content() -> Response:
    return Response(status_code=204)


def _public(user: schemas.User) -> schemas.UserPublic:
    return schemas.UserPublic.model_validate(user.model_dump())


# Users

@router.post("/users", response_model=schemas.UserPublic, status_code=201)
def create_user(payload: schemas.UserCreate, storage: IStorage = Depends(get_storage)):
    return _public(storage.create_user(payload))


@router.get("/users/{user_id}", response_model=schemas.UserPublic)
def get_user(user_id: int, storage: IStorage = Depends(get_storage)):
    user = storage.get_user(user_id)
    if not user:
        raise _not_found("User")
    return _public(user)


# Recipes

@router.get("/recipes", response_model=List[schemas.Recipe])
def list_recipes(
    limit: int = Query(100, ge=0),
    offset: int = Query(0, ge=0),
    filters: Optional[str] = None,
    sort: str = listing.DEFAULT_SORT,
    storage: IStorage = Depends(get_storage),
    config: Config = Depends(get_config),
):
    # Filter and sort the whole catalog so a page is only short at the end
    recipes = storage.get_recipes(limit=None)
    recipes = listing.apply_filters(recipes, listing.parse_filters(filters), config)
    recipes = listing.sort_recipes(recipes, sort)
    return recipes[offset:offset + limit]


@router.get("/recipes/search/{query}", response_model=List[schemas.Recipe])
def search_recipes(query: str, storage: IStorage = Depends(get_storage)):
    return storage.search_recipes(query)


@router.get("/recipes/{recipe_id}", response_model=schemas.RecipeWithDetails)
def get_recipe(recipe_id: int, storage: IStorage = Depends(get_storage)):
    recipe = storage.get_recipe_by_id(recipe_id)
    if not recipe:
        raise _not_found("Recipe")
    return recipe


@router.post("/recipes", response_model=schemas.Recipe, status_code=201)
def create_recipe(payload: schemas.RecipeCreate, storage: IStorage = Depends(get_storage)):
    return storage.create_recipe(payload)


@router.put("/recipes/{recipe_id}", response_model=schemas.Recipe)
def update_recipe(
    recipe_id: int, payload: schemas.RecipeUpdate, storage: IStorage = Depends(get_storage)
):
    recipe = storage.update_recipe(recipe_id, payload)
    if not recipe:
        raise _not_found("Recipe")
    return recipe


@router.delete("/recipes/{recipe_id}", status_code=204, response_class=Response)
def delete_recipe(recipe_id: int, storage: IStorage = Depends(get_storage)):
    if not storage.delete_recipe(recipe_id):
        raise _not_found("Recipe")
    return _no_content()


# Ingredients

@router.get("/recipes/{recipe_id}/ingredients", response_model=List[schemas.Ingredient])
def list_ingredients(recipe_id: int, storage: IStorage = Depends(get_storage)):
    return storage.get_ingredients_by_recipe_id(recipe_id)


@router.get("/ingredients/{ingredient_id}", response_model=schemas.Ingredient)
def get_ingredient(ingredient_id: int, storage: IStorage = Depends(get_storage)):
    ingredient = storage.get_ingredient(ingredient_id)
    if not ingredient:
        raise _not_found("Ingredient")
    return ingredient


@router.post("/ingredients", response_model=schemas.Ingredient, status_code=201)
def create_ingredient(payload: schemas.IngredientCreate, storage: IStorage = Depends(get_storage)):
    return storage.create_ingredient(payload)


@router.put("/ingredients/{ingredient_id}", response_model=schemas.Ingredient)
def update_ingredient(
    ingredient_id: int, payload: schemas.IngredientUpdate, storage: IStorage = Depends(get_storage)
):
    ingredient = storage.update_ingredient(ingredient_id, payload)
    if not ingredient:
        raise _not_found("Ingredient")
    return ingredient


@router.delete("/ingredients/{ingredient_id}", status_code=204, response_class=Response)
def delete_ingredient(ingredient_id: int, storage: IStorage = Depends(get_storage)):
    if not storage.delete_ingredient(ingredient_id):
        raise _not_found("Ingredient")
    return _no_content()


# Steps

@router.get("/recipes/{recipe_id}/steps", response_model=List[schemas.Step])
def list_steps(recipe_id: int, storage: IStorage = Depends(get_storage)):
    return storage.get_steps_by_recipe_id(recipe_id)


@router.get("/steps/{step_id}", response_model=schemas.Step)
def get_step(step_id: int, storage: IStorage = Depends(get_storage)):
    step = storage.get_step(step_id)
    if not step:
        raise _not_found("Step")
    return step


@router.post("/steps", response_model=schemas.Step, status_code=201)
def create_step(payload: schemas.StepCreate, storage: IStorage = Depends(get_storage)):
    return storage.create_step(payload)


@router.put("/steps/{step_id}", response_model=schemas.Step)
def update_step(step_id: int, payload: schemas.StepUpdate, storage: IStorage = Depends(get_storage)):
    step = storage.update_step(step_id, payload)
    if not step:
        raise _not_found("Step")
    return step


@router.delete("/steps/{step_id}", status_code=204, response_class=Response)
def delete_step(step_id: int, storage: IStorage = Depends(get_storage)):
    if not storage.delete_step(step_id):
        raise _not_found("Step")
    return _no_content()


# Categories

@router.get("/categories", response_model=List[schemas.Category])
def list_categories(storage: IStorage = Depends(get_storage)):
    return storage.get_categories()


@router.get("/categories/{category_id}", response_model=schemas.Category)
def get_category(category_id: int, storage: IStorage = Depends(get_storage)):
    category = storage.get_category_by_id(category_id)
    if not category:
        raise _not_found("Category")
    return category


@router.get("/categories/{category_id}/recipes", response_model=List[schemas.Recipe])
def list_category_recipes(
    category_id: int,
    limit: int = Query(100, ge=0),
    offset: int = Query(0, ge=0),
    storage: IStorage = Depends(get_storage),
):
    return storage.get_recipes_by_category(category_id, limit=limit, offset=offset)


@router.post("/categories", response_model=schemas.Category, status_code=201)
def create_category(payload: schemas.CategoryCreate, storage: IStorage = Depends(get_storage)):
    return storage.create_category(payload)


@router.put("/categories/{category_id}", response_model=schemas.Category)
def update_category(
    category_id: int, payload: schemas.CategoryUpdate, storage: IStorage = Depends(get_storage)
):
    category = storage.update_category(category_id, payload)
    if not category:
        raise _not_found("Category")
    return category


@router.delete("/categories/{category_id}", status_code=204, response_class=Response)
def delete_category(category_id: int, storage: IStorage = Depends(get_storage)):
    if not storage.delete_category(category_id):
        raise _not_found("Category")
    return _no_content()


# Saved recipes

@router.get("/users/{user_id}/saved-recipes", response_model=List[schemas.SavedRecipe])
def list_saved_recipes(user_id: int, storage: IStorage = Depends(get_storage)):
    return storage.get_saved_recipes_by_user_id(user_id)


@router.get("/users/{user_id}/saved-recipes/count", response_model=schemas.SavedRecipeCount)
def count_saved_recipes(user_id: int, storage: IStorage = Depends(get_storage)):
    return schemas.SavedRecipeCount(count=storage.get_saved_recipe_count(user_id))


@router.post("/saved-recipes", response_model=schemas.SavedRecipe, status_code=201)
def save_recipe(payload: schemas.SavedRecipeCreate, storage: IStorage = Depends(get_storage)):
    return storage.create_saved_recipe(payload)


@router.delete(
    "/users/{user_id}/saved-recipes/{recipe_id}", status_code=204, response_class=Response
)
def unsave_recipe(user_id: int, recipe_id: int, storage: IStorage = Depends(get_storage)):
    if not storage.delete_saved_recipe(user_id, recipe_id):
        raise _not_found("Saved recipe")
    return _no_content()


# Achievements

@router.get("/users/{user_id}/achievements", response_model=List[schemas.Achievement])
def list_achievements(user_id: int, storage: IStorage = Depends(get_storage)):
    return storage.get_achievements_by_user_id(user_id)


@router.post("/achievements", response_model=schemas.Achievement, status_code=201)
def create_achievement(payload: schemas.AchievementCreate, storage: IStorage = Depends(get_storage)):
    return storage.create_achievement(payload)


@router.put("/achievements/{achievement_id}", response_model=schemas.Achievement)
def update_achievement(
    achievement_id: int, payload: schemas.AchievementUpdate, storage: IStorage = Depends(get_storage)
):
    achievement = storage.update_achievement(achievement_id, payload)
    if not achievement:
        raise _not_found("Achievement")
    return achievement


# Nutrition

@router.get("/recipes/{recipe_id}/nutrition", response_model=schemas.NutritionInfo)
def get_recipe_nutrition(recipe_id: int, storage: IStorage = Depends(get_storage)):
    nutrition = storage.get_nutrition_by_recipe_id(recipe_id)
    if not nutrition:
        raise _not_found("Nutrition information")
    return nutrition


@router.post("/nutrition", response_model=schemas.NutritionInfo, status_code=201)
def create_nutrition(payload: schemas.NutritionInfoCreate, storage: IStorage = Depends(get_storage)):
    return storage.create_nutrition_info(payload)


@router.put("/nutrition/{nutrition_id}", response_model=schemas.NutritionInfo)
def update_nutrition(
    nutrition_id: int, payload: schemas.NutritionInfoUpdate, storage: IStorage = Depends(get_storage)
):
    nutrition = storage.update_nutrition_info(nutrition_id, payload)
    if not nutrition:
        raise _not_found("Nutrition information")
    return nutrition


@router.delete("/nutrition/{nutrition_id}", status_code=204, response_class=Response)
def delete_nutrition(nutrition_id: int, storage: IStorage = Depends(get_storage)):
    if not storage.delete_nutrition_info(nutrition_id):
        raise _not_found("Nutrition information")
    return _no_content()


# Error handlers

async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg", ""), "type": e.get("type", "")}
        for e in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"message": errors})


async def conflict_exception_handler(request: Request, exc: ConflictError):
    logger.info("Conflict on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=409, content={"message": str(exc)})


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


def create_app(config: Optional[Config] = None, storage: Optional[IStorage] = None) -> FastAPI:
    config = config or Config()
    if storage is None:
        storage = build_storage(config)
        if config.seed_sample_data:
            seed_storage(storage, load_sample_data(config.sample_data_file))

    app = FastAPI(title="Recipe Discovery API", version="1.0.0")
    app.state.config = config
    app.state.storage = storage

    # Allow CORS for the browser client (adjust origins for production)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ConflictError, conflict_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.get("/health")
    def health():
        return {"status": "ok", "storage": config.storage_backend.value}

    app.include_router(router)
    logger.info("Recipe API ready (%s storage, env=%s)", config.storage_backend.value, config.env.value)
    return app
