# flake8: noqa
import sys
from pathlib import Path

# Ensure project root is on sys.path so `recipe_discovery` imports without installing
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))  # noqa: E402

import pytest
from fastapi.testclient import TestClient  # noqa: E402

from recipe_discovery import schemas
from recipe_discovery.app import create_app
from recipe_discovery.config import Config
from recipe_discovery.crud import SqlStorage
from recipe_discovery.storage import MemStorage


def recipe_payload(**overrides):
    payload = {
        "title": "Test Pancakes",
        "description": "Fluffy weekend pancakes",
        "imageUrl": "https://example.com/pancakes.jpg",
        "prepTime": 10,
        "cookTime": 15,
        "servings": 4,
        "calories": 350,
        "difficulty": "Easy",
        "userId": None,
        "categoryIds": [],
    }
    payload.update(overrides)
    return payload


@pytest.fixture(params=["memory", "sql"])
def storage(request):
    if request.param == "sql":
        # fresh in-memory SQLite database per test
        return SqlStorage("sqlite://")
    return MemStorage()


@pytest.fixture
def config():
    return Config(seed_sample_data=False)


@pytest.fixture
def client(config, storage):
    return TestClient(create_app(config, storage))


@pytest.fixture
def make_recipe(storage):
    def _make(**overrides):
        return storage.create_recipe(schemas.RecipeCreate.model_validate(recipe_payload(**overrides)))
    return _make


@pytest.fixture
def make_category(storage):
    counter = iter(range(1, 1000))

    def _make(name=None):
        return storage.create_category(
            schemas.CategoryCreate(name=name or f"Category {next(counter)}", image_url="https://example.com/c.jpg")
        )
    return _make


@pytest.fixture
def make_user(storage):
    def _make(username="cook", email=None, avatar_url=None):
        return storage.create_user(
            schemas.UserCreate(
                username=username,
                password="secret",
                email=email or f"{username}@example.com",
                avatar_url=avatar_url,
            )
        )
    return _make
