import pytest
from fastapi.testclient import TestClient

from recipe_discovery.app import create_app
from recipe_discovery.config import Config
from recipe_discovery.seed import load_sample_data, seed_storage


@pytest.fixture
def seeded(storage):
    seed_storage(storage, load_sample_data(Config().sample_data_file))
    return storage


def test_seed_creates_catalog(seeded):
    assert len(seeded.get_recipes(limit=None)) == 8
    counts = {c.name: c.recipe_count for c in seeded.get_categories()}
    assert counts == {
        "Healthy": 3,
        "Desserts": 1,
        "Vegetarian": 3,
        "Quick & Easy": 4,
        "Italian": 3,
        "Breakfast": 2,
    }


def test_seeded_recipe_has_details(seeded):
    details = seeded.get_recipe_by_id(1)
    assert details.title == "Creamy Tuscan Garlic Chicken"
    assert details.user.username == "demouser"
    assert len(details.ingredients) == 8
    assert [s.step_number for s in details.steps] == [1, 2, 3, 4]
    assert details.nutrition_info is not None


def test_seeding_twice_adds_nothing(seeded):
    assert seed_storage(seeded, load_sample_data(Config().sample_data_file)) == 0
    assert len(seeded.get_recipes(limit=None)) == 8
    assert len(seeded.get_categories()) == 6


def test_missing_file_loads_empty_catalog(tmp_path):
    data = load_sample_data(tmp_path / "nope.json")
    assert data == {"users": [], "categories": [], "recipes": []}


def test_app_serves_seeded_catalog():
    client = TestClient(create_app(Config(seed_sample_data=True)))

    res = client.get("/api/recipes?filters=vegetarian")
    assert [r["id"] for r in res.json()] == [6, 3, 2]

    res = client.get("/api/recipes?filters=gluten-free")
    assert sorted(r["id"] for r in res.json()) == [1, 3, 4, 5, 6, 7, 8]

    res = client.get("/api/recipes/search/carbonara")
    assert [r["title"] for r in res.json()] == ["Spaghetti Carbonara"]
