import logging
from enum import Enum
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


DATA_DIR = Path(__file__).resolve().parent / "data"


class Env(Enum):
    local = "local"
    dev = "dev"
    prod = "prod"


class StorageBackend(Enum):
    memory = "memory"
    sql = "sql"


class Config(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RECIPES_", env_file=".env", extra="ignore")

    env: Env = Env.local
    storage_backend: StorageBackend = StorageBackend.memory
    db_url: str = "sqlite://"
    seed_sample_data: bool = True
    sample_data_file: Path = DATA_DIR / "sample_data.json"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    # Listing filters match on these category ids
    vegetarian_category_id: int = 3
    quick_meals_category_id: int = 4
    low_carb_max_calories: int = 300

    save_milestone: int = 5


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
