import sys
from pathlib import Path

from recipe_discovery.config import Config, configure_logging
from recipe_discovery.crud import SqlStorage
from recipe_discovery.seed import load_sample_data, seed_storage


def main():
    config = Config()
    configure_logging(config.log_level)
    # Optional argument: a JSON file shaped like recipe_discovery/data/sample_data.json
    p = Path(sys.argv[1]) if len(sys.argv) > 1 else config.sample_data_file
    if not p.exists():
        print(f'{p} not found')
        return
    if config.db_url == 'sqlite://':
        print('RECIPES_DB_URL points at an in-memory database; nothing would be kept')
        return
    storage = SqlStorage(config.db_url, save_milestone=config.save_milestone)
    added = seed_storage(storage, load_sample_data(p))
    print(f'Imported {added} recipes into {config.db_url}')


if __name__ == '__main__':
    main()
