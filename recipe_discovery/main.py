import logging

import uvicorn

from .app import create_app
from .config import Config, configure_logging

logger = logging.getLogger(__name__)


def main():
    config = Config()
    configure_logging(config.log_level)
    app = create_app(config)
    logger.info("Serving on %s:%s", config.host, config.port)
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
