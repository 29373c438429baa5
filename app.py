#!/usr/bin/env python3
import logging
import sys

from awos.config import Config
from awos.server import create_app

config = Config.from_env()

logging.basicConfig(
    level=getattr(logging, config.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)

app = create_app(config)


if __name__ == '__main__':
    logger.info("Starting Flask app on %s:%s (%s store)", config.host, config.port, config.backend.value)
    app.run(host=config.host, port=config.port, debug=False, threaded=True)
