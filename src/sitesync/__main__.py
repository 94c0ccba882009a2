"""Entry point for running the sitesync HTTP server: ``python -m sitesync``."""

import logging

import uvicorn
from dotenv import load_dotenv

from .api.main import create_app
from .services.config import get_config


def main() -> None:
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    config = get_config()
    uvicorn.run(create_app(), host=config.host, port=config.port)


if __name__ == "__main__":
    main()
