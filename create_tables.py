# create_tables.py
import logging

from db import engine, init_db

logger = logging.getLogger(__name__)


def main():
    logging.basicConfig(level=logging.INFO)
    init_db(engine)
    logger.info("records table ready on %s", engine.url.render_as_string(hide_password=True))


if __name__ == "__main__":
    main()
