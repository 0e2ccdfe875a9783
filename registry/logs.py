import sys

from loguru import logger

from .config import LogConfig


def setup_logging(conf: LogConfig) -> None:
    logger.remove()
    logger.add(sys.stderr, level=conf.level)

    if len(conf.file) != 0:
        logger.add(conf.file, level=conf.level, rotation="1 day", retention="30 days")
