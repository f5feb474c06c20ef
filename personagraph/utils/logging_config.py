"""
Logging setup shared by every personagraph module.
"""

import logging
import sys
from typing import Optional

from .config import AppConfig

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Client libraries that log every request at INFO
QUIET_LOGGERS = ('botocore', 'urllib3', 'opensearch', 'gremlinpython')


def _level(app_config: Optional[AppConfig]) -> int:
    if app_config is None:
        from .config import config as app_config
    return getattr(logging, app_config.log_level.upper(), logging.INFO)


def setup_logging(config: Optional[AppConfig] = None) -> None:
    """
    Send log records to stdout at the configured LOG_LEVEL.

    Args:
        config: AppConfig to read the level from (global config when None)
    """
    logging.basicConfig(level=_level(config), format=LOG_FORMAT, handlers=[logging.StreamHandler(sys.stdout)])

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, config: Optional[AppConfig] = None) -> logging.Logger:
    """Module logger at the configured level; call with __name__."""
    logger = logging.getLogger(name)
    logger.setLevel(_level(config))
    return logger
