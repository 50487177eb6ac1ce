# logging setup shared by the api and scripts
# one stdout handler, same format everywhere

import logging
import sys

def setup_logging(level: str = "INFO"):
    """
    configure root logger once

    args:
        level: level name, e.g. "INFO" or "DEBUG"
    """
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=[console_handler],
        force=True
    )
