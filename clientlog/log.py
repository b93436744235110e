"""
Logging setup for the ClientLog application.

Each module logs through `logging.getLogger(__name__)`; this module attaches a single
stream handler to the package logger so records show up in the Streamlit server output.
"""
# clientlog/log.py

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level="INFO"):
    """Configures the `clientlog` logger once per process.

    Streamlit re-executes the entry script on every interaction, so repeated calls
    only adjust the level instead of stacking handlers.

    Args:
        level (str): A level name such as ``INFO`` or ``DEBUG``.

    Returns:
        logging.Logger: The package logger.
    """
    logger = logging.getLogger("clientlog")
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger.propagate = False
    return logger
