"""
config.py
~~~~~~~~~

Environment-driven settings and logging setup.

Variables:
    LOG_LEVEL           Logging level name (default INFO)
    NW_MODEL_DIR        Directory holding the network catalog database
    NW_REPORT_INTERVAL  Training iterations between RMS reports/checkpoints
    NW_FILE_LAYOUT      Word-size layout of network files ('lp64' or 'ilp32')
"""

import os
import logging

DEFAULT_MODEL_DIR = 'models'
DEFAULT_REPORT_INTERVAL = 100
DEFAULT_FILE_LAYOUT = 'lp64'

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging() -> None:
    """
    Set up logging based on environment.

    Drivers call this once at startup; library modules only create
    their own module loggers.
    """
    log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    logging.basicConfig(level=log_level, format=LOG_FORMAT)
    logging.getLogger('nwengine').setLevel(log_level)


def model_dir() -> str:
    """Directory for the network catalog."""
    return os.getenv('NW_MODEL_DIR', DEFAULT_MODEL_DIR)


def report_interval() -> int:
    """Training report/checkpoint period, falling back to the default."""
    value = os.getenv('NW_REPORT_INTERVAL')
    if value is None:
        return DEFAULT_REPORT_INTERVAL
    try:
        interval = int(value)
    except ValueError:
        logging.getLogger(__name__).warning(
            f"Ignoring invalid NW_REPORT_INTERVAL={value!r}"
        )
        return DEFAULT_REPORT_INTERVAL
    return interval if interval > 0 else DEFAULT_REPORT_INTERVAL


def file_layout_name() -> str:
    """Name of the default network file layout."""
    return os.getenv('NW_FILE_LAYOUT', DEFAULT_FILE_LAYOUT)
