import logging
import time

from .constants import LOGS_DIR
from .settings import LOG_LEVEL


def setup_logging(level: str = LOG_LEVEL) -> logging.Logger:
    """Configure logging for the gateway."""
    LOGS_DIR.mkdir(exist_ok=True)

    # One log file per process start
    timestamp = time.strftime('%Y%m%d_%H%M%S')
    log_file = LOGS_DIR / f'gateway_{timestamp}.log'

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )

    logger = logging.getLogger('querygate')
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    return logger
