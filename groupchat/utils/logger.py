import logging
import os

from ..config import settings


def setup_logger(name='groupchat'):
    """Set up a logger with console and file output.

    Creates a logger that writes:
    - ``settings.log_level`` and above to console
    - DEBUG and above to file (``<log_dir>/server.log``)

    Calling it again with the same name returns the already configured
    logger without attaching a second pair of handlers.

    Args:
        name (str, optional): Logger name. Defaults to 'groupchat'

    Returns:
        logging.Logger: Configured logger instance

    Side Effects:
        - Creates the log directory if it doesn't exist
        - Creates/appends to server.log file
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    logger.setLevel(logging.DEBUG)

    # Create formatters and handlers
    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(name)s - %(message)s')

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    # File handler - ensure log directory exists
    os.makedirs(settings.log_dir, exist_ok=True)
    file_handler = logging.FileHandler(os.path.join(settings.log_dir, 'server.log'), encoding='utf-8')
    file_handler.setFormatter(formatter)
    file_handler.setLevel(logging.DEBUG)

    # Add handlers to logger
    logger.addHandler(console_handler)
    logger.addHandler(file_handler)
    logger.propagate = False

    return logger
