# core.py
from typing import Optional
from archstrap.utils.logger import RichAppLogger, initialize_app_logger

# A global variable to hold the initialized logger wrapper
# It starts as None and is set by the CLI callback
app_logger: Optional[RichAppLogger] = None


def get_logger() -> RichAppLogger:
    """Returns the process logger, creating a fallback one on first use."""
    global app_logger
    if app_logger is None:
        app_logger = initialize_app_logger(app_name="archstrap")
    return app_logger
